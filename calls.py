"""
Call signaling broker.

Relays initiate (callUser), accept (answerCall -> callAccepted) and terminate
(endCall -> callEnded) envelopes between exactly two connection identities.
Room membership plays no part here. Call state lives in the connection
registry; this module only decides which transitions are legal and who has
to be told about them.

Per-identity state machine:

    idle -> ringing(caller) | ringing(callee) -> connected -> idle
    ringing | connected -> idle   (terminate, disconnect or ring timeout)

Signal payloads are opaque and forwarded as received.
"""

import time
from typing import Any, Callable, List, Optional

from constants import RING_TIMEOUT_SECONDS
from logging_config import get_logger
from registry import CallPhase, CallRole, ConnectionRegistry
from schemas.events import (
    CallEndReason,
    CallRejectedPayload,
    CallRejectReason,
    EventName,
    IncomingCallPayload,
    Outgoing,
    call_ended,
)

logger = get_logger(__name__)


class CallBroker:
    def __init__(
        self,
        registry: ConnectionRegistry,
        ring_timeout: float = RING_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.registry = registry
        self.ring_timeout = ring_timeout
        self.clock = clock

    def initiate(
        self, caller: str, callee: str, offer: Any, caller_name: str = "", now: Optional[float] = None
    ) -> List[Outgoing]:
        """Start ringing callee on behalf of caller.

        Both parties must be registered and idle. Any other case leaves every
        state untouched and answers the caller with callRejected.
        """
        reason = self._reject_reason(caller, callee)
        if reason is not None:
            logger.warning(f"Rejecting call from {caller} to {callee}: {reason.value}")
            return [Outgoing(caller, EventName.CALL_REJECTED, CallRejectedPayload(to=callee, reason=reason))]

        now = self.clock() if now is None else now
        self.registry.open_call(caller, callee, caller_name, offer, now)
        logger.info(f"Call from {caller} ({caller_name}) ringing at {callee}")
        payload = IncomingCallPayload(from_=caller, name=caller_name, signal=offer)
        return [Outgoing(callee, EventName.CALL_USER, payload)]

    def accept(self, callee: str, answer: Any, caller: Optional[str] = None) -> List[Outgoing]:
        """Connect a ringing call and relay the answer to the caller.

        Dropped unless callee is ringing as callee. When caller is given it must
        match the caller on record.
        """
        session = self.registry.call_of(callee)
        if session is None or session.phase is not CallPhase.RINGING or session.role_of(callee) is not CallRole.CALLEE:
            logger.warning(f"Dropping answer from {callee}: no call is ringing at this connection")
            return []
        if caller is not None and caller != session.caller:
            logger.warning(f"Dropping answer from {callee} addressed to {caller}: ringing call is from {session.caller}")
            return []

        self.registry.mark_connected(session)
        logger.info(f"Call between {session.caller} and {callee} connected")
        return [Outgoing(session.caller, EventName.CALL_ACCEPTED, answer)]

    def terminate(self, identity: str, reason: CallEndReason = CallEndReason.ENDED) -> List[Outgoing]:
        """End identity's call, if any, and notify the counterparty. No-op when idle."""
        session = self.registry.end_call(identity)
        if session is None:
            logger.debug(f"Terminate from {identity} ignored: no active call")
            return []
        peer = session.counterparty(identity)
        logger.info(f"Call between {session.caller} and {session.callee} ended by {identity} ({reason.value})")
        return [call_ended(peer, identity, reason)]

    def expire_ringing(self, now: Optional[float] = None) -> List[Outgoing]:
        """End every call that has been ringing longer than the ring timeout.

        Both parties receive callEnded with reason timeout. Does nothing when the
        timeout is disabled (0 or negative).
        """
        if not self.ring_timeout or self.ring_timeout <= 0:
            return []
        now = self.clock() if now is None else now
        outgoing = []
        for session in self.registry.call_sessions():
            if session.phase is not CallPhase.RINGING or now - session.started_at < self.ring_timeout:
                continue
            self.registry.end_call(session.caller)
            logger.info(f"Call from {session.caller} to {session.callee} timed out after {self.ring_timeout}s")
            outgoing.append(call_ended(session.caller, session.callee, CallEndReason.TIMEOUT))
            outgoing.append(call_ended(session.callee, session.caller, CallEndReason.TIMEOUT))
        return outgoing

    def _reject_reason(self, caller: str, callee: str) -> Optional[CallRejectReason]:
        if caller == callee:
            return CallRejectReason.SELF
        if not self.registry.is_registered(callee):
            return CallRejectReason.UNKNOWN
        if self.registry.call_of(caller) is not None:
            return CallRejectReason.CALLER_BUSY
        if self.registry.call_of(callee) is not None:
            return CallRejectReason.BUSY
        return None
