import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Set

from errors import UnknownConnectionError
from logging_config import get_logger
from schemas.events import CallEndReason, Outgoing, call_ended

logger = get_logger(__name__)


class CallPhase(str, Enum):
    IDLE = "idle"
    RINGING = "ringing"
    CONNECTED = "connected"


class CallRole(str, Enum):
    CALLER = "caller"
    CALLEE = "callee"


@dataclass
class CallSession:
    """A call between two identities. Both parties point at the same session."""

    caller: str
    callee: str
    caller_name: str
    offer: Any
    started_at: float
    phase: CallPhase = CallPhase.RINGING

    def counterparty(self, identity: str) -> str:
        return self.callee if identity == self.caller else self.caller

    def role_of(self, identity: str) -> CallRole:
        return CallRole.CALLER if identity == self.caller else CallRole.CALLEE


@dataclass(frozen=True)
class CallState:
    phase: CallPhase = CallPhase.IDLE
    role: Optional[CallRole] = None
    peer: Optional[str] = None


@dataclass(frozen=True)
class ConnectionSnapshot:
    identity: str
    room: Optional[str]
    call: CallState


class ConnectionRegistry:
    """Owns identity -> room and identity -> call session mappings.

    Every method runs to completion without awaiting, so on a single event loop
    a mutation is never observed half-done by another connection's handler.
    """

    def __init__(self, id_factory: Callable[[], str] = None):
        self._id_factory = id_factory or (lambda: uuid.uuid4().hex)
        # identity -> room name (None when not in a room)
        self._room_of: Dict[str, Optional[str]] = {}
        # room name -> member identities
        self._members: Dict[str, Set[str]] = {}
        # identity -> call session (both parties share the object)
        self._calls: Dict[str, CallSession] = {}
        logger.info("ConnectionRegistry initialized")

    # Lifecycle

    def register(self) -> str:
        identity = self._id_factory()
        while identity in self._room_of:
            identity = self._id_factory()
        self._room_of[identity] = None
        logger.debug(f"Registered connection {identity} (live connections: {len(self._room_of)})")
        return identity

    def unregister(self, identity: str) -> List[Outgoing]:
        """Drop an identity, its room membership and any call it is part of.

        Returns the callEnded notification for the counterparty, if there was one.
        """
        self._require(identity)
        outgoing = []
        session = self.end_call(identity)
        if session is not None:
            peer = session.counterparty(identity)
            outgoing.append(call_ended(peer, identity, CallEndReason.DISCONNECTED))
            logger.info(f"Connection {identity} disconnected during a call, notifying {peer}")
        self.remove_from_room(identity)
        del self._room_of[identity]
        logger.debug(f"Unregistered connection {identity} (live connections: {len(self._room_of)})")
        return outgoing

    # Reads

    def is_registered(self, identity: str) -> bool:
        return identity in self._room_of

    def lookup(self, identity: str) -> ConnectionSnapshot:
        self._require(identity)
        return ConnectionSnapshot(identity=identity, room=self._room_of[identity], call=self.call_state(identity))

    def room_of(self, identity: str) -> Optional[str]:
        self._require(identity)
        return self._room_of[identity]

    def members(self, room: str) -> FrozenSet[str]:
        return frozenset(self._members.get(room, ()))

    def rooms(self) -> Dict[str, int]:
        return {room: len(members) for room, members in self._members.items()}

    def connection_count(self) -> int:
        return len(self._room_of)

    def call_of(self, identity: str) -> Optional[CallSession]:
        self._require(identity)
        return self._calls.get(identity)

    def call_state(self, identity: str) -> CallState:
        session = self.call_of(identity)
        if session is None:
            return CallState()
        return CallState(phase=session.phase, role=session.role_of(identity), peer=session.counterparty(identity))

    def call_sessions(self) -> List[CallSession]:
        seen = {}
        for session in self._calls.values():
            seen[id(session)] = session
        return list(seen.values())

    # Room mutations

    def move_to_room(self, identity: str, room: str) -> Optional[str]:
        """Put identity in room, leaving its previous room in the same step. Returns the previous room."""
        self._require(identity)
        previous = self._room_of[identity]
        if previous == room:
            return previous
        if previous is not None:
            self._discard_member(previous, identity)
        self._members.setdefault(room, set()).add(identity)
        self._room_of[identity] = room
        return previous

    def remove_from_room(self, identity: str) -> Optional[str]:
        self._require(identity)
        previous = self._room_of[identity]
        if previous is not None:
            self._discard_member(previous, identity)
            self._room_of[identity] = None
        return previous

    # Call mutations

    def open_call(self, caller: str, callee: str, caller_name: str, offer: Any, now: float) -> CallSession:
        self._require(caller)
        self._require(callee)
        if caller in self._calls or callee in self._calls:
            raise ValueError(f"Cannot open call {caller} -> {callee}: a party is already in a call")
        session = CallSession(caller=caller, callee=callee, caller_name=caller_name, offer=offer, started_at=now)
        self._calls[caller] = session
        self._calls[callee] = session
        return session

    def mark_connected(self, session: CallSession):
        if self._calls.get(session.caller) is not session or self._calls.get(session.callee) is not session:
            raise ValueError(f"Call {session.caller} -> {session.callee} is no longer active")
        session.phase = CallPhase.CONNECTED

    def end_call(self, identity: str) -> Optional[CallSession]:
        """Return both parties of identity's call to idle. Returns the ended session, or None."""
        session = self._calls.get(identity)
        if session is None:
            return None
        for party in (session.caller, session.callee):
            if self._calls.get(party) is session:
                del self._calls[party]
        return session

    def _discard_member(self, room: str, identity: str):
        members = self._members.get(room)
        if members is None:
            return
        members.discard(identity)
        if not members:
            # Empty rooms are inert; keep the index small
            del self._members[room]

    def _require(self, identity: str):
        if identity not in self._room_of:
            raise UnknownConnectionError(f"Unknown connection identity: {identity}")


connection_registry = ConnectionRegistry()
