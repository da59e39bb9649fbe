import json
from typing import List, Tuple

from pydantic import ValidationError

from calls import CallBroker
from errors import ErrorCode, ProtocolError, RelayError
from logging_config import get_logger
from registry import ConnectionRegistry
from rooms import RoomRouter
from schemas.events import (
    INBOUND_EVENTS,
    AnswerCallEnvelope,
    CallEndReason,
    CallUserEnvelope,
    ConnectedPayload,
    EndCallEnvelope,
    EventName,
    JoinRoomEnvelope,
    Outgoing,
    SendMessageEnvelope,
    error_envelope,
    inbound_envelope_adapter,
)

logger = get_logger(__name__)


def parse_frame(raw: str):
    """Decode one text frame into an inbound envelope model."""
    try:
        frame = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Frame is not valid JSON: {e.msg}", ErrorCode.INVALID_JSON)

    if not isinstance(frame, dict) or "event" not in frame:
        raise ProtocolError("Frame must be an object with an 'event' field", ErrorCode.INVALID_PAYLOAD)
    if frame["event"] not in INBOUND_EVENTS:
        raise ProtocolError(f"Unknown event: {frame['event']}", ErrorCode.UNKNOWN_EVENT)

    try:
        return inbound_envelope_adapter.validate_python(frame)
    except ValidationError as e:
        errors = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())
        raise ProtocolError(f"Invalid {frame['event']} payload: {errors}", ErrorCode.INVALID_PAYLOAD)


class Dispatcher:
    """Turns (sender, envelope) into registry transitions and the envelopes they produce."""

    def __init__(self, registry: ConnectionRegistry, room_router: RoomRouter, call_broker: CallBroker):
        self.registry = registry
        self.room_router = room_router
        self.call_broker = call_broker
        self._handlers = {
            JoinRoomEnvelope: self._on_join_room,
            SendMessageEnvelope: self._on_send_message,
            CallUserEnvelope: self._on_call_user,
            AnswerCallEnvelope: self._on_answer_call,
            EndCallEnvelope: self._on_end_call,
        }

    def connect(self) -> Tuple[str, List[Outgoing]]:
        identity = self.registry.register()
        return identity, [Outgoing(identity, EventName.CONNECTED, ConnectedPayload(id=identity))]

    def disconnect(self, identity: str) -> List[Outgoing]:
        return self.registry.unregister(identity)

    def handle_frame(self, sender: str, raw: str) -> List[Outgoing]:
        try:
            envelope = parse_frame(raw)
        except ProtocolError as e:
            logger.warning(f"Rejecting frame from {sender}: {e.message}")
            return [error_envelope(sender, e.code.value, e.message)]
        return self.handle(sender, envelope)

    def handle(self, sender: str, envelope) -> List[Outgoing]:
        handler = self._handlers[type(envelope)]
        logger.debug(f"Handling {envelope.event} from {sender}")
        try:
            return handler(sender, envelope)
        except RelayError as e:
            logger.warning(f"{envelope.event} from {sender} failed: {e.message}")
            return [error_envelope(sender, e.code.value, e.message)]

    def _on_join_room(self, sender: str, envelope: JoinRoomEnvelope) -> List[Outgoing]:
        return self.room_router.join(sender, envelope.data)

    def _on_send_message(self, sender: str, envelope: SendMessageEnvelope) -> List[Outgoing]:
        return self.room_router.broadcast(sender, envelope.data)

    def _on_call_user(self, sender: str, envelope: CallUserEnvelope) -> List[Outgoing]:
        request = envelope.data
        if request.from_ is not None and request.from_ != sender:
            logger.debug(f"callUser from {sender} claims to be from {request.from_}; using the registered identity")
        return self.call_broker.initiate(sender, request.user_to_call, request.signal_data, request.name)

    def _on_answer_call(self, sender: str, envelope: AnswerCallEnvelope) -> List[Outgoing]:
        return self.call_broker.accept(sender, envelope.data.signal, caller=envelope.data.to)

    def _on_end_call(self, sender: str, envelope: EndCallEnvelope) -> List[Outgoing]:
        target = envelope.data.to if envelope.data else None
        session = self.registry.call_of(sender)
        if target is not None and session is not None and session.counterparty(sender) != target:
            logger.warning(f"Dropping endCall from {sender} addressed to {target}: active call is with another peer")
            return []
        return self.call_broker.terminate(sender, CallEndReason.ENDED)
