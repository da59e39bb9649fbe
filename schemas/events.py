from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class EventName(str, Enum):
    # server -> client
    CONNECTED = "connected"
    ROOM_JOINED = "room_joined"
    RECEIVE_MESSAGE = "receive_message"
    CALL_USER = "callUser"
    CALL_ACCEPTED = "callAccepted"
    CALL_ENDED = "callEnded"
    CALL_REJECTED = "callRejected"
    ERROR = "error"
    # client -> server
    JOIN_ROOM = "join_room"
    SEND_MESSAGE = "send_message"
    ANSWER_CALL = "answerCall"
    END_CALL = "endCall"


class ContentKind(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"


class CallEndReason(str, Enum):
    ENDED = "ended"
    DISCONNECTED = "disconnected"
    TIMEOUT = "timeout"


class CallRejectReason(str, Enum):
    UNKNOWN = "unknown"
    BUSY = "busy"
    CALLER_BUSY = "caller_busy"
    SELF = "self"


class ChatContent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    kind: ContentKind = ContentKind.TEXT
    # Plain text, or a data URI for image/video; never inspected by the relay
    body: str
    mime_type: Optional[str] = Field(None, alias="mimeType")


class ChatMessage(BaseModel):
    room: str
    author: str
    content: ChatContent
    timestamp: str

    model_config = ConfigDict(frozen=True)


# Inbound payloads

class CallUserRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_to_call: str = Field(..., alias="userToCall")
    signal_data: Any = Field(None, alias="signalData")
    # Ignored by the relay; the sender's registered identity is used instead
    from_: Optional[str] = Field(None, alias="from")
    name: str = ""


class AnswerCallRequest(BaseModel):
    signal: Any = None
    to: Optional[str] = None


class EndCallRequest(BaseModel):
    to: Optional[str] = None


class JoinRoomEnvelope(BaseModel):
    event: Literal["join_room"]
    data: str


class SendMessageEnvelope(BaseModel):
    event: Literal["send_message"]
    data: ChatMessage


class CallUserEnvelope(BaseModel):
    event: Literal["callUser"]
    data: CallUserRequest


class AnswerCallEnvelope(BaseModel):
    event: Literal["answerCall"]
    data: AnswerCallRequest


class EndCallEnvelope(BaseModel):
    event: Literal["endCall"]
    data: Optional[EndCallRequest] = None


InboundEnvelope = Annotated[
    Union[JoinRoomEnvelope, SendMessageEnvelope, CallUserEnvelope, AnswerCallEnvelope, EndCallEnvelope],
    Field(discriminator="event"),
]

inbound_envelope_adapter = TypeAdapter(InboundEnvelope)

INBOUND_EVENTS = {
    EventName.JOIN_ROOM.value,
    EventName.SEND_MESSAGE.value,
    EventName.CALL_USER.value,
    EventName.ANSWER_CALL.value,
    EventName.END_CALL.value,
}


# Outbound payloads

class ConnectedPayload(BaseModel):
    id: str


class RoomJoinedPayload(BaseModel):
    room: str
    member_count: int


class IncomingCallPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_: str = Field(..., alias="from")
    name: str = ""
    signal: Any = None


class CallEndedPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_: str = Field(..., alias="from")
    reason: CallEndReason = CallEndReason.ENDED


class CallRejectedPayload(BaseModel):
    to: str
    reason: CallRejectReason


class ErrorPayload(BaseModel):
    code: str
    message: str


@dataclass(frozen=True)
class Outgoing:
    """One envelope addressed to one connection identity."""

    target: str
    event: EventName
    data: Any = None

    def to_frame(self) -> dict:
        data = self.data
        if isinstance(data, BaseModel):
            data = data.model_dump(by_alias=True, mode="json")
        return {"event": self.event.value, "data": data}


def call_ended(target: str, from_id: str, reason: CallEndReason) -> Outgoing:
    return Outgoing(target, EventName.CALL_ENDED, CallEndedPayload(from_=from_id, reason=reason))


def error_envelope(target: str, code: str, message: str) -> Outgoing:
    return Outgoing(target, EventName.ERROR, ErrorPayload(code=code, message=message))
