"""
Client session controller.

One ClientSession per connected client. It owns the composer, the message
view, local media and the call view state, and drives the relay protocol
from this participant's point of view. The connection, the media source and
the peer connection factory are passed in; nothing here is module-level state.
"""

import base64
import mimetypes
import os
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, List, Optional

from chat_client.errors import SessionError
from logging_config import get_logger
from schemas.events import ChatContent, ChatMessage, ContentKind, EventName

logger = get_logger(__name__)


class CallView(str, Enum):
    IDLE = "idle"
    CALLING = "calling"
    ACTIVE = "active"


@dataclass(frozen=True)
class Attachment:
    kind: ContentKind
    body: str
    mime_type: str
    name: str


@dataclass(frozen=True)
class IncomingCall:
    caller: str
    name: str
    signal: Any


def attachment_from_file(path: str) -> Attachment:
    """Read a file into a data-URI attachment. Images become image messages, anything else video."""
    mime_type, _ = mimetypes.guess_type(path)
    mime_type = mime_type or "application/octet-stream"
    with open(path, "rb") as f:
        encoded = base64.b64encode(f.read()).decode("ascii")
    kind = ContentKind.IMAGE if mime_type.startswith("image") else ContentKind.VIDEO
    return Attachment(kind=kind, body=f"data:{mime_type};base64,{encoded}", mime_type=mime_type, name=os.path.basename(path))


class ClientSession:
    def __init__(self, connection, media, peer_factory: Callable[[Any], Any]):
        self.connection = connection
        self.media = media
        self.peer_factory = peer_factory

        self.me: Optional[str] = None
        self.username: Optional[str] = None
        self.room: Optional[str] = None

        self.composer_text = ""
        self.attachment: Optional[Attachment] = None
        self.messages: List[ChatMessage] = []

        self.call_view = CallView.IDLE
        self.incoming_call: Optional[IncomingCall] = None
        self.peer = None
        self.peer_id: Optional[str] = None
        self.last_rejection: Optional[str] = None
        self.last_error: Optional[dict] = None

        # Called with (event, data) after an inbound envelope has been applied
        self.listeners: List[Callable[[str, Any], None]] = []

        self._handlers = {
            EventName.CONNECTED.value: self._on_connected,
            EventName.ROOM_JOINED.value: self._on_room_joined,
            EventName.RECEIVE_MESSAGE.value: self._on_receive_message,
            EventName.CALL_USER.value: self._on_call_user,
            EventName.CALL_ACCEPTED.value: self._on_call_accepted,
            EventName.CALL_ENDED.value: self._on_call_ended,
            EventName.CALL_REJECTED.value: self._on_call_rejected,
            EventName.ERROR.value: self._on_error,
        }

    @property
    def joined(self) -> bool:
        return self.room is not None

    # Chat

    async def join(self, username: str, room: str):
        username = (username or "").strip()
        room = (room or "").strip()
        if not username or not room:
            raise SessionError("Display name and room are both required to join")
        await self.connection.emit(EventName.JOIN_ROOM.value, room)
        self.username = username
        self.room = room
        logger.info(f"Joined room {room} as {username}")

    def select_attachment(self, attachment: Attachment):
        self.attachment = attachment
        # The composer shows the file name while an attachment is pending
        self.composer_text = attachment.name

    async def send(self) -> Optional[ChatMessage]:
        """Send the composer contents. Returns the message, or None when there was nothing to send."""
        if not self.joined:
            raise SessionError("Join a room before sending messages")
        if not self.composer_text and self.attachment is None:
            return None

        if self.attachment is not None:
            content = ChatContent(kind=self.attachment.kind, body=self.attachment.body, mime_type=self.attachment.mime_type)
        else:
            content = ChatContent(kind=ContentKind.TEXT, body=self.composer_text)
        message = ChatMessage(
            room=self.room,
            author=self.username,
            content=content,
            timestamp=datetime.now().strftime("%H:%M"),
        )

        await self.connection.emit(EventName.SEND_MESSAGE.value, message.model_dump(by_alias=True, mode="json"))
        self.messages.append(message)
        self.composer_text = ""
        self.attachment = None
        return message

    # Calls

    async def call(self, target_id: str):
        target_id = (target_id or "").strip()
        if not target_id:
            raise SessionError("Enter the ID of the person to call")
        if self.call_view is not CallView.IDLE or self.incoming_call is not None:
            raise SessionError("Finish the current call first")

        # MediaUnavailableError propagates; nothing has been sent yet
        await self.media.capture()
        peer = self.peer_factory(self.media)
        try:
            offer = await peer.create_offer()
        except Exception:
            await peer.close()
            self.media.release()
            raise

        self.peer = peer
        self.peer_id = target_id
        self.call_view = CallView.CALLING
        self.last_rejection = None
        await self.connection.emit(
            EventName.CALL_USER.value,
            {"userToCall": target_id, "signalData": offer, "from": self.me, "name": self.username or ""},
        )
        logger.info(f"Calling {target_id}")

    async def answer(self):
        incoming = self.incoming_call
        if incoming is None:
            raise SessionError("There is no incoming call to answer")

        await self.media.capture()
        peer = self.peer_factory(self.media)
        try:
            answer = await peer.create_answer(incoming.signal)
        except Exception:
            await peer.close()
            self.media.release()
            self.incoming_call = None
            await self.connection.emit(EventName.END_CALL.value, {"to": incoming.caller})
            raise

        self.peer = peer
        self.peer_id = incoming.caller
        self.incoming_call = None
        self.call_view = CallView.ACTIVE
        await self.connection.emit(EventName.ANSWER_CALL.value, {"signal": answer, "to": incoming.caller})
        logger.info(f"Answered call from {incoming.name or incoming.caller}")

    async def decline(self):
        incoming = self.incoming_call
        if incoming is None:
            return
        self.incoming_call = None
        await self.connection.emit(EventName.END_CALL.value, {"to": incoming.caller})
        logger.info(f"Declined call from {incoming.name or incoming.caller}")

    async def hang_up(self):
        if self.call_view is CallView.IDLE:
            await self.decline()
            return
        await self.connection.emit(EventName.END_CALL.value, {"to": self.peer_id})
        await self._teardown_call()
        logger.info("Call ended")

    async def _teardown_call(self):
        peer = self.peer
        self.peer = None
        self.peer_id = None
        self.call_view = CallView.IDLE
        self.incoming_call = None
        if peer is not None:
            await peer.close()
        self.media.release()

    # Inbound

    async def handle_envelope(self, event: str, data: Any):
        handler = self._handlers.get(event)
        if handler is None:
            logger.debug(f"Ignoring unknown event {event}")
            return
        try:
            await handler(data)
        except Exception as e:
            logger.error(f"Error handling {event}: {e}", exc_info=True)
            return
        for listener in self.listeners:
            listener(event, data)

    async def run(self):
        """Process inbound envelopes until the connection closes."""
        try:
            async for event, data in self.connection.envelopes():
                await self.handle_envelope(event, data)
        finally:
            if self.call_view is not CallView.IDLE:
                await self._teardown_call()

    async def _on_connected(self, data):
        self.me = data["id"]
        logger.info(f"My call ID: {self.me}")

    async def _on_room_joined(self, data):
        logger.debug(f"Room {data['room']} has {data['member_count']} members")

    async def _on_receive_message(self, data):
        self.messages.append(ChatMessage.model_validate(data))

    async def _on_call_user(self, data):
        caller = data["from"]
        self.incoming_call = IncomingCall(caller=caller, name=data.get("name", ""), signal=data.get("signal"))
        logger.info(f"{data.get('name') or caller} is calling...")

    async def _on_call_accepted(self, signal):
        if self.call_view is not CallView.CALLING or self.peer is None:
            logger.warning("Ignoring callAccepted: no outgoing call is pending")
            return
        try:
            await self.peer.apply_answer(signal)
        except Exception:
            await self.connection.emit(EventName.END_CALL.value, {"to": self.peer_id})
            await self._teardown_call()
            raise
        self.call_view = CallView.ACTIVE
        logger.info(f"Call with {self.peer_id} connected")

    async def _on_call_ended(self, data):
        other = data.get("from")
        if self.incoming_call is not None and self.incoming_call.caller == other:
            self.incoming_call = None
            logger.info(f"Incoming call from {other} ended ({data.get('reason')})")
            return
        if self.call_view is CallView.IDLE or other != self.peer_id:
            logger.debug(f"Ignoring callEnded from {other}: not the current call")
            return
        await self._teardown_call()
        logger.info(f"Call with {other} ended ({data.get('reason')})")

    async def _on_call_rejected(self, data):
        if self.call_view is not CallView.CALLING or data.get("to") != self.peer_id:
            return
        self.last_rejection = data.get("reason")
        await self._teardown_call()
        logger.info(f"Call to {data.get('to')} rejected ({self.last_rejection})")

    async def _on_error(self, data):
        self.last_error = data
        logger.warning(f"Relay error {data.get('code')}: {data.get('message')}")
