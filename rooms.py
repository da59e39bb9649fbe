from typing import List, Optional

from constants import MAX_ROOM_NAME_LENGTH
from errors import InvalidRoomError
from logging_config import get_logger
from registry import ConnectionRegistry
from schemas.events import ChatMessage, EventName, Outgoing, RoomJoinedPayload

logger = get_logger(__name__)


class RoomRouter:
    """Room membership and chat fan-out on top of the connection registry."""

    def __init__(self, registry: ConnectionRegistry, max_room_name_length: int = MAX_ROOM_NAME_LENGTH):
        self.registry = registry
        self.max_room_name_length = max_room_name_length

    def validate_room_name(self, room_name: str) -> str:
        name = (room_name or "").strip()
        if not name:
            raise InvalidRoomError("Room name must not be empty")
        if len(name) > self.max_room_name_length:
            raise InvalidRoomError(f"Room name must be at most {self.max_room_name_length} characters")
        return name

    def join(self, identity: str, room_name: str) -> List[Outgoing]:
        """Move identity into room_name, leaving its previous room first.

        Rejoining the current room changes nothing. The joiner gets a room_joined
        acknowledgement with the member count after the move.
        """
        room = self.validate_room_name(room_name)
        previous = self.registry.move_to_room(identity, room)
        member_count = len(self.registry.members(room))
        if previous == room:
            logger.debug(f"Connection {identity} rejoined room {room}")
        elif previous is not None:
            logger.info(f"Connection {identity} moved from room {previous} to room {room} ({member_count} members)")
        else:
            logger.info(f"Connection {identity} joined room {room} ({member_count} members)")
        return [Outgoing(identity, EventName.ROOM_JOINED, RoomJoinedPayload(room=room, member_count=member_count))]

    def leave(self, identity: str) -> Optional[str]:
        previous = self.registry.remove_from_room(identity)
        if previous is not None:
            logger.info(f"Connection {identity} left room {previous}")
        return previous

    def broadcast(self, sender: str, message: ChatMessage) -> List[Outgoing]:
        """Deliver message to every other current member of message.room.

        Dropped when the sender is not a member of that room. The sender is never echoed.
        """
        current_room = self.registry.room_of(sender)
        if current_room is None or current_room != message.room:
            logger.warning(
                f"Dropping message from {sender}: not a member of room {message.room} (current room: {current_room})"
            )
            return []

        recipients = sorted(self.registry.members(message.room) - {sender})
        logger.debug(
            f"Broadcasting {message.content.kind.value} message from {sender} to {len(recipients)} members of room {message.room}"
        )
        return [Outgoing(recipient, EventName.RECEIVE_MESSAGE, message) for recipient in recipients]
