from fastapi import APIRouter, HTTPException, Request
from schemas.rooms import ConnectionDetailsResponse, HealthResponse, RoomDetailsResponse
from registry import connection_registry
from errors import UnknownConnectionError
from logging_config import get_logger

logger = get_logger(__name__)

rooms_router = APIRouter(tags=["rooms"])


@rooms_router.get("/health", response_model=HealthResponse)
async def health():
    return HealthResponse(
        status="ok",
        connections=connection_registry.connection_count(),
        rooms=len(connection_registry.rooms()),
    )


@rooms_router.get("/rooms/{room_name}", response_model=RoomDetailsResponse)
async def get_room_details(room_name: str, request: Request = None):
    """
    Get the current members of a room.

    Rooms exist only while someone is in them, so an empty or never-joined
    room is reported as not found.

    Returns:
    - room: Room name
    - member_count: Number of connections currently in the room
    - members: Connection identities in the room
    """
    client_host = request.client.host if request and request.client else 'unknown'
    logger.info(f"Room details request for {room_name} from {client_host}")

    members = connection_registry.members(room_name)
    if not members:
        logger.info(f"Room details failed: Room {room_name} has no members")
        raise HTTPException(status_code=404, detail="Room not found")

    return RoomDetailsResponse(
        room=room_name,
        member_count=len(members),
        members=sorted(members),
    )


@rooms_router.get("/connections/{identity}", response_model=ConnectionDetailsResponse)
async def get_connection_details(identity: str):
    """Get the room and call state of a live connection."""
    try:
        snapshot = connection_registry.lookup(identity)
    except UnknownConnectionError:
        logger.info(f"Connection details failed: {identity} is not connected")
        raise HTTPException(status_code=404, detail="Connection not found")

    return ConnectionDetailsResponse(
        identity=snapshot.identity,
        room=snapshot.room,
        call_phase=snapshot.call.phase.value,
        call_role=snapshot.call.role.value if snapshot.call.role else None,
        peer=snapshot.call.peer,
    )
