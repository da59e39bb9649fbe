from pydantic import BaseModel
from typing import Optional


class HealthResponse(BaseModel):
    status: str
    connections: int
    rooms: int

class RoomDetailsResponse(BaseModel):
    room: str
    member_count: int
    members: list[str]

class ConnectionDetailsResponse(BaseModel):
    identity: str
    room: Optional[str]
    call_phase: str
    call_role: Optional[str] = None
    peer: Optional[str] = None
