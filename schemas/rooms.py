from pydantic import BaseModel
from typing import Optional


class CreateRoomRequest(BaseModel):
    expiry_seconds: Optional[int] = None

class CreateRoomResponse(BaseModel):
    room_id: str
    ws_url: str
    invite_url: str
    expires_at: str

class JoinRoomResponse(BaseModel):
    success: bool
    ws_url: str
    occupancy: int

class RoomOccupancyResponse(BaseModel):
    room_id: str
    occupancy: int
    max_participants: int
    is_full: bool
