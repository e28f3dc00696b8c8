import asyncio
from functools import partial

from fastapi import APIRouter, Depends, HTTPException, Request
from schemas.rooms import CreateRoomRequest, CreateRoomResponse, JoinRoomResponse, RoomOccupancyResponse
from backend import RedisBackend, get_redis_backend
from constants import APP_URL, MAX_PARTICIPANTS, ROOM_EXPIRY_SECONDS, ROOM_ID_BYTES
from relay.hub import RelayHub
from relay.session import short_id
from datetime import datetime, timedelta, timezone
from typing import Optional
import secrets
from logging_config import get_logger

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/rooms", tags=["rooms"])


def get_hub(request: Request) -> RelayHub:
    return request.app.state.hub


def generate_room_id(nbytes: int = ROOM_ID_BYTES) -> str:
    return secrets.token_urlsafe(nbytes)


def build_ws_url(request: Request, room_id: str) -> str:
    base_url = str(request.base_url).rstrip('/')
    # Replace http/https with ws/wss
    ws_base = base_url.replace("http://", "ws://").replace("https://", "wss://")
    return f"{ws_base}/chat/{room_id}"


@rooms_router.post("", response_model=CreateRoomResponse, status_code=201)
async def create_room(
    request: Request,
    room: Optional[CreateRoomRequest] = None,
    backend: RedisBackend = Depends(get_redis_backend),
):
    expiry_seconds = (room.expiry_seconds if room else None) or ROOM_EXPIRY_SECONDS
    room_id = generate_room_id()
    now = datetime.now(timezone.utc)
    expires_at = (now + timedelta(seconds=expiry_seconds)).isoformat()
    client_host = request.client.host if request.client else 'unknown'
    logger.info(f"Room creation request from {client_host}, expiry_seconds: {expiry_seconds}")

    # Redis calls block; keep them off the loop the relay runs on
    loop = asyncio.get_running_loop()
    try:
        await loop.run_in_executor(None, partial(backend.create_room, room_id, {
            "created_at": now.isoformat(),
            "expires_at": expires_at,
            "max_participants": MAX_PARTICIPANTS,
        }, ttl=expiry_seconds))
    except Exception as e:
        logger.error(f"Error creating room: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to create room")

    logger.info(f"Room {short_id(room_id)} created, expires_at={expires_at}")
    return CreateRoomResponse(
        room_id=room_id,
        ws_url=build_ws_url(request, room_id),
        invite_url=f"{APP_URL.rstrip('/')}/join/{room_id}",
        expires_at=expires_at,
    )


@rooms_router.post("/{room_id}/join", response_model=JoinRoomResponse)
async def join_room(
    room_id: str,
    request: Request,
    backend: RedisBackend = Depends(get_redis_backend),
    hub: RelayHub = Depends(get_hub),
):
    """Check a room before the client opens its WebSocket.

    The relay enforces the cap again on init; this only spares the client a
    connection that would be refused.
    """
    loop = asyncio.get_running_loop()
    if await loop.run_in_executor(None, backend.get_room, room_id) is None:
        logger.warning(f"Join room failed: Room {short_id(room_id)} not found")
        raise HTTPException(status_code=404, detail={"error": "Room not found", "reason": "room_not_found"})

    occupancy = hub.registry.occupancy(room_id)
    if hub.guard.is_full(occupancy):
        logger.warning(f"Join room failed: Room {short_id(room_id)} is full ({occupancy}/{hub.guard.max_participants})")
        raise HTTPException(status_code=403, detail={"error": "Room is full", "reason": "room_full"})

    return JoinRoomResponse(success=True, ws_url=build_ws_url(request, room_id), occupancy=occupancy)


@rooms_router.get("/{room_id}", response_model=RoomOccupancyResponse)
async def get_room_occupancy(room_id: str, hub: RelayHub = Depends(get_hub)):
    occupancy = hub.registry.occupancy(room_id)
    return RoomOccupancyResponse(
        room_id=room_id,
        occupancy=occupancy,
        max_participants=hub.guard.max_participants,
        is_full=hub.guard.is_full(occupancy),
    )
