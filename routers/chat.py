from fastapi import APIRouter, WebSocket
from relay.hub import RelayHub
from relay.session import short_id
from logging_config import get_logger

logger = get_logger(__name__)

chat_router = APIRouter(tags=["chat"])


def get_hub(websocket: WebSocket) -> RelayHub:
    return websocket.app.state.hub


@chat_router.websocket("/chat/{room_id}")
async def chat_endpoint(websocket: WebSocket, room_id: str):
    """Duplex channel for one participant of a two-person room.

    The route only matches `/chat/{room_id}` with a single non-empty segment;
    anything else never reaches here and the upgrade is refused.
    """
    if not room_id.strip():
        logger.info("WebSocket upgrade rejected: empty room id")
        # Closing before accept turns into an HTTP 403 on the upgrade
        await websocket.close(code=1008)
        return

    logger.info(f"WebSocket connection attempt for room: {short_id(room_id)}")
    await get_hub(websocket).serve(websocket, room_id)
