import redis
from typing import Optional
from constants import REDIS_HOST, REDIS_PORT, REDIS_PASSWORD, REDIS_SOCKET_TIMEOUT
from redis_keys import REDIS_META_KEY
from logging_config import get_logger

logger = get_logger(__name__)


class RedisBackend:
    """Minted-room metadata. The relay itself never reads from here.

    Calls block; handlers run them in the executor, and the socket timeouts
    bound how long an unreachable Redis can hold a worker thread.
    """

    def __init__(self, redis_client: Optional[redis.Redis] = None):
        if redis_client is None:
            logger.info(f"Initializing RedisBackend with connection to {REDIS_HOST}:{REDIS_PORT}")
            redis_client = redis.Redis(
                host=REDIS_HOST,
                port=REDIS_PORT,
                password=REDIS_PASSWORD,
                decode_responses=True,
                socket_timeout=REDIS_SOCKET_TIMEOUT,
                socket_connect_timeout=REDIS_SOCKET_TIMEOUT,
            )
        self.redis_client = redis_client

    def create_room(self, room_id: str, room_data: dict, ttl: int = 0):
        logger.info(f"Creating room {room_id[:10]}... with TTL {ttl} seconds")
        key = REDIS_META_KEY.format(slug=room_id)
        self.redis_client.hset(key, mapping={k: str(v) for k, v in room_data.items() if v is not None})
        if ttl:
            self.redis_client.expire(key, ttl)
        return room_id

    def get_room(self, room_id: str) -> Optional[dict]:
        room_data = self.redis_client.hgetall(REDIS_META_KEY.format(slug=room_id))
        if not room_data:
            logger.debug(f"Room {room_id[:10]}... not found in Redis")
            return None
        return room_data

    def ping(self) -> bool:
        return bool(self.redis_client.ping())


_redis_backend: Optional[RedisBackend] = None


def get_redis_backend() -> RedisBackend:
    """FastAPI dependency; the client connects lazily on first command."""
    global _redis_backend
    if _redis_backend is None:
        _redis_backend = RedisBackend()
    return _redis_backend
