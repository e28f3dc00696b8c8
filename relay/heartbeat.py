import asyncio
import time
from typing import Awaitable, Callable, Optional

from constants import HEARTBEAT_CHECK_INTERVAL, HEARTBEAT_STALE_AFTER, KEEPALIVE_INTERVAL
from logging_config import get_logger
from relay.session import Session, SessionState
from schemas.frames import PongFrame

logger = get_logger(__name__)

_PONG = PongFrame().model_dump_json()


class HeartbeatMonitor:
    """Client-driven liveness plus an independent server keepalive.

    Clients send `heartbeat` frames; a session whose last one is older than
    `stale_after` is reported through `on_stale`. The `pong` keepalive only
    keeps intermediaries from idling the connection out and never counts
    as liveness.
    """

    def __init__(
        self,
        check_interval: float = HEARTBEAT_CHECK_INTERVAL,
        stale_after: float = HEARTBEAT_STALE_AFTER,
        keepalive_interval: float = KEEPALIVE_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.check_interval = check_interval
        self.stale_after = stale_after
        self.keepalive_interval = keepalive_interval
        self.clock = clock

    def is_stale(self, session: Session, now: Optional[float] = None) -> bool:
        if now is None:
            now = self.clock()
        return session.idle_for(now) > self.stale_after

    async def watch(self, session: Session, on_stale: Callable[[Session], Awaitable[None]]) -> None:
        while session.state is not SessionState.CLOSED:
            await asyncio.sleep(self.check_interval)
            if session.state is SessionState.CLOSED:
                return
            if self.is_stale(session):
                logger.info(f"No heartbeat from {session!r} for {session.idle_for():.1f}s, evicting")
                await on_stale(session)
                return

    async def keepalive(self, session: Session) -> None:
        while session.state is not SessionState.CLOSED:
            await asyncio.sleep(self.keepalive_interval)
            session.send(_PONG)
