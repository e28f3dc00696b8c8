"""Per-connection state for the chat relay."""
import asyncio
import time
import uuid
from collections import deque
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Coroutine, Deque, List, Optional, Tuple

from fastapi import WebSocket

from constants import OUTBOUND_QUEUE_SIZE
from logging_config import get_logger

logger = get_logger(__name__)


def short_id(room_id: str) -> str:
    """Room ids are the only secret a room has; never log them whole."""
    return f"{room_id[:10]}..." if len(room_id) > 10 else room_id


class SessionState(str, Enum):
    HANDSHAKING = "handshaking"
    ACTIVE = "active"
    CLOSED = "closed"


class CloseReason(Enum):
    NORMAL = (1000, "normal")
    ROOM_FULL = (1008, "room_full")
    HEARTBEAT_TIMEOUT = (1001, "heartbeat_timeout")
    TRANSPORT_ERROR = (1011, "transport_error")
    SESSION_REPLACED = (1000, "session_replaced")

    @property
    def code(self) -> int:
        return self.value[0]

    @property
    def reason(self) -> str:
        return self.value[1]


class SessionStateError(Exception):
    """Raised on a transition the session state machine does not allow."""


class Outbox:
    """Bounded buffer of frames waiting to be written to one connection.

    When full, the oldest pending frame is dropped. Frames put with a key
    replace a pending frame with the same key: the old one is removed and the
    new one queued at the back.
    """

    def __init__(self, maxsize: int = OUTBOUND_QUEUE_SIZE):
        if maxsize < 1:
            raise ValueError("maxsize must be at least 1")
        self.maxsize = maxsize
        self.dropped = 0
        self._frames: Deque[Tuple[Optional[str], str]] = deque()
        self._ready = asyncio.Event()

    def __len__(self) -> int:
        return len(self._frames)

    def pending(self) -> List[str]:
        return [text for _, text in self._frames]

    def put(self, text: str, key: Optional[str] = None) -> bool:
        """Buffer a frame. Returns False if an older frame had to be dropped."""
        if key is not None:
            for index, (pending_key, _) in enumerate(self._frames):
                if pending_key == key:
                    # Newest value goes to the back so FIFO order holds
                    del self._frames[index]
                    self._frames.append((key, text))
                    self._ready.set()
                    return True
        overflowed = len(self._frames) >= self.maxsize
        if overflowed:
            self._frames.popleft()
            self.dropped += 1
        self._frames.append((key, text))
        self._ready.set()
        return not overflowed

    async def get(self) -> str:
        while not self._frames:
            self._ready.clear()
            await self._ready.wait()
        return self._frames.popleft()[1]

    def clear(self) -> None:
        self._frames.clear()


class Session:
    """One duplex connection bound to a room.

    HANDSHAKING -> ACTIVE on the first valid init frame; any state -> CLOSED,
    which is terminal. The owning room entry is the only holder once ACTIVE.
    """

    def __init__(
        self,
        room_id: str,
        websocket: WebSocket,
        outbox_size: int = OUTBOUND_QUEUE_SIZE,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.id = uuid.uuid4().hex
        self.room_id = room_id
        self.websocket = websocket
        self.sender_id: Optional[str] = None
        self.state = SessionState.HANDSHAKING
        self.is_typing = False
        self.close_reason: Optional[CloseReason] = None
        self.connected_at = datetime.now(timezone.utc)
        self.outbox = Outbox(outbox_size)
        self._clock = clock
        self.last_heartbeat = clock()
        self._tasks: List[asyncio.Task] = []

    def __repr__(self) -> str:
        return f"<Session {self.id[:8]} room={short_id(self.room_id)} state={self.state.value}>"

    @property
    def is_active(self) -> bool:
        return self.state is SessionState.ACTIVE

    def activate(self, sender_id: str) -> None:
        if self.state is not SessionState.HANDSHAKING:
            raise SessionStateError(f"cannot activate a session in state {self.state.value}")
        self.sender_id = sender_id
        self.state = SessionState.ACTIVE
        self.touch()

    def mark_closed(self, reason: CloseReason) -> bool:
        """Enter CLOSED. Returns False if the session was already closed."""
        if self.state is SessionState.CLOSED:
            return False
        self.state = SessionState.CLOSED
        self.close_reason = reason
        return True

    def touch(self) -> None:
        self.last_heartbeat = self._clock()

    def idle_for(self, now: Optional[float] = None) -> float:
        if now is None:
            now = self._clock()
        return now - self.last_heartbeat

    def send(self, text: str, key: Optional[str] = None) -> bool:
        """Queue a frame for the writer task; closed sessions accept nothing."""
        if self.state is SessionState.CLOSED:
            return False
        if not self.outbox.put(text, key=key):
            logger.warning(f"Outbound buffer full for {self!r}, dropped oldest frame ({self.outbox.dropped} total)")
        return True

    def start(self, *coros: Coroutine[Any, Any, Any]) -> None:
        for coro in coros:
            self._tasks.append(asyncio.create_task(coro))

    def cancel_tasks(self) -> None:
        """Cancel timers and the writer, except the task doing the closing."""
        current = asyncio.current_task()
        for task in self._tasks:
            if task is not current and not task.done():
                task.cancel()
        self._tasks.clear()
