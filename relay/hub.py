import asyncio
from typing import List, Optional

from fastapi import WebSocket

from constants import CLOSE_TIMEOUT, OUTBOUND_QUEUE_SIZE
from logging_config import get_logger
from relay.capacity import CapacityGuard, RoomFullError
from relay.heartbeat import HeartbeatMonitor
from relay.registry import Room, RoomRegistry
from relay.router import BroadcastRouter
from relay.session import CloseReason, Session, SessionState, SessionStateError, short_id

logger = get_logger(__name__)


class RelayHub:
    """Accepts connections, owns their sessions and the single close path.

    Every way a session can end (peer close, transport error, heartbeat
    timeout, capacity eviction, replacement) goes through `close_session`,
    so room membership is never left half-updated.
    """

    def __init__(
        self,
        registry: Optional[RoomRegistry] = None,
        guard: Optional[CapacityGuard] = None,
        monitor: Optional[HeartbeatMonitor] = None,
        outbox_size: int = OUTBOUND_QUEUE_SIZE,
        close_timeout: float = CLOSE_TIMEOUT,
    ):
        self.registry = registry or RoomRegistry()
        self.guard = guard or CapacityGuard()
        self.monitor = monitor or HeartbeatMonitor()
        self.router = BroadcastRouter(self)
        self.outbox_size = outbox_size
        self.close_timeout = close_timeout
        self._sessions: List[Session] = []

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    async def connect(self, websocket: WebSocket, room_id: str) -> Session:
        """Complete the handshake. The session stays out of its room until init."""
        await websocket.accept()
        session = Session(room_id, websocket, outbox_size=self.outbox_size, clock=self.monitor.clock)
        self._sessions.append(session)
        session.start(
            self._pump(session),
            self.monitor.watch(session, self._evict_stale),
            self.monitor.keepalive(session),
        )
        logger.info(f"Accepted connection {session.id[:8]} for room {short_id(room_id)}")
        return session

    async def serve(self, websocket: WebSocket, room_id: str) -> None:
        """Run one connection until it closes, handling inbound frames in order."""
        session = await self.connect(websocket, room_id)
        reason = CloseReason.NORMAL
        peer_closed = False
        try:
            while session.state is not SessionState.CLOSED:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    peer_closed = True
                    logger.info(f"{session!r} disconnected (code {message.get('code')})")
                    break
                raw = message.get("text")
                if raw is None:
                    try:
                        raw = (message.get("bytes") or b"").decode("utf-8")
                    except UnicodeDecodeError:
                        logger.debug(f"Dropping non UTF-8 frame from {session!r}")
                        continue
                await self.router.dispatch(session, raw)
        except Exception as e:
            logger.error(f"Transport error on {session!r}: {e}", exc_info=True)
            reason = CloseReason.TRANSPORT_ERROR
        finally:
            await self.close_session(session, reason, peer_closed=peer_closed)

    async def activate(self, session: Session, sender_id: str) -> Optional[Room]:
        """HANDSHAKING -> ACTIVE: join the room if there is space for one more."""
        replaced: List[Session] = []

        def admit(room: Room, candidate: Session) -> None:
            if candidate.state is not SessionState.HANDSHAKING:
                raise SessionStateError(f"cannot activate a session in state {candidate.state.value}")
            previous = room.find(sender_id)
            if previous is not None:
                room.sessions.discard(previous)
                replaced.append(previous)
            self.guard.check(room, candidate)
            candidate.activate(sender_id)

        try:
            room = await self.registry.join_or_create(session.room_id, session, admit=admit)
        except RoomFullError as e:
            logger.info(f"Rejecting {session!r}: room {short_id(e.room_id)} is full ({e.occupancy} active)")
            await self.close_session(session, CloseReason.ROOM_FULL)
            return None
        except SessionStateError:
            # Closed while waiting for the room lock
            logger.debug(f"{session!r} closed before it could join")
            return None

        members = room.active_sessions()
        logger.info(f"{session!r} active in room {short_id(room.room_id)} ({len(members)} active)")
        self.router.announce_count(members)
        for previous in replaced:
            logger.info(f"{previous!r} replaced by a new connection for the same sender")
            await self.close_session(previous, CloseReason.SESSION_REPLACED)
        return room

    async def close_session(
        self,
        session: Session,
        reason: CloseReason = CloseReason.NORMAL,
        peer_closed: bool = False,
    ) -> None:
        if not session.mark_closed(reason):
            return
        session.cancel_tasks()
        session.outbox.clear()
        if session in self._sessions:
            self._sessions.remove(session)

        remaining = await self.registry.leave(session.room_id, session)
        # Peers hear about the departure before we wait on the transport
        if remaining:
            self.router.announce_departure(session.room_id, remaining)

        if not peer_closed:
            try:
                await asyncio.wait_for(
                    session.websocket.close(code=reason.code, reason=reason.reason),
                    timeout=self.close_timeout,
                )
            except asyncio.TimeoutError:
                logger.warning(f"Gave up closing WebSocket for {session!r} after {self.close_timeout}s")
            except Exception as e:
                logger.debug(f"Error closing WebSocket for {session!r}: {e}")
        logger.info(f"Closed {session!r} ({reason.reason})")

    async def shutdown(self) -> None:
        for session in list(self._sessions):
            await self.close_session(session, CloseReason.NORMAL)

    async def _evict_stale(self, session: Session) -> None:
        await self.close_session(session, CloseReason.HEARTBEAT_TIMEOUT)

    async def _pump(self, session: Session) -> None:
        """Single writer per connection: drains the outbox in order."""
        while session.state is not SessionState.CLOSED:
            text = await session.outbox.get()
            try:
                await session.websocket.send_text(text)
            except Exception as e:
                logger.warning(f"Send failed on {session!r}: {e}")
                await self.close_session(session, CloseReason.TRANSPORT_ERROR, peer_closed=True)
                return
