import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Set, Tuple

from logging_config import get_logger
from relay.session import Session, SessionState, short_id

logger = get_logger(__name__)


@dataclass(eq=False)
class Room:
    room_id: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    sessions: Set[Session] = field(default_factory=set)
    # Serializes membership changes for this room only
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def active_sessions(self) -> List[Session]:
        return [s for s in self.sessions if s.state is SessionState.ACTIVE]

    def active_count(self) -> int:
        return len(self.active_sessions())

    def peers_of(self, session: Session) -> List[Session]:
        return [s for s in self.active_sessions() if s is not session]

    def find(self, sender_id: str) -> Optional[Session]:
        for s in self.active_sessions():
            if s.sender_id == sender_id:
                return s
        return None


class RoomRegistry:
    """Room id -> Room for every room with at least one session.

    Rooms appear on the first join and are removed as soon as the last
    session leaves. One instance is owned by the relay hub.
    """

    def __init__(self) -> None:
        self._rooms: Dict[str, Room] = {}

    def __contains__(self, room_id: str) -> bool:
        return room_id in self._rooms

    def __len__(self) -> int:
        return len(self._rooms)

    def get(self, room_id: str) -> Optional[Room]:
        return self._rooms.get(room_id)

    def occupancy(self, room_id: str) -> int:
        room = self._rooms.get(room_id)
        return room.active_count() if room else 0

    async def join_or_create(
        self,
        room_id: str,
        session: Session,
        admit: Optional[Callable[[Room, Session], None]] = None,
    ) -> Room:
        """Add the session to its room, creating the room if needed.

        `admit` runs under the room lock after the session is tentatively
        added; if it raises, the session is taken back out and the error
        propagates.
        """
        while True:
            room = self._rooms.get(room_id)
            if room is None:
                room = Room(room_id=room_id)
                self._rooms[room_id] = room
                logger.info(f"Created room {short_id(room_id)}")
            async with room.lock:
                if self._rooms.get(room_id) is not room:
                    # Pruned while we waited for the lock
                    continue
                room.sessions.add(session)
                if admit is not None:
                    try:
                        admit(room, session)
                    except Exception:
                        room.sessions.discard(session)
                        self._prune(room)
                        raise
                logger.debug(f"{session!r} joined room {short_id(room_id)} ({len(room.sessions)} sessions)")
                return room

    async def leave(self, room_id: str, session: Session) -> Optional[Tuple[Session, ...]]:
        """Remove the session, deleting the room if it is now empty.

        Returns the remaining active sessions, or None if the session was not
        a member.
        """
        room = self._rooms.get(room_id)
        if room is None:
            return None
        async with room.lock:
            if session not in room.sessions:
                return None
            room.sessions.discard(session)
            remaining = tuple(room.active_sessions())
            self._prune(room)
            logger.debug(f"{session!r} left room {short_id(room_id)} ({len(room.sessions)} sessions)")
            return remaining

    def _prune(self, room: Room) -> None:
        if not room.sessions and self._rooms.get(room.room_id) is room:
            del self._rooms[room.room_id]
            logger.info(f"Removed empty room {short_id(room.room_id)}")
