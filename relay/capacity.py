from constants import MAX_PARTICIPANTS
from relay.registry import Room
from relay.session import Session, SessionState


class RoomFullError(Exception):
    def __init__(self, room_id: str, occupancy: int):
        super().__init__(f"room already holds {occupancy} active sessions")
        self.room_id = room_id
        self.occupancy = occupancy


class CapacityGuard:
    """Caps the number of active sessions per room.

    Checked on every activation against the live membership set, with the
    candidate already tentatively added.
    """

    def __init__(self, max_participants: int = MAX_PARTICIPANTS):
        self.max_participants = max_participants

    def check(self, room: Room, candidate: Session) -> None:
        occupied = sum(1 for s in room.sessions if s is not candidate and s.state is SessionState.ACTIVE)
        if occupied + 1 > self.max_participants:
            raise RoomFullError(room.room_id, occupied)

    def is_full(self, occupancy: int) -> bool:
        return occupancy >= self.max_participants
