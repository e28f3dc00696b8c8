from relay.capacity import CapacityGuard, RoomFullError
from relay.heartbeat import HeartbeatMonitor
from relay.hub import RelayHub
from relay.registry import Room, RoomRegistry
from relay.router import BroadcastRouter
from relay.session import CloseReason, Session, SessionState, SessionStateError

__all__ = [
    "BroadcastRouter",
    "CapacityGuard",
    "CloseReason",
    "HeartbeatMonitor",
    "RelayHub",
    "Room",
    "RoomFullError",
    "RoomRegistry",
    "Session",
    "SessionState",
    "SessionStateError",
]
