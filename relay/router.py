import time
from typing import TYPE_CHECKING, Iterable, List, Union

from logging_config import get_logger
from relay.session import Session, SessionState, short_id
from schemas.frames import (
    ChatFrame,
    HeartbeatFrame,
    InitFrame,
    SystemFrame,
    TypingFrame,
    UserCountFrame,
    parse_client_frame,
)

if TYPE_CHECKING:
    from relay.hub import RelayHub

logger = get_logger(__name__)

DEPARTURE_TEXT = "A user has left the room."


class BroadcastRouter:
    """Classifies inbound frames and fans them out to room peers.

    Fan-out only queues frames on each peer's outbox, so a slow peer never
    holds up the others. Recipients come from a snapshot of the room taken
    when the frame is dispatched.
    """

    def __init__(self, hub: "RelayHub"):
        self.hub = hub

    async def dispatch(self, session: Session, raw: Union[str, bytes]) -> None:
        if session.state is SessionState.CLOSED:
            return

        frame = parse_client_frame(raw)
        if frame is None:
            logger.debug(f"Dropping malformed frame from {session!r}")
            return

        if session.state is SessionState.HANDSHAKING:
            if isinstance(frame, InitFrame):
                await self.hub.activate(session, frame.senderId)
            else:
                logger.debug(f"Dropping {frame.type} frame from {session!r} before init")
            return

        if isinstance(frame, HeartbeatFrame):
            session.touch()
        elif isinstance(frame, TypingFrame):
            self.relay_typing(session, frame)
        elif isinstance(frame, ChatFrame):
            self.relay_chat(session, raw)
        elif isinstance(frame, InitFrame):
            logger.debug(f"Ignoring repeated init from {session!r}")
        else:
            logger.debug(f"No route for {type(frame).__name__} from {session!r}")

    def peers_of(self, session: Session) -> List[Session]:
        room = self.hub.registry.get(session.room_id)
        if room is None:
            return []
        return room.peers_of(session)

    def relay_chat(self, session: Session, raw: Union[str, bytes]) -> int:
        text = raw.decode("utf-8") if isinstance(raw, bytes) else raw
        delivered = 0
        for peer in self.peers_of(session):
            if peer.send(text):
                delivered += 1
        logger.debug(f"Relayed chat from {session!r} to {delivered} peer(s)")
        return delivered

    def relay_typing(self, session: Session, frame: TypingFrame) -> None:
        session.is_typing = frame.isTyping
        text = TypingFrame(isTyping=frame.isTyping).model_dump_json()
        for peer in self.peers_of(session):
            # A newer typing state replaces one the peer has not received yet
            peer.send(text, key="typing")

    def announce_count(self, sessions: Iterable[Session]) -> None:
        recipients = [s for s in sessions if s.state is SessionState.ACTIVE]
        text = UserCountFrame(count=len(recipients)).model_dump_json()
        for s in recipients:
            s.send(text)

    def announce_departure(self, room_id: str, remaining: Iterable[Session]) -> None:
        recipients = [s for s in remaining if s.state is SessionState.ACTIVE]
        if not recipients:
            return
        self.announce_count(recipients)
        notice = SystemFrame(id=int(time.time() * 1000), text=DEPARTURE_TEXT).model_dump_json()
        for s in recipients:
            s.send(notice)
        logger.info(f"Notified {len(recipients)} remaining session(s) in room {short_id(room_id)} of departure")
