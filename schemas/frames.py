"""Wire frames exchanged over `/chat/{room_id}`.

Every frame is a JSON object with a `type` tag. Client frames are parsed through
a single discriminated union, so an unknown tag fails validation the same way
broken JSON does and the caller can drop it.
"""
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError


class InitFrame(BaseModel):
    type: Literal["init"]
    senderId: str = Field(min_length=1)


class HeartbeatFrame(BaseModel):
    type: Literal["heartbeat"]


class TypingFrame(BaseModel):
    type: Literal["typing"] = "typing"
    isTyping: bool


class ChatFrame(BaseModel):
    # Relayed verbatim, so unknown client fields are tolerated
    model_config = ConfigDict(extra="allow")

    # "message" is what the browser client has always sent
    type: Literal["chat", "message"]
    id: Union[int, float]
    text: str
    senderId: str


ClientFrame = Annotated[
    Union[InitFrame, HeartbeatFrame, TypingFrame, ChatFrame],
    Field(discriminator="type"),
]

_client_frame_adapter = TypeAdapter(ClientFrame)


def parse_client_frame(raw: Union[str, bytes]) -> Optional[Union[InitFrame, HeartbeatFrame, TypingFrame, ChatFrame]]:
    """Return the typed frame, or None when the payload is not a frame we know."""
    try:
        return _client_frame_adapter.validate_json(raw)
    except ValidationError:
        return None


class PongFrame(BaseModel):
    type: Literal["pong"] = "pong"


class UserCountFrame(BaseModel):
    type: Literal["user_count"] = "user_count"
    count: int


class SystemFrame(BaseModel):
    type: Literal["system"] = "system"
    id: int
    text: str
    sender: str = "system"
