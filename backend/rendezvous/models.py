"""Pydantic models for the rendezvous handshake and the Telegram Bot API."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from stun.models import Endpoint

UINT64_MAX = 2**64 - 1


class HubMessageType(str, Enum):
    START_PUNCHING_REQUEST = "start_punching_request"
    START_PUNCHING_RESPONSE = "start_punching_response"


class HubMessage(BaseModel):
    """The JSON payload exchanged through the rendezvous channel."""
    type: HubMessageType
    serial: int = Field(ge=0, le=UINT64_MAX)
    public_endpoint: Endpoint | None = None


class ChannelEntry(BaseModel):
    """One item of the ordered rendezvous channel."""
    entry_id: int
    scope: int | None = None  # chat the entry was posted to
    text: str | None = None


# --- Telegram Bot API (only the fields we read) ---

class Chat(BaseModel):
    id: int
    type: str | None = None
    title: str | None = None
    username: str | None = None


class Message(BaseModel):
    message_id: int
    chat: Chat
    text: str | None = None


class Update(BaseModel):
    update_id: int
    message: Message | None = None
    channel_post: Message | None = None

    def to_entry(self) -> ChannelEntry:
        post = self.channel_post
        if post is None:
            return ChannelEntry(entry_id=self.update_id)
        return ChannelEntry(entry_id=self.update_id, scope=post.chat.id, text=post.text)


class User(BaseModel):
    id: int
    is_bot: bool = False
    first_name: str = ""
    username: str | None = None


class ApiResponse(BaseModel):
    """Envelope around every Bot API result."""
    ok: bool
    result: Any = None
    description: str | None = None
