"""Application-wide configuration constants."""

import os

from pydantic import BaseModel, Field

# --- Discovery (STUN) ---
STUN_HOST = os.environ.get("PUNCHHUB_STUN_HOST", "109.71.104.73")
STUN_PORT = int(os.environ.get("PUNCHHUB_STUN_PORT", "3478"))
STUN_TIMEOUT = 1.0  # seconds per attempt
STUN_MAX_RETRIES = 4
MAX_DATAGRAM_SIZE = 4096

# --- Local socket ---
BIND_HOST = "0.0.0.0"
BIND_PORT = 0  # ephemeral

# --- Rendezvous (Telegram Bot API) ---
API_URL_PREFIX = "https://api.telegram.org/bot"
LONG_POLL_TIMEOUT = 30  # seconds the server holds an empty getUpdates
HTTP_TIMEOUT = 15  # slack on top of the long poll
ALLOWED_UPDATES = ["channel_post"]

# --- Hole punching ---
PUNCH_REPEAT = 5
PUNCH_INTERVAL = 0.5  # seconds between probes
INITIATOR_MARKER = b"client"
RESPONDER_MARKER = b"server"
SESSION_HISTORY = 100  # finished sessions kept for the status API

# --- Status API ---
API_HOST = "127.0.0.1"
API_PORT = int(os.environ.get("PUNCHHUB_API_PORT", "8765"))


class RunConfig(BaseModel):
    """Per-run settings collected from the command line."""
    api_token: str
    chat_id: int
    proxy_url: str | None = None
    stun_host: str = STUN_HOST
    stun_port: int = Field(default=STUN_PORT, ge=1, le=65535)
    api_url_prefix: str = API_URL_PREFIX
