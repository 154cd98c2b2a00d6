"""Pydantic models for punch sessions handled by the responder."""

from enum import Enum

from pydantic import BaseModel

from stun.models import Endpoint


class SessionState(str, Enum):
    """All possible states of a responder punch session."""
    DISCOVERING = "discovering"
    RESPONDING = "responding"
    PUNCHING = "punching"
    COMPLETED = "completed"
    FAILED = "failed"


class PunchSession(BaseModel):
    """One start_punching_request as handled by the responder."""
    serial: int
    remote_endpoint: Endpoint
    local_endpoint: Endpoint | None = None
    state: SessionState = SessionState.DISCOVERING
    confirmed: bool = False
    started_at: float
    finished_at: float | None = None
    error_message: str | None = None


class PunchEvent(BaseModel):
    """A session change as pushed to status clients."""
    event: str  # snapshot, punch_started or punch_state
    session: PunchSession
