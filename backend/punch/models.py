"""Pydantic models for hole punching."""

from pydantic import BaseModel

from stun.models import Endpoint


class PunchResult(BaseModel):
    """What one run of the punching procedure observed."""
    remote: Endpoint
    probes_sent: int
    confirmed: bool = False  # a probe from the peer made it through
