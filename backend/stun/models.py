"""Pydantic models for reflexive transport addresses."""

import ipaddress

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Endpoint(BaseModel):
    """A UDP endpoint as seen from the public side of a NAT."""
    model_config = ConfigDict(frozen=True)

    address: str
    port: int = Field(ge=0, le=65535)

    @field_validator("address")
    @classmethod
    def _check_address(cls, value: str) -> str:
        # Normalise so that "::0001" and "::1" compare equal
        return str(ipaddress.ip_address(value))

    @classmethod
    def from_addr(cls, addr: tuple) -> "Endpoint":
        """Build from a socket address tuple (IPv6 tuples carry extra fields)."""
        return cls(address=addr[0], port=addr[1])

    def as_addr(self) -> tuple[str, int]:
        return self.address, self.port

    def __str__(self) -> str:
        if ":" in self.address:
            return f"[{self.address}]:{self.port}"
        return f"{self.address}:{self.port}"
