"""
punchhub test configuration
===========================

Shared fixtures:
- response_builder: synthesise Binding Responses for the codec
- memory_channel: in-process rendezvous channel
- stun_server: localhost discovery server answering real datagrams

Usage:
    pytest tests/unit/          # Fast unit tests
    pytest tests/integration/   # Localhost sockets
"""

import asyncio
import ipaddress
import struct
import sys
from pathlib import Path

import pytest

# Add backend/ to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT / "backend"))

from rendezvous.channel import RendezvousChannel  # noqa: E402
from rendezvous.models import ChannelEntry  # noqa: E402
from stun.codec import (  # noqa: E402
    HEADER_FORMAT,
    HEADER_SIZE,
    MAGIC_COOKIE,
    MAGIC_COOKIE_BYTES,
    AttributeType,
    MessageType,
)
from stun.models import Endpoint  # noqa: E402


def pytest_collection_modifyitems(config, items):
    """Auto-mark tests based on their path."""
    for item in items:
        if "/unit/" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "/integration/" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


# ============================================================================
# Binding response synthesis
# ============================================================================

def _xor_mapped_address(endpoint: Endpoint, transaction_id: bytes) -> bytes:
    raw = ipaddress.ip_address(endpoint.address).packed
    family = 0x01 if len(raw) == 4 else 0x02
    key = MAGIC_COOKIE_BYTES + transaction_id
    x_address = bytes(a ^ b for a, b in zip(raw, key))
    x_port = endpoint.port ^ (MAGIC_COOKIE >> 16)
    return struct.pack("!BBH", 0, family, x_port) + x_address


def build_binding_response(
    endpoint: Endpoint | None,
    transaction_id: bytes,
    *,
    before: list[tuple[int, bytes]] | None = None,
    after: list[tuple[int, bytes]] | None = None,
    msg_type: int = MessageType.BINDING_SUCCESS,
) -> bytes:
    """Header + optional extra attributes around one XOR-MAPPED-ADDRESS."""
    attributes = list(before or [])
    if endpoint is not None:
        attributes.append((AttributeType.XOR_MAPPED_ADDRESS, _xor_mapped_address(endpoint, transaction_id)))
    attributes.extend(after or [])

    payload = b"".join(struct.pack("!HH", t, len(v)) + v for t, v in attributes)
    header = struct.pack(HEADER_FORMAT, msg_type, len(payload), MAGIC_COOKIE, transaction_id)
    assert len(header) == HEADER_SIZE
    return header + payload


@pytest.fixture
def response_builder():
    return build_binding_response


# ============================================================================
# In-memory rendezvous channel
# ============================================================================

class MemoryChannel(RendezvousChannel):
    """Ordered channel kept in a list; poll blocks until something new arrives."""

    def __init__(self, identity: str = "@test_bot") -> None:
        self.entries: list[ChannelEntry] = []
        self.polls: list[int] = []
        self._identity = identity
        self._changed = asyncio.Condition()

    async def check_identity(self) -> str:
        return self._identity

    async def tail(self) -> int:
        return self.entries[-1].entry_id if self.entries else 0

    def inject(self, scope: int | None, text: str | None) -> ChannelEntry:
        entry = ChannelEntry(entry_id=len(self.entries) + 1, scope=scope, text=text)
        self.entries.append(entry)
        return entry

    async def publish(self, scope: int, text: str) -> int:
        async with self._changed:
            entry = self.inject(scope, text)
            self._changed.notify_all()
        return entry.entry_id

    async def poll(self, scope: int, since_id: int) -> list[ChannelEntry]:
        self.polls.append(since_id)
        async with self._changed:
            await self._changed.wait_for(lambda: any(e.entry_id > since_id for e in self.entries))
            return [e for e in self.entries if e.entry_id > since_id]


@pytest.fixture
def memory_channel():
    return MemoryChannel()


# ============================================================================
# Localhost discovery server
# ============================================================================

class FakeStunServer(asyncio.DatagramProtocol):
    """Answers every Binding Request with the sender's own address."""

    def __init__(self) -> None:
        self.transport: asyncio.DatagramTransport | None = None
        self.requests = 0

    def connection_made(self, transport) -> None:
        self.transport = transport

    def datagram_received(self, data: bytes, addr: tuple) -> None:
        if len(data) < HEADER_SIZE:
            return
        msg_type, _, _, transaction_id = struct.unpack_from(HEADER_FORMAT, data)
        if msg_type != MessageType.BINDING_REQUEST:
            return
        self.requests += 1
        response = build_binding_response(Endpoint.from_addr(addr), transaction_id)
        self.transport.sendto(response, addr)

    @property
    def address(self) -> tuple[str, int]:
        return self.transport.get_extra_info("sockname")[:2]


@pytest.fixture
async def stun_server():
    loop = asyncio.get_running_loop()
    transport, protocol = await loop.create_datagram_endpoint(
        FakeStunServer,
        local_addr=("127.0.0.1", 0),
    )
    yield protocol
    transport.close()
