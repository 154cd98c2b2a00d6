"""
UDP hole punching.

Probes are sent from the socket that performed discovery so that the NAT
mapping toward the discovery server is reused rather than a fresh port
being allocated. The two peers start punching at different times, so the
first probes from either side are expected to be dropped by the other NAT.
"""

import asyncio
import logging

from config import PUNCH_INTERVAL, PUNCH_REPEAT
from errors import PeerUnreachableError
from net.udp import UdpEndpoint
from punch.models import PunchResult
from stun.models import Endpoint

logger = logging.getLogger(__name__)


async def _listen_for_marker(
    endpoint: UdpEndpoint,
    remote: Endpoint,
    expected_marker: bytes,
    window: float,
) -> bool:
    """Read datagrams for ``window`` seconds; True once the peer's marker arrives."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + window
    confirmed = False
    while True:
        remaining = deadline - loop.time()
        if remaining <= 0:
            return confirmed
        try:
            data, addr = await asyncio.wait_for(endpoint.recvfrom(), timeout=remaining)
        except asyncio.TimeoutError:
            return confirmed
        except PeerUnreachableError:
            # Peer's NAT has no mapping for us yet
            logger.debug(f"ICMP unreachable from {remote}")
            continue

        if Endpoint.from_addr(addr) != remote:
            logger.debug(f"Ignoring {len(data)} bytes from {addr[0]}:{addr[1]} while punching")
            continue
        if data == expected_marker:
            if not confirmed:
                logger.info(f"Received punch marker from {remote}")
            confirmed = True
        else:
            logger.debug(f"Unexpected payload from {remote}: {data[:32]!r}")


async def punch(
    endpoint: UdpEndpoint,
    remote: Endpoint,
    local_marker: bytes,
    expected_marker: bytes,
    *,
    repeat: int = PUNCH_REPEAT,
    interval: float = PUNCH_INTERVAL,
) -> PunchResult:
    """
    Open this side's NAT mapping toward ``remote``.

    Sends ``local_marker`` ``repeat`` times, ``interval`` seconds apart, and
    watches for ``expected_marker`` in between. Missing confirmation is not
    an error; a failed send raises TransportError.
    """
    result = PunchResult(remote=remote, probes_sent=0)
    logger.info(f"Punching toward {remote} ({repeat} probes every {interval}s)")

    for _ in range(repeat):
        endpoint.sendto(local_marker, remote.as_addr())
        result.probes_sent += 1
        if await _listen_for_marker(endpoint, remote, expected_marker, interval):
            result.confirmed = True

    if result.confirmed:
        logger.info(f"Hole to {remote} confirmed")
    else:
        logger.info(f"Sent {result.probes_sent} probes to {remote}, no confirmation received")
    return result
