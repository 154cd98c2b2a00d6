"""
Discovery session: one Binding Request/Response cycle with bounded retries.

A background task blocks on the endpoint for the server's answer while the
foreground loop owns the retry timer; whichever finishes first decides the
outcome. Retries resend the identical request, so a late answer to an
earlier attempt is as good as any.
"""

import asyncio
import logging
import socket

from config import MAX_DATAGRAM_SIZE, STUN_MAX_RETRIES, STUN_TIMEOUT
from errors import NoResponseError, OversizedResponseError, TransportError
from net.udp import UdpEndpoint
from stun.codec import decode_response, encode_request, new_transaction_id
from stun.models import Endpoint

logger = logging.getLogger(__name__)


async def resolve_server(host: str, port: int) -> tuple[str, int]:
    """Resolve the discovery server to a concrete IPv4 (address, port)."""
    loop = asyncio.get_running_loop()
    try:
        infos = await loop.getaddrinfo(host, port, family=socket.AF_INET, type=socket.SOCK_DGRAM)
    except OSError as e:
        raise TransportError(f"Cannot resolve discovery server {host}: {e}") from e
    if not infos:
        raise TransportError(f"Cannot resolve discovery server {host}")
    address = infos[0][4]
    return address[0], address[1]


async def _receive_from(endpoint: UdpEndpoint, server: tuple[str, int]) -> bytes:
    """Read datagrams until one arrives from ``server``; others are noise."""
    while True:
        data, addr = await endpoint.recvfrom()
        if addr[0] == server[0] and addr[1] == server[1]:
            return data
        logger.debug(f"Discarding {len(data)} bytes from unexpected sender {addr[0]}:{addr[1]}")


async def discover(
    endpoint: UdpEndpoint,
    server: tuple[str, int],
    *,
    timeout: float = STUN_TIMEOUT,
    max_retries: int = STUN_MAX_RETRIES,
    transaction_id: bytes | None = None,
) -> Endpoint:
    """
    Learn the reflexive endpoint of ``endpoint`` as seen by ``server``.

    Args:
        endpoint: Bound UDP endpoint; exclusively used until this returns.
        server: Resolved (address, port) of the discovery server.
        timeout: Seconds to wait for an answer before resending.
        max_retries: Resends allowed after the initial request.
        transaction_id: Fixed id for tests; random when omitted.

    Raises:
        NoResponseError: the retry budget ran out.
        StunDecodeError: the server answered with something unusable.
        TransportError: the socket failed.
    """
    transaction_id = transaction_id or new_transaction_id()
    request = encode_request(transaction_id)

    endpoint.sendto(request, server)
    logger.debug(f"Sent binding request to {server[0]}:{server[1]}")

    receive_task = asyncio.create_task(_receive_from(endpoint, server))
    timer_task: asyncio.Task | None = None
    retries = 0
    try:
        while True:
            timer_task = asyncio.create_task(asyncio.sleep(timeout))
            done, _ = await asyncio.wait(
                [receive_task, timer_task],
                return_when=asyncio.FIRST_COMPLETED,
            )

            if receive_task in done:
                data = receive_task.result()
                if len(data) >= MAX_DATAGRAM_SIZE:
                    raise OversizedResponseError("A packet from server is too large")
                reflexive = decode_response(data, transaction_id)
                logger.info(f"Reflexive endpoint is {reflexive} (after {retries} retries)")
                return reflexive

            if retries == max_retries:
                raise NoResponseError(retries)
            retries += 1
            logger.info(f"No answer from {server[0]}:{server[1]}, retry {retries}/{max_retries}")
            endpoint.sendto(request, server)
    finally:
        for task in (receive_task, timer_task):
            if task is not None and not task.done():
                task.cancel()
