"""
Initiator role: ask the channel for a peer and punch toward whoever answers.
"""

import logging
import random

from config import BIND_HOST, INITIATOR_MARKER, PUNCH_INTERVAL, PUNCH_REPEAT, RESPONDER_MARKER, RunConfig
from net.udp import open_endpoint
from punch.models import PunchResult
from punch.procedure import punch
from rendezvous.channel import RendezvousChannel, TelegramChannel
from rendezvous.handshake import HandshakePoller, publish_hub_message
from rendezvous.models import HubMessage, HubMessageType
from stun.session import discover, resolve_server

logger = logging.getLogger(__name__)


async def run_initiator(
    config: RunConfig,
    rng: random.Random,
    channel: RendezvousChannel | None = None,
    *,
    bind_host: str = BIND_HOST,
    punch_repeat: int = PUNCH_REPEAT,
    punch_interval: float = PUNCH_INTERVAL,
) -> PunchResult:
    """
    Run one initiator handshake end to end.

    The caller's ``rng`` draws the correlation serial. When ``channel`` is
    omitted a TelegramChannel is built from ``config`` and closed on exit.
    """
    owns_channel = channel is None
    if channel is None:
        channel = TelegramChannel(
            config.api_token,
            proxy_url=config.proxy_url,
            api_url_prefix=config.api_url_prefix,
        )

    try:
        server = await resolve_server(config.stun_host, config.stun_port)
        async with open_endpoint(bind_host) as endpoint:
            my_endpoint = await discover(endpoint, server)
            logger.info(f"Our public endpoint is {my_endpoint}")

            serial = rng.getrandbits(64)
            await publish_hub_message(channel, config.chat_id, HubMessage(
                type=HubMessageType.START_PUNCHING_REQUEST,
                serial=serial,
                public_endpoint=my_endpoint,
            ))

            poller = HandshakePoller(channel, config.chat_id)
            response = await poller.wait_for(HubMessageType.START_PUNCHING_RESPONSE, serial=serial)
            remote = response.public_endpoint
            logger.info(f"Remote public endpoint is {remote}")

            return await punch(
                endpoint,
                remote,
                INITIATOR_MARKER,
                RESPONDER_MARKER,
                repeat=punch_repeat,
                interval=punch_interval,
            )
    finally:
        if owns_channel:
            await channel.close()
