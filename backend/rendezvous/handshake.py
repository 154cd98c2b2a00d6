"""
Rendezvous handshake: matching hub messages on the shared channel.

The initiator posts a start_punching_request carrying its reflexive
endpoint and a random serial; a responder answers with a
start_punching_response echoing that serial. Anything else on the channel
is logged and skipped, never fatal.
"""

import logging
from typing import AsyncIterator

from pydantic import ValidationError

from errors import HandshakeParseError
from rendezvous.channel import RendezvousChannel
from rendezvous.models import ChannelEntry, HubMessage, HubMessageType

logger = logging.getLogger(__name__)


def parse_hub_message(text: str) -> HubMessage:
    try:
        return HubMessage.model_validate_json(text)
    except ValidationError as e:
        raise HandshakeParseError(f"Cannot parse hub message: {e}") from e


def accept_entry(
    entry: ChannelEntry,
    *,
    scope: int,
    expected_type: HubMessageType,
    serial: int | None = None,
) -> HubMessage | None:
    """
    Return the entry's hub message if it is the one we are waiting for.

    Requests are accepted whatever their serial since any requester may be
    punched to; pass ``serial`` only when awaiting a response.
    """
    if entry.scope != scope:
        logger.debug(f"Skipping entry {entry.entry_id}: not from chat {scope}")
        return None
    if entry.text is None:
        logger.debug(f"Skipping entry {entry.entry_id}: no text")
        return None

    logger.info(f"Got channel message: {entry.text}")
    try:
        msg = parse_hub_message(entry.text)
    except HandshakeParseError as e:
        logger.warning(f"Skipping entry {entry.entry_id}: {e}")
        return None

    if msg.type != expected_type:
        logger.info(f"Skipping entry {entry.entry_id}: unexpected hub message type {msg.type.value}")
        return None
    if serial is not None and msg.serial != serial:
        logger.info(f"Ignoring message with unexpected serial {msg.serial}")
        return None
    if msg.public_endpoint is None:
        logger.warning(f"Skipping entry {entry.entry_id}: {msg.type.value} carries no endpoint")
        return None
    return msg


async def publish_hub_message(channel: RendezvousChannel, scope: int, msg: HubMessage) -> int:
    entry_id = await channel.publish(scope, msg.model_dump_json())
    logger.info(f"Sent {msg.type.value} (serial {msg.serial}) to the chat")
    return entry_id


class HandshakePoller:
    """Long-polls one channel scope, tracking the highest entry seen."""

    def __init__(self, channel: RendezvousChannel, scope: int, cursor: int = 0) -> None:
        self.channel = channel
        self.scope = scope
        self.cursor = cursor

    async def skip_history(self) -> int:
        """Move the cursor to the channel tail so old entries are never seen."""
        self.cursor = await self.channel.tail()
        logger.info(f"Last update ID is {self.cursor}")
        return self.cursor

    async def _next_batch(self) -> list[ChannelEntry]:
        entries = await self.channel.poll(self.scope, self.cursor)
        if entries:
            self.cursor = max(self.cursor, max(e.entry_id for e in entries))
        return entries

    async def messages(
        self,
        expected_type: HubMessageType,
        serial: int | None = None,
    ) -> AsyncIterator[HubMessage]:
        """Yield every accepted message, forever."""
        while True:
            for entry in await self._next_batch():
                msg = accept_entry(entry, scope=self.scope, expected_type=expected_type, serial=serial)
                if msg is not None:
                    yield msg

    async def wait_for(self, expected_type: HubMessageType, serial: int | None = None) -> HubMessage:
        """Block until the first accepted message arrives."""
        while True:
            for entry in await self._next_batch():
                msg = accept_entry(entry, scope=self.scope, expected_type=expected_type, serial=serial)
                if msg is not None:
                    return msg
