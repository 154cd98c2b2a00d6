"""
Rendezvous channel: an ordered, append-only message stream shared by peers.

The handshake only needs four operations, captured by RendezvousChannel.
TelegramChannel implements them over the Telegram Bot API, using a channel
the bot is an administrator of as the shared secret meeting point.
"""

import asyncio
import logging
from abc import ABC, abstractmethod

import aiohttp
from pydantic import ValidationError

from config import ALLOWED_UPDATES, API_URL_PREFIX, HTTP_TIMEOUT, LONG_POLL_TIMEOUT
from errors import RendezvousError
from rendezvous.models import ApiResponse, ChannelEntry, Message, Update, User

logger = logging.getLogger(__name__)


class RendezvousChannel(ABC):
    """Collaborator interface consumed by the handshake."""

    @abstractmethod
    async def check_identity(self) -> str:
        """Verify credentials; returns a printable identity."""

    @abstractmethod
    async def tail(self) -> int:
        """Identifier of the newest entry, or 0 when the channel is empty."""

    @abstractmethod
    async def publish(self, scope: int, text: str) -> int:
        """Append ``text`` to ``scope``; returns an identifier for the posted entry."""

    @abstractmethod
    async def poll(self, scope: int, since_id: int) -> list[ChannelEntry]:
        """Entries with identifier > ``since_id``, oldest first (long poll)."""

    async def close(self) -> None:
        pass


def _api_error_description(description: str | None) -> str:
    return description if description is not None else "Unknown error"


class TelegramChannel(RendezvousChannel):
    """Bot API client over a single aiohttp session."""

    def __init__(
        self,
        api_token: str,
        *,
        proxy_url: str | None = None,
        api_url_prefix: str = API_URL_PREFIX,
        long_poll_timeout: int = LONG_POLL_TIMEOUT,
    ) -> None:
        self._base_url = f"{api_url_prefix}{api_token}"
        self._proxy_url = proxy_url
        self._long_poll_timeout = long_poll_timeout
        self._session: aiohttp.ClientSession | None = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._long_poll_timeout + HTTP_TIMEOUT)
            )
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()

    async def _call(self, method: str, payload: dict | None = None):
        """POST one Bot API method and unwrap its ``result``."""
        logger.debug(f"Calling {method}")
        session = self._get_session()
        try:
            async with session.post(
                f"{self._base_url}/{method}",
                json=payload or {},
                proxy=self._proxy_url,
            ) as resp:
                body = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RendezvousError(f"{method} request failed: {e}") from e
        except ValueError as e:
            raise RendezvousError(f"Cannot decode JSON response from server: {e}") from e

        try:
            envelope = ApiResponse.model_validate(body)
        except ValidationError as e:
            raise RendezvousError(f"Unexpected {method} response: {e}") from e
        if not envelope.ok:
            raise RendezvousError(_api_error_description(envelope.description))
        return envelope.result

    async def check_identity(self) -> str:
        result = await self._call("getMe")
        try:
            user = User.model_validate(result)
        except ValidationError as e:
            raise RendezvousError(f"Unexpected getMe result: {e}") from e
        return f"@{user.username}" if user.username else user.first_name

    async def _get_updates(self, payload: dict) -> list[Update]:
        result = await self._call("getUpdates", payload)
        try:
            return [Update.model_validate(item) for item in result or []]
        except ValidationError as e:
            raise RendezvousError(f"Unexpected getUpdates result: {e}") from e

    async def tail(self) -> int:
        updates = await self._get_updates({"offset": -1, "timeout": 0})
        if not updates:
            return 0
        return updates[-1].update_id

    async def publish(self, scope: int, text: str) -> int:
        result = await self._call("sendMessage", {"chat_id": scope, "text": text})
        try:
            message = Message.model_validate(result)
        except ValidationError as e:
            raise RendezvousError(f"Unexpected sendMessage result: {e}") from e
        return message.message_id

    async def poll(self, scope: int, since_id: int) -> list[ChannelEntry]:
        # Telegram has no server-side chat filter; scope is checked by the caller
        updates = await self._get_updates({
            "offset": since_id + 1,
            "timeout": self._long_poll_timeout,
            "allowed_updates": ALLOWED_UPDATES,
        })
        return [u.to_entry() for u in updates if u.update_id > since_id]
