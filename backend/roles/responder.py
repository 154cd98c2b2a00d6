"""
Responder service: answers start_punching_request messages.

Watches the rendezvous channel from its current tail, and for every request
discovers a fresh reflexive endpoint, publishes it back under the request's
serial and punches toward the requester.
"""

import asyncio
import logging
import time
from collections import deque

from config import (
    BIND_HOST,
    INITIATOR_MARKER,
    PUNCH_INTERVAL,
    PUNCH_REPEAT,
    RESPONDER_MARKER,
    SESSION_HISTORY,
    RunConfig,
)
from net.udp import open_endpoint
from punch.procedure import punch
from rendezvous.channel import RendezvousChannel, TelegramChannel
from rendezvous.handshake import HandshakePoller, publish_hub_message
from rendezvous.models import HubMessage, HubMessageType
from roles.models import PunchSession, SessionState
from stun.session import discover, resolve_server

logger = logging.getLogger(__name__)


class ResponderService:
    """Serves punch requests until cancelled or a fatal error occurs."""

    def __init__(
        self,
        config: RunConfig,
        channel: RendezvousChannel | None = None,
        *,
        bind_host: str = BIND_HOST,
        punch_repeat: int = PUNCH_REPEAT,
        punch_interval: float = PUNCH_INTERVAL,
        max_sessions: int = SESSION_HISTORY,
    ) -> None:
        self._config = config
        self._owns_channel = channel is None
        if channel is None:
            channel = TelegramChannel(
                config.api_token,
                proxy_url=config.proxy_url,
                api_url_prefix=config.api_url_prefix,
            )
        self._channel = channel
        self._poller = HandshakePoller(self._channel, config.chat_id)
        self._bind_host = bind_host
        self._punch_repeat = punch_repeat
        self._punch_interval = punch_interval
        self._sessions: deque[PunchSession] = deque(maxlen=max_sessions)
        self._lock = asyncio.Lock()
        self._event_callbacks: list = []  # async fn(event_type, session)
        self._identity: str | None = None
        self._running = False

    @property
    def chat_id(self) -> int:
        return self._config.chat_id

    @property
    def cursor(self) -> int:
        return self._poller.cursor

    @property
    def identity(self) -> str | None:
        return self._identity

    @property
    def running(self) -> bool:
        return self._running

    def on_event(self, callback) -> None:
        """Register callback: async fn(event_type: str, session: PunchSession)."""
        self._event_callbacks.append(callback)

    async def _emit(self, event_type: str, session: PunchSession) -> None:
        snapshot = session.model_copy()
        for cb in self._event_callbacks:
            try:
                await cb(event_type, snapshot)
            except Exception as e:
                logger.error(f"Event callback error: {e}")

    async def get_sessions(self) -> list[PunchSession]:
        async with self._lock:
            return list(self._sessions)

    async def start(self) -> None:
        """Self-test the bot and skip everything already in the channel."""
        self._identity = await self._channel.check_identity()
        logger.info(f"getMe works, running as {self._identity}")
        await self._poller.skip_history()

    async def run(self) -> None:
        """Handle requests forever; fatal errors propagate."""
        if self._identity is None:
            await self.start()
        self._running = True
        logger.info(f"Waiting for start_punching_request in chat {self.chat_id}")
        try:
            async for msg in self._poller.messages(HubMessageType.START_PUNCHING_REQUEST):
                await self.handle_request(msg)
        finally:
            self._running = False

    async def stop(self) -> None:
        if self._owns_channel:
            await self._channel.close()
        logger.info("Responder stopped")

    async def _set_state(self, session: PunchSession, state: SessionState) -> None:
        session.state = state
        if state in (SessionState.COMPLETED, SessionState.FAILED):
            session.finished_at = time.time()
        await self._emit("punch_state", session)

    async def handle_request(self, msg: HubMessage) -> PunchSession:
        """Answer one request; a fresh socket is bound for each requester."""
        logger.info(f"Handling start_punching_request with serial {msg.serial}")
        session = PunchSession(
            serial=msg.serial,
            remote_endpoint=msg.public_endpoint,
            started_at=time.time(),
        )
        async with self._lock:
            self._sessions.append(session)
        await self._emit("punch_started", session)

        try:
            server = await resolve_server(self._config.stun_host, self._config.stun_port)
            async with open_endpoint(self._bind_host) as endpoint:
                session.local_endpoint = await discover(endpoint, server)
                logger.info(f"My public endpoint is {session.local_endpoint}")

                await self._set_state(session, SessionState.RESPONDING)
                await publish_hub_message(self._channel, self.chat_id, HubMessage(
                    type=HubMessageType.START_PUNCHING_RESPONSE,
                    serial=msg.serial,
                    public_endpoint=session.local_endpoint,
                ))

                await self._set_state(session, SessionState.PUNCHING)
                result = await punch(
                    endpoint,
                    session.remote_endpoint,
                    RESPONDER_MARKER,
                    INITIATOR_MARKER,
                    repeat=self._punch_repeat,
                    interval=self._punch_interval,
                )
        except Exception as e:
            session.error_message = str(e)
            await self._set_state(session, SessionState.FAILED)
            raise

        session.confirmed = result.confirmed
        await self._set_state(session, SessionState.COMPLETED)
        return session
