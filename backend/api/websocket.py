"""WebSocket fan-out of responder punch events."""

import asyncio
import logging
from typing import Awaitable, Callable

from fastapi import WebSocket

from roles.models import PunchEvent, PunchSession

logger = logging.getLogger(__name__)

SessionSource = Callable[[], Awaitable[list[PunchSession]]]


class PunchEventStream:
    """
    Pushes punch session changes to every connected status client.

    A client joining mid-run first gets one ``snapshot`` event per session
    the responder still remembers, then the live events.
    """

    def __init__(self, sessions: SessionSource | None = None) -> None:
        self._clients: list[WebSocket] = []
        self._lock = asyncio.Lock()
        self._sessions = sessions

    @property
    def client_count(self) -> int:
        return len(self._clients)

    async def attach(self, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            if self._sessions is not None:
                try:
                    for session in await self._sessions():
                        await websocket.send_text(PunchEvent(event="snapshot", session=session).model_dump_json())
                except Exception as e:
                    logger.debug(f"Status client went away during snapshot: {e}")
                    return
            self._clients.append(websocket)
        logger.info(f"Status client attached. Total: {self.client_count}")

    async def detach(self, websocket: WebSocket) -> None:
        async with self._lock:
            if websocket in self._clients:
                self._clients.remove(websocket)
        logger.info(f"Status client detached. Total: {self.client_count}")

    async def publish(self, event_type: str, session: PunchSession) -> None:
        """ResponderService.on_event() callback."""
        message = PunchEvent(event=event_type, session=session).model_dump_json()
        async with self._lock:
            alive: list[WebSocket] = []
            for ws in self._clients:
                try:
                    await ws.send_text(message)
                except Exception as e:
                    logger.debug(f"Dropping status client: {e}")
                    continue
                alive.append(ws)
            self._clients = alive
