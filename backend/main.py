"""
punchhub status API for a running responder.

Exposes the responder's punch sessions over REST and streams its events
over a WebSocket. The responder loop itself is driven by the CLI.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from api.routes import init_routes, router
from api.websocket import PunchEventStream
from roles.responder import ResponderService

logger = logging.getLogger(__name__)


def create_app(responder_service: ResponderService) -> FastAPI:
    events = PunchEventStream(responder_service.get_sessions)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Wire responder events to WebSocket clients."""
        responder_service.on_event(events.publish)
        logger.info(f"Status API ready for chat {responder_service.chat_id}")
        yield
        logger.info("Status API shutting down")

    app = FastAPI(
        title="punchhub",
        version="1.0.0",
        lifespan=lifespan,
    )

    # Inject services into routes
    init_routes(responder_service)
    app.include_router(router)

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        await events.attach(websocket)
        try:
            while True:
                # Keep the connection alive; we don't expect client messages
                await websocket.receive_text()
        except WebSocketDisconnect:
            await events.detach(websocket)

    return app
