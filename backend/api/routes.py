"""REST API routes for the responder status surface."""

import logging

from fastapi import APIRouter, HTTPException

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

# Injected by main.create_app at startup
_responder_service = None


def init_routes(responder_service) -> None:
    """Inject service dependencies into the routes module."""
    global _responder_service
    _responder_service = responder_service


@router.get("/status")
async def get_status():
    """Report what the responder is doing."""
    sessions = await _responder_service.get_sessions()
    return {
        "identity": _responder_service.identity,
        "chat_id": _responder_service.chat_id,
        "cursor": _responder_service.cursor,
        "running": _responder_service.running,
        "sessions": len(sessions),
    }


@router.get("/sessions")
async def list_sessions():
    """Return every punch session handled so far, oldest first."""
    sessions = await _responder_service.get_sessions()
    return {"sessions": [s.model_dump(mode="json") for s in sessions]}


@router.get("/sessions/{serial}")
async def get_session(serial: int):
    sessions = await _responder_service.get_sessions()
    session = next((s for s in reversed(sessions) if s.serial == serial), None)
    if not session:
        raise HTTPException(status_code=404, detail="Session not found")
    return session.model_dump(mode="json")
