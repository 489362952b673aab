"""
HTTP and WebSocket routes.
"""

import logging

from fastapi import APIRouter, WebSocket

logger = logging.getLogger(__name__)

router = APIRouter()
ws_router = APIRouter()


def _get_server():
    from .server import get_server
    return get_server()


@router.get("/status")
async def get_status():
    """Server status and connected client count."""
    server = _get_server()
    if server is None:
        return {"status": "starting", "websocket_clients": 0}
    return server.status()


@ws_router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    Client session.

    Messages are JSON envelopes ``{"type": ..., "payload": ...}`` in both
    directions; see ``matterhub.hub.messages``.
    """
    server = _get_server()
    if server is None:
        # Try again later
        await websocket.close(code=1013)
        return

    session = await server.registry.admit(websocket)
    try:
        await session.run()
    finally:
        await server.registry.remove(session)
        await session.wait_closed()
