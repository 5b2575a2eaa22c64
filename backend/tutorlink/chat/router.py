"""Real-time router providing the WebSocket endpoint and presence lookups.

This module provides:
    - WebSocket /ws: authenticated real-time channel (presence, rooms,
      typing, read receipts, live messages)
    - GET /presence/{user_id}: whether a user currently has a live connection

Handshake:
    The bearer credential is taken from the ``token`` query parameter or the
    ``Authorization: Bearer`` header. A missing or invalid credential closes
    the socket with code 1008 before it is accepted; there is no anonymous
    session.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect

from tutorlink.auth.service import extract_bearer
from tutorlink.dependencies import Services, get_current_user_id, get_services
from tutorlink.errors import AuthenticationError, TransientStoreError

from .connection import Connection
from .gateway import SocketGateway

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/presence/{user_id}", tags=["presence"])
async def get_presence(
    user_id: str,
    _caller: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> dict:
    """Report whether a user is online.

    Args:
        user_id: The user to look up.

    Returns:
        dict: ``{"userId": ..., "online": bool}``.
    """
    return {"userId": user_id, "online": services.presence.is_online(user_id)}


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    token: Optional[str] = Query(None, description="Bearer token (alternative to the Authorization header)"),
) -> None:
    """WebSocket endpoint for one authenticated client connection.

    Args:
        websocket: The WebSocket connection.
        token: Optional credential passed as a query parameter.
    """
    services: Services = websocket.app.state.services
    credential = token or extract_bearer(websocket.headers.get("authorization"))

    try:
        user_id, claims = services.verifier.verify_claims(credential)
    except AuthenticationError as e:
        logger.warning(f"[WS] Rejected connection: {e.message}")
        await websocket.close(code=1008)  # 1008 = Policy Violation
        return

    try:
        services.store.record_identity(user_id, claims)
    except TransientStoreError:
        logger.error(f"[WS] Could not record identity for {user_id}", exc_info=True)
        await websocket.close(code=1011)  # 1011 = Internal Error
        return

    await websocket.accept()
    connection = Connection(websocket, user_id)
    gateway = SocketGateway(services)
    await gateway.on_connect(connection)

    try:
        # Main message loop
        while True:
            raw = await websocket.receive_text()
            await gateway.handle_raw(connection, raw)
    except WebSocketDisconnect:
        pass
    finally:
        await gateway.on_disconnect(connection)
