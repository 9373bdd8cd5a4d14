"""
Progress event channel.
WebSocket that streams an owner's progress, complete and error events.
"""
import asyncio
import contextlib
from fastapi import APIRouter, HTTPException, Query, WebSocket, WebSocketDisconnect, status
from typing import Optional
from src.core import dependencies
from src.core.auth_dependencies import decode_token
from src.core.logger import get_logger
from src.services.broadcaster import QueueConnection

logger = get_logger(__name__)

router = APIRouter(prefix="/v1/api", tags=["Progress"])


@router.websocket("/ws/progress")
async def progress_channel(websocket: WebSocket, token: Optional[str] = Query(default=None)):
    """
    Stream upload events for the token's owner.

    Connect with ?token=<jwt>. Every message carries operationId so one
    client can follow several uploads at once.
    """
    try:
        owner_id = str(decode_token(token or "")['sub'])
    except HTTPException as e:
        logger.warning(f"Rejected progress channel: {e.detail}")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    broadcaster = dependencies.get_broadcaster()
    connection = QueueConnection(asyncio.get_running_loop())
    # registered before accept so events sent right after the handshake are queued
    broadcaster.register(owner_id, connection)

    async def pump():
        while True:
            message = await connection.queue.get()
            await websocket.send_json(message)

    sender = None
    try:
        await websocket.accept()
        sender = asyncio.create_task(pump())
        # client messages are ignored; receiving detects the disconnect
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        connection.close()
        broadcaster.unregister(owner_id, connection)
        if sender is not None:
            sender.cancel()
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await sender
