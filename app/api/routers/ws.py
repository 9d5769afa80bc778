"""WebSocket router -- live build event stream.

``/ws/builds/{build_id}?token=<jwt>`` sends a ``snapshot`` first, then every
build event as JSON, a ``{"type": "ping"}`` after each quiet heartbeat
interval, and closes after ``done``.
"""

import asyncio
import json
import logging
from uuid import UUID

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from app.api.deps import get_runner_registry
from app.auth import user_id_from_token
from app.config import settings
from app.errors import NotFoundError
from app.services import build_service
from app.services.build.events import DONE
from app.services.build.registry import RunnerRegistry

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websocket"])


async def _drain_client(websocket: WebSocket) -> None:
    """Consume (and ignore) client frames until the client goes away."""
    while True:
        await websocket.receive_text()


@router.websocket("/ws/builds/{build_id}")
async def build_events(
    websocket: WebSocket,
    build_id: UUID,
    registry: RunnerRegistry = Depends(get_runner_registry),
) -> None:
    """Stream one build's events.  Auth via ``?token=<jwt>``."""
    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=4001, reason="Missing token")
        return
    user_id = user_id_from_token(token)
    if not user_id:
        await websocket.close(code=4001, reason="Invalid token")
        return

    try:
        subscription = await build_service.subscribe(build_id, UUID(user_id), registry=registry)
    except (NotFoundError, ValueError):
        await websocket.close(code=4004, reason="Build not found")
        return

    await websocket.accept()
    logger.info("WS open  build=%s user=%s", str(build_id)[:8], user_id[:8])
    reader = asyncio.create_task(_drain_client(websocket))
    try:
        while True:
            next_event = asyncio.create_task(subscription.get())
            done, _ = await asyncio.wait(
                {next_event, reader},
                timeout=settings.WS_HEARTBEAT_INTERVAL,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if reader in done:
                next_event.cancel()
                if not reader.cancelled():
                    reader.exception()
                break
            if not done:
                next_event.cancel()
                await websocket.send_json({"type": "ping"})
                continue
            event = next_event.result()
            await websocket.send_text(json.dumps(event.to_dict(), default=str))
            if event.type == DONE:
                await websocket.close()
                break
    except WebSocketDisconnect:
        logger.info("WS close build=%s (client disconnect)", str(build_id)[:8])
    finally:
        reader.cancel()
        subscription.close()
