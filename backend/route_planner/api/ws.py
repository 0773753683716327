"""WebSocket endpoint for planning session events."""

import asyncio
import logging

import orjson
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from route_planner.core.errors import RoutePlanningError
from route_planner.core.models import SessionConfig
from route_planner.core.planner import session_key

logger = logging.getLogger(__name__)

router = APIRouter()

# Will be set by main.py on startup
broadcaster = None
planner = None


@router.websocket("/ws/sessions/{company_key}/{order_id}")
async def session_ws(websocket: WebSocket, company_key: str, order_id: int) -> None:
    """Stream segment releases and order/state changes of one session."""
    await websocket.accept()

    if broadcaster is None or planner is None:
        await websocket.close(code=1011, reason="Service not ready")
        return

    try:
        config = SessionConfig(company_key, order_id)
        engine = planner.get_session(config)
    except RoutePlanningError as e:
        await websocket.close(code=1008, reason=str(e))
        return

    # Send current snapshot first
    snapshot = {
        "type": "snapshot",
        "state": engine.state.value,
        "order": [s.id for s in engine.order],
    }
    await websocket.send_bytes(orjson.dumps(snapshot))

    key = session_key(config)
    queue = broadcaster.subscribe(key)
    try:
        while True:
            data = await queue.get()
            await websocket.send_bytes(data)
    except WebSocketDisconnect:
        pass
    except asyncio.CancelledError:
        pass
    except Exception:
        logger.exception("WebSocket error")
    finally:
        broadcaster.unsubscribe(key, queue)
