import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status
from fastapi.concurrency import run_in_threadpool

from app.api.deps import get_current_user, get_registry, user_from_token
from app.models.user import User
from app.realtime.registry import SessionRegistry

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


@router.get("/realtime/status")
def realtime_status(me: User = Depends(get_current_user), registry: SessionRegistry = Depends(get_registry)):
    return {"connected": registry.is_connected(me.id), "connectedUsers": registry.connected_count()}


def _resolve_user_id(session_factory, token: str) -> str | None:
    db = session_factory()
    try:
        user = user_from_token(db, token)
        return user.id if user else None
    finally:
        db.close()


@router.websocket("/ws/notifications")
async def notifications_socket(websocket: WebSocket, token: str = ""):
    """Push channel for notifications. Authenticate with ``?token=<access token>``."""
    user_id = None
    if token:
        # Token check hits the database; keep it off the event loop.
        user_id = await run_in_threadpool(_resolve_user_id, websocket.app.state.session_factory, token)
    if not user_id:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    registry: SessionRegistry = websocket.app.state.session_registry
    await websocket.accept()
    session = registry.register(user_id, websocket)
    try:
        while True:
            message = await websocket.receive_json()
            if isinstance(message, dict) and message.get("event") == "user:join":
                await websocket.send_json({
                    "event": "user:joined",
                    "message": "Connected to real-time notifications",
                    "userId": user_id,
                })
    except WebSocketDisconnect:
        pass
    except ValueError:
        logger.warning("user %s sent a non-JSON frame; closing", user_id)
        await websocket.close(code=status.WS_1003_UNSUPPORTED_DATA)
    finally:
        registry.unregister(session)
