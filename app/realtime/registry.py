"""Connected WebSocket sessions, keyed by user id.

The registry is created once per process (``app.state.session_registry``)
and handed to whatever needs to push. Sync code (thread-pool route handlers,
Celery) pushes by scheduling ``send_json`` on the loop the socket was
accepted on.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime

from app.core.clock import utcnow

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class Session:
    user_id: str
    websocket: object
    loop: asyncio.AbstractEventLoop
    connected_at: datetime = field(default_factory=utcnow)


class SessionRegistry:
    def __init__(self):
        self._lock = threading.Lock()
        self._sessions: dict[str, list[Session]] = {}

    def register(self, user_id: str, websocket, loop: asyncio.AbstractEventLoop | None = None) -> Session:
        session = Session(user_id=str(user_id), websocket=websocket, loop=loop or asyncio.get_running_loop())
        with self._lock:
            self._sessions.setdefault(session.user_id, []).append(session)
        logger.info("user %s connected (%d open)", session.user_id, self.connected_count())
        return session

    def unregister(self, session: Session) -> None:
        with self._lock:
            sessions = self._sessions.get(session.user_id, [])
            if session in sessions:
                sessions.remove(session)
            if not sessions:
                self._sessions.pop(session.user_id, None)
        logger.info("user %s disconnected", session.user_id)

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()

    def is_connected(self, user_id: str) -> bool:
        with self._lock:
            return bool(self._sessions.get(str(user_id)))

    def connected_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def sessions_for(self, user_id: str) -> list[Session]:
        with self._lock:
            return list(self._sessions.get(str(user_id), []))

    def push(self, user_id: str, message: dict) -> int:
        """Schedule ``message`` on every open socket of ``user_id``. Returns sockets reached."""
        sent = 0
        for session in self.sessions_for(user_id):
            if session.loop.is_closed():
                self.unregister(session)
                continue
            future = asyncio.run_coroutine_threadsafe(session.websocket.send_json(message), session.loop)
            future.add_done_callback(self._log_send_failure(session))
            sent += 1
        return sent

    def _log_send_failure(self, session: Session):
        def _done(future):
            if future.cancelled():
                return
            exc = future.exception()
            if exc is not None:
                logger.warning("push to user %s failed: %s", session.user_id, exc)
                self.unregister(session)
        return _done
