"""In-memory real-time hub for notifications and leaderboard updates."""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Any, Optional

logger = logging.getLogger("quizweb.realtime")


def make_event(event_type: str, **payload: Any) -> dict:
    event = {"type": event_type, "timestamp": datetime.now(timezone.utc).isoformat()}
    event.update(payload)
    return event


class RealtimeHub:
    """Per-user event buffers plus the open WebSockets of each user.

    Events are JSON-ready dicts. Every user gets a bounded buffer (oldest
    events drop first) that `drain` empties, and each event is also sent to
    the user's open sockets. Sockets are registered with the event loop that
    owns them so worker threads can schedule sends on it.
    """

    def __init__(self, buffer_size: int = 50):
        self._buffers: dict[str, deque] = {}
        self._sockets: dict[str, list[tuple[Any, asyncio.AbstractEventLoop, str]]] = {}
        self._lock = threading.Lock()
        self._buffer_size = buffer_size

    def register(self, user_id: str, role: str, websocket: Any, loop: asyncio.AbstractEventLoop) -> list[str]:
        """Attach a socket; return the rooms it joined."""
        with self._lock:
            self._sockets.setdefault(user_id, []).append((websocket, loop, role))
        logger.info("socket_connected user_id=%s role=%s", user_id, role)
        return [f"user_{user_id}", f"role_{role}"]

    def unregister(self, user_id: str, websocket: Any) -> None:
        with self._lock:
            remaining = [entry for entry in self._sockets.get(user_id, []) if entry[0] is not websocket]
            if remaining:
                self._sockets[user_id] = remaining
            else:
                self._sockets.pop(user_id, None)
        logger.info("socket_disconnected user_id=%s", user_id)

    def push(self, user_id: str, event: dict) -> None:
        """Buffer `event` for `user_id` and send it to the user's sockets."""
        with self._lock:
            buf = self._buffers.get(user_id)
            if buf is None:
                buf = deque(maxlen=self._buffer_size)
                self._buffers[user_id] = buf
            buf.append(event)
            targets = list(self._sockets.get(user_id, []))
        for websocket, loop, _role in targets:
            self._send(user_id, websocket, loop, event)

    def push_many(self, user_ids, event: dict) -> None:
        for user_id in dict.fromkeys(user_ids):
            self.push(user_id, event)

    def drain(self, user_id: str) -> list[dict]:
        with self._lock:
            buf = self._buffers.pop(user_id, None)
        return list(buf) if buf else []

    def clear(self) -> None:
        with self._lock:
            self._buffers.clear()
            self._sockets.clear()

    def _send(self, user_id: str, websocket: Any, loop: asyncio.AbstractEventLoop, event: dict) -> None:
        try:
            future = asyncio.run_coroutine_threadsafe(websocket.send_json(event), loop)
        except RuntimeError:
            logger.warning("socket_loop_closed user_id=%s", user_id)
            self.unregister(user_id, websocket)
            return

        def _done(fut) -> None:
            if fut.cancelled():
                return
            exc = fut.exception()
            if exc is not None:
                logger.warning("socket_send_failed user_id=%s error=%s", user_id, exc)

        future.add_done_callback(_done)


hub: Optional[RealtimeHub] = None


def get_hub() -> RealtimeHub:
    """Return the process-wide hub, creating it on first use."""
    global hub
    if hub is None:
        from ..config import settings
        hub = RealtimeHub(buffer_size=settings.REALTIME_BUFFER_SIZE)
    return hub
