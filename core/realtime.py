import asyncio
import logging
import threading
from typing import Any, Dict, Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)

ADMIN_CHANNEL = "admin"


def user_channel(user_id: int) -> str:
    return f"user:{user_id}"


class ConnectionRegistry:
    """Live WebSocket connections, keyed by the identity that opened them.

    Entries are added by the ``/ws`` endpoint on connect and removed on
    disconnect (or when a send to a dead socket fails). ``broadcast`` can be
    called from the request worker threads: sends are scheduled on the
    server loop and the caller never waits for them.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._by_user: Dict[int, Set[WebSocket]] = {}
        self._admins: Set[WebSocket] = set()
        self._owner_of: Dict[WebSocket, int] = {}
        self._loop: asyncio.AbstractEventLoop | None = None
        # Strong refs until each send finishes
        self._pending: Set[asyncio.Task] = set()

    async def connect(self, websocket: WebSocket, user_id: int, is_admin: bool = False) -> None:
        self._loop = asyncio.get_running_loop()
        with self._lock:
            self._by_user.setdefault(user_id, set()).add(websocket)
            self._owner_of[websocket] = user_id
            if is_admin:
                self._admins.add(websocket)
        logger.info("Socket connected for user %s (admin=%s)", user_id, is_admin)

    def disconnect(self, websocket: WebSocket) -> None:
        with self._lock:
            user_id = self._owner_of.pop(websocket, None)
            self._admins.discard(websocket)
            if user_id is not None:
                sockets = self._by_user.get(user_id, set())
                sockets.discard(websocket)
                if not sockets:
                    self._by_user.pop(user_id, None)
        if user_id is not None:
            logger.info("Socket disconnected for user %s", user_id)

    def members(self, channel: str) -> list[WebSocket]:
        with self._lock:
            if channel == ADMIN_CHANNEL:
                return list(self._admins)
            if channel.startswith("user:"):
                try:
                    user_id = int(channel.split(":", 1)[1])
                except ValueError:
                    return []
                return list(self._by_user.get(user_id, ()))
        return []

    def broadcast(self, channel: str, event: str, payload: Any) -> int:
        """Queue ``event`` for every socket on ``channel``; returns how many."""
        sockets = self.members(channel)
        loop = self._loop
        if not sockets or loop is None or loop.is_closed():
            return 0

        message = {"event": event, "data": payload}
        for websocket in sockets:
            coro = self._send(websocket, message)
            if _running_loop() is loop:
                task = loop.create_task(coro)
                self._pending.add(task)
                task.add_done_callback(self._pending.discard)
            else:
                asyncio.run_coroutine_threadsafe(coro, loop)
        return len(sockets)

    async def _send(self, websocket: WebSocket, message: Dict[str, Any]) -> None:
        try:
            await websocket.send_json(message)
        except Exception as exc:
            logger.warning("Dropping socket after failed send of %s: %s", message.get("event"), exc)
            self.disconnect(websocket)


def _running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


registry = ConnectionRegistry()
