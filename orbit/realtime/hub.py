"""
orbit/realtime/hub.py
In-memory pubsub hub for room real-time channels.

One instance per process. Tracks sockets and online users per room, broadcasts
notifications, and prunes connections that stop answering keep-alives.
Lifecycle is explicit: start() on app startup, stop() on shutdown.
"""

import asyncio
import logging
import time
from typing import Dict, List, Optional, Set, Tuple

from fastapi import WebSocket

from orbit.core.config import settings
from orbit.models.notification import Notification

logger = logging.getLogger("orbit.realtime")


class RoomHub:
    """
    Room-per-channel broadcast hub.

    Maps room_id -> Set[WebSocket]; every mutation happens under one asyncio
    lock. Also implements the Notifier interface so services can publish
    from worker threads.
    """

    def __init__(self, keepalive_seconds: Optional[float] = None, stale_after_seconds: Optional[float] = None):
        self._rooms: Dict[str, Set[WebSocket]] = {}
        # websocket -> (room_id, user_id)
        self._connections: Dict[WebSocket, Tuple[str, str]] = {}
        # websocket -> monotonic time of last client message
        self._last_seen: Dict[WebSocket, float] = {}
        self._lock = asyncio.Lock()
        self._keepalive_seconds = keepalive_seconds or settings.WS_KEEPALIVE_SECONDS
        self._stale_after = stale_after_seconds or settings.WS_STALE_AFTER_SECONDS
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._keepalive_task: Optional[asyncio.Task] = None

    # Lifecycle ----------------------------------------------------------
    async def start(self) -> None:
        if self._keepalive_task is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._keepalive_task = asyncio.create_task(self._keepalive_loop())
        logger.info("room hub started")

    async def stop(self) -> None:
        task, self._keepalive_task = self._keepalive_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        async with self._lock:
            sockets = list(self._connections)
            self._rooms.clear()
            self._connections.clear()
            self._last_seen.clear()
        for ws in sockets:
            try:
                await ws.close()
            except Exception as e:
                logger.debug(f"[HUB] close on stop failed: {e}")
        self._loop = None
        logger.info("room hub stopped")

    @property
    def running(self) -> bool:
        return self._keepalive_task is not None

    # Connections --------------------------------------------------------
    async def register(self, room_id: str, websocket: WebSocket, user_id: str) -> None:
        async with self._lock:
            self._rooms.setdefault(room_id, set()).add(websocket)
            self._connections[websocket] = (room_id, user_id)
            self._last_seen[websocket] = time.monotonic()
            logger.debug(f"[HUB] Registered socket for room {room_id}. Total: {len(self._rooms[room_id])}")

    async def unregister(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._drop(websocket)

    def _drop(self, websocket: WebSocket) -> None:
        # Caller holds the lock
        meta = self._connections.pop(websocket, None)
        self._last_seen.pop(websocket, None)
        if not meta:
            return
        room_id, _ = meta
        sockets = self._rooms.get(room_id)
        if sockets is not None:
            sockets.discard(websocket)
            if not sockets:
                del self._rooms[room_id]
                logger.debug(f"[HUB] Cleaned up empty room {room_id}")

    async def touch(self, websocket: WebSocket) -> None:
        async with self._lock:
            if websocket in self._connections:
                self._last_seen[websocket] = time.monotonic()

    async def online_users(self, room_id: str) -> List[str]:
        async with self._lock:
            return sorted({self._connections[ws][1] for ws in self._rooms.get(room_id, set())})

    async def get_room_size(self, room_id: str) -> int:
        async with self._lock:
            return len(self._rooms.get(room_id, set()))

    # Broadcast ----------------------------------------------------------
    async def broadcast(self, room_id: str, message: dict) -> int:
        """Send to every socket in the room; sockets that fail are pruned."""
        async with self._lock:
            sockets = list(self._rooms.get(room_id, set()))
        if not sockets:
            return 0

        dead = []
        sent = 0
        for ws in sockets:
            try:
                await ws.send_json(message)
                sent += 1
            except Exception as e:
                logger.debug(f"[HUB] Failed to send to socket: {e}")
                dead.append(ws)

        if dead:
            async with self._lock:
                for ws in dead:
                    self._drop(ws)
            logger.debug(f"[HUB] Pruned {len(dead)} dead sockets from room {room_id}")
        return sent

    def publish(self, notification: Notification) -> None:
        """Thread-safe Notifier entry point; dropped when the hub is not running."""
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.debug(f"[HUB] not running, dropping {notification.type}")
            return
        asyncio.run_coroutine_threadsafe(
            self.broadcast(notification.room_id, notification.to_event()), loop
        )

    # Keep-alive ---------------------------------------------------------
    async def prune_stale(self, now: Optional[float] = None) -> int:
        moment = now if now is not None else time.monotonic()
        async with self._lock:
            stale = [ws for ws, seen in self._last_seen.items() if moment - seen > self._stale_after]
            for ws in stale:
                self._drop(ws)
        for ws in stale:
            try:
                await ws.close()
            except Exception as e:
                logger.debug(f"[HUB] close of stale socket failed: {e}")
        if stale:
            logger.info(f"[HUB] Pruned {len(stale)} stale sockets")
        return len(stale)

    async def _keepalive_loop(self) -> None:
        while True:
            await asyncio.sleep(self._keepalive_seconds)
            try:
                await self.prune_stale()
                async with self._lock:
                    room_ids = list(self._rooms)
                for room_id in room_ids:
                    await self.broadcast(room_id, {"type": "ping"})
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("room hub keep-alive failed")


# Global singleton hub instance
hub = RoomHub()
