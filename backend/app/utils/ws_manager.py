from fastapi import WebSocket
from starlette.websockets import WebSocketState
from typing import Dict, Iterable, Optional, Set
import asyncio
import logging
import uuid
from datetime import datetime, timedelta

logger = logging.getLogger(__name__)


def role_room(role: str) -> str:
    return f"role:{role}"


def user_room(user_id) -> str:
    return f"user:{user_id}"


def conversation_room(conversation_id) -> str:
    return f"conversation:{conversation_id}"


class ConnectionManager:
    """Tracks live sockets and the rooms they joined.

    A user may hold several sockets (tabs, devices); rooms are sets of
    socket ids so one event reaches each socket once.
    """

    def __init__(self, max_connections: int = 1000):
        self.active_connections: Dict[str, WebSocket] = {}
        self.connection_users: Dict[str, str] = {}
        self.connection_timestamps: Dict[str, datetime] = {}
        self.rooms: Dict[str, Set[str]] = {}
        self.connection_rooms: Dict[str, Set[str]] = {}
        self.max_connections = max_connections  # Prevent memory exhaustion
        self.connection_timeout = timedelta(hours=24)  # Auto-cleanup stale connections
        self._cleanup_task: Optional[asyncio.Task] = None

    async def connect(self, user: dict, websocket: WebSocket) -> Optional[str]:
        """Accept the socket and join the user's personal and role rooms."""
        if len(self.active_connections) >= self.max_connections:
            logger.warning(f"Connection limit reached ({self.max_connections}), rejecting user {user['_id']}")
            await websocket.close(code=1013, reason="Server overloaded")
            return None

        await websocket.accept()

        connection_id = uuid.uuid4().hex
        user_id = str(user["_id"])
        self.active_connections[connection_id] = websocket
        self.connection_users[connection_id] = user_id
        self.connection_timestamps[connection_id] = datetime.utcnow()
        self.connection_rooms[connection_id] = set()

        self.join(connection_id, user_room(user_id))
        if user.get("role"):
            self.join(connection_id, role_room(user["role"]))

        logger.info(f"User {user_id} connected. Total connections: {len(self.active_connections)}")
        return connection_id

    def join(self, connection_id: str, room: str):
        if connection_id not in self.active_connections:
            return
        self.rooms.setdefault(room, set()).add(connection_id)
        self.connection_rooms[connection_id].add(room)

    def leave(self, connection_id: str, room: str):
        members = self.rooms.get(room)
        if members is not None:
            members.discard(connection_id)
            if not members:
                del self.rooms[room]
        if connection_id in self.connection_rooms:
            self.connection_rooms[connection_id].discard(room)

    async def disconnect(self, connection_id: str):
        await self._force_disconnect(connection_id, close=False)

    async def _force_disconnect(self, connection_id: str, close: bool = True):
        """Force disconnect with memory cleanup"""
        ws = self.active_connections.pop(connection_id, None)
        if ws is None:
            return
        if close:
            try:
                if ws.client_state != WebSocketState.DISCONNECTED:
                    await ws.close()
            except Exception as e:
                logger.warning(f"Error closing websocket {connection_id}: {e}")

        for room in list(self.connection_rooms.pop(connection_id, set())):
            self.leave(connection_id, room)
        user_id = self.connection_users.pop(connection_id, None)
        self.connection_timestamps.pop(connection_id, None)
        logger.info(f"User {user_id} disconnected. Total connections: {len(self.active_connections)}")

    async def send(self, connection_id: str, payload: dict) -> bool:
        ws = self.active_connections.get(connection_id)
        if ws is None:
            return False
        try:
            await ws.send_json(payload)
            return True
        except Exception as e:
            logger.warning(f"Failed to send to connection {connection_id}: {e}")
            await self._force_disconnect(connection_id)
            return False

    async def emit_to_rooms(self, rooms: Iterable[str], event: str, data: dict) -> int:
        """Deliver `event` once to every socket in any of `rooms`."""
        targets: Set[str] = set()
        for room in rooms:
            targets |= self.rooms.get(room, set())

        payload = {"event": event, "data": data}
        delivered = 0
        for connection_id in list(targets):
            if await self.send(connection_id, payload):
                delivered += 1
        logger.debug(f"{event} delivered to {delivered}/{len(targets)} sockets")
        return delivered

    async def notify(self, user_id: str, event: str, data: dict) -> int:
        return await self.emit_to_rooms([user_room(user_id)], event, data)

    async def broadcast(self, event: str, data: dict) -> int:
        payload = {"event": event, "data": data}
        successful_sends = 0
        for connection_id in list(self.active_connections):
            if await self.send(connection_id, payload):
                successful_sends += 1
        logger.info(f"Broadcast sent to {successful_sends} sockets")
        return successful_sends

    def is_online(self, user_id: str) -> bool:
        return bool(self.rooms.get(user_room(user_id)))

    async def start(self):
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup_stale_connections())

    async def stop(self):
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None
        for connection_id in list(self.active_connections):
            await self._force_disconnect(connection_id)

    async def _cleanup_stale_connections(self):
        """Background task to prevent memory leaks from stale connections"""
        while True:
            await asyncio.sleep(300)  # Check every 5 minutes
            try:
                current_time = datetime.utcnow()
                stale = [
                    connection_id
                    for connection_id, timestamp in self.connection_timestamps.items()
                    if current_time - timestamp > self.connection_timeout
                ]
                for connection_id in stale:
                    logger.info(f"Cleaning up stale connection {connection_id}")
                    await self._force_disconnect(connection_id)
            except Exception as e:
                logger.error(f"Error in connection cleanup: {e}")

    def get_connection_stats(self) -> dict:
        """Get connection statistics for monitoring"""
        return {
            "active_connections": len(self.active_connections),
            "online_users": len(set(self.connection_users.values())),
            "rooms": len(self.rooms),
            "max_connections": self.max_connections
        }


manager = ConnectionManager()
