"""Real-time chat event broadcasting via SSE."""

import asyncio
import json
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, AsyncGenerator, Dict, List, Optional

logger = logging.getLogger(__name__)

EVENT_CONNECTED = "connected"
EVENT_NEW_MESSAGE = "new_message"
EVENT_TYPING = "typing"
EVENT_MESSAGE_DELETED = "message_deleted"


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


def _json_default(o):
    if isinstance(o, datetime):
        return o.isoformat()
    raise TypeError(f"Type not serializable: {type(o)}")


def format_event(event: Dict[str, Any]) -> str:
    """Frame one event for the wire: ``data: <json>`` and a blank line."""
    return f"data: {json.dumps(event, default=_json_default)}\n\n"


@dataclass
class Connection:
    """One open push stream and its FIFO delivery queue."""

    user_id: int
    username: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    queue: asyncio.Queue = field(default_factory=asyncio.Queue)
    loop: Optional[asyncio.AbstractEventLoop] = None
    state: ConnectionState = ConnectionState.CONNECTING

    def push(self, event: Dict[str, Any]) -> None:
        """Enqueue ``event``; safe to call from the owning loop or any other thread."""
        if self.state is ConnectionState.CLOSED:
            raise ConnectionError(f"connection {self.id} is closed")
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if self.loop is None or running is self.loop:
            self.queue.put_nowait(event)
        else:
            self.loop.call_soon_threadsafe(self.queue.put_nowait, event)


class ConnectionManager:
    """
    Registry of open chat streams and fan-out of chat events.

    Registration and removal happen under a lock; every broadcast iterates a
    snapshot, so a stream closing mid-broadcast neither breaks the loop nor
    receives further events. A failed push to one connection is logged and
    skipped.
    """

    def __init__(self) -> None:
        self._connections: Dict[str, Connection] = {}
        self._lock = threading.Lock()

    def connect(self, user_id: int, username: str) -> Connection:
        """Register a new stream for the user and queue its ``connected`` event."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        connection = Connection(user_id=user_id, username=username, loop=loop)
        with self._lock:
            self._connections[connection.id] = connection
            total = len(self._connections)
        connection.push({"type": EVENT_CONNECTED, "message": "Connected to message stream"})
        logger.info("Stream opened for %s (%s); %d open", username, connection.id, total)
        return connection

    def disconnect(self, connection_id: str) -> None:
        with self._lock:
            connection = self._connections.pop(connection_id, None)
            total = len(self._connections)
        if connection is None:
            return
        connection.state = ConnectionState.CLOSED
        logger.info("Stream closed for %s (%s); %d open", connection.username, connection_id, total)

    def snapshot(self) -> List[Connection]:
        with self._lock:
            return list(self._connections.values())

    def _deliver(self, connection: Connection, event: Dict[str, Any]) -> bool:
        try:
            connection.push(event)
            return True
        except Exception as e:
            logger.warning("Push to %s failed, skipping: %s", connection.id, e)
            return False

    def broadcast(self, event: Dict[str, Any], exclude_user_id: Optional[int] = None) -> int:
        """Push ``event`` to every open connection; returns the delivered count."""
        targets = [c for c in self.snapshot() if c.user_id != exclude_user_id]
        delivered = sum(1 for c in targets if self._deliver(c, event))
        logger.debug("Delivered type=%s to %d/%d connections", event.get("type"), delivered, len(targets))
        return delivered

    def broadcast_message(self, message: Dict[str, Any]) -> int:
        """
        Push a persisted message to every connection, the sender's included.

        ``is_own_message`` is set per recipient.
        """
        delivered = 0
        for connection in self.snapshot():
            payload = dict(message, is_own_message=connection.user_id == message.get("user_id"))
            if self._deliver(connection, {"type": EVENT_NEW_MESSAGE, "data": payload}):
                delivered += 1
        return delivered

    def broadcast_typing(self, user_id: int, username: str, is_typing: bool) -> int:
        """Relay a typing flag to everyone except the typing user's own streams."""
        event = {
            "type": EVENT_TYPING,
            "data": {"userId": user_id, "username": username, "isTyping": bool(is_typing)},
        }
        return self.broadcast(event, exclude_user_id=user_id)

    def broadcast_deletion(self, message_id: int) -> int:
        return self.broadcast({"type": EVENT_MESSAGE_DELETED, "data": {"messageId": message_id}})

    def online_users(self) -> Dict[str, Any]:
        """Distinct users with at least one open stream."""
        users: Dict[int, Dict[str, Any]] = {}
        for connection in self.snapshot():
            users.setdefault(connection.user_id, {"userId": connection.user_id, "username": connection.username})
        return {"count": len(users), "users": list(users.values())}

    async def stream(self, connection: Connection) -> AsyncGenerator[str, None]:
        """Generate SSE frames for ``connection`` until the client goes away."""
        try:
            while True:
                event = await connection.queue.get()
                yield format_event(event)
                if connection.state is ConnectionState.CONNECTING:
                    connection.state = ConnectionState.OPEN
        except asyncio.CancelledError:
            pass
        finally:
            self.disconnect(connection.id)

    async def open_stream(self, user_id: int, username: str) -> AsyncGenerator[str, None]:
        """
        Register a stream for the user and generate its frames.

        Registration happens on the first iteration, so a response that is
        never started leaves nothing behind in the registry.
        """
        connection = self.connect(user_id, username)
        try:
            async for frame in self.stream(connection):
                yield frame
        finally:
            self.disconnect(connection.id)
