"""
POSECOACH WebSocket Connection Manager

Manages WebSocket connections for coaching sessions: connection limits,
structured messages, per-client sends and heartbeat monitoring.
"""

import asyncio
import logging
import json
from typing import Dict, Optional, Any, Callable, Awaitable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from core.config import settings

logger = logging.getLogger(__name__)


class MessageType(str, Enum):
    """WebSocket message types."""
    # System messages
    PING = "ping"
    PONG = "pong"
    ERROR = "error"

    # Client -> server
    ENGINE_STATUS = "engine_status"
    START = "start"
    RESET = "reset"
    LANDMARKS = "landmarks"

    # Server -> client
    SESSION_CREATED = "session_created"
    SNAPSHOT = "snapshot"
    ANNOUNCE = "announce"
    SILENCE = "silence"
    FAULT = "fault"


@dataclass
class WebSocketMessage:
    """Structured WebSocket message."""
    type: MessageType
    payload: Any = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_json(self) -> str:
        return json.dumps({
            "type": self.type.value if isinstance(self.type, MessageType) else self.type,
            "payload": self.payload,
            "timestamp": self.timestamp
        })

    @classmethod
    def from_json(cls, data: str) -> "WebSocketMessage":
        parsed = json.loads(data)
        if not isinstance(parsed, dict):
            raise ValueError("Message must be a JSON object")
        return cls(
            type=parsed.get("type", ""),
            payload=parsed.get("payload"),
            timestamp=parsed.get("timestamp", datetime.now(timezone.utc).isoformat())
        )


@dataclass
class ConnectedClient:
    """Represents a connected WebSocket client."""
    websocket: WebSocket
    client_id: str
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_activity: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def is_connected(self) -> bool:
        return self.websocket.client_state == WebSocketState.CONNECTED


class ConnectionManager:
    """
    Manages all WebSocket connections.

    Features:
    - Connection limit
    - Per-client sends that drop dead connections
    - Ping/pong handling and message dispatch
    - Heartbeat monitoring
    """

    def __init__(self, max_connections: int = None):
        self.max_connections = max_connections or settings.WS_MAX_CONNECTIONS

        # Active connections: client_id -> ConnectedClient
        self._connections: Dict[str, ConnectedClient] = {}

        # Lock for connection table updates
        self._lock = asyncio.Lock()

        # Heartbeat task
        self._heartbeat_task: Optional[asyncio.Task] = None

        logger.info(f"🔌 ConnectionManager initialized (max: {self.max_connections})")

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def connect(self, websocket: WebSocket, client_id: str) -> ConnectedClient:
        """
        Accept a new WebSocket connection.
        """
        if self.connection_count >= self.max_connections:
            await websocket.close(code=1013, reason="Server at capacity")
            raise ConnectionError("Maximum connections reached")

        await websocket.accept()

        client = ConnectedClient(websocket=websocket, client_id=client_id)

        async with self._lock:
            self._connections[client_id] = client

        logger.info(f"✅ Client connected: {client_id}")
        return client

    async def disconnect(self, client_id: str):
        """Forget a client."""
        async with self._lock:
            client = self._connections.pop(client_id, None)

        if client:
            logger.info(f"👋 Client disconnected: {client_id}")

    async def send_to_client(self, client_id: str, message: WebSocketMessage) -> bool:
        """Send a message to a specific client."""
        client = self._connections.get(client_id)

        if not client or not client.is_connected():
            return False

        try:
            await client.websocket.send_text(message.to_json())
            client.last_activity = datetime.now(timezone.utc)
            return True
        except Exception as e:
            logger.error(f"Failed to send to {client_id}: {e}")
            await self.disconnect(client_id)
            return False

    async def handle_message(
        self,
        client_id: str,
        raw_message: str,
        handler: Callable[[str, WebSocketMessage], Awaitable[Any]] = None
    ):
        """Process an incoming message from a client."""
        try:
            message = WebSocketMessage.from_json(raw_message)
        except (json.JSONDecodeError, ValueError):
            await self.send_to_client(client_id, WebSocketMessage(
                type=MessageType.ERROR,
                payload={"error": "Invalid JSON"}
            ))
            return

        client = self._connections.get(client_id)
        if client:
            client.last_activity = datetime.now(timezone.utc)

        if message.type == MessageType.PING.value:
            await self.send_to_client(client_id, WebSocketMessage(type=MessageType.PONG))
            return

        if handler:
            try:
                await handler(client_id, message)
            except WebSocketDisconnect:
                raise
            except Exception as e:
                logger.error(f"Error handling message from {client_id}: {type(e).__name__}: {e}")
                await self.send_to_client(client_id, WebSocketMessage(
                    type=MessageType.ERROR,
                    payload={"error": str(e)}
                ))

    async def start_heartbeat(self, interval: int = None):
        """Start heartbeat task to check connection health."""
        interval = interval or settings.WS_HEARTBEAT_INTERVAL

        async def heartbeat_loop():
            while True:
                await asyncio.sleep(interval)
                await self._check_connections()

        self._heartbeat_task = asyncio.create_task(heartbeat_loop())
        logger.info(f"💓 Heartbeat started (interval: {interval}s)")

    async def stop_heartbeat(self):
        """Stop the heartbeat task."""
        if self._heartbeat_task:
            self._heartbeat_task.cancel()
            self._heartbeat_task = None

    async def _check_connections(self):
        """Check all connections and disconnect dead ones."""
        for client_id in list(self._connections.keys()):
            client = self._connections.get(client_id)
            if client and not client.is_connected():
                await self.disconnect(client_id)

    def get_stats(self) -> dict:
        """Get connection statistics."""
        return {
            "total_connections": self.connection_count,
            "max_connections": self.max_connections
        }


# Global connection manager instance
connection_manager = ConnectionManager()
