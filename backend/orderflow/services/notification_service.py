"""Real-time notifications: publishers and the WebSocket connection manager.

The fulfillment core publishes facts (``order.status_changed``,
``kitchen_ticket.print_failed``) after its transaction has committed.
Publishing is best-effort: a publisher never raises into the caller.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Tuple

from fastapi import WebSocket, status

logger = logging.getLogger(__name__)

KITCHEN_CHANNEL = "kitchen"


class EventPublisher(Protocol):
    def publish(self, event_kind: str, payload: Dict[str, Any]) -> None:
        ...


class LoggingPublisher:
    """Writes events to the log only."""

    def publish(self, event_kind: str, payload: Dict[str, Any]) -> None:
        logger.info(f"Event {event_kind}: {payload}")


class RecordingPublisher:
    """Keeps published events in memory."""

    def __init__(self):
        self.events: List[Tuple[str, Dict[str, Any]]] = []

    def publish(self, event_kind: str, payload: Dict[str, Any]) -> None:
        self.events.append((event_kind, payload))

    def kinds(self) -> List[str]:
        return [kind for kind, _ in self.events]


# WebSocket Connection Manager for real-time updates
class ConnectionManager:
    """Tracks WebSocket connections per channel."""

    MAX_CONNECTIONS_PER_CHANNEL = 1000

    def __init__(self):
        self.active_connections: Dict[str, List[WebSocket]] = {}
        self.connection_metadata: Dict[int, Dict[str, Any]] = {}

    async def connect(self, websocket: WebSocket, channel: str = KITCHEN_CHANNEL, user_id: Optional[int] = None) -> bool:
        """Accept a connection. Returns False when the channel is full."""
        if len(self.active_connections.get(channel, [])) >= self.MAX_CONNECTIONS_PER_CHANNEL:
            logger.warning(f"WebSocket connection rejected: channel '{channel}' at capacity")
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return False

        await websocket.accept()
        self.active_connections.setdefault(channel, []).append(websocket)
        self.connection_metadata[id(websocket)] = {
            "connected_at": datetime.now(timezone.utc),
            "user_id": user_id,
            "channel": channel,
        }
        logger.debug(f"WebSocket connected to channel '{channel}', user_id={user_id}")
        return True

    def disconnect(self, websocket: WebSocket, channel: str = KITCHEN_CHANNEL):
        connections = self.active_connections.get(channel, [])
        if websocket in connections:
            connections.remove(websocket)
        self.connection_metadata.pop(id(websocket), None)
        logger.debug(f"WebSocket disconnected from channel '{channel}'")

    async def broadcast(self, message: Dict[str, Any], channel: str = KITCHEN_CHANNEL):
        disconnected = []
        for connection in list(self.active_connections.get(channel, [])):
            try:
                await connection.send_json(message)
            except Exception as e:
                logger.debug(f"WebSocket send failed: {e}")
                disconnected.append(connection)

        for conn in disconnected:
            self.disconnect(conn, channel)

    def get_connection_count(self, channel: Optional[str] = None) -> int:
        if channel:
            return len(self.active_connections.get(channel, []))
        return sum(len(conns) for conns in self.active_connections.values())


class WebSocketPublisher:
    """Fans events out to connected WebSocket clients.

    Services run in worker threads, so messages are handed to the event loop
    captured at application startup.
    """

    def __init__(self, manager: ConnectionManager, channel: str = KITCHEN_CHANNEL):
        self.manager = manager
        self.channel = channel
        self.loop: Optional[asyncio.AbstractEventLoop] = None

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        self.loop = loop

    def publish(self, event_kind: str, payload: Dict[str, Any]) -> None:
        message = {
            "type": event_kind,
            "data": payload,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        if self.loop is None or self.loop.is_closed():
            logger.debug(f"No event loop bound; dropping {event_kind}")
            return
        try:
            asyncio.run_coroutine_threadsafe(self.manager.broadcast(message, self.channel), self.loop)
        except RuntimeError as e:
            logger.warning(f"Failed to publish {event_kind}: {e}")


ws_manager = ConnectionManager()
ws_publisher = WebSocketPublisher(ws_manager)


def publish_safely(publisher: Optional[EventPublisher], event_kind: str, payload: Dict[str, Any]) -> None:
    """Publish an event; failures are logged and never raised."""
    if publisher is None:
        return
    try:
        publisher.publish(event_kind, payload)
    except Exception as e:
        logger.warning(f"Failed to publish {event_kind}: {e}")
