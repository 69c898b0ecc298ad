"""WebSocket connection manager for live job updates."""

import json
from datetime import datetime, timezone
from typing import Dict, Set

import structlog
from fastapi import WebSocket

logger = structlog.get_logger(__name__)


class ConnectionManager:
    """
    Manages active WebSocket connections and their job subscriptions.

    A connection subscribes to any number of job ids; broadcasts for a job
    go only to its subscribers. Connections that fail on send are dropped.
    """

    def __init__(self):
        # All open connections
        self.active_connections: Set[WebSocket] = set()

        # Map of job_id -> set of subscribed connections
        self.subscriptions: Dict[str, Set[WebSocket]] = {}

    async def connect(self, websocket: WebSocket) -> None:
        """Accept and register a new WebSocket connection."""
        await websocket.accept()
        self.active_connections.add(websocket)
        logger.info("WebSocket connected", connections=len(self.active_connections))

    async def disconnect(self, websocket: WebSocket) -> None:
        """Unregister a connection and all of its subscriptions."""
        self.active_connections.discard(websocket)
        for job_id in list(self.subscriptions):
            self._remove(job_id, websocket)
        logger.info("WebSocket disconnected", connections=len(self.active_connections))

    def subscribe(self, websocket: WebSocket, job_id: str) -> None:
        self.subscriptions.setdefault(job_id, set()).add(websocket)
        logger.debug("Subscribed to job", job_id=job_id)

    def unsubscribe(self, websocket: WebSocket, job_id: str) -> None:
        self._remove(job_id, websocket)
        logger.debug("Unsubscribed from job", job_id=job_id)

    def _remove(self, job_id: str, websocket: WebSocket) -> None:
        subscribers = self.subscriptions.get(job_id)
        if subscribers is None:
            return
        subscribers.discard(websocket)
        if not subscribers:
            del self.subscriptions[job_id]

    def subscriber_count(self, job_id: str) -> int:
        return len(self.subscriptions.get(job_id, ()))

    @staticmethod
    def _encode(job_id: str, message: dict) -> str:
        payload = {**message, "jobId": job_id, "timestamp": datetime.now(timezone.utc).isoformat()}
        return json.dumps(payload, default=str)

    async def send_to(self, websocket: WebSocket, job_id: str, message: dict) -> None:
        """Send one job message to a single connection (replay on subscribe)."""
        await websocket.send_text(self._encode(job_id, message))

    async def broadcast_to_job(self, job_id: str, message: dict) -> None:
        """
        Send a message to every connection subscribed to ``job_id``.

        ``jobId`` and ``timestamp`` are added to the message.
        """
        subscribers = self.subscriptions.get(job_id)
        if not subscribers:
            return

        message_str = self._encode(job_id, message)
        disconnected = set()

        for connection in list(subscribers):
            try:
                await connection.send_text(message_str)
            except Exception as e:
                logger.error("Error sending job update", job_id=job_id, error=str(e))
                disconnected.add(connection)

        # Clean up disconnected connections
        for connection in disconnected:
            await self.disconnect(connection)


# Global connection manager instance
manager = ConnectionManager()
