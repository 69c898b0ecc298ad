"""
Push channel — live execution events for one job over a WebSocket.

Usage:
    async with WebSocketPushChannel(job_id) as channel:
        async for message in channel:
            ...

On enter the channel connects and subscribes to ``job_id``; on exit it
unsubscribes and closes. Messages are yielded as decoded JSON objects.
"""

import json
from typing import Any, AsyncIterator, Callable, Dict, Optional, Protocol

import structlog
import websockets

from app.config import get_settings

logger = structlog.get_logger(__name__)


class PushChannel(Protocol):
    """Async context manager yielding decoded messages for one job."""

    async def __aenter__(self) -> "PushChannel":
        ...

    async def __aexit__(self, *exc_info) -> None:
        ...

    def __aiter__(self) -> AsyncIterator[Dict[str, Any]]:
        ...


ChannelFactory = Callable[[str], PushChannel]


class WebSocketPushChannel:
    """PushChannel over the executor's ``/ws`` endpoint."""

    def __init__(self, job_id: str, url: Optional[str] = None, open_timeout: float = 10.0):
        self.job_id = job_id
        self.url = url or get_settings().EXECUTOR_WS_URL
        self.open_timeout = open_timeout
        self._ws = None

    async def __aenter__(self) -> "WebSocketPushChannel":
        self._ws = await websockets.connect(self.url, open_timeout=self.open_timeout)
        await self._ws.send(json.dumps({"type": "subscribe", "jobId": self.job_id}))
        logger.debug("Push channel subscribed", job_id=self.job_id, url=self.url)
        return self

    async def __aexit__(self, *exc_info) -> None:
        if self._ws is None:
            return
        try:
            await self._ws.send(json.dumps({"type": "unsubscribe", "jobId": self.job_id}))
        except websockets.ConnectionClosed:
            pass
        finally:
            await self._ws.close()
            self._ws = None
            logger.debug("Push channel closed", job_id=self.job_id)

    async def __aiter__(self) -> AsyncIterator[Dict[str, Any]]:
        if self._ws is None:
            raise RuntimeError("Push channel is not open")
        async for raw in self._ws:
            try:
                message = json.loads(raw)
            except ValueError:
                logger.warning("Ignoring non-JSON push message", job_id=self.job_id)
                continue
            if isinstance(message, dict):
                yield message


def websocket_channel_factory(job_id: str) -> WebSocketPushChannel:
    return WebSocketPushChannel(job_id)
