"""Duplex channel to the telephony edge."""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict

from fastapi import WebSocket
from starlette.websockets import WebSocketState

logger = logging.getLogger(__name__)


class DuplexChannel(ABC):
    """Bidirectional event connection owned by one call session."""

    @property
    @abstractmethod
    def closed(self) -> bool:
        pass

    @abstractmethod
    async def send(self, message: Dict[str, Any]) -> None:
        """Send one JSON event to the edge."""
        pass

    @abstractmethod
    async def close(self) -> None:
        pass


class WebSocketChannel(DuplexChannel):
    """Duplex channel over a FastAPI WebSocket."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed or self.websocket.application_state != WebSocketState.CONNECTED

    async def send(self, message: Dict[str, Any]) -> None:
        if self.closed:
            logger.warning(f"[CHANNEL] Dropping {message.get('type')} event on closed channel")
            return
        await self.websocket.send_json(message)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self.websocket.application_state == WebSocketState.CONNECTED:
            await self.websocket.close()
