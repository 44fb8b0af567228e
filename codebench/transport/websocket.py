from typing import Any, Dict

from fastapi import WebSocket

from .base import TransportAdapter
from ..types import BenchProgress


class WebSocketAdapter(TransportAdapter):
    """WebSocket-specific implementation of TransportAdapter"""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    async def send_event(self, event: BenchProgress) -> None:
        """Send a progress event wrapped in a typed envelope"""
        await self.websocket.send_json({"type": "progress", "progress": event.to_dict()})

    async def send_message(self, message: Dict[str, Any]) -> None:
        await self.websocket.send_json(message)

    async def close(self) -> None:
        """Close the WebSocket connection"""
        await self.websocket.close()
