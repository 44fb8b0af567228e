from abc import ABC, abstractmethod
from typing import Any, Dict

from ..types import BenchProgress


class TransportAdapter(ABC):
    """Abstract base class for progress sinks (WebSocket, SSE, etc.)"""

    @abstractmethod
    async def send_event(self, event: BenchProgress) -> None:
        """Send a progress event to the client"""
        pass

    @abstractmethod
    async def send_message(self, message: Dict[str, Any]) -> None:
        """Send a non-progress message (results, errors, acknowledgements)"""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the connection"""
        pass
