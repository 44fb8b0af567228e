import asyncio
import json
from typing import Any, AsyncGenerator, Callable, Coroutine, Dict, Optional

from starlette.responses import StreamingResponse

from .base import TransportAdapter
from ..types import BenchProgress

DONE_FRAME = "data: [DONE]\n\n"
KEEPALIVE_SECONDS = 60.0


class SSEAdapter(TransportAdapter):
    """Server-Sent Events implementation of TransportAdapter"""

    def __init__(self, on_disconnect: Optional[Callable[[], None]] = None):
        self.queue: asyncio.Queue = asyncio.Queue()
        self.is_closed = False
        self.on_disconnect = on_disconnect
        self._task: Optional[asyncio.Task] = None

    def start(self, session: Coroutine[Any, Any, None]) -> asyncio.Task:
        """Run the producing session alongside the response stream"""
        self._task = asyncio.create_task(session)
        return self._task

    async def send_event(self, event: BenchProgress) -> None:
        """Format and send a progress event as SSE"""
        await self.queue.put(event.to_sse())

    async def send_message(self, message: Dict[str, Any]) -> None:
        await self.queue.put(f"data: {json.dumps(message)}\n\n")

    async def close(self) -> None:
        """Close the SSE connection"""
        if self.is_closed:
            return
        self.is_closed = True
        await self.queue.put(DONE_FRAME)

    async def event_generator(self) -> AsyncGenerator[str, None]:
        """Generate SSE frames until the session closes the stream"""
        finished = False
        try:
            while True:
                try:
                    # Wait for the next event with a timeout
                    frame = await asyncio.wait_for(self.queue.get(), timeout=KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    # Send a keepalive comment to prevent connection timeout
                    yield ": keepalive\n\n"
                    continue

                finished = frame == DONE_FRAME
                yield frame
                self.queue.task_done()
                if finished:
                    break
        finally:
            # Stream torn down before the session closed it: the client went away
            if not finished and self.on_disconnect is not None:
                self.on_disconnect()

    def get_response(self) -> StreamingResponse:
        """Get a StreamingResponse for the SSE stream"""
        return StreamingResponse(
            self.event_generator(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",  # Disable proxy buffering
            },
        )
