import pytest

from codebench.transport.sse import DONE_FRAME, SSEAdapter
from codebench.types import BenchProgress


@pytest.mark.asyncio
async def test_sse_stream_runs_until_done():
    disconnects = []
    adapter = SSEAdapter(on_disconnect=lambda: disconnects.append(True))
    await adapter.send_event(BenchProgress(phase="generating", message="go"))
    await adapter.send_message({"type": "cancelled"})
    await adapter.close()
    await adapter.close()

    frames = [frame async for frame in adapter.event_generator()]

    assert frames[0] == 'data: {"phase": "generating", "message": "go"}\n\n'
    assert frames[1] == 'data: {"type": "cancelled"}\n\n'
    assert frames[2:] == [DONE_FRAME]
    assert disconnects == []


@pytest.mark.asyncio
async def test_sse_client_leaving_early_triggers_disconnect():
    disconnects = []
    adapter = SSEAdapter(on_disconnect=lambda: disconnects.append(True))
    await adapter.send_event(BenchProgress(phase="running"))

    frames = adapter.event_generator()
    assert (await frames.__anext__()).startswith("data: ")
    await frames.aclose()

    assert disconnects == [True]
