import os
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from dotenv import load_dotenv
from fastapi import (
    Body,
    Depends,
    FastAPI,
    HTTPException,
    WebSocket,
    WebSocketDisconnect,
)
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, ValidationError, field_validator

from codebench.core.api import ProviderSettings
from codebench.core.cancel import BenchCancelledError
from codebench.services.bench_service import BenchService
from codebench.services.problem_generator import GenerationError
from codebench.services.storage import alias_keys, deep_merge
from codebench.transport.base import TransportAdapter
from codebench.transport.sse import SSEAdapter
from codebench.transport.websocket import WebSocketAdapter
from codebench.types import BenchConfig

load_dotenv()

logger = logging.getLogger(__name__)

app = FastAPI(title="codebench")

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_bench_service: Optional[BenchService] = None


def get_bench_service() -> BenchService:
    """One service per process, bound to the workspace named by BENCH_WORKSPACE"""
    global _bench_service
    if _bench_service is None:
        _bench_service = BenchService(
            cwd=os.environ.get("BENCH_WORKSPACE") or os.getcwd(),
            provider_settings=ProviderSettings.from_env(),
        )
    return _bench_service


# Schema definitions
class RunRequest(BaseModel):
    models: List[str] = Field(min_length=1)

    @field_validator("models")
    @classmethod
    def models_are_unique(cls, models: List[str]) -> List[str]:
        if len(set(models)) != len(models):
            raise ValueError("model ids must be unique")
        return models


@app.get("/")
async def root():
    return {"message": "Welcome to the codebench API"}


@app.get("/v1/bench/config")
async def get_config(service: BenchService = Depends(get_bench_service)):
    return service.load_config().to_json()


@app.put("/v1/bench/config")
async def update_config(
    changes: Dict[str, Any] = Body(...),
    service: BenchService = Depends(get_bench_service),
):
    """Merge a partial config into the persisted one"""
    try:
        config = BenchConfig.model_validate(deep_merge(service.load_config().to_json(), alias_keys(changes)))
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False)) from e
    service.save_config(config)
    return config.to_json()


@app.post("/v1/bench/generate")
async def generate_problems(service: BenchService = Depends(get_bench_service)):
    try:
        problem_set = await service.generate()
    except GenerationError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    except BenchCancelledError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return problem_set.to_json()


@app.post("/v1/bench/run")
async def run_benchmark(req: RunRequest, service: BenchService = Depends(get_bench_service)):
    """Run the full benchmark, streaming progress events as SSE"""
    # A client that goes away mid-run cancels the session
    transport = SSEAdapter(on_disconnect=service.cancel)

    async def session() -> None:
        try:
            await service.start_benchmark(req.models, transport.send_event)
        except BenchCancelledError:
            await transport.send_message({"type": "cancelled"})
        except Exception as e:
            # The service has already pushed an "error" progress event
            logger.error(f"Benchmark run failed: {e}")
        finally:
            await transport.close()

    transport.start(session())
    return transport.get_response()


@app.post("/v1/bench/cancel")
async def cancel_benchmark(service: BenchService = Depends(get_bench_service)):
    service.cancel()
    return {"cancelled": True}


@app.get("/v1/bench/results")
async def list_results(service: BenchService = Depends(get_bench_service)):
    return [result.to_json() for result in service.load_all_results()]


@app.get("/v1/bench/results/latest")
async def latest_result(service: BenchService = Depends(get_bench_service)):
    result = service.load_latest_result()
    if result is None:
        raise HTTPException(status_code=404, detail="No benchmark results yet")
    return result.to_json()


async def _run_session(transport: TransportAdapter,
                       action: Callable[[], Awaitable[Dict[str, Any]]]) -> None:
    """Run one generate/start command and report its outcome over the socket"""
    try:
        await transport.send_message(await action())
    except BenchCancelledError:
        await transport.send_message({"type": "cancelled"})
    except Exception as e:
        logger.error(f"WebSocket session failed: {e}")
        await transport.send_message({"type": "error", "message": str(e)})


@app.websocket("/v1/bench/ws")
async def bench_websocket(websocket: WebSocket, service: BenchService = Depends(get_bench_service)):
    """Command channel: the client issues commands, the server pushes progress"""
    await websocket.accept()
    transport = WebSocketAdapter(websocket)
    session: Optional[asyncio.Task] = None

    async def do_generate() -> Dict[str, Any]:
        problem_set = await service.generate(transport.send_event)
        return {"type": "problems", "problemSet": problem_set.to_json()}

    def do_start(models: List[str]) -> Callable[[], Awaitable[Dict[str, Any]]]:
        async def action() -> Dict[str, Any]:
            result = await service.start_benchmark(models, transport.send_event)
            return {"type": "result", "result": result.to_json()}
        return action

    try:
        while True:
            request_data = await websocket.receive_json()
            command = request_data.get("command") if isinstance(request_data, dict) else None

            if command in ("generate", "start"):
                if session is not None and not session.done():
                    await transport.send_message({"type": "error", "message": "A benchmark session is already running"})
                    continue
                action = do_generate if command == "generate" else do_start(list(request_data.get("models") or []))
                session = asyncio.create_task(_run_session(transport, action))
            elif command == "cancel":
                service.cancel()
                await transport.send_message({"type": "cancelling"})
            elif command == "getConfig":
                await transport.send_message({"type": "config", "config": service.load_config().to_json()})
            elif command == "getResults":
                results = [r.to_json() for r in service.load_all_results()]
                await transport.send_message({"type": "results", "results": results})
            else:
                await transport.send_message({"type": "error", "message": f"Unknown command: {command!r}"})

    except WebSocketDisconnect:
        logger.info("Client disconnected")
        # Nobody is left to watch the session
        if session is not None and not session.done():
            service.cancel()
            await asyncio.gather(session, return_exceptions=True)
