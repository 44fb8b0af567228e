import logging
import time
from contextlib import aclosing
from typing import Awaitable, Callable, Dict, List, Optional

from ..core.api import HandlerFactory, ProviderSettings, build_api_handler
from ..core.cancel import BenchCancelledError, CancellationToken
from ..core.stream import TextChunk, UsageChunk
from ..prompts import DEFAULT_MODE, MODE_SYSTEM_PROMPTS
from ..types import ERROR_SENTINEL, BenchProblem, BenchProgress, BenchRawResponse

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[BenchProgress], Awaitable[None]]


def system_prompt_for_mode(mode: str) -> str:
    return MODE_SYSTEM_PROMPTS.get(mode, MODE_SYSTEM_PROMPTS[DEFAULT_MODE])


def _elapsed_ms(start: float) -> float:
    return round((time.monotonic() - start) * 1000, 1)


class BenchmarkRunner:
    """Poses every problem to every model, one streamed request at a time"""

    def __init__(self, settings: ProviderSettings, build_handler: HandlerFactory = build_api_handler):
        self.settings = settings
        self.build_handler = build_handler

    async def run_benchmark(
        self,
        problems: List[BenchProblem],
        models: List[str],
        on_progress: Optional[ProgressCallback] = None,
        token: Optional[CancellationToken] = None,
    ) -> List[BenchRawResponse]:
        token = token or CancellationToken()
        results: List[BenchRawResponse] = []

        for model_index, model_id in enumerate(models):
            for problem_index, problem in enumerate(problems):
                token.raise_if_cancelled()

                if on_progress:
                    await on_progress(BenchProgress(
                        phase="running",
                        current_model=model_id,
                        current_problem=problem_index + 1,
                        total_problems=len(problems),
                        models_completed=model_index,
                        total_models=len(models),
                        message=f"[{model_id}] Running problem {problem_index + 1}/{len(problems)}: {problem.title}",
                    ))

                results.append(await self.run_single_problem(model_id, problem, token))

            logger.info(f"Model {model_id} finished {len(problems)} problems")
            if on_progress:
                await on_progress(BenchProgress(
                    phase="running",
                    current_model=model_id,
                    current_problem=len(problems),
                    total_problems=len(problems),
                    models_completed=model_index + 1,
                    total_models=len(models),
                    message=f"[{model_id}] Completed model {model_index + 1}/{len(models)}",
                ))

        return results

    async def run_single_problem(
        self,
        model_id: str,
        problem: BenchProblem,
        token: CancellationToken,
    ) -> BenchRawResponse:
        start_time = time.monotonic()
        ttft = 0.0
        response_text = ""
        input_tokens = 0
        output_tokens = 0
        cost = 0.0
        first_chunk_received = False

        try:
            handler = self.build_handler(self.settings.for_model(model_id))
            messages: List[Dict[str, str]] = [{"role": "user", "content": problem.prompt}]

            stream = handler.create_message(system_prompt_for_mode(problem.mode), messages)
            async with aclosing(stream):
                async for chunk in stream:
                    token.raise_if_cancelled()

                    if isinstance(chunk, TextChunk):
                        if not first_chunk_received:
                            ttft = _elapsed_ms(start_time)
                            first_chunk_received = True
                        response_text += chunk.text
                    elif isinstance(chunk, UsageChunk):
                        input_tokens = chunk.input_tokens
                        output_tokens = chunk.output_tokens
                        cost = chunk.total_cost or 0.0
        except BenchCancelledError:
            raise
        except Exception as e:
            if token.cancelled:
                raise BenchCancelledError() from e
            logger.warning(f"[{model_id}] {problem.id} failed: {e}")
            # The failure becomes the response body so the rest of the run continues
            response_text = f"{ERROR_SENTINEL} {e}"
            ttft = 0.0
            input_tokens = 0
            output_tokens = 0
            cost = 0.0

        return BenchRawResponse(
            model_id=model_id,
            problem_id=problem.id,
            mode=problem.mode,
            response_content=response_text,
            ttft=ttft,
            total_time=_elapsed_ms(start_time),
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost=cost,
        )
