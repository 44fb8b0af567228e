import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from ..core.api import HandlerFactory, ProviderSettings, build_api_handler
from ..core.cancel import BenchCancelledError, CancellationToken
from ..core.stream import generate_id
from ..types import (
    AiVerdict,
    BenchConfig,
    BenchModelResult,
    BenchProblemResult,
    BenchProblemSet,
    BenchProgress,
    BenchRawResponse,
    BenchRunResult,
)
from . import storage
from .evaluator import EvaluationKey, ResponseEvaluator, evaluation_key, uniform_verdict
from .problem_generator import ProblemGenerator
from .runner import BenchmarkRunner, ProgressCallback
from .scoring import build_evaluation, calculate_aggregate_score, calculate_mode_scores
from .workspace import read_workspace_summary

logger = logging.getLogger(__name__)


class BenchState(Enum):
    IDLE = "idle"
    GENERATING = "generating"
    RUNNING = "running"
    EVALUATING = "evaluating"
    COMPLETE = "complete"
    ERROR = "error"


async def _discard_progress(progress: BenchProgress) -> None:
    pass


class BenchService:
    """Core service that sequences generate, run, evaluate and score for one workspace"""

    def __init__(self,
                 cwd: str,
                 provider_settings: ProviderSettings,
                 build_handler: HandlerFactory = build_api_handler):
        self.cwd = cwd
        self.provider_settings = provider_settings
        self.build_handler = build_handler
        self._token: Optional[CancellationToken] = None
        self._state = BenchState.IDLE

    @property
    def state(self) -> BenchState:
        return self._state

    def load_config(self) -> BenchConfig:
        return storage.load_config(self.cwd)

    def save_config(self, config: BenchConfig) -> None:
        storage.save_config(self.cwd, config)

    def load_latest_result(self) -> Optional[BenchRunResult]:
        return storage.load_latest_result(self.cwd)

    def load_all_results(self) -> List[BenchRunResult]:
        return storage.load_all_results(self.cwd)

    def cancel(self) -> None:
        """Signal the active session, if any, to stop at its next checkpoint"""
        if self._token is not None:
            logger.info("Cancelling benchmark session")
            self._token.cancel()
        self._token = None

    async def generate(self, on_progress: Optional[ProgressCallback] = None) -> BenchProblemSet:
        """Generate and persist a fresh problem set"""
        on_progress = on_progress or _discard_progress
        token = self._token = CancellationToken()
        try:
            problem_set = await self._generate(token, on_progress)
        except (Exception, asyncio.CancelledError) as e:
            await self._fail(e, on_progress)
            raise
        self._state = BenchState.COMPLETE
        return problem_set

    async def start_benchmark(self,
                              models: List[str],
                              on_progress: Optional[ProgressCallback] = None) -> BenchRunResult:
        """Run the full pipeline for ``models`` and persist the resulting report"""
        if not models:
            raise ValueError("At least one model is required to run a benchmark")
        duplicates = sorted({m for m in models if models.count(m) > 1})
        if duplicates:
            raise ValueError(f"Duplicate model ids: {', '.join(duplicates)}")
        on_progress = on_progress or _discard_progress
        token = self._token = CancellationToken()
        try:
            result = await self._run_pipeline(models, token, on_progress)
        except (Exception, asyncio.CancelledError) as e:
            await self._fail(e, on_progress)
            raise
        self._state = BenchState.COMPLETE
        return result

    async def _fail(self, error: BaseException, on_progress: ProgressCallback) -> None:
        # Cancellation is a silent return to idle, anything else is reported
        if isinstance(error, (BenchCancelledError, asyncio.CancelledError)):
            logger.info("Benchmark session cancelled")
            self._state = BenchState.IDLE
            return
        logger.error(f"Benchmark failed during {self._state.value}: {error}")
        self._state = BenchState.ERROR
        try:
            await on_progress(BenchProgress(phase="error", message=str(error)))
        except Exception as e:
            logger.error(f"Could not deliver error event: {e}")

    async def _generate(self, token: CancellationToken, on_progress: ProgressCallback) -> BenchProblemSet:
        self._state = BenchState.GENERATING
        await on_progress(BenchProgress(
            phase="generating",
            message="Analyzing workspace and generating problems...",
        ))

        config = self.load_config()
        generator_settings = self.provider_settings.for_model(config.generator_model)
        digest = read_workspace_summary(self.cwd)
        token.raise_if_cancelled("Benchmark generation cancelled")

        problem_set = await ProblemGenerator(self.build_handler).generate_problems(
            digest, config, generator_settings, token, workspace_path=self.cwd,
        )
        storage.save_problems(self.cwd, problem_set)

        await on_progress(BenchProgress(
            phase="generating",
            message=f"Generated {len(problem_set.problems)} problems",
        ))
        return problem_set

    async def _run_pipeline(self,
                            models: List[str],
                            token: CancellationToken,
                            on_progress: ProgressCallback) -> BenchRunResult:
        # Phase 1: Generate problems
        problem_set = await self._generate(token, on_progress)
        # Re-read so generator/evaluator overrides saved in between take effect
        config = self.load_config()
        problems = problem_set.problems

        # Phase 2: Run every model against every problem
        self._state = BenchState.RUNNING
        await on_progress(BenchProgress(
            phase="running",
            total_models=len(models),
            models_completed=0,
            total_problems=len(problems),
            current_problem=0,
            message="Starting benchmark run...",
        ))
        runner = BenchmarkRunner(self.provider_settings, self.build_handler)
        raw_responses = await runner.run_benchmark(problems, models, on_progress, token)

        # Phase 3: Judge each response
        self._state = BenchState.EVALUATING
        await on_progress(BenchProgress(
            phase="evaluating",
            evaluated=0,
            total_evaluations=len(raw_responses),
            message="Evaluating responses with AI judge...",
        ))

        async def on_evaluated(evaluated: int, total: int) -> None:
            await on_progress(BenchProgress(
                phase="evaluating",
                evaluated=evaluated,
                total_evaluations=total,
                message=f"Evaluating response {evaluated}/{total}...",
            ))

        evaluator = ResponseEvaluator(self.provider_settings.for_model(config.evaluator_model), self.build_handler)
        verdicts = await evaluator.evaluate_all_responses(problems, raw_responses, on_evaluated, token)
        token.raise_if_cancelled()

        # Phase 4: Score, assemble and persist
        result = self.assemble_result(problem_set, models, config, raw_responses, verdicts)
        storage.save_run_result(self.cwd, result)

        await on_progress(BenchProgress(phase="complete", message="Benchmark complete", result_id=result.id))
        return result

    @staticmethod
    def assemble_result(problem_set: BenchProblemSet,
                        models: List[str],
                        config: BenchConfig,
                        raw_responses: List[BenchRawResponse],
                        verdicts: Dict[EvaluationKey, AiVerdict]) -> BenchRunResult:
        """Join raw responses with their verdicts and compute per-model scores"""
        model_results = []
        for model_id in models:
            responses = [r for r in raw_responses if r.model_id == model_id]

            problem_results = []
            for raw in responses:
                verdict = verdicts.get(evaluation_key(raw)) or uniform_verdict(0.0, "No evaluation available")
                problem_results.append(BenchProblemResult(
                    problem_id=raw.problem_id,
                    mode=raw.mode,
                    response_content=raw.response_content,
                    ttft=raw.ttft,
                    total_time=raw.total_time,
                    input_tokens=raw.input_tokens,
                    output_tokens=raw.output_tokens,
                    cost=raw.cost,
                    evaluation=build_evaluation(raw, verdict, config.weights),
                ))

            model_results.append(BenchModelResult(
                model_id=model_id,
                model_name=model_id,
                problems=problem_results,
                aggregate_score=calculate_aggregate_score(p.evaluation for p in problem_results),
                mode_scores=calculate_mode_scores(problem_results),
                total_cost=sum(r.cost for r in responses),
                total_input_tokens=sum(r.input_tokens for r in responses),
                total_output_tokens=sum(r.output_tokens for r in responses),
                total_time=sum(r.total_time for r in responses),
            ))

        return BenchRunResult(
            id=generate_id(),
            run_at=datetime.now(timezone.utc).isoformat(),
            problem_set=problem_set,
            models=list(models),
            config=config,
            results=model_results,
        )
