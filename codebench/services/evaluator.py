import logging
import math
from contextlib import aclosing
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from ..core.api import HandlerFactory, ProviderSettings, build_api_handler
from ..core.cancel import BenchCancelledError, CancellationToken
from ..core.parsing import extract_json_object
from ..core.stream import TextChunk
from ..prompts import JUDGE_PROMPT, JUDGE_SYSTEM_PROMPT
from ..types import AiVerdict, BenchProblem, BenchRawResponse

logger = logging.getLogger(__name__)

RESPONSE_CHAR_BUDGET = 8000
NEUTRAL_SCORE = 5.0
MIN_SCORE = 0.0
MAX_SCORE = 10.0

EvaluationKey = Tuple[str, str]
EvaluationProgress = Callable[[int, int], Awaitable[None]]


def evaluation_key(raw: BenchRawResponse) -> EvaluationKey:
    return (raw.model_id, raw.problem_id)


def uniform_verdict(score: float, rationale: str) -> AiVerdict:
    return AiVerdict(
        quality_score=score,
        relevance_score=score,
        quality_rationale=rationale,
        relevance_rationale=rationale,
    )


def clamp_score(value: Any) -> float:
    """Coerce a judge-supplied score into [0, 10]; anything non-numeric becomes 5"""
    if isinstance(value, bool):
        return NEUTRAL_SCORE
    try:
        score = float(value)
    except (TypeError, ValueError):
        return NEUTRAL_SCORE
    if math.isnan(score):
        return NEUTRAL_SCORE
    return max(MIN_SCORE, min(MAX_SCORE, score))


def build_evaluation_prompt(problem: BenchProblem, response: str) -> str:
    criteria = "\n".join(f"{i}. {c}" for i, c in enumerate(problem.evaluation_criteria, 1))
    return JUDGE_PROMPT.format(
        mode=problem.mode,
        title=problem.title,
        prompt=problem.prompt,
        difficulty=problem.difficulty,
        criteria=criteria or "(no specific criteria provided)",
        response=response[:RESPONSE_CHAR_BUDGET],
    )


def parse_verdict(text: str) -> AiVerdict:
    parsed = extract_json_object(text)
    if not parsed.ok:
        logger.warning(f"Unparseable judge reply ({parsed.error}), using neutral scores")
    if not parsed.found:
        return uniform_verdict(NEUTRAL_SCORE, "Evaluator did not return valid JSON")
    if not parsed.ok:
        return uniform_verdict(NEUTRAL_SCORE, f"Evaluation failed: {parsed.error}")

    data = parsed.value
    return AiVerdict(
        quality_score=clamp_score(data.get("qualityScore")),
        relevance_score=clamp_score(data.get("relevanceScore")),
        quality_rationale=str(data.get("qualityRationale") or ""),
        relevance_rationale=str(data.get("relevanceRationale") or ""),
    )


class ResponseEvaluator:
    """Scores raw responses with a judge model"""

    def __init__(self, settings: ProviderSettings, build_handler: HandlerFactory = build_api_handler):
        self.settings = settings
        self.build_handler = build_handler

    async def evaluate_response(
        self,
        problem: BenchProblem,
        raw: BenchRawResponse,
        token: Optional[CancellationToken] = None,
    ) -> AiVerdict:
        token = token or CancellationToken()

        if raw.is_error:
            return uniform_verdict(0.0, "Response was an error")

        try:
            handler = self.build_handler(self.settings)
            messages: List[Dict[str, str]] = [
                {"role": "user", "content": build_evaluation_prompt(problem, raw.response_content)}
            ]

            response_text = ""
            stream = handler.create_message(JUDGE_SYSTEM_PROMPT, messages)
            async with aclosing(stream):
                async for chunk in stream:
                    token.raise_if_cancelled("Evaluation cancelled")
                    if isinstance(chunk, TextChunk):
                        response_text += chunk.text
        except BenchCancelledError:
            raise
        except Exception as e:
            if token.cancelled:
                raise BenchCancelledError("Evaluation cancelled") from e
            logger.warning(f"Judge call failed for {raw.model_id}/{raw.problem_id}: {e}")
            return uniform_verdict(NEUTRAL_SCORE, f"Evaluation failed: {e}")

        return parse_verdict(response_text)

    async def evaluate_all_responses(
        self,
        problems: List[BenchProblem],
        raw_responses: List[BenchRawResponse],
        on_progress: Optional[EvaluationProgress] = None,
        token: Optional[CancellationToken] = None,
    ) -> Dict[EvaluationKey, AiVerdict]:
        token = token or CancellationToken()
        problem_map = {p.id: p for p in problems}
        evaluations: Dict[EvaluationKey, AiVerdict] = {}

        for index, raw in enumerate(raw_responses):
            token.raise_if_cancelled("Evaluation cancelled")

            problem = problem_map.get(raw.problem_id)
            if problem is None:
                logger.warning(f"No problem {raw.problem_id} in the problem set, skipping evaluation")
                continue

            try:
                evaluations[evaluation_key(raw)] = await self.evaluate_response(problem, raw, token)
            except BenchCancelledError:
                raise
            except Exception as e:
                if token.cancelled:
                    raise BenchCancelledError("Evaluation cancelled") from e
                logger.warning(f"Evaluation error for {raw.model_id}/{raw.problem_id}: {e}")
                evaluations[evaluation_key(raw)] = uniform_verdict(0.0, f"Evaluation error: {e}")

            if on_progress:
                await on_progress(index + 1, len(raw_responses))

        return evaluations
