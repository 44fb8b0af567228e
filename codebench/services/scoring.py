"""Turns per-response timing, cost and judge verdicts into composite scores.

Every sub-score lives on the same 0-10 scale as the judge's quality and
relevance scores. The composite is the weighted sum of the four sub-scores,
using the weights from ``BenchConfig`` as given: they are not normalised, so
weights summing to 1 keep the composite on the 0-10 scale and anything else
scales it proportionally.
"""

from collections import defaultdict
from typing import Dict, Iterable, List, Optional

from ..types import (
    AiVerdict,
    BenchEvaluation,
    BenchProblemResult,
    BenchRawResponse,
    BenchWeights,
)

# A response taking this long (or longer) scores 0 for speed
SPEED_CEILING_MS = 120_000
# A response costing this much (or more) scores 0 for cost
COST_CEILING_USD = 0.50
MAX_SUB_SCORE = 10.0

DEFAULT_WEIGHTS = BenchWeights()


def speed_score(total_time_ms: float) -> float:
    elapsed = min(max(total_time_ms, 0.0), SPEED_CEILING_MS)
    return MAX_SUB_SCORE * (1 - elapsed / SPEED_CEILING_MS)


def cost_score(cost: float) -> float:
    spent = min(max(cost, 0.0), COST_CEILING_USD)
    return MAX_SUB_SCORE * (1 - spent / COST_CEILING_USD)


def composite_score(quality: float, relevance: float, speed: float, cost: float,
                    weights: BenchWeights) -> float:
    return (
        weights.quality * quality
        + weights.relevance * relevance
        + weights.speed * speed
        + weights.cost * cost
    )


def build_evaluation(raw: BenchRawResponse, verdict: AiVerdict,
                     weights: Optional[BenchWeights] = None) -> BenchEvaluation:
    """Combine a judge verdict with the response's own speed and cost"""
    weights = weights or DEFAULT_WEIGHTS

    # A failed request was neither fast nor cheap in any useful sense
    if raw.is_error:
        speed, cost = 0.0, 0.0
    else:
        speed, cost = speed_score(raw.total_time), cost_score(raw.cost)

    composite = composite_score(verdict.quality_score, verdict.relevance_score, speed, cost, weights)
    return BenchEvaluation(
        quality_score=verdict.quality_score,
        relevance_score=verdict.relevance_score,
        quality_rationale=verdict.quality_rationale,
        relevance_rationale=verdict.relevance_rationale,
        speed_score=round(speed, 2),
        cost_score=round(cost, 2),
        composite_score=round(composite, 2),
    )


def _mean(values: List[float]) -> float:
    if not values:
        return 0.0
    return round(sum(values) / len(values), 2)


def calculate_aggregate_score(evaluations: Iterable[BenchEvaluation]) -> float:
    return _mean([e.composite_score for e in evaluations])


def calculate_mode_scores(problem_results: Iterable[BenchProblemResult]) -> Dict[str, float]:
    by_mode: Dict[str, List[float]] = defaultdict(list)
    for result in problem_results:
        by_mode[result.mode].append(result.evaluation.composite_score)
    return {mode: _mean(scores) for mode, scores in by_mode.items()}
