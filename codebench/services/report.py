import logging
from datetime import datetime
from typing import Optional

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from ..types import ALL_MODES, BenchRunResult

logger = logging.getLogger(__name__)


def print_summary(result: BenchRunResult) -> None:
    print("\n=== BENCHMARK RESULTS ===")
    print(f"Run: {result.id} at {result.run_at}")
    print(f"Problems: {len(result.problem_set.problems)}  Models: {len(result.models)}")

    ranked = sorted(result.results, key=lambda r: r.aggregate_score, reverse=True)
    for position, model in enumerate(ranked, 1):
        print(f"\n{position}. {model.model_name}")
        print("-" * 60)
        print(f"- Aggregate score: {model.aggregate_score:.2f}")
        for mode, score in model.mode_scores.items():
            print(f"- {mode}: {score:.2f}")
        print(f"- Tokens: {model.total_input_tokens} in / {model.total_output_tokens} out")
        print(f"- Cost: ${model.total_cost:.4f}")
        print(f"- Total time: {model.total_time / 1000:.1f}s")

        failed = [p.problem_id for p in model.problems if p.evaluation.composite_score == 0]
        if failed:
            print(f"- Zero-scored problems: {', '.join(failed)}")


def results_dataframe(result: BenchRunResult) -> pd.DataFrame:
    """One row per (model, problem) pair"""
    records = []
    for model in result.results:
        for problem in model.problems:
            evaluation = problem.evaluation
            records.append({
                "model": model.model_id,
                "problem_id": problem.problem_id,
                "mode": problem.mode,
                "ttft_ms": problem.ttft,
                "total_time_ms": problem.total_time,
                "input_tokens": problem.input_tokens,
                "output_tokens": problem.output_tokens,
                "cost": problem.cost,
                "quality": evaluation.quality_score,
                "relevance": evaluation.relevance_score,
                "speed": evaluation.speed_score,
                "cost_score": evaluation.cost_score,
                "composite": evaluation.composite_score,
                "quality_rationale": evaluation.quality_rationale,
                "relevance_rationale": evaluation.relevance_rationale,
            })
    return pd.DataFrame(records)


def save_results_to_csv(result: BenchRunResult, filename: Optional[str] = None) -> str:
    if filename is None:
        filename = f"bench_results_{datetime.now().strftime('%Y%m%d_%H%M%S')}.csv"

    df = results_dataframe(result)
    df.to_csv(filename, index=False)
    logger.info(f"Wrote {len(df)} rows to {filename}")
    return filename


def plot_model_scores(result: BenchRunResult, filename: str = "model_scores.png") -> str:
    """Grouped bars: aggregate score plus one bar per mode, for each model"""
    modes = [m for m in ALL_MODES if any(m in r.mode_scores for r in result.results)]
    groups = ["aggregate"] + modes

    plt.figure(figsize=(max(8, 2 * len(groups)), 6))
    x = np.arange(len(groups))
    width = 0.8 / max(1, len(result.results))

    for i, model in enumerate(result.results):
        values = [model.aggregate_score] + [model.mode_scores.get(m, 0.0) for m in modes]
        offset = (i - (len(result.results) - 1) / 2) * width
        bars = plt.bar(x + offset, values, width, label=model.model_name, alpha=0.8)
        for bar in bars:
            height = bar.get_height()
            plt.text(bar.get_x() + bar.get_width() / 2., height,
                     f'{height:.1f}',
                     ha='center', va='bottom', fontsize=9)

    plt.xlabel('Score group', fontsize=12)
    plt.ylabel('Score', fontsize=12)
    plt.title('Model Score Comparison', fontsize=14, pad=20)
    plt.xticks(x, groups, fontsize=11)
    plt.grid(axis='y', linestyle='--', alpha=0.7)
    plt.legend(fontsize=10)

    plt.tight_layout()
    plt.savefig(filename, dpi=150, bbox_inches='tight')
    plt.close()
    logger.info(f"Score chart saved as {filename}")
    return filename
