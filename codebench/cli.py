"""Command line entry point: generate problems, run benchmarks, inspect results."""

import argparse
import asyncio
import logging
import os
import signal
import sys

from dotenv import load_dotenv

from .core.api import ProviderSettings
from .core.cancel import BenchCancelledError
from .services.bench_service import BenchService
from .services.problem_generator import GenerationError
from .services.report import plot_model_scores, print_summary, save_results_to_csv
from .types import BenchProgress

EXIT_FAILED = 1
EXIT_CANCELLED = 130


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="codebench",
        description="Benchmark AI coding models against a workspace",
    )
    parser.add_argument("--cwd", default=os.getcwd(), help="Workspace to benchmark (default: current directory)")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("generate", help="Generate and save a problem set")

    run_parser = subparsers.add_parser("run", help="Generate problems, run models and score them")
    run_parser.add_argument("models", nargs="+", help="Model ids to benchmark")
    run_parser.add_argument("--csv", default=None, help="Also export per-problem results to this CSV file")
    run_parser.add_argument("--chart", default=None, help="Also save a score chart to this PNG file")

    results_parser = subparsers.add_parser("results", help="Show saved results")
    results_parser.add_argument("--all", action="store_true", help="List every saved run, newest first")

    return parser.parse_args(argv)


async def print_progress(progress: BenchProgress) -> None:
    print(f"[{progress.phase}] {progress.message}", flush=True)


async def main(args: argparse.Namespace) -> int:
    service = BenchService(cwd=args.cwd, provider_settings=ProviderSettings.from_env())

    if args.command == "results":
        if args.all:
            results = service.load_all_results()
            if not results:
                print("No saved results.")
            for result in results:
                best = max(result.results, key=lambda r: r.aggregate_score, default=None)
                leader = f"{best.model_name} ({best.aggregate_score:.2f})" if best else "-"
                print(f"{result.run_at}  {result.id}  models={len(result.models)}  best={leader}")
            return 0
        latest = service.load_latest_result()
        if latest is None:
            print("No saved results.")
            return 0
        print_summary(latest)
        return 0

    # Ctrl-C asks the session to stop at its next checkpoint
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, service.cancel)
    except NotImplementedError:
        pass

    try:
        if args.command == "generate":
            problem_set = await service.generate(print_progress)
            for problem in problem_set.problems:
                print(f"  {problem.id:<20} {problem.difficulty:<7} {problem.title}")
            return 0

        result = await service.start_benchmark(args.models, print_progress)
    except BenchCancelledError:
        print("Cancelled.")
        return EXIT_CANCELLED
    except GenerationError as e:
        print(f"Problem generation failed: {e}", file=sys.stderr)
        return EXIT_FAILED
    except Exception as e:
        print(f"Benchmark failed: {e}", file=sys.stderr)
        return EXIT_FAILED

    print_summary(result)
    if args.csv:
        print(f"\nResults saved to {save_results_to_csv(result, args.csv)}")
    if args.chart:
        print(f"Chart saved to {plot_model_scores(result, args.chart)}")
    return 0


def run(argv=None) -> None:
    load_dotenv()
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    sys.exit(asyncio.run(main(args)))


if __name__ == "__main__":
    run()
