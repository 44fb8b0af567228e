import json
import logging
import os
import re
from typing import Any, Dict, List, Optional

from pydantic import ValidationError
from pydantic.alias_generators import to_camel

from ..types import BenchConfig, BenchProblemSet, BenchRunResult

logger = logging.getLogger(__name__)

BENCH_DIR_NAME = ".codebench"
CONFIG_FILE = "config.json"
PROBLEMS_FILE = "problems.json"
RESULTS_DIR = "results"

_ILLEGAL_FILENAME_CHARS = re.compile(r"[:.]")


def get_bench_dir(cwd: str) -> str:
    return os.path.join(cwd, BENCH_DIR_NAME)


def get_results_dir(cwd: str) -> str:
    return os.path.join(get_bench_dir(cwd), RESULTS_DIR)


def _write_json(path: str, data: Dict[str, Any], mode: str = "w") -> None:
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, mode, encoding="utf-8") as f:
        json.dump(data, f, indent=2)


def _read_json(path: str) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Overlay ``override`` on ``base``, merging nested dicts key by key"""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def alias_keys(data: Dict[str, Any]) -> Dict[str, Any]:
    """Rewrite snake_case keys, at any depth, to the camelCase aliases documents are stored with"""
    return {
        (to_camel(key) if "_" in key else key): alias_keys(value) if isinstance(value, dict) else value
        for key, value in data.items()
    }


def merge_config(persisted: Dict[str, Any]) -> BenchConfig:
    """Apply a (possibly partial) persisted config over the defaults"""
    defaults = BenchConfig().to_json()
    try:
        return BenchConfig.model_validate(deep_merge(defaults, alias_keys(persisted)))
    except ValidationError as e:
        logger.warning(f"Ignoring invalid bench config: {e.error_count()} validation error(s)")
        return BenchConfig()


def load_config(cwd: str) -> BenchConfig:
    path = os.path.join(get_bench_dir(cwd), CONFIG_FILE)
    try:
        data = _read_json(path)
    except FileNotFoundError:
        return BenchConfig()
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Could not read {path}, using defaults: {e}")
        return BenchConfig()

    if not isinstance(data, dict):
        logger.warning(f"{path} does not hold a JSON object, using defaults")
        return BenchConfig()
    return merge_config(data)


def save_config(cwd: str, config: BenchConfig) -> None:
    _write_json(os.path.join(get_bench_dir(cwd), CONFIG_FILE), config.to_json())


def save_problems(cwd: str, problems: BenchProblemSet) -> None:
    _write_json(os.path.join(get_bench_dir(cwd), PROBLEMS_FILE), problems.to_json())


def load_problems(cwd: str) -> Optional[BenchProblemSet]:
    path = os.path.join(get_bench_dir(cwd), PROBLEMS_FILE)
    try:
        return BenchProblemSet.model_validate(_read_json(path))
    except FileNotFoundError:
        return None
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        logger.warning(f"Could not load problem set from {path}: {e}")
        return None


def result_filename(run_at: str) -> str:
    return f"{_ILLEGAL_FILENAME_CHARS.sub('-', run_at)}.json"


def save_run_result(cwd: str, result: BenchRunResult) -> str:
    """Write a run result to its own file; existing results are never overwritten"""
    path = os.path.join(get_results_dir(cwd), result_filename(result.run_at))
    # "x" fails with FileExistsError rather than replacing an earlier run
    _write_json(path, result.to_json(), mode="x")
    logger.info(f"Saved run result {result.id} to {path}")
    return path


def _result_files(cwd: str) -> List[str]:
    directory = get_results_dir(cwd)
    try:
        names = os.listdir(directory)
    except FileNotFoundError:
        return []
    # Filenames derive from ISO timestamps, so name order is chronological
    return [os.path.join(directory, n) for n in sorted(names, reverse=True) if n.endswith(".json")]


def _load_result(path: str) -> Optional[BenchRunResult]:
    try:
        return BenchRunResult.model_validate(_read_json(path))
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        logger.warning(f"Skipping unreadable result file {path}: {e}")
        return None


def load_latest_result(cwd: str) -> Optional[BenchRunResult]:
    files = _result_files(cwd)
    if not files:
        return None
    return _load_result(files[0])


def load_all_results(cwd: str) -> List[BenchRunResult]:
    results = []
    for path in _result_files(cwd):
        result = _load_result(path)
        if result is not None:
            results.append(result)
    return results
