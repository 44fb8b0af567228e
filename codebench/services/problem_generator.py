import logging
from contextlib import aclosing
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..core.api import HandlerFactory, ProviderSettings, build_api_handler
from ..core.cancel import CancellationToken
from ..core.parsing import extract_json_object
from ..core.stream import TextChunk
from ..prompts import GENERATOR_PROMPT, GENERATOR_SYSTEM_PROMPT, MODE_GENERATION_INSTRUCTIONS
from ..types import ALL_MODES, BenchConfig, BenchProblem, BenchProblemSet
from .workspace import WorkspaceDigest

logger = logging.getLogger(__name__)

PROBLEM_SET_VERSION = "1.0.0"
DIFFICULTIES = ("easy", "medium", "hard")


class GenerationError(Exception):
    """The generator model's reply could not be turned into a usable problem set"""


def build_generator_prompt(digest: WorkspaceDigest, active_modes: List[str], problems_per_mode: int) -> str:
    mode_instructions = "\n\n".join(
        MODE_GENERATION_INSTRUCTIONS[mode] for mode in ALL_MODES if mode in active_modes
    )
    return GENERATOR_PROMPT.format(
        language=digest.language,
        workspace_summary=digest.summary,
        problems_per_mode=problems_per_mode,
        mode_instructions=mode_instructions,
        example_mode=active_modes[0] if active_modes else "code",
    )


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if item is not None]


def coerce_problems(raw_problems: List[Any]) -> List[BenchProblem]:
    """Keep entries with an id and a prompt, filling defaults for everything else"""
    problems: List[BenchProblem] = []
    seen_ids = set()

    for entry in raw_problems:
        if not isinstance(entry, dict):
            continue
        problem_id = entry.get("id")
        prompt = entry.get("prompt")
        if not isinstance(problem_id, str) or not problem_id:
            continue
        if not isinstance(prompt, str) or not prompt:
            continue
        if problem_id in seen_ids:
            logger.warning(f"Dropping duplicate problem id {problem_id}")
            continue
        seen_ids.add(problem_id)

        mode = entry.get("mode")
        difficulty = entry.get("difficulty")
        title = entry.get("title")
        problems.append(BenchProblem(
            id=problem_id,
            mode=mode if mode in ALL_MODES else "code",
            title=title if isinstance(title, str) and title else problem_id,
            prompt=prompt,
            context_files=_string_list(entry.get("context_files")),
            evaluation_criteria=_string_list(entry.get("evaluation_criteria")),
            difficulty=difficulty if difficulty in DIFFICULTIES else "medium",
        ))

    return problems


def parse_problem_reply(text: str) -> List[BenchProblem]:
    """Validate a generator reply, raising GenerationError on anything unusable"""
    parsed = extract_json_object(text)
    if not parsed.ok:
        if not parsed.found:
            raise GenerationError("Generator model did not return valid JSON")
        raise GenerationError(f"Generator model returned invalid JSON: {parsed.error}")

    raw_problems = parsed.value.get("problems")
    if not isinstance(raw_problems, list):
        raise GenerationError("Generator model response missing 'problems' array")

    problems = coerce_problems(raw_problems)
    if not problems:
        raise GenerationError("Generator model produced no valid problems")
    return problems


class ProblemGenerator:
    """Asks a model to write benchmark problems tailored to a workspace"""

    def __init__(self, build_handler: HandlerFactory = build_api_handler):
        self.build_handler = build_handler

    async def generate_problems(
        self,
        digest: WorkspaceDigest,
        config: BenchConfig,
        settings: ProviderSettings,
        token: Optional[CancellationToken] = None,
        workspace_path: str = "",
    ) -> BenchProblemSet:
        token = token or CancellationToken()
        handler = self.build_handler(settings)

        prompt = build_generator_prompt(digest, list(config.active_modes), config.problems_per_mode)
        messages: List[Dict[str, str]] = [{"role": "user", "content": prompt}]

        logger.info(f"Generating problems with {handler.model_id} for modes {list(config.active_modes)}")
        response_text = ""
        stream = handler.create_message(GENERATOR_SYSTEM_PROMPT, messages)
        async with aclosing(stream):
            async for chunk in stream:
                token.raise_if_cancelled("Benchmark generation cancelled")
                if isinstance(chunk, TextChunk):
                    response_text += chunk.text

        problems = parse_problem_reply(response_text)
        logger.info(f"Generator produced {len(problems)} problems")

        return BenchProblemSet(
            version=PROBLEM_SET_VERSION,
            generated_at=datetime.now(timezone.utc).isoformat(),
            generator_model=handler.model_id,
            workspace_path=workspace_path,
            workspace_summary=f"{digest.language} codebase",
            problems=problems,
        )
