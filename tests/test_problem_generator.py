import pytest

from codebench.core.cancel import BenchCancelledError, CancellationToken
from codebench.core.stream import TextChunk
from codebench.services.problem_generator import (
    GenerationError,
    ProblemGenerator,
    build_generator_prompt,
    coerce_problems,
    parse_problem_reply,
)
from codebench.services.workspace import WorkspaceDigest
from codebench.types import BenchConfig

from fakes import DEFAULT_PROBLEMS, FakeLLM, problems_json, text_reply


@pytest.fixture
def digest():
    return WorkspaceDigest(language="Python", summary="File tree:\ndemo/\n  client.py\n", key_files=["demo/client.py"])


def test_prompt_only_lists_active_modes(digest):
    prompt = build_generator_prompt(digest, ["debug", "ask"], 2)
    assert "Debug Mode" in prompt
    assert "Ask Mode" in prompt
    assert "Architect Mode" not in prompt
    assert "Code Mode" not in prompt
    assert "Generate exactly 2 problems" in prompt
    assert '"id": "debug-001"' in prompt
    assert "a Python codebase" in prompt


def test_coerce_fills_defaults():
    problems = coerce_problems([{"id": "p-1", "prompt": "Do it", "mode": "poetry", "difficulty": "extreme"}])
    assert len(problems) == 1
    problem = problems[0]
    assert problem.mode == "code"
    assert problem.title == "p-1"
    assert problem.difficulty == "medium"
    assert problem.context_files == []
    assert problem.evaluation_criteria == []


def test_coerce_drops_incomplete_and_duplicate_entries():
    problems = coerce_problems([
        {"id": "a", "prompt": "first"},
        {"id": "a", "prompt": "duplicate"},
        {"id": "", "prompt": "no id"},
        {"id": "b"},
        {"id": 3, "prompt": "numeric id"},
        "not an object",
        {"id": "c", "prompt": "third", "evaluation_criteria": ["x", 2, None]},
    ])
    assert [p.id for p in problems] == ["a", "c"]
    assert problems[0].prompt == "first"
    assert problems[1].evaluation_criteria == ["x", "2"]


@pytest.mark.parametrize("reply, message", [
    ("no json here at all", "Generator model did not return valid JSON"),
    ('{"problems": [}', "Generator model returned invalid JSON"),
    ('{"items": []}', "Generator model response missing 'problems' array"),
    ('{"problems": "nope"}', "Generator model response missing 'problems' array"),
    ('{"problems": [{"title": "no id or prompt"}]}', "Generator model produced no valid problems"),
])
def test_parse_reply_errors(reply, message):
    with pytest.raises(GenerationError) as exc_info:
        parse_problem_reply(reply)
    assert str(exc_info.value).startswith(message)


@pytest.mark.asyncio
async def test_generate_problems(digest, settings):
    llm = FakeLLM(lambda model_id, system, messages: text_reply(problems_json(DEFAULT_PROBLEMS)))
    config = BenchConfig(active_modes=["code", "debug"], problems_per_mode=1)

    problem_set = await ProblemGenerator(llm).generate_problems(digest, config, settings, workspace_path="/ws")

    assert [p.id for p in problem_set.problems] == ["code-001", "debug-001"]
    assert problem_set.version == "1.0.0"
    assert problem_set.generator_model == "default-model"
    assert problem_set.workspace_path == "/ws"
    assert problem_set.workspace_summary == "Python codebase"
    assert problem_set.generated_at

    assert len(llm.generator_calls) == 1
    _, _, messages = llm.generator_calls[0]
    assert "Generate exactly 1 problems" in messages[0]["content"]


@pytest.mark.asyncio
async def test_generate_problems_raises_on_bad_reply(digest, settings):
    llm = FakeLLM(lambda model_id, system, messages: text_reply("Sorry, I can't help with that."))
    with pytest.raises(GenerationError):
        await ProblemGenerator(llm).generate_problems(digest, BenchConfig(), settings)


@pytest.mark.asyncio
async def test_generate_problems_stops_when_cancelled(digest, settings):
    token = CancellationToken()
    body = problems_json(DEFAULT_PROBLEMS)

    def respond(model_id, system, messages):
        token.cancel()
        return [TextChunk(text=body)]

    with pytest.raises(BenchCancelledError):
        await ProblemGenerator(FakeLLM(respond)).generate_problems(digest, BenchConfig(), settings, token)


def test_parse_reply_with_runaway_nesting():
    depth = 100_000
    with pytest.raises(GenerationError, match="Generator model returned invalid JSON"):
        parse_problem_reply('{"problems":' + "[" * depth + "]" * depth + "}")
