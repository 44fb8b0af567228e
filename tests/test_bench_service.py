import json
import os

import pytest

from codebench.core.cancel import BenchCancelledError
from codebench.services import storage
from codebench.services.bench_service import BenchService, BenchState
from codebench.services.problem_generator import GenerationError
from codebench.types import BenchConfig

from fakes import DEFAULT_PROBLEMS, FakeLLM, bench_responder, text_reply


class ProgressLog:
    def __init__(self):
        self.events = []

    async def __call__(self, progress):
        self.events.append(progress)

    @property
    def phases(self):
        return [e.phase for e in self.events]


def result_files(cwd):
    directory = storage.get_results_dir(str(cwd))
    return os.listdir(directory) if os.path.isdir(directory) else []


@pytest.mark.asyncio
async def test_single_problem_single_model(workspace, settings):
    storage.save_config(str(workspace), BenchConfig(active_modes=["code"], problems_per_mode=1))
    llm = FakeLLM(bench_responder(problems=DEFAULT_PROBLEMS[:1], quality=8, relevance=7))
    service = BenchService(str(workspace), settings, build_handler=llm)
    log = ProgressLog()

    result = await service.start_benchmark(["m1"], log)

    assert service.state == BenchState.COMPLETE
    assert result.models == ["m1"]
    assert len(result.results) == 1
    model = result.results[0]
    assert model.model_id == "m1"
    assert list(model.mode_scores) == ["code"]
    assert len(model.problems) == 1

    evaluation = model.problems[0].evaluation
    assert evaluation.quality_score == 8
    assert evaluation.relevance_score == 7
    assert 0 <= evaluation.composite_score <= 10
    assert model.aggregate_score == evaluation.composite_score
    assert model.total_input_tokens == 100
    assert model.total_output_tokens == 50
    assert model.total_cost == pytest.approx(0.01)

    assert log.phases[0] == "generating"
    assert log.phases[-1] == "complete"
    assert log.events[-1].result_id == result.id
    assert "running" in log.phases and "evaluating" in log.phases

    files = result_files(workspace)
    assert len(files) == 1
    with open(os.path.join(storage.get_results_dir(str(workspace)), files[0])) as f:
        saved = json.load(f)
    assert saved["id"] == result.id
    assert saved["results"][0]["modeScores"] == {"code": evaluation.composite_score}
    assert storage.load_problems(str(workspace)).problems[0].id == "code-001"


@pytest.mark.asyncio
async def test_every_pair_is_scored(workspace, settings):
    llm = FakeLLM(bench_responder())
    service = BenchService(str(workspace), settings, build_handler=llm)

    result = await service.start_benchmark(["m1", "m2", "m3"])

    assert [r.model_id for r in result.results] == ["m1", "m2", "m3"]
    for model in result.results:
        assert [p.problem_id for p in model.problems] == ["code-001", "debug-001"]
        assert set(model.mode_scores) == {"code", "debug"}
    assert len(llm.answer_calls) == 6
    assert len(llm.judge_calls) == 6
    assert len(llm.generator_calls) == 1


@pytest.mark.asyncio
async def test_failing_model_scores_zero(workspace, settings):
    respond = bench_responder()

    def responder(model_id, system, messages):
        if model_id == "flaky":
            return RuntimeError("503 Service Unavailable")
        return respond(model_id, system, messages)

    service = BenchService(str(workspace), settings, build_handler=FakeLLM(responder))
    result = await service.start_benchmark(["flaky", "m1"])

    flaky = result.results[0]
    assert flaky.aggregate_score == 0
    for problem in flaky.problems:
        assert problem.response_content.startswith("[ERROR]")
        assert problem.evaluation.quality_rationale == "Response was an error"
    assert result.results[1].aggregate_score > 0


@pytest.mark.asyncio
async def test_cancel_mid_run_writes_no_result(workspace, settings):
    llm = FakeLLM(bench_responder())
    service = BenchService(str(workspace), settings, build_handler=llm)
    started = []

    async def on_progress(progress):
        if progress.phase == "running" and progress.current_model and "Running problem" in progress.message:
            started.append(progress)
            # Two of the six pairs are done once the third starts
            if len(started) == 3:
                service.cancel()

    with pytest.raises(BenchCancelledError):
        await service.start_benchmark(["m1", "m2", "m3"], on_progress)

    assert service.state == BenchState.IDLE
    assert result_files(workspace) == []
    assert len(llm.judge_calls) == 0
    assert len(llm.answer_calls) <= 3


@pytest.mark.asyncio
async def test_cancel_during_evaluation(workspace, settings):
    llm = FakeLLM(bench_responder())
    service = BenchService(str(workspace), settings, build_handler=llm)
    log = ProgressLog()

    async def on_progress(progress):
        await log(progress)
        if progress.phase == "evaluating" and progress.evaluated == 1:
            service.cancel()

    with pytest.raises(BenchCancelledError):
        await service.start_benchmark(["m1"], on_progress)

    assert "error" not in log.phases
    assert result_files(workspace) == []
    assert len(llm.judge_calls) == 1


@pytest.mark.asyncio
async def test_generation_failure_sets_error_state(workspace, settings):
    llm = FakeLLM(lambda *args: text_reply("I'd rather not."))
    service = BenchService(str(workspace), settings, build_handler=llm)
    log = ProgressLog()

    with pytest.raises(GenerationError):
        await service.start_benchmark(["m1"], log)

    assert service.state == BenchState.ERROR
    assert log.phases == ["generating", "error"]
    assert log.events[-1].message == "Generator model did not return valid JSON"
    assert llm.answer_calls == []
    assert result_files(workspace) == []


@pytest.mark.asyncio
async def test_empty_model_list_is_rejected(workspace, settings):
    llm = FakeLLM(bench_responder())
    service = BenchService(str(workspace), settings, build_handler=llm)

    with pytest.raises(ValueError):
        await service.start_benchmark([])
    assert llm.calls == []
    assert service.state == BenchState.IDLE


@pytest.mark.asyncio
async def test_generator_and_evaluator_overrides(workspace, settings):
    storage.save_config(str(workspace), BenchConfig(generator_model="gen-x", evaluator_model="judge-y"))
    llm = FakeLLM(bench_responder())
    service = BenchService(str(workspace), settings, build_handler=llm)

    result = await service.start_benchmark(["m1"])

    assert {c[0] for c in llm.generator_calls} == {"gen-x"}
    assert {c[0] for c in llm.judge_calls} == {"judge-y"}
    assert result.problem_set.generator_model == "gen-x"
    assert result.config.evaluator_model == "judge-y"


@pytest.mark.asyncio
async def test_without_overrides_the_provider_model_is_used(workspace, settings):
    llm = FakeLLM(bench_responder())
    service = BenchService(str(workspace), settings, build_handler=llm)

    await service.start_benchmark(["m1"])

    assert {c[0] for c in llm.generator_calls} == {"default-model"}
    assert {c[0] for c in llm.judge_calls} == {"default-model"}


@pytest.mark.asyncio
async def test_generate_only(workspace, settings):
    llm = FakeLLM(bench_responder())
    service = BenchService(str(workspace), settings, build_handler=llm)

    problem_set = await service.generate()

    assert [p.id for p in problem_set.problems] == ["code-001", "debug-001"]
    assert problem_set.workspace_path == str(workspace)
    assert problem_set.workspace_summary == "Python codebase"
    assert storage.load_problems(str(workspace)) == problem_set
    assert llm.answer_calls == []
    assert service.state == BenchState.COMPLETE


def test_cancel_without_session_is_a_no_op(workspace, settings):
    service = BenchService(str(workspace), settings, build_handler=FakeLLM(bench_responder()))
    service.cancel()
    service.cancel()
    assert service.state == BenchState.IDLE


@pytest.mark.asyncio
async def test_service_can_run_again_after_cancel(workspace, settings):
    service = BenchService(str(workspace), settings, build_handler=FakeLLM(bench_responder()))

    async def cancel_immediately(progress):
        service.cancel()

    with pytest.raises(BenchCancelledError):
        await service.start_benchmark(["m1"], cancel_immediately)

    result = await service.start_benchmark(["m1"])
    assert service.state == BenchState.COMPLETE
    assert result.results[0].model_id == "m1"


@pytest.mark.asyncio
async def test_duplicate_models_are_rejected(workspace, settings):
    llm = FakeLLM(bench_responder())
    service = BenchService(str(workspace), settings, build_handler=llm)

    with pytest.raises(ValueError, match="Duplicate model ids: m1"):
        await service.start_benchmark(["m1", "m2", "m1"])
    assert llm.calls == []
    assert result_files(workspace) == []


@pytest.mark.asyncio
async def test_failing_progress_sink_keeps_original_error(workspace, settings):
    llm = FakeLLM(lambda *args: text_reply("I'd rather not."))
    service = BenchService(str(workspace), settings, build_handler=llm)

    async def on_progress(progress):
        if progress.phase == "error":
            raise ConnectionError("socket already closed")

    with pytest.raises(GenerationError):
        await service.start_benchmark(["m1"], on_progress)
    assert service.state == BenchState.ERROR
