import json
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

BenchMode = Literal["architect", "code", "debug", "ask", "orchestrator"]
Difficulty = Literal["easy", "medium", "hard"]
BenchPhase = Literal["generating", "running", "evaluating", "complete", "error"]

ALL_MODES: List[str] = ["architect", "code", "debug", "ask", "orchestrator"]

ERROR_SENTINEL = "[ERROR]"


class BenchModel(BaseModel):
    """Base for documents that are persisted or sent to clients with camelCase keys"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, protected_namespaces=())

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class BenchWeights(BenchModel):
    quality: float = 0.4
    relevance: float = 0.3
    speed: float = 0.15
    cost: float = 0.15


class BenchConfig(BenchModel):
    active_modes: List[BenchMode] = Field(default_factory=lambda: list(ALL_MODES))
    problems_per_mode: int = Field(default=3, ge=1)
    # Empty means "use the provider's configured model"
    generator_model: str = ""
    evaluator_model: str = ""
    weights: BenchWeights = Field(default_factory=BenchWeights)


class BenchProblem(BenchModel):
    model_config = ConfigDict(frozen=True)

    id: str
    mode: BenchMode = "code"
    title: str
    prompt: str
    context_files: List[str] = Field(default_factory=list)
    evaluation_criteria: List[str] = Field(default_factory=list)
    difficulty: Difficulty = "medium"


class BenchProblemSet(BenchModel):
    version: str = "1.0.0"
    generated_at: str
    generator_model: str
    workspace_path: str = ""
    workspace_summary: str = ""
    problems: List[BenchProblem]


class BenchRawResponse(BenchModel):
    model_config = ConfigDict(frozen=True)

    model_id: str
    problem_id: str
    mode: str
    response_content: str
    ttft: float = 0  # ms
    total_time: float = 0  # ms
    input_tokens: int = 0
    output_tokens: int = 0
    cost: float = 0.0

    @property
    def is_error(self) -> bool:
        return self.response_content.startswith(ERROR_SENTINEL)


class AiVerdict(BenchModel):
    """What the judge model said about one response"""
    quality_score: float
    relevance_score: float
    quality_rationale: str = ""
    relevance_rationale: str = ""


class BenchEvaluation(AiVerdict):
    speed_score: float = 0.0
    cost_score: float = 0.0
    composite_score: float = 0.0


class BenchProblemResult(BenchModel):
    problem_id: str
    mode: str
    response_content: str
    ttft: float = 0
    total_time: float = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cost: float = 0.0
    evaluation: BenchEvaluation


class BenchModelResult(BenchModel):
    model_id: str
    model_name: str
    problems: List[BenchProblemResult]
    aggregate_score: float
    mode_scores: Dict[str, float]
    total_cost: float = 0.0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_time: float = 0


class BenchRunResult(BenchModel):
    id: str
    run_at: str
    problem_set: BenchProblemSet
    models: List[str]
    config: BenchConfig
    results: List[BenchModelResult]


class BenchProgress(BenchModel):
    """Progress event emitted by the orchestrator to whatever renders it"""
    phase: BenchPhase
    message: str = ""
    current_model: Optional[str] = None
    current_problem: Optional[int] = None
    total_problems: Optional[int] = None
    models_completed: Optional[int] = None
    total_models: Optional[int] = None
    evaluated: Optional[int] = None
    total_evaluations: Optional[int] = None
    result_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization, omitting unset fields"""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def to_sse(self) -> str:
        """Convert to Server-Sent Events format"""
        return f"data: {json.dumps(self.to_dict())}\n\n"
