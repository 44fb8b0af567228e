"""Fake providers and canned model replies shared by the test suite"""

import asyncio
import json
from typing import Callable, Dict, List, Tuple, Union

from codebench.core.api import LLMProvider, ProviderSettings
from codebench.core.stream import ApiStreamChunk, TextChunk, UsageChunk
from codebench.prompts import GENERATOR_SYSTEM_PROMPT, JUDGE_SYSTEM_PROMPT
from codebench.types import BenchProblem

Reply = Union[List[ApiStreamChunk], Exception]
Responder = Callable[[str, str, List[Dict[str, str]]], Reply]


def text_reply(text: str, input_tokens: int = 100, output_tokens: int = 50,
               cost=0.01, pieces: int = 3) -> List[ApiStreamChunk]:
    """Split ``text`` into a few text chunks and finish with a usage chunk"""
    size = max(1, len(text) // pieces)
    chunks: List[ApiStreamChunk] = [TextChunk(text=text[i:i + size]) for i in range(0, len(text), size)]
    chunks.append(UsageChunk(input_tokens=input_tokens, output_tokens=output_tokens, total_cost=cost))
    return chunks


class FakeLLM:
    """Handler factory whose providers answer from a responder function.

    Every call is recorded as (model_id, system_prompt, messages).
    """

    def __init__(self, responder: Responder):
        self.responder = responder
        self.calls: List[Tuple[str, str, List[Dict[str, str]]]] = []

    def __call__(self, settings: ProviderSettings) -> LLMProvider:
        return FakeProvider(settings, self)

    def calls_with_system(self, system_prompt: str):
        return [c for c in self.calls if c[1] == system_prompt]

    @property
    def judge_calls(self):
        return self.calls_with_system(JUDGE_SYSTEM_PROMPT)

    @property
    def generator_calls(self):
        return self.calls_with_system(GENERATOR_SYSTEM_PROMPT)

    @property
    def answer_calls(self):
        return [c for c in self.calls if c[1] not in (JUDGE_SYSTEM_PROMPT, GENERATOR_SYSTEM_PROMPT)]


class FakeProvider(LLMProvider):
    def __init__(self, settings: ProviderSettings, llm: FakeLLM):
        super().__init__(settings)
        self.llm = llm

    async def create_message(self, system_prompt, messages):
        self.llm.calls.append((self.model_id, system_prompt, messages))
        reply = self.llm.responder(self.model_id, system_prompt, messages)
        if isinstance(reply, Exception):
            raise reply
        for chunk in reply:
            await asyncio.sleep(0)
            yield chunk


def problems_json(problems: List[dict]) -> str:
    return "Here you go:\n```json\n" + json.dumps({"problems": problems}) + "\n```"


def judge_json(quality=8, relevance=7) -> str:
    return json.dumps({
        "qualityScore": quality,
        "relevanceScore": relevance,
        "qualityRationale": "Solid implementation.",
        "relevanceRationale": "Addresses the criteria.",
    })


DEFAULT_PROBLEMS = [
    {
        "id": "code-001",
        "mode": "code",
        "title": "Add retry helper",
        "prompt": "Implement a retry decorator for the HTTP client.",
        "context_files": ["app/client.py"],
        "evaluation_criteria": ["Uses exponential backoff", "Has tests"],
        "difficulty": "medium",
    },
    {
        "id": "debug-001",
        "mode": "debug",
        "title": "Fix cache eviction",
        "prompt": "The LRU cache never evicts entries. Find out why.",
        "evaluation_criteria": ["Identifies the off-by-one"],
        "difficulty": "hard",
    },
]


def bench_responder(problems=None, quality=8, relevance=7, answer="def retry(): ...") -> Responder:
    """Answers generator, judge and candidate requests with fixed content"""
    problems = DEFAULT_PROBLEMS if problems is None else problems

    def respond(model_id, system_prompt, messages):
        if system_prompt == GENERATOR_SYSTEM_PROMPT:
            return text_reply(problems_json(problems), cost=0.02)
        if system_prompt == JUDGE_SYSTEM_PROMPT:
            return text_reply(judge_json(quality, relevance), cost=0.001)
        return text_reply(f"{model_id}: {answer}")

    return respond



def make_problem(problem_id="code-001", mode="code", **kwargs) -> BenchProblem:
    fields = {
        "title": f"Problem {problem_id}",
        "prompt": f"Solve {problem_id}",
        "evaluation_criteria": ["Is correct"],
    }
    fields.update(kwargs)
    return BenchProblem(id=problem_id, mode=mode, **fields)
