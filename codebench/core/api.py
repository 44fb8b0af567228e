import os
import json
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, AsyncIterator, Optional, Callable

import aiohttp
import anthropic
from pydantic import BaseModel, ConfigDict

from .stream import ApiStreamChunk, TextChunk, UsageChunk

logger = logging.getLogger(__name__)

DEFAULT_MODELS = {
    "anthropic": "claude-sonnet-4-20250514",
    "openrouter": "anthropic/claude-sonnet-4",
}

# Per-million-token pricing (USD) for models whose provider does not report cost
ANTHROPIC_PRICING = {
    "claude-3-haiku-20240307": {"input": 0.25, "output": 1.25},
    "claude-3-5-haiku-20241022": {"input": 0.80, "output": 4.00},
    "claude-3-5-sonnet-20241022": {"input": 3.00, "output": 15.00},
    "claude-3-7-sonnet-20250219": {"input": 3.00, "output": 15.00},
    "claude-sonnet-4-20250514": {"input": 3.00, "output": 15.00},
    "claude-opus-4-20250514": {"input": 15.00, "output": 75.00},
}

OPENROUTER_URL = "https://openrouter.ai/api/v1/chat/completions"


def estimate_cost(model_id: str, input_tokens: int, output_tokens: int) -> float:
    """Estimate cost in USD for a given model and token counts."""
    rates = ANTHROPIC_PRICING.get(model_id, {"input": 0.0, "output": 0.0})
    return (input_tokens * rates["input"] + output_tokens * rates["output"]) / 1_000_000


class ProviderSettings(BaseModel):
    """Everything needed to address one model on one provider"""
    model_config = ConfigDict(protected_namespaces=())

    provider: str = "anthropic"
    api_key: str = ""
    model_id: str = ""
    base_url: Optional[str] = None
    max_tokens: int = 4096

    def for_model(self, model_id: str) -> "ProviderSettings":
        """Return a copy of these settings pointed at another model"""
        if not model_id:
            return self
        return self.model_copy(update={"model_id": model_id})

    @classmethod
    def from_env(cls) -> "ProviderSettings":
        provider = os.getenv("BENCH_PROVIDER", "anthropic").strip().lower() or "anthropic"
        if provider == "openrouter":
            api_key = os.getenv("OPENROUTER_API_KEY", "")
        else:
            api_key = os.getenv("ANTHROPIC_API_KEY", "")
        try:
            max_tokens = int(os.getenv("BENCH_MAX_TOKENS") or 4096)
        except ValueError:
            logger.warning("Ignoring non-integer BENCH_MAX_TOKENS")
            max_tokens = 4096
        return cls(
            provider=provider,
            api_key=api_key.strip(),
            model_id=os.getenv("BENCH_MODEL", "").strip() or DEFAULT_MODELS.get(provider, ""),
            base_url=os.getenv("BENCH_BASE_URL") or None,
            max_tokens=max_tokens,
        )


class LLMProvider(ABC):
    """Abstract base class for chat providers (Anthropic, OpenRouter, etc.)"""

    def __init__(self, settings: ProviderSettings):
        self.settings = settings

    @property
    def model_id(self) -> str:
        return self.settings.model_id

    @abstractmethod
    def create_message(self, system_prompt: str,
                       messages: List[Dict[str, str]]) -> AsyncIterator[ApiStreamChunk]:
        """Stream a completion as text chunks followed by a usage chunk"""
        pass


class AnthropicProvider(LLMProvider):
    """Anthropic Messages API over the official async SDK"""

    def __init__(self, settings: ProviderSettings):
        super().__init__(settings)
        kwargs = {"api_key": settings.api_key}
        if settings.base_url:
            kwargs["base_url"] = settings.base_url
        self.client = anthropic.AsyncAnthropic(**kwargs)

    async def create_message(self, system_prompt: str,
                             messages: List[Dict[str, str]]) -> AsyncIterator[ApiStreamChunk]:
        async with self.client.messages.stream(
            model=self.model_id,
            max_tokens=self.settings.max_tokens,
            system=system_prompt,
            messages=messages,
        ) as stream:
            async for text in stream.text_stream:
                if text:
                    yield TextChunk(text=text)
            message = await stream.get_final_message()

        input_tokens = message.usage.input_tokens
        output_tokens = message.usage.output_tokens
        yield UsageChunk(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_cost=estimate_cost(self.model_id, input_tokens, output_tokens),
        )


class OpenRouterProvider(LLMProvider):
    """OpenAI-compatible streaming chat completions, parsed from raw SSE lines"""

    async def create_message(self, system_prompt: str,
                             messages: List[Dict[str, str]]) -> AsyncIterator[ApiStreamChunk]:
        url = self.settings.base_url or OPENROUTER_URL
        headers = {
            "Authorization": f"Bearer {self.settings.api_key}",
            "Accept": "text/event-stream",
            "Content-Type": "application/json",
            "X-Title": "codebench",
        }
        payload = {
            "model": self.model_id,
            "messages": [{"role": "system", "content": system_prompt}] + list(messages),
            "max_tokens": self.settings.max_tokens,
            "stream": True,
            # Ask OpenRouter to append token counts and cost to the final chunk
            "usage": {"include": True},
        }

        usage = None
        async with aiohttp.ClientSession() as session:
            async with session.post(url, json=payload, headers=headers) as response:
                if response.status >= 400:
                    text = await response.text()
                    raise RuntimeError(f"OpenRouter error {response.status}: {text[:500]}")

                async for raw_line in response.content:
                    line = raw_line.decode("utf-8").strip()
                    # Blank lines, keepalive comments and other SSE fields
                    if not line or not line.startswith("data:"):
                        continue

                    data = line[len("data:"):].strip()
                    if not data:
                        continue
                    if data == "[DONE]":
                        break

                    try:
                        event = json.loads(data)
                    except json.JSONDecodeError:
                        logger.debug(f"Skipping malformed stream line: {data[:80]}")
                        continue

                    if event.get("usage"):
                        usage = event["usage"]

                    choices = event.get("choices") or []
                    if not choices:
                        continue
                    delta = choices[0].get("delta") or {}
                    text = delta.get("content") or choices[0].get("text") or ""
                    if text:
                        yield TextChunk(text=text)

        if usage is not None:
            yield UsageChunk(
                input_tokens=int(usage.get("prompt_tokens") or 0),
                output_tokens=int(usage.get("completion_tokens") or 0),
                total_cost=usage.get("cost"),
            )


PROVIDERS: Dict[str, Callable[[ProviderSettings], LLMProvider]] = {
    "anthropic": AnthropicProvider,
    "openrouter": OpenRouterProvider,
}


def build_api_handler(settings: ProviderSettings) -> LLMProvider:
    """Instantiate the provider named by ``settings.provider``"""
    try:
        factory = PROVIDERS[settings.provider]
    except KeyError:
        raise ValueError(f"Unknown provider: {settings.provider!r}") from None
    return factory(settings)


HandlerFactory = Callable[[ProviderSettings], LLMProvider]
