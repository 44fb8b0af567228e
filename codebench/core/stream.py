import time
import uuid
from typing import Literal, Optional, Union

from pydantic import BaseModel


class TextChunk(BaseModel):
    """A fragment of streamed model output"""
    type: Literal["text"] = "text"
    text: str


class UsageChunk(BaseModel):
    """Token accounting reported by the provider, usually once at the end of a stream"""
    type: Literal["usage"] = "usage"
    input_tokens: int = 0
    output_tokens: int = 0
    total_cost: Optional[float] = None


ApiStreamChunk = Union[TextChunk, UsageChunk]


def generate_id() -> str:
    """Generate a short unique id for a benchmark run"""
    # Millisecond timestamp keeps ids sortable, the uuid suffix keeps them unique
    return f"{int(time.time() * 1000):x}-{uuid.uuid4().hex[:6]}"
