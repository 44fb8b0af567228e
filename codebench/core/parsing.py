import json
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

# Greedy on purpose: spans from the first "{" to the last "}" so fenced or
# prose-wrapped replies still yield the whole object
_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


@dataclass(frozen=True)
class JsonParseResult:
    """Outcome of pulling a JSON object out of free-form model output"""
    ok: bool
    value: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    # True when some "{...}" substring was found, even if it failed to parse
    found: bool = False


def extract_json_object(text: str) -> JsonParseResult:
    """Find and parse the JSON object embedded in a model reply.

    Never raises: a missing object, a parser error, or a top-level value that is
    not an object are all reported through the returned result.
    """
    match = _JSON_OBJECT_RE.search(text or "")
    if not match:
        return JsonParseResult(ok=False, error="no JSON object found")

    try:
        value = json.loads(match.group(0))
    except (ValueError, RecursionError) as e:
        # ValueError covers JSONDecodeError, RecursionError comes from pathological nesting
        return JsonParseResult(ok=False, error=str(e), found=True)

    if not isinstance(value, dict):
        return JsonParseResult(ok=False, error="JSON value is not an object", found=True)

    return JsonParseResult(ok=True, value=value, found=True)
