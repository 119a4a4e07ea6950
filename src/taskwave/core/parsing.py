"""
Output Parsing — turning free-text LLM output into a typed result.

LLM output is expected to contain one JSON object, either bare, inside a
```json fence, or embedded in prose. Parsing is strict: an object is either
decoded whole or the output is reported as unparseable.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Iterable

from taskwave.core.invoker import InvocationOutcome, OutcomeKind

FENCE_RE = re.compile(r"```(?:json)?\s*\n(.*?)\n\s*```", re.DOTALL)


@dataclass(frozen=True)
class Parsed:
    data: dict = field(default_factory=dict)


@dataclass(frozen=True)
class Unparseable:
    raw: str
    reason: str


def _candidates(output: str) -> Iterable[str]:
    yield output.strip()
    for match in FENCE_RE.finditer(output):
        yield match.group(1).strip()


def _embedded_objects(output: str) -> Iterable[dict]:
    decoder = json.JSONDecoder()
    pos = output.find("{")
    while pos != -1:
        try:
            obj, _end = decoder.raw_decode(output, pos)
        except json.JSONDecodeError:
            obj = None
        if isinstance(obj, dict):
            yield obj
        pos = output.find("{", pos + 1)


def parse_payload(output: str, required: Iterable[str] = ()) -> Parsed | Unparseable:
    """
    Extract the JSON object from LLM output.

    Args:
        output: Raw standard output of the invocation.
        required: Keys the object must carry.

    Returns:
        Parsed with the object, or Unparseable with the raw text and why.
    """
    required = tuple(required)
    if not output or not output.strip():
        return Unparseable(raw=output or "", reason="empty output")

    found: list[dict] = []
    for text in _candidates(output):
        try:
            obj = json.loads(text)
        except json.JSONDecodeError:
            continue
        if isinstance(obj, dict):
            found.append(obj)

    if not found:
        found.extend(_embedded_objects(output))

    if not found:
        return Unparseable(raw=output, reason="no JSON object found")

    for obj in found:
        if all(key in obj for key in required):
            return Parsed(data=obj)

    missing = [key for key in required if key not in found[0]]
    return Unparseable(raw=output, reason=f"missing keys: {', '.join(missing)}")


def outcome_failure(outcome: InvocationOutcome) -> dict | None:
    """
    Map a failed invocation to its result fields, or None on success.

    Timeouts, tool failures and empty answers each keep their own status so a
    summary can tell them apart.
    """
    match outcome.kind:
        case OutcomeKind.OK:
            return None
        case OutcomeKind.TIMEOUT:
            status = "timeout"
        case OutcomeKind.EMPTY:
            status = "empty_output"
        case _:
            status = "llm_error"

    result = {"status": status, "reason": outcome.error}
    if outcome.session_id:
        result["sessionId"] = outcome.session_id
    return result
