"""Edge conditions.

Built-in predicates::

    if passed / if failed                      single source success flag
    if all success / if any success            aggregate over a parallel merge
    if all failed / if any failed

Structured forms::

    if contains <text>                         case-insensitive substring of the output
    if not contains <text>

Anything else is unrecognized. In lenient mode it is evaluated with a loose
heuristic: true when the condition phrase (text after ``if``) occurs in the
serialized output, otherwise the source's success flag. In strict mode an
unrecognized condition is rejected at compile time.
"""
from __future__ import annotations
import json
import re
from typing import Any, List, Optional

from .types import NodeOutput

DEFAULT_CONDITION = "if failed"

BUILTIN_CONDITIONS = frozenset({
    "if passed",
    "if failed",
    "if all success",
    "if any success",
    "if all failed",
    "if any failed",
})

# accepted spellings of the built-ins
_ALIASES = {
    "if success": "if passed",
    "if succeeded": "if passed",
    "if pass": "if passed",
    "if fail": "if failed",
    "if all passed": "if all success",
    "if any passed": "if any success",
}

_CONTAINS_RE = re.compile(r"^if\s+(?P<neg>not\s+)?contains\s+(?P<text>.+)$", re.IGNORECASE)


def canonical(condition: str) -> str:
    text = " ".join(condition.strip().strip("()").split())
    lowered = text.lower()
    return _ALIASES.get(lowered, lowered if lowered in BUILTIN_CONDITIONS else text)


def is_recognized(condition: str) -> bool:
    text = canonical(condition)
    return text in BUILTIN_CONDITIONS or _CONTAINS_RE.match(text) is not None


def serialize_output(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, indent=2, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(value)


def _branch_flags(output: NodeOutput) -> List[bool]:
    if output.branch_success is not None:
        return list(output.branch_success)
    return [output.success]


def _output_text(output: NodeOutput) -> str:
    parts = [serialize_output(output.result)]
    if output.error:
        parts.append(output.error)
    return "\n".join(p for p in parts if p)


def evaluate(condition: Optional[str], output: Optional[NodeOutput]) -> bool:
    """Evaluate an edge condition against its source's output.

    No condition means unconditional advance. A source without output
    (pruned or not yet run) never satisfies a condition.
    """
    if condition is None:
        return True
    if output is None:
        return False
    text = canonical(condition)
    flags = _branch_flags(output)
    if text == "if passed":
        return output.success
    if text == "if failed":
        return not output.success
    if text == "if all success":
        return bool(flags) and all(flags)
    if text == "if any success":
        return any(flags)
    if text == "if all failed":
        return bool(flags) and not any(flags)
    if text == "if any failed":
        return not all(flags)
    m = _CONTAINS_RE.match(text)
    if m:
        needle = m.group("text").strip().strip('"').lower()
        found = needle in _output_text(output).lower()
        return not found if m.group("neg") else found
    return _heuristic(text, output)


def _heuristic(text: str, output: NodeOutput) -> bool:
    phrase = text[3:] if text.lower().startswith("if ") else text
    phrase = phrase.strip().lower()
    if phrase and phrase in _output_text(output).lower():
        return True
    return output.success
