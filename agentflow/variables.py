"""Variable binding: capture, interpolation and the static ordering check."""
from __future__ import annotations
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional

from .conditions import serialize_output
from .errors import VariableError
from .graph_engine import WorkflowGraph
from .types import GraphNode

VARIABLE_RE = re.compile(r"\{(\w+)\}")
TRUNCATE_LIMIT = 2000
TRUNCATION_MARKER = "\n\n... (truncated)"
PREVIEW_LENGTH = 50


def find_references(instruction: Optional[str]) -> List[str]:
    """Variable names referenced as ``{name}``, first-seen order, no duplicates."""
    if not instruction:
        return []
    seen: List[str] = []
    for name in VARIABLE_RE.findall(instruction):
        if name not in seen:
            seen.append(name)
    return seen


class VariableStore:
    """Variable name -> last captured value, global to one execution."""

    def __init__(self, values: Optional[Dict[str, Any]] = None):
        self._values: Dict[str, Any] = dict(values or {})

    def capture(self, name: str, value: Any) -> None:
        self._values[name] = value

    def get(self, name: str, default: Any = None) -> Any:
        return self._values.get(name, default)

    def has_value(self, name: str) -> bool:
        return self._values.get(name) is not None

    def discard(self, name: str) -> None:
        self._values.pop(name, None)

    def names(self) -> List[str]:
        return list(self._values)

    def as_dict(self) -> Dict[str, Any]:
        return dict(self._values)

    def copy(self) -> "VariableStore":
        return VariableStore(self._values)

    def summary(self) -> str:
        if not self._values:
            return "No variables captured yet."
        lines = ["Current variables:"]
        for name, value in self._values.items():
            preview = serialize_output(value)[:PREVIEW_LENGTH] if value is not None else "(empty)"
            suffix = "..." if len(preview) >= PREVIEW_LENGTH else ""
            lines.append(f"  {name}: {preview}{suffix}")
        return "\n".join(lines)

    def __contains__(self, name: object) -> bool:
        return name in self._values

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)


def missing_variables(node: GraphNode, store: VariableStore) -> List[str]:
    return [name for name in node.uses_variables if not store.has_value(name)]


def interpolate(
    instruction: Optional[str],
    store: VariableStore,
    limit: int = TRUNCATE_LIMIT,
    node_id: Optional[str] = None,
) -> Optional[str]:
    """Replace every ``{name}`` with its stored value.

    A name that is unknown or has no value raises VariableError; values longer
    than ``limit`` characters are cut and marked.
    """
    if not instruction:
        return instruction

    def _sub(match: "re.Match[str]") -> str:
        name = match.group(1)
        available = ", ".join(store.names()) or "none"
        where = f" (node '{node_id}')" if node_id else ""
        if name not in store:
            raise VariableError(
                f"Unknown variable '{{{name}}}' in instruction{where}. "
                f"Available variables: {available}. "
                f"Capture it with ':{name}' on a step that runs earlier.",
                variable=name,
                available=store.names(),
                node_id=node_id,
            )
        value = store.get(name)
        if value is None:
            raise VariableError(
                f"Variable '{name}' is referenced{where} but has no value yet. "
                f"Make sure the step that produces it runs first. Available variables: {available}.",
                variable=name,
                available=store.names(),
                node_id=node_id,
            )
        text = serialize_output(value)
        if len(text) > limit:
            return text[:limit] + TRUNCATION_MARKER
        return text

    return VARIABLE_RE.sub(_sub, instruction)


@dataclass
class VariableIssue:
    variable: str
    consumer: str
    producer: Optional[str]
    message: str
    fatal: bool = True


class VariableAnalyzer:
    """Static check that every ``{name}`` has a producer running before its consumer.

    Node ordering is the graph's creation order; on top of that the producer
    must be a forward-edge ancestor of the consumer, otherwise the two may run
    concurrently (parallel siblings) and the value is not guaranteed.
    """

    def __init__(self, graph: WorkflowGraph):
        self.graph = graph

    def analyze(self) -> List[VariableIssue]:
        issues: List[VariableIssue] = []
        producers: Dict[str, List[GraphNode]] = {}
        for node in self.graph.nodes.values():
            if node.captures:
                producers.setdefault(node.captures, []).append(node)

        for name, nodes in producers.items():
            if len(nodes) > 1:
                ids = ", ".join(n.id for n in nodes)
                issues.append(VariableIssue(
                    variable=name, consumer=nodes[-1].id, producer=nodes[0].id,
                    message=f"Variable '{name}' is captured by several nodes [{ids}]; the last one to run wins.",
                    fatal=False,
                ))

        for consumer in self.graph.nodes.values():
            for name in consumer.uses_variables:
                candidates = producers.get(name)
                if not candidates:
                    issues.append(VariableIssue(
                        variable=name, consumer=consumer.id, producer=None,
                        message=(
                            f"Variable '{name}' is used by node '{consumer.id}' but no node produces it. "
                            f"Add ':{name}' to an earlier step to capture its output."
                        ),
                    ))
                    continue
                if any(self._precedes(p, consumer) for p in candidates):
                    continue
                producer = candidates[0]
                issues.append(VariableIssue(
                    variable=name, consumer=consumer.id, producer=producer.id,
                    message=(
                        f"Variable '{name}' is used by node '{consumer.id}' before node '{producer.id}' produces it. "
                        f"Move '{producer.id}' earlier in the sequence so it runs first."
                    ),
                ))
        return issues

    def _precedes(self, producer: GraphNode, consumer: GraphNode) -> bool:
        if self.graph.index_of(producer.id) >= self.graph.index_of(consumer.id):
            return False
        return self.graph.is_ancestor(producer.id, consumer.id)
