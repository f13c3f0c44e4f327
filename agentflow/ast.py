# AST node types for the workflow syntax. Immutable once built.
from dataclasses import dataclass
from typing import Optional, Tuple, Union


@dataclass(frozen=True)
class Step:
    name: str
    instruction: Optional[str] = None
    capture: Optional[str] = None
    offset: int = 0

    @property
    def is_bare(self) -> bool:
        return self.instruction is None and self.capture is None


@dataclass(frozen=True)
class Checkpoint:
    label: str
    offset: int = 0


@dataclass(frozen=True)
class Sequence:
    steps: Tuple["Node", ...]


@dataclass(frozen=True)
class Parallel:
    branches: Tuple["Node", ...]


@dataclass(frozen=True)
class Conditional:
    source: "Node"
    condition: str
    target: "Node"


@dataclass(frozen=True)
class Subgraph:
    child: "Node"


Node = Union[Step, Checkpoint, Sequence, Parallel, Conditional, Subgraph]


def dump(node: Node) -> str:
    """Compact s-expression form, handy in tests and debug logs."""
    if isinstance(node, Step):
        parts = [node.name]
        if node.instruction is not None:
            parts.append(repr(node.instruction))
        if node.capture:
            parts.append(f":{node.capture}")
        return " ".join(parts)
    if isinstance(node, Checkpoint):
        return f"@{node.label}"
    if isinstance(node, Sequence):
        return "(seq " + " ".join(dump(s) for s in node.steps) + ")"
    if isinstance(node, Parallel):
        return "(par " + " ".join(dump(b) for b in node.branches) + ")"
    if isinstance(node, Conditional):
        return f"(cond [{node.condition}] {dump(node.source)} {dump(node.target)})"
    if isinstance(node, Subgraph):
        return f"[{dump(node.child)}]"
    raise TypeError(f"Not an AST node: {node!r}")
