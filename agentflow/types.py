from enum import Enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


class TokenKind(str, Enum):
    StepName = "step-name"
    StepWithInstruction = "step-with-instruction"
    Sequential = "sequential"
    Parallel = "parallel"
    Conditional = "conditional"
    Checkpoint = "checkpoint"
    OpenBracket = "open-bracket"
    CloseBracket = "close-bracket"
    Condition = "condition"


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    value: str
    offset: int = 0
    # populated for step tokens only
    name: Optional[str] = None
    instruction: Optional[str] = None
    capture: Optional[str] = None


class NodeKind(str, Enum):
    Step = "step"
    Checkpoint = "checkpoint"
    ParallelEntry = "parallel-entry"
    ParallelMerge = "parallel-merge"


class NodeStatus(str, Enum):
    Pending = "pending"
    Executing = "executing"
    Completed = "completed"
    Failed = "failed"
    Skipped = "skipped"


TERMINAL_STATUSES = frozenset({NodeStatus.Completed, NodeStatus.Skipped})

# Legal forward transitions. Resets back to pending go through ExecutionState.reset().
ALLOWED_TRANSITIONS: Dict[NodeStatus, frozenset] = {
    NodeStatus.Pending: frozenset({NodeStatus.Executing, NodeStatus.Skipped, NodeStatus.Completed}),
    NodeStatus.Executing: frozenset({NodeStatus.Completed, NodeStatus.Failed}),
    NodeStatus.Failed: frozenset({NodeStatus.Pending, NodeStatus.Skipped}),
    NodeStatus.Completed: frozenset(),
    NodeStatus.Skipped: frozenset(),
}


class AgentKind(str, Enum):
    Builtin = "builtin"
    Defined = "defined"
    Temporary = "temporary"


@dataclass
class GraphNode:
    id: str
    kind: NodeKind
    step_name: Optional[str] = None
    instruction: Optional[str] = None
    captures: Optional[str] = None
    uses_variables: List[str] = field(default_factory=list)
    status: NodeStatus = NodeStatus.Pending
    model: Optional[str] = None
    agent_kind: Optional[AgentKind] = None
    label: Optional[str] = None  # checkpoint label, without '@'

    @property
    def display_name(self) -> str:
        if self.kind == NodeKind.Checkpoint:
            return f"@{self.label}"
        return self.step_name or self.id

    @property
    def is_synthetic(self) -> bool:
        return self.kind in (NodeKind.ParallelEntry, NodeKind.ParallelMerge)


@dataclass
class GraphEdge:
    source: str
    target: str
    condition: Optional[str] = None
    loop: bool = False

    def describe(self) -> str:
        arrow = f" ({self.condition})~> " if self.condition else " -> "
        return f"{self.source}{arrow}{self.target}"


@dataclass(frozen=True)
class NodeOutput:
    """What a node produced. Failures keep ``error`` and ``error_kind``."""
    success: bool
    result: Any = None
    error: Optional[str] = None
    error_kind: Optional[str] = None  # backend | timeout | cancelled | variable
    duration_ms: float = 0.0
    branch_success: Optional[List[bool]] = None  # parallel-merge tributaries, declaration order
