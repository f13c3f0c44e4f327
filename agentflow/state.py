from __future__ import annotations
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from .errors import ExecutionError
from .graph_engine import WorkflowGraph
from .types import ALLOWED_TRANSITIONS, TERMINAL_STATUSES, GraphNode, NodeKind, NodeOutput, NodeStatus
from .variables import VariableStore


@dataclass
class ExecutionSnapshot:
    """Structural copy of everything a steering command can change."""
    label: str
    graph: WorkflowGraph
    variables: VariableStore
    outputs: Dict[str, NodeOutput]
    completion_order: List[str]
    pruned: Set[str]
    attempts: Dict[str, int]
    loop_counts: Dict[Tuple[str, str], int]
    position: Optional[str]
    taken_at: float = field(default_factory=time.time)


@dataclass
class ExecutionState:
    """The single owned state of one run.

    Node statuses live on the graph nodes; everything else a run produces
    lives here. Mutated only by the scheduler thread and by steering
    commands while the scheduler is paused.
    """
    graph: WorkflowGraph
    variables: VariableStore = field(default_factory=VariableStore)
    outputs: Dict[str, NodeOutput] = field(default_factory=dict)
    completion_order: List[str] = field(default_factory=list)
    pruned: Set[str] = field(default_factory=set)
    attempts: Dict[str, int] = field(default_factory=dict)
    loop_counts: Dict[Tuple[str, str], int] = field(default_factory=dict)
    position: Optional[str] = None
    aborted: bool = False
    abort_reason: str = ""
    started_at: float = field(default_factory=time.monotonic)

    # ─── Status views ────────────────────────────────────────────

    def status(self, node_id: str) -> NodeStatus:
        return self.graph.node(node_id).status

    def ids_with(self, status: NodeStatus) -> List[str]:
        return [nid for nid, n in self.graph.nodes.items() if n.status == status]

    @property
    def current(self) -> List[str]:
        return self.ids_with(NodeStatus.Executing)

    @property
    def completed(self) -> List[str]:
        return self.ids_with(NodeStatus.Completed)

    @property
    def failed(self) -> List[str]:
        return self.ids_with(NodeStatus.Failed)

    @property
    def skipped(self) -> List[str]:
        return self.ids_with(NodeStatus.Skipped)

    @property
    def pending(self) -> List[str]:
        return self.ids_with(NodeStatus.Pending)

    def is_terminal(self, node_id: str) -> bool:
        return self.status(node_id) in TERMINAL_STATUSES

    def all_terminal(self) -> bool:
        return all(n.status in TERMINAL_STATUSES for n in self.graph.nodes.values())

    def last_completed_step(self) -> Optional[GraphNode]:
        for nid in reversed(self.completion_order):
            node = self.graph.nodes.get(nid)
            if node is not None and node.kind == NodeKind.Step and node.status == NodeStatus.Completed:
                return node
        return None

    # ─── Transitions ─────────────────────────────────────────────

    def transition(self, node_id: str, new: NodeStatus) -> None:
        node = self.graph.node(node_id)
        if new not in ALLOWED_TRANSITIONS[node.status]:
            raise ExecutionError(
                f"Illegal status change for node '{node_id}': {node.status.value} -> {new.value}. "
                f"Use jump or retry to re-run a finished node",
                node_id=node_id,
                kind="state",
            )
        node.status = new
        if new == NodeStatus.Completed:
            self.completion_order.append(node_id)

    def record(self, node_id: str, output: NodeOutput) -> None:
        self.outputs[node_id] = output
        node = self.graph.node(node_id)
        if not node.captures:
            return
        if output.success:
            self.variables.capture(node.captures, output.result)
        elif output.error_kind == "backend":
            # a step that ran and failed still reports something worth passing on
            self.variables.capture(node.captures, output.result if output.result is not None else output.error)

    def reset(self, node_ids) -> List[str]:
        """Put nodes back to pending, clearing outputs and what they captured."""
        reset: List[str] = []
        for nid in node_ids:
            node = self.graph.node(nid)
            node.status = NodeStatus.Pending
            self.outputs.pop(nid, None)
            self.pruned.discard(nid)
            if node.captures:
                self.variables.discard(node.captures)
            reset.append(nid)
        return reset

    # ─── Snapshots ───────────────────────────────────────────────

    def snapshot(self, label: str = "") -> ExecutionSnapshot:
        return ExecutionSnapshot(
            label=label,
            graph=self.graph.copy(),
            variables=self.variables.copy(),
            outputs=dict(self.outputs),
            completion_order=list(self.completion_order),
            pruned=set(self.pruned),
            attempts=dict(self.attempts),
            loop_counts=dict(self.loop_counts),
            position=self.position,
        )

    def restore(self, snap: ExecutionSnapshot) -> None:
        # copy again so the snapshot can be restored more than once
        self.graph = snap.graph.copy()
        self.variables = snap.variables.copy()
        self.outputs = dict(snap.outputs)
        self.completion_order = list(snap.completion_order)
        self.pruned = set(snap.pruned)
        self.attempts = dict(snap.attempts)
        self.loop_counts = dict(snap.loop_counts)
        self.position = snap.position
