"""Plain-text rendering of a workflow graph and its run state.

The Renderer is observational: it receives a read-only view after every
state transition and never feeds anything back into the engine.
"""
from __future__ import annotations
import sys
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Set, TextIO

from .graph_engine import WorkflowGraph
from .types import GraphNode, NodeKind, NodeStatus

STATUS_SYMBOLS = {
    NodeStatus.Pending: "○",
    NodeStatus.Executing: "●",
    NodeStatus.Completed: "✓",
    NodeStatus.Failed: "✗",
    NodeStatus.Skipped: "⊗",
}


@dataclass(frozen=True)
class StateView:
    """Read-only copy of what a renderer may look at."""
    graph: WorkflowGraph
    statuses: Dict[str, NodeStatus]
    variables: Dict[str, Any]
    event: str
    node_id: Optional[str] = None


class Renderer(Protocol):
    def render(self, view: StateView) -> None: ...


def status_symbol(status: NodeStatus) -> str:
    return STATUS_SYMBOLS.get(status, "○")


def capture_annotation(variable: str) -> str:
    return f"    ↓ [captures {variable}]"


def usage_annotation(variables: List[str]) -> str:
    if not variables:
        return ""
    if len(variables) <= 3:
        return f"[uses {', '.join(variables)}] ↓"
    return f"[uses {', '.join(variables[:2])}, +{len(variables) - 2} more] ↓"


def render_node(node: GraphNode) -> str:
    text = f"[{node.display_name}]"
    if node.instruction:
        text += f' "{node.instruction}"'
    if node.captures:
        text += f":{node.captures}"
    return f"{text} {status_symbol(node.status)}"


def render_graph(graph: WorkflowGraph) -> str:
    """Indented tree walk from the start nodes; shared nodes are printed once."""
    lines: List[str] = []
    seen: Set[str] = set()

    def walk(node_id: str, indent: int) -> None:
        pad = " " * (indent * 4)
        if node_id in seen:
            lines.append(f"{pad}[{graph.node(node_id).display_name}] (see above)")
            return
        seen.add(node_id)
        node = graph.node(node_id)
        if node.kind == NodeKind.ParallelEntry:
            lines.append(f"{pad}┌─ parallel")
        elif node.kind == NodeKind.ParallelMerge:
            lines.append(f"{pad}└─ merge {status_symbol(node.status)}")
        else:
            if node.uses_variables:
                lines.append(f"{pad}{usage_annotation(node.uses_variables)}")
            lines.append(f"{pad}{render_node(node)}")
            if node.captures:
                lines.append(f"{pad}{capture_annotation(node.captures)}")

        outgoing = graph.outgoing(node_id, include_loops=False)
        for edge in graph.outgoing(node_id):
            if edge.loop:
                cond = f" ({edge.condition})" if edge.condition else ""
                lines.append(f"{pad}    ↺{cond} back to [{graph.node(edge.target).display_name}]")
        if len(outgoing) == 1:
            edge = outgoing[0]
            lines.append(f"{pad}    │ ({edge.condition})" if edge.condition else f"{pad}    │")
            walk(edge.target, indent)
        elif outgoing:
            merge = None
            for edge in outgoing:
                if edge.condition:
                    lines.append(f"{pad}    ({edge.condition})")
                merge = _walk_branch(edge.target, indent + 1)
            if merge is not None:
                walk(merge, indent)

    def _walk_branch(node_id: str, indent: int) -> Optional[str]:
        # follow one parallel branch until it reaches a merge node
        current: Optional[str] = node_id
        while current is not None:
            node = graph.node(current)
            if node.kind == NodeKind.ParallelMerge:
                return current
            if current in seen:
                lines.append(f"{' ' * (indent * 4)}[{node.display_name}] (see above)")
                return None
            seen.add(current)
            lines.append(f"{' ' * (indent * 4)}{render_node(node)}")
            nxt = graph.outgoing(current, include_loops=False)
            if len(nxt) != 1:
                for edge in nxt:
                    walk(edge.target, indent + 1)
                return None
            current = nxt[0].target
        return None

    for root in graph.roots():
        walk(root, 0)
    return "\n".join(lines)


class TextRenderer:
    """Writes one status line per transition."""

    def __init__(self, stream: Optional[TextIO] = None, show_graph_on_finish: bool = False):
        self.stream = stream or sys.stdout
        self.show_graph_on_finish = show_graph_on_finish

    def render(self, view: StateView) -> None:
        if view.node_id is not None:
            node = view.graph.node(view.node_id)
            status = view.statuses.get(view.node_id, node.status)
            self.stream.write(f"{status_symbol(status)} {node.display_name} [{view.event}]\n")
        else:
            self.stream.write(f"-- {view.event}\n")
        if view.event == "run-finished" and self.show_graph_on_finish:
            self.stream.write(render_graph(view.graph) + "\n")
        self.stream.flush()
