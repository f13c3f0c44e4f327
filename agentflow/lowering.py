from __future__ import annotations
from typing import Optional

from .ast import Checkpoint, Conditional, Node, Parallel, Sequence, Step, Subgraph
from .directory import AgentDirectory
from .errors import AgentFlowError
from .graph_engine import WorkflowGraph
from .types import GraphNode, NodeKind
from .variables import find_references


class Lowering:
    """Flattens an AST into a WorkflowGraph.

    Depth-first walk threading a "current predecessor" id: every lowering
    call takes the predecessor and returns the id of its exit node.
    """

    def __init__(self, directory: Optional[AgentDirectory] = None, default_model: Optional[str] = None):
        self.directory = directory
        self.default_model = default_model
        self.graph = WorkflowGraph()
        self._parallel_count = 0
        # first node created for each bare step name, target of back-references
        self._by_name: dict = {}

    def lower(self, ast: Node) -> WorkflowGraph:
        self.graph = WorkflowGraph()
        self._parallel_count = 0
        self._by_name = {}
        self._lower(ast, None)
        return self.graph

    def _lower(self, node: Node, pred: Optional[str]) -> str:
        if isinstance(node, Step):
            return self._lower_step(node, pred)
        if isinstance(node, Checkpoint):
            gid = self.graph.unique_id(f"@{node.label}")
            self.graph.add_node(GraphNode(id=gid, kind=NodeKind.Checkpoint, label=node.label))
            self._link(pred, gid)
            return gid
        if isinstance(node, Sequence):
            current = pred
            for child in node.steps:
                current = self._lower(child, current)
            if current is None:
                raise AgentFlowError("Cannot lower an empty sequence")
            return current
        if isinstance(node, Parallel):
            return self._lower_parallel(node, pred)
        if isinstance(node, Conditional):
            source_exit = self._lower(node.source, pred)
            first_edge = len(self.graph.edges)
            exit_id = self._lower(node.target, source_exit)
            # the first edge created while lowering the target leaves the source
            self.graph.edges[first_edge].condition = node.condition
            return exit_id
        if isinstance(node, Subgraph):
            return self._lower(node.child, pred)
        raise TypeError(f"Cannot lower {node!r}")

    def _lower_step(self, step: Step, pred: Optional[str]) -> str:
        if step.is_bare and step.name in self._by_name:
            existing = self._by_name[step.name]
            self._link(pred, existing)
            return existing

        gid = self.graph.unique_id(step.name)
        model = self.default_model
        agent_kind = None
        if self.directory is not None:
            resolution = self.directory.resolve(step.name)
            if not resolution.found and step.name.startswith("$") and step.instruction:
                # an inline temporary agent: its first instruction becomes its definition
                self.directory.register_temporary(step.name, instructions=step.instruction)
                resolution = self.directory.resolve(step.name)
            agent_kind = resolution.kind
            if resolution.definition is not None and resolution.definition.model:
                model = resolution.definition.model
        self.graph.add_node(GraphNode(
            id=gid,
            kind=NodeKind.Step,
            step_name=step.name,
            instruction=step.instruction,
            captures=step.capture,
            uses_variables=find_references(step.instruction),
            model=model,
            agent_kind=agent_kind,
        ))
        self._by_name.setdefault(step.name, gid)
        self._link(pred, gid)
        return gid

    def _lower_parallel(self, node: Parallel, pred: Optional[str]) -> str:
        self._parallel_count += 1
        n = self._parallel_count
        entry = self.graph.add_node(GraphNode(id=f"parallel_entry_{n}", kind=NodeKind.ParallelEntry)).id
        self._link(pred, entry)
        exits = [self._lower(branch, entry) for branch in node.branches]
        merge = self.graph.add_node(GraphNode(id=f"parallel_merge_{n}", kind=NodeKind.ParallelMerge)).id
        for exit_id in exits:
            self.graph.add_edge(exit_id, merge)
        return merge

    def _link(self, pred: Optional[str], target: str) -> None:
        if pred is not None:
            self.graph.add_edge(pred, target)


def lower(ast: Node, directory: Optional[AgentDirectory] = None) -> WorkflowGraph:
    return Lowering(directory).lower(ast)
