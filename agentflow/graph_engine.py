"""
WorkflowGraph: the lowered, executable form of a workflow.

Nodes are kept in creation order; that order is the graph's node ordering
used by the variable analyzer and by deterministic scheduling. Edges are
kept in creation order too, which makes parallel-merge tributaries come out
in declaration order.

Graph algorithms (reachability, descendants, cycle enumeration) run on a
NetworkX view built from the node/edge lists.
"""
from __future__ import annotations
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional, Set

import networkx as nx

from .types import GraphEdge, GraphNode, NodeKind


class WorkflowGraph:

    def __init__(self):
        self.nodes: Dict[str, GraphNode] = {}
        self.edges: List[GraphEdge] = []
        self._order: Dict[str, int] = {}

    # ─── Construction ────────────────────────────────────────────

    def add_node(self, node: GraphNode) -> GraphNode:
        if node.id in self.nodes:
            raise ValueError(f"Duplicate node id '{node.id}'")
        self._order[node.id] = len(self._order)
        self.nodes[node.id] = node
        return node

    def add_edge(self, source: str, target: str, condition: Optional[str] = None) -> GraphEdge:
        if source not in self.nodes or target not in self.nodes:
            raise KeyError(f"Edge {source} -> {target} references an unknown node")
        # an edge into a node created no later than its source closes a loop
        loop = self._order[target] <= self._order[source]
        edge = GraphEdge(source=source, target=target, condition=condition, loop=loop)
        self.edges.append(edge)
        return edge

    def unique_id(self, base: str) -> str:
        if base not in self.nodes:
            return base
        n = 2
        while f"{base}_{n}" in self.nodes:
            n += 1
        return f"{base}_{n}"

    def insert_before(self, target: str, node: GraphNode) -> GraphNode:
        """Put ``node`` in front of ``target``: it takes over target's forward
        incoming edges and gets one unconditional edge into ``target``."""
        self.add_node(node)
        for edge in self.edges:
            if edge.target == target and not edge.loop:
                edge.target = node.id
        self._order[node.id] = self._order[target] - 0.5  # type: ignore[assignment]
        self.edges.append(GraphEdge(source=node.id, target=target))
        self._renumber()
        return node

    def insert_region_before(self, target: str, entry: GraphNode, branches: List[GraphNode], merge: GraphNode) -> None:
        """Put a fan-out/fan-in region in front of ``target``.

        Ordering ends up entry < branches < merge < target, so none of the
        new edges is taken for a loop edge.
        """
        self.insert_before(target, merge)
        self.insert_before(merge.id, entry)
        self.edges = [e for e in self.edges if not (e.source == entry.id and e.target == merge.id)]
        base = self._order[entry.id]
        for i, node in enumerate(branches, 1):
            self.add_node(node)
            self._order[node.id] = base + i / (len(branches) + 1)  # type: ignore[assignment]
            self.edges.append(GraphEdge(source=entry.id, target=node.id))
            self.edges.append(GraphEdge(source=node.id, target=merge.id))
        self._renumber()

    def _renumber(self) -> None:
        ordered = sorted(self._order.items(), key=lambda kv: kv[1])
        self.nodes = {nid: self.nodes[nid] for nid, _ in ordered}
        self._order = {nid: i for i, (nid, _) in enumerate(ordered)}

    # ─── Queries ─────────────────────────────────────────────────

    def node(self, node_id: str) -> GraphNode:
        try:
            return self.nodes[node_id]
        except KeyError:
            raise KeyError(f"Unknown node '{node_id}'") from None

    def index_of(self, node_id: str) -> int:
        return self._order[node_id]

    def incoming(self, node_id: str, include_loops: bool = True) -> List[GraphEdge]:
        return [e for e in self.edges if e.target == node_id and (include_loops or not e.loop)]

    def outgoing(self, node_id: str, include_loops: bool = True) -> List[GraphEdge]:
        return [e for e in self.edges if e.source == node_id and (include_loops or not e.loop)]

    def roots(self) -> List[str]:
        """Nodes with no forward incoming edge."""
        targets = {e.target for e in self.edges if not e.loop}
        return [nid for nid in self.nodes if nid not in targets]

    def step_nodes(self) -> List[GraphNode]:
        return [n for n in self.nodes.values() if n.kind == NodeKind.Step]

    def to_networkx(self, include_loops: bool = True) -> nx.DiGraph:
        g = nx.DiGraph()
        for nid, node in self.nodes.items():
            g.add_node(nid, kind=node.kind.value)
        for e in self.edges:
            if include_loops or not e.loop:
                g.add_edge(e.source, e.target, condition=e.condition, loop=e.loop)
        return g

    def descendants(self, node_id: str) -> Set[str]:
        """Everything reachable from ``node_id`` over forward edges."""
        return set(nx.descendants(self.to_networkx(include_loops=False), node_id))

    def is_ancestor(self, ancestor: str, node_id: str) -> bool:
        g = self.to_networkx(include_loops=False)
        return ancestor != node_id and nx.has_path(g, ancestor, node_id)

    def reachable_from_roots(self) -> Set[str]:
        g = self.to_networkx(include_loops=True)
        seen: Set[str] = set()
        for root in self.roots():
            seen.add(root)
            seen.update(nx.descendants(g, root))
        return seen

    def cycles(self, limit: int = 50) -> List[List[str]]:
        found: List[List[str]] = []
        for cycle in nx.simple_cycles(self.to_networkx(include_loops=True)):
            found.append(cycle)
            if len(found) >= limit:
                break
        return found

    def edges_along(self, path: Iterable[str]) -> List[GraphEdge]:
        """Edges walking ``path`` as a closed cycle."""
        ids = list(path)
        pairs = list(zip(ids, ids[1:] + ids[:1]))
        return [e for (a, b) in pairs for e in self.edges if e.source == a and e.target == b]

    # ─── Copy / export ───────────────────────────────────────────

    def copy(self) -> "WorkflowGraph":
        clone = WorkflowGraph()
        for nid, node in self.nodes.items():
            clone.nodes[nid] = replace(node, uses_variables=list(node.uses_variables))
        clone._order = dict(self._order)
        clone.edges = [replace(e) for e in self.edges]
        return clone

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node_count": len(self.nodes),
            "edge_count": len(self.edges),
            "nodes": [
                {
                    "id": n.id,
                    "kind": n.kind.value,
                    "step": n.step_name,
                    "instruction": n.instruction,
                    "captures": n.captures,
                    "uses": list(n.uses_variables),
                    "status": n.status.value,
                    "model": n.model,
                }
                for n in self.nodes.values()
            ],
            "edges": [
                {"from": e.source, "to": e.target, "condition": e.condition, "loop": e.loop}
                for e in self.edges
            ],
        }

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self.nodes
