from __future__ import annotations
from dataclasses import dataclass, field
from difflib import get_close_matches
from typing import List, Optional

from loguru import logger

from .conditions import is_recognized
from .directory import AgentDirectory
from .graph_engine import WorkflowGraph
from .types import NodeKind, Token, TokenKind
from .variables import VariableAnalyzer


@dataclass
class ValidationIssue:
    check: str  # brackets | unknown-step | connectivity | cycle | condition | variable
    message: str
    node_ids: List[str] = field(default_factory=list)
    position: Optional[int] = None
    suggestion: Optional[str] = None

    def __str__(self) -> str:
        return f"[{self.check}] {self.message}"


@dataclass
class ValidationReport:
    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def by_check(self, check: str) -> List[ValidationIssue]:
        return [i for i in self.errors + self.warnings if i.check == check]


class GraphValidator:
    """Static checks over a lowered graph and the tokens it came from:

    - bracket balance, re-derived from the tokens
    - every step name resolves through the Agent Directory
    - every node is reachable from a root
    - cycles must contain at least one conditional edge (an escape)
    - condition text is one of the recognized forms (warning unless strict)
    - variable producers run before their consumers
    """

    def __init__(
        self,
        graph: WorkflowGraph,
        tokens: Optional[List[Token]] = None,
        directory: Optional[AgentDirectory] = None,
        strict_conditions: bool = False,
        check_steps: bool = True,
    ):
        self.graph = graph
        self.tokens = tokens or []
        self.directory = directory if directory is not None else AgentDirectory()
        self.check_steps = check_steps
        self.strict_conditions = strict_conditions
        self.report = ValidationReport()

    def validate(self) -> ValidationReport:
        self.report = ValidationReport()
        self._check_brackets()
        self._check_unknown_steps()
        self._check_connectivity()
        self._check_cycles()
        self._check_conditions()
        self._check_variables()
        for warning in self.report.warnings:
            logger.warning(f"[validate] {warning.message}")
        return self.report

    def _check_brackets(self) -> None:
        depth = 0
        opened: List[Token] = []
        for idx, tok in enumerate(self.tokens):
            if tok.kind == TokenKind.OpenBracket:
                depth += 1
                opened.append(tok)
            elif tok.kind == TokenKind.CloseBracket:
                depth -= 1
                if depth < 0:
                    self.report.errors.append(ValidationIssue(
                        "brackets",
                        f"Unmatched ']' at token {idx} (char {tok.offset}); remove it or add the opening '['",
                        position=idx,
                    ))
                    depth = 0
                else:
                    opened.pop()
        if depth > 0:
            tok = opened[-1]
            self.report.errors.append(ValidationIssue(
                "brackets",
                f"{depth} bracket(s) never closed; the last '[' is at char {tok.offset}. "
                f"Add ']' at token {len(self.tokens)}",
                position=len(self.tokens),
            ))

    def _check_unknown_steps(self) -> None:
        if not self.check_steps:
            logger.debug("[validate] step names not checked (check_steps=False)")
            return
        known = self.directory.known_names()
        for node in self.graph.step_nodes():
            name = node.step_name or ""
            if self.directory.resolve(name).found:
                continue
            close = get_close_matches(name, known, n=1, cutoff=0.6)
            suggestion = close[0] if close else None
            hint = f" Did you mean '{suggestion}'?" if suggestion else (
                " Register it as a temporary agent or add it to the agent registry."
            )
            self.report.errors.append(ValidationIssue(
                "unknown-step",
                f"Unknown step '{name}' at node '{node.id}'.{hint}",
                node_ids=[node.id],
                suggestion=suggestion,
            ))

    def _check_connectivity(self) -> None:
        reachable = self.graph.reachable_from_roots()
        orphans = [nid for nid in self.graph.nodes if nid not in reachable]
        if orphans:
            names = ", ".join(self.graph.node(n).display_name for n in orphans)
            self.report.errors.append(ValidationIssue(
                "connectivity",
                f"Nodes not reachable from any start node: {names}. Connect them with '->' or remove them",
                node_ids=orphans,
            ))

    def _check_cycles(self) -> None:
        for cycle in self.graph.cycles():
            edges = self.graph.edges_along(cycle)
            if any(e.condition for e in edges):
                continue
            path = " -> ".join(cycle + cycle[:1])
            self.report.errors.append(ValidationIssue(
                "cycle",
                f"Unconditional cycle {path} can never terminate. "
                f"Add a condition to one of its edges, e.g. (if failed)~>",
                node_ids=list(cycle),
            ))

    def _check_conditions(self) -> None:
        for edge in self.graph.edges:
            if edge.condition is None or is_recognized(edge.condition):
                continue
            issue = ValidationIssue(
                "condition",
                f"Condition '({edge.condition})' on {edge.describe()} is not a built-in form; "
                f"it will be matched loosely against the source output. "
                f"Use if passed/failed, if all/any success/failed or if contains <text>",
                node_ids=[edge.source, edge.target],
            )
            if self.strict_conditions:
                self.report.errors.append(issue)
            else:
                self.report.warnings.append(issue)

    def _check_variables(self) -> None:
        for issue in VariableAnalyzer(self.graph).analyze():
            entry = ValidationIssue(
                "variable",
                issue.message,
                node_ids=[n for n in (issue.producer, issue.consumer) if n],
            )
            if issue.fatal:
                self.report.errors.append(entry)
            else:
                self.report.warnings.append(entry)
