from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from loguru import logger

from .ast import Node
from .directory import AgentDirectory
from .errors import FlowValidationError
from .graph_engine import WorkflowGraph
from .lowering import Lowering
from .parser import build_ast, read_source
from .semantic import GraphValidator, ValidationReport
from .tokenizer import tokenize
from .types import Token


@dataclass
class CompiledWorkflow:
    source: str
    tokens: List[Token]
    ast: Node
    graph: WorkflowGraph
    report: ValidationReport


def compile_workflow(
    source: str | Path,
    directory: Optional[AgentDirectory] = None,
    strict_conditions: bool = False,
    default_model: Optional[str] = None,
    check_steps: bool = True,
) -> CompiledWorkflow:
    """Tokenize -> build AST -> lower -> validate.

    Raises FlowSyntaxError or FlowValidationError; nothing is partially applied.
    Without a directory, step names resolve against the builtin agents only.
    Pass ``check_steps=False`` to accept step names no directory knows.
    Inline ``$name:"..."`` agents reach ``directory`` only once validation passes.
    """
    if directory is None:
        directory = AgentDirectory()
    scratch = directory.copy()
    text = read_source(source)
    tokens = tokenize(text)
    ast = build_ast(tokens, len(text))
    graph = Lowering(scratch, default_model=default_model).lower(ast)
    report = GraphValidator(
        graph, tokens, scratch, strict_conditions=strict_conditions, check_steps=check_steps,
    ).validate()
    if report.errors:
        raise FlowValidationError(report)
    directory.adopt_temporaries(scratch)
    logger.debug(f"[compile] {len(graph)} nodes, {len(graph.edges)} edges, {len(report.warnings)} warning(s)")
    return CompiledWorkflow(source=text, tokens=tokens, ast=ast, graph=graph, report=report)
