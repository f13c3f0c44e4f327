from .ast import dump
from .backends import CallableBackend, CancelSignal, EchoBackend, InvokeOptions, StepBackend
from .compiler import CompiledWorkflow, compile_workflow
from .config import EngineConfig, FailurePolicy
from .directory import AgentDefinition, AgentDirectory, InMemoryAgentRepository, JsonAgentRepository
from .errors import (
    AgentFlowError,
    ExecutionError,
    FlowSyntaxError,
    FlowValidationError,
    HumanGateTimeoutError,
    SteeringError,
    VariableError,
)
from .graph_engine import WorkflowGraph
from .log import configure_logging
from .lowering import Lowering
from .parser import build_ast, parse
from .promotion import AgentPromoter
from .prompt import ConsolePrompt, Prompt, ScriptedPrompt
from .render import TextRenderer, render_graph
from .runtime import Runtime
from .schemas import RunSummary, StepResult
from .semantic import GraphValidator, ValidationReport
from .state import ExecutionState
from .steering import Pause, SteeringCommand, SteeringSession
from .tokenizer import tokenize
from .types import GraphEdge, GraphNode, NodeKind, NodeOutput, NodeStatus, Token, TokenKind

__all__ = [
    "AgentDefinition", "AgentDirectory", "AgentFlowError", "AgentPromoter", "CallableBackend",
    "CancelSignal", "CompiledWorkflow", "ConsolePrompt", "EchoBackend", "EngineConfig",
    "ExecutionError", "ExecutionState", "FailurePolicy", "FlowSyntaxError", "FlowValidationError",
    "GraphEdge", "GraphNode", "GraphValidator", "HumanGateTimeoutError", "InMemoryAgentRepository",
    "InvokeOptions", "JsonAgentRepository", "Lowering", "NodeKind", "NodeOutput", "NodeStatus",
    "Pause", "Prompt", "RunSummary", "Runtime", "ScriptedPrompt", "StepBackend", "StepResult",
    "SteeringCommand", "SteeringError", "SteeringSession", "TextRenderer", "Token", "TokenKind",
    "ValidationReport", "VariableError", "WorkflowGraph", "build_ast", "compile_workflow",
    "configure_logging", "dump", "parse", "render_graph", "tokenize",
]
