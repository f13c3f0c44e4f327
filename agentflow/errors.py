from typing import Any, List, Optional


class AgentFlowError(Exception):
    pass


class FlowSyntaxError(AgentFlowError):
    """Raised by the tokenizer and the AST builder.

    ``position`` is the token index the problem was detected at (when the
    error comes from the parser), ``offset`` the character offset in the
    workflow text.
    """

    def __init__(self, message: str, position: Optional[int] = None, offset: Optional[int] = None):
        super().__init__(message)
        self.position = position
        self.offset = offset


class FlowValidationError(AgentFlowError):
    """Raised when a lowered graph fails static validation. Carries the full report."""

    def __init__(self, report: Any):
        self.report = report
        lines = [f"Workflow failed validation with {len(report.errors)} error(s):"]
        lines.extend(f"  - {issue}" for issue in report.errors)
        super().__init__("\n".join(lines))


class ExecutionError(AgentFlowError):
    """A node could not be executed. Recoverable through steering or the failure policy."""

    def __init__(self, message: str, node_id: Optional[str] = None, kind: str = "backend"):
        super().__init__(message)
        self.node_id = node_id
        self.kind = kind


class VariableError(ExecutionError):
    """Interpolation referenced a variable that has no value."""

    def __init__(self, message: str, variable: str, available: Optional[List[str]] = None, node_id: Optional[str] = None):
        super().__init__(message, node_id=node_id, kind="variable")
        self.variable = variable
        self.available = list(available or [])


class SteeringError(AgentFlowError):
    pass


class HumanGateTimeoutError(AgentFlowError):
    """Raised when an operator does not answer a pause in time."""
    pass
