"""Step backends: the thing a step node actually runs.

The engine only sees ``invoke(step_name, instruction, options) -> result``.
``options.cancel_signal`` is set when the run is cancelled or the node's
deadline passes; long-running backends should poll it.
"""
from __future__ import annotations
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol

from .schemas import StepResult


class CancelSignal:
    """A cancellation flag that also trips when its parent does."""

    def __init__(self, parent: Optional["CancelSignal"] = None):
        self._event = threading.Event()
        self._parent = parent

    def set(self) -> None:
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set() or (self._parent is not None and self._parent.is_set())

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Sleep until cancelled or ``timeout`` elapses; returns is_set()."""
        if self._parent is None:
            return self._event.wait(timeout)
        step = 0.05 if timeout is None else min(0.05, timeout)
        waited = 0.0
        while not self.is_set():
            if timeout is not None and waited >= timeout:
                break
            self._event.wait(step)
            waited += step
        return self.is_set()


@dataclass
class InvokeOptions:
    cancel_signal: CancelSignal
    model: Optional[str] = None
    timeout: Optional[float] = None
    node_id: Optional[str] = None


class StepBackend(Protocol):
    def invoke(self, step_name: str, instruction: Optional[str], options: InvokeOptions) -> Any: ...


class EchoBackend:
    """Dry-run backend: succeeds with a description of what would have run."""

    def invoke(self, step_name: str, instruction: Optional[str], options: InvokeOptions) -> StepResult:
        text = f"[dry_run] {step_name}"
        if instruction:
            text += f": {instruction}"
        return StepResult(success=True, payload=text)


class CallableBackend:
    """Routes steps to plain functions ``fn(instruction, options)``.

    ``handlers`` maps step names to functions; ``default`` handles everything
    else. A missing handler is a failed step, not an exception.
    """

    def __init__(self, handlers: Optional[Dict[str, Callable[..., Any]]] = None, default: Optional[Callable[..., Any]] = None):
        self.handlers = dict(handlers or {})
        self.default = default

    def register(self, step_name: str, fn: Callable[..., Any]) -> None:
        self.handlers[step_name] = fn

    def invoke(self, step_name: str, instruction: Optional[str], options: InvokeOptions) -> Any:
        fn = self.handlers.get(step_name, self.default)
        if fn is None:
            return StepResult(success=False, error=f"No handler registered for step '{step_name}'")
        return fn(instruction, options)
