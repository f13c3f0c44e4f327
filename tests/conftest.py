"""
Test configuration and fixtures for the AgentFlow test suite.
"""
import sys
import pytest
from pathlib import Path
from typing import Any, Dict, List

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

from agentflow.backends import CallableBackend
from agentflow.config import EngineConfig
from agentflow.directory import AgentDefinition, AgentDirectory, InMemoryAgentRepository
from agentflow.prompt import ScriptedPrompt
from agentflow.runtime import Runtime
from agentflow.schemas import StepResult


@pytest.fixture
def examples_dir() -> Path:
    return Path(__file__).resolve().parents[1] / "examples"


@pytest.fixture
def directory() -> AgentDirectory:
    """Directory knowing the step names used across the tests."""
    names = [
        "analyzer", "fixer", "tester", "reviewer", "builder", "lint", "deploy", "celebrate",
        "a", "b", "c", "d", "e", "p", "x", "y", "z",
    ]
    repo = InMemoryAgentRepository([AgentDefinition(name=n, description=f"{n} agent") for n in names])
    return AgentDirectory(repository=repo)


class RecordingBackend(CallableBackend):
    """CallableBackend that remembers every (step, instruction) it was given."""

    def __init__(self, handlers=None, default=None):
        super().__init__(handlers, default or (lambda instruction, options: f"ok: {instruction}"))
        self.calls: List[tuple] = []

    def invoke(self, step_name, instruction, options):
        self.calls.append((step_name, instruction))
        return super().invoke(step_name, instruction, options)

    def steps(self) -> List[str]:
        return [name for name, _ in self.calls]


@pytest.fixture
def backend() -> RecordingBackend:
    return RecordingBackend()


@pytest.fixture
def failing():
    """Handler factory: fails the first ``times`` calls, then succeeds."""
    def make(times: int = 1, payload: Any = "recovered"):
        state: Dict[str, int] = {"calls": 0}

        def handler(instruction, options):
            state["calls"] += 1
            if state["calls"] <= times:
                return StepResult(success=False, error=f"boom #{state['calls']}")
            return payload
        handler.state = state
        return handler
    return make


@pytest.fixture
def config() -> EngineConfig:
    """Defaults, isolated from AGENTFLOW_* variables in the environment."""
    return EngineConfig(poll_interval=0.01)


@pytest.fixture
def make_runtime(backend, config, directory):
    def make(source: str, answers=None, **kwargs) -> Runtime:
        prompt = ScriptedPrompt(answers) if answers is not None else None
        kwargs.setdefault("backend", backend)
        kwargs.setdefault("directory", directory)
        kwargs.setdefault("config", config)
        rt = Runtime(prompt=prompt, **kwargs)
        rt.load(source)
        return rt
    return make
