"""Steering: the operator's command protocol at checkpoints and failures.

The command functions below take the execution state and return it
changed; ``SteeringSession`` drives the Prompt collaborator, takes undo
snapshots before destructive commands and hands the engine a
``SteeringOutcome`` (resume, or abort with a reason).
"""
from __future__ import annotations
import threading
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from .conditions import serialize_output
from .errors import AgentFlowError, HumanGateTimeoutError, SteeringError, VariableError
from .prompt import Prompt
from .state import ExecutionState
from .types import GraphNode, NodeKind, NodeOutput, NodeStatus
from .variables import find_references, interpolate

if TYPE_CHECKING:  # pragma: no cover
    from .runtime import Runtime


class SteeringCommand(str, Enum):
    Continue = "continue"
    Retry = "retry"
    Skip = "skip"
    Jump = "jump"
    Repeat = "repeat"
    Edit = "edit"
    View = "view"
    Debug = "debug"
    Fork = "fork"
    Undo = "undo"
    Quit = "quit"


CHECKPOINT_MENU = (
    SteeringCommand.Continue, SteeringCommand.Jump, SteeringCommand.Repeat, SteeringCommand.Edit,
    SteeringCommand.View, SteeringCommand.Debug, SteeringCommand.Fork, SteeringCommand.Undo,
    SteeringCommand.Quit,
)
FAILURE_MENU = (
    SteeringCommand.Retry, SteeringCommand.Skip, SteeringCommand.Jump, SteeringCommand.Repeat,
    SteeringCommand.Edit, SteeringCommand.View, SteeringCommand.Debug, SteeringCommand.Fork, SteeringCommand.Undo,
    SteeringCommand.Quit,
)
FORK_SIZES = ["2", "3", "4"]


@dataclass
class Pause:
    kind: str  # checkpoint | failure
    node_id: str
    error: Optional[str] = None


@dataclass
class SteeringOutcome:
    state: ExecutionState
    resume: bool = True
    abort: bool = False
    reason: str = ""


# ─── Command functions ───────────────────────────────────────────

def jump_targets(state: ExecutionState) -> List[str]:
    return [
        nid for nid, node in state.graph.nodes.items()
        if not node.is_synthetic and node.status in (NodeStatus.Completed, NodeStatus.Pending)
    ]


def available_commands(state: ExecutionState, pause: Pause, can_undo: bool = False) -> List[SteeringCommand]:
    menu = CHECKPOINT_MENU if pause.kind == "checkpoint" else FAILURE_MENU
    checks: Dict[SteeringCommand, bool] = {
        SteeringCommand.Jump: bool(jump_targets(state)),
        SteeringCommand.Repeat: state.last_completed_step() is not None,
        SteeringCommand.View: bool(state.outputs),
        SteeringCommand.Undo: can_undo,
    }
    return [cmd for cmd in menu if checks.get(cmd, True)]


def jump(state: ExecutionState, target: str, pause: Pause) -> ExecutionState:
    """Reset ``target`` and everything downstream of it; move the position there.

    Pending ancestors of a forward target are skipped. The paused node, when
    left outside the reset region, is finished: a checkpoint completes, a
    failed node is skipped.
    """
    graph = state.graph
    if target not in graph:
        raise SteeringError(f"Cannot jump to unknown node '{target}'. Pick one of {jump_targets(state)}")
    region = {target} | graph.descendants(target)

    if pause.node_id not in region:
        if pause.kind == "checkpoint" and state.status(pause.node_id) == NodeStatus.Pending:
            state.record(pause.node_id, NodeOutput(success=True))
            state.transition(pause.node_id, NodeStatus.Completed)
        elif state.status(pause.node_id) == NodeStatus.Failed:
            state.transition(pause.node_id, NodeStatus.Skipped)

    for nid in state.pending:
        if nid not in region and graph.is_ancestor(nid, target):
            state.transition(nid, NodeStatus.Skipped)
            state.pruned.add(nid)

    state.reset(sorted(region, key=graph.index_of))
    state.position = target
    return state


def repeat(state: ExecutionState) -> GraphNode:
    node = state.last_completed_step()
    if node is None:
        raise SteeringError("Nothing to repeat: no step has completed yet")
    state.reset([node.id])
    state.position = node.id
    return node


def retry(state: ExecutionState, node_id: str) -> ExecutionState:
    state.attempts[node_id] = state.attempts.get(node_id, 0) + 1
    state.transition(node_id, NodeStatus.Pending)
    state.outputs.pop(node_id, None)
    return state


def skip(state: ExecutionState, node_id: str) -> ExecutionState:
    state.transition(node_id, NodeStatus.Skipped)
    return state


def describe_output(state: ExecutionState, node_id: str) -> str:
    output = state.outputs.get(node_id)
    if output is None:
        return f"{node_id}: no output"
    head = f"{node_id} [{state.status(node_id).value}, {output.duration_ms:.0f} ms]"
    if output.success:
        return f"{head}\n{serialize_output(output.result)}"
    return f"{head}\nerror ({output.error_kind}): {output.error}"


def call_with_timeout(fn: Callable[[], Any], timeout: Optional[float], what: str = "prompt") -> Any:
    """Run a blocking prompt call, raising HumanGateTimeoutError after ``timeout`` seconds."""
    if timeout is None:
        return fn()
    box: Dict[str, Any] = {}

    def target():
        try:
            box["value"] = fn()
        except BaseException as e:  # re-raised on the caller's thread
            box["error"] = e

    worker = threading.Thread(target=target, name="agentflow-prompt", daemon=True)
    worker.start()
    worker.join(timeout)
    if worker.is_alive():
        raise HumanGateTimeoutError(f"No answer to {what} within {timeout:g}s; aborting the run")
    if "error" in box:
        raise box["error"]
    return box["value"]


# ─── Session ─────────────────────────────────────────────────────

class SteeringSession:
    """One pause: show the menu until a command resumes or aborts the run."""

    def __init__(self, runtime: "Runtime", pause: Pause):
        self.runtime = runtime
        self.pause = pause

    @property
    def state(self) -> ExecutionState:
        if self.runtime.state is None:
            raise SteeringError("Nothing to steer: no workflow is loaded")
        return self.runtime.state

    def run(self) -> SteeringOutcome:
        node = self.state.graph.node(self.pause.node_id)
        where = f"{node.display_name} ({self.pause.kind})"
        if self.pause.error:
            where += f": {self.pause.error}"
        self.runtime.log(f"[steer] Paused at {where}")
        try:
            while True:
                commands = available_commands(self.state, self.pause, len(self.runtime.snapshots) > 0)
                answer = self._ask(f"Paused at {node.display_name}. What next?", [c.value for c in commands])
                command = SteeringCommand(answer)
                self.runtime.count_decision(command.value)
                self.runtime.log(f"[steer] {command.value}")
                outcome = getattr(self, f"_do_{command.value}")()
                self.runtime.notify(f"steer-{command.value}", self.pause.node_id)
                if outcome is not None:
                    return outcome
        except HumanGateTimeoutError as e:
            self.runtime.log(f"[steer] {e}", "ERROR")
            return SteeringOutcome(self.state, resume=False, abort=True, reason=str(e))

    # ---------- prompt helpers ----------
    def _prompt(self) -> Prompt:
        if self.runtime.prompt is None:
            raise SteeringError(
                "Steering needs a prompt: pass prompt= to Runtime or use an unattended failure policy"
            )
        return self.runtime.prompt

    def _ask(self, question: str, options: List[str]) -> str:
        prompt = self._prompt()
        return call_with_timeout(lambda: prompt.ask(question, options), self.runtime.config.prompt_timeout)

    def _input(self, question: str) -> str:
        prompt = self._prompt()
        return call_with_timeout(lambda: prompt.input(question), self.runtime.config.prompt_timeout)

    def _snapshot(self, command: SteeringCommand) -> None:
        self.runtime.snapshots.push(self.state, f"{command.value}@{self.pause.node_id}")

    def _resume(self) -> SteeringOutcome:
        return SteeringOutcome(self.state)

    # ---------- commands ----------
    def _do_continue(self) -> SteeringOutcome:
        self.runtime.complete_checkpoint(self.pause.node_id)
        return self._resume()

    def _do_retry(self) -> SteeringOutcome:
        self._snapshot(SteeringCommand.Retry)
        retry(self.state, self.pause.node_id)
        self.runtime.metrics["retries"] += 1
        return self._resume()

    def _do_skip(self) -> SteeringOutcome:
        self._snapshot(SteeringCommand.Skip)
        skip(self.state, self.pause.node_id)
        self.runtime.metrics["skipped"] += 1
        return self._resume()

    def _do_jump(self) -> SteeringOutcome:
        target = self._ask("Jump to which node?", jump_targets(self.state))
        self._snapshot(SteeringCommand.Jump)
        jump(self.state, target, self.pause)
        self.runtime.log(f"[steer] jumped to {target}")
        return self._resume()

    def _do_repeat(self) -> SteeringOutcome:
        self._snapshot(SteeringCommand.Repeat)
        node = repeat(self.state)
        self.runtime.log(f"[steer] repeating {node.id}")
        return self._resume()

    def _do_edit(self) -> Optional[SteeringOutcome]:
        text = self._input("Enter the replacement workflow:")
        try:
            compiled = self.runtime.compile(text)
        except AgentFlowError as e:
            self.runtime.log(f"[steer] edit rejected, keeping the current workflow:\n{e}", "ERROR")
            return None
        self._snapshot(SteeringCommand.Edit)
        self.runtime.install(compiled)
        self.runtime.log(f"[steer] workflow replaced: {len(compiled.graph)} nodes")
        return self._resume()

    def _do_view(self) -> None:
        candidates = list(self.state.outputs)
        node_id = candidates[0] if len(candidates) == 1 else self._ask("View which node?", candidates)
        self.runtime.log(f"[view] {describe_output(self.state, node_id)}")
        return None

    def _do_debug(self) -> None:
        text = self._input("Describe what to diagnose:")
        try:
            text = interpolate(text, self.state.variables, self.runtime.config.truncate_limit) or ""
        except VariableError as e:
            self.runtime.log(f"[steer] debug instruction rejected: {e}", "ERROR")
            return None
        error = self.state.outputs.get(self.pause.node_id)
        if error is not None and error.error:
            text = f"Error in '{self.pause.node_id}': {error.error}\n\n{text}"

        self._snapshot(SteeringCommand.Debug)
        graph = self.state.graph
        node = GraphNode(
            id=graph.unique_id("debug"),
            kind=NodeKind.Step,
            step_name=self.runtime.config.debug_agent,
            instruction=text,
            model=self.runtime.config.default_model,
        )
        graph.insert_before(self.pause.node_id, node)
        self._run_inserted([node.id], {node.id: text})
        self.runtime.log(f"[steer] debug -> {describe_output(self.state, node.id)}")
        return None

    def _do_fork(self) -> None:
        count = int(self._ask("How many alternative approaches?", FORK_SIZES))
        approaches = [self._input(f"Approach {i}:") for i in range(1, count + 1)]

        self._snapshot(SteeringCommand.Fork)
        graph = self.state.graph
        paused = graph.node(self.pause.node_id)
        agent = paused.step_name if paused.kind == NodeKind.Step else self.runtime.config.debug_agent
        entry = GraphNode(id=graph.unique_id("fork_entry"), kind=NodeKind.ParallelEntry)
        merge = GraphNode(id=graph.unique_id("fork_merge"), kind=NodeKind.ParallelMerge)
        branches = [
            GraphNode(
                id=graph.unique_id(f"fork_{i}"),
                kind=NodeKind.Step,
                step_name=agent,
                instruction=approach,
                uses_variables=find_references(approach),
                model=paused.model if paused.kind == NodeKind.Step else self.runtime.config.default_model,
            )
            for i, approach in enumerate(approaches, 1)
        ]
        graph.insert_region_before(self.pause.node_id, entry, branches, merge)
        self.runtime.complete_synthetic(entry.id)
        self._run_inserted([b.id for b in branches])
        self.runtime.complete_synthetic(merge.id)
        for b in branches:
            self.runtime.log(f"[fork] {describe_output(self.state, b.id)}")
        return None

    def _run_inserted(self, node_ids: List[str], instructions: Optional[Dict[str, str]] = None) -> None:
        # diagnostic nodes never stop the run: a failure is kept as output and skipped
        self.runtime.execute_nodes(node_ids, instructions)
        for nid in node_ids:
            if self.state.status(nid) == NodeStatus.Failed:
                self.state.transition(nid, NodeStatus.Skipped)
        self.state.position = self.pause.node_id

    def _do_undo(self) -> Optional[SteeringOutcome]:
        snap = self.runtime.snapshots.pop()
        if snap is None:
            self.runtime.log("[steer] nothing to undo")
            return None
        self.state.restore(snap)
        self.runtime.log(f"[steer] restored snapshot taken before {snap.label}")
        return self._resume()

    def _do_quit(self) -> Optional[SteeringOutcome]:
        if self._ask("Abort the run?", ["yes", "no"]) != "yes":
            return None
        return SteeringOutcome(
            self.state, resume=False, abort=True,
            reason=f"stopped by operator at {self.pause.node_id}",
        )
