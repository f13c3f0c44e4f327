from __future__ import annotations
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger
from opentelemetry import context as otel_context
from opentelemetry import trace

from .backends import CancelSignal, EchoBackend, InvokeOptions, StepBackend
from .compiler import CompiledWorkflow, compile_workflow
from .conditions import evaluate
from .config import EngineConfig, FailurePolicy
from .directory import AgentDirectory
from .errors import AgentFlowError, VariableError
from .persistence import SnapshotStack
from .prompt import Prompt
from .render import Renderer, StateView
from .schemas import RunSummary, StepResult, coerce_result
from .state import ExecutionState
from .steering import Pause, SteeringSession
from .types import NodeKind, NodeOutput, NodeStatus
from .variables import interpolate


class Runtime:
    """Executes a compiled workflow graph.

    One scheduler thread computes the ready set, completes synthetic nodes
    inline, pauses at checkpoints and dispatches step batches to a thread
    pool. Execution state is only written from the scheduler thread (and
    from steering, which runs while the scheduler waits on it).
    """

    def __init__(
        self,
        backend: Optional[StepBackend] = None,
        directory: Optional[AgentDirectory] = None,
        prompt: Optional[Prompt] = None,
        renderer: Optional[Renderer] = None,
        config: Optional[EngineConfig] = None,
        dry_run: bool = False,
        check_steps: bool = True,
    ):
        self.dry_run = dry_run
        self.config = config or EngineConfig.from_env()
        self.backend: StepBackend = EchoBackend() if (dry_run or backend is None) else backend
        self.directory = directory if directory is not None else AgentDirectory()
        self.check_steps = check_steps
        self.prompt = prompt
        self.renderer = renderer
        self.console: List[str] = []
        self.metrics: Dict[str, Any] = {
            "nodes_run": 0, "completed": 0, "failed": 0, "skipped": 0,
            "retries": 0, "loops": 0, "checkpoints": 0, "steering": {}, "node_ms": {},
        }
        self.tracer = trace.get_tracer(__name__)
        self.workflow: Optional[CompiledWorkflow] = None
        self.state: Optional[ExecutionState] = None
        self.snapshots = SnapshotStack()
        self._cancel = CancelSignal()

    def log(self, msg: str, level: str = "INFO"):
        self.console.append(msg)
        logger.log(level, msg)

    # ---------- Loading ----------
    def compile(self, source: str | Path) -> CompiledWorkflow:
        return compile_workflow(
            source,
            directory=self.directory,
            strict_conditions=self.config.strict_conditions,
            default_model=self.config.default_model,
            check_steps=self.check_steps,
        )

    def load(self, source: str | Path) -> CompiledWorkflow:
        self.workflow = self.compile(source)
        self.state = ExecutionState(graph=self.workflow.graph)
        self.snapshots.clear()
        self._cancel = CancelSignal()
        for issue in self.workflow.report.warnings:
            self.log(f"[check] warning: {issue}", "WARNING")
        return self.workflow

    def install(self, workflow: CompiledWorkflow) -> ExecutionState:
        """Swap in a freshly compiled workflow with a clean execution state."""
        self.workflow = workflow
        self.state = ExecutionState(graph=workflow.graph)
        return self.state

    def cancel(self) -> None:
        """Cancel the run; safe to call from any thread."""
        self._cancel.set()

    # ---------- Execution entry ----------
    def run(self) -> RunSummary:
        if self.state is None:
            raise AgentFlowError("No workflow loaded. Call Runtime.load() first")
        with self.tracer.start_as_current_span("run") as span:
            self.log(f"[run] Start: {len(self.state.graph)} nodes, {len(self.state.graph.edges)} edges")
            self.notify("run-started")
            self._loop()
            summary = self._summary()
            span.set_attribute("agentflow.status", summary.status)
            level = "INFO" if summary.ok else "ERROR"
            self.log(f"[run] Finished: {summary.describe()}", level)
            self.notify("run-finished")
        return summary

    def _loop(self) -> None:
        while True:
            state = self._current()
            if state.aborted:
                return
            if self._cancel.is_set():
                self._abort("cancelled")
                return
            self._settle()
            ready = self._ready_set()
            if not ready:
                if not state.failed:
                    return
                self._handle_failure(state.failed[0])
                continue
            checkpoints = [nid for nid in ready if state.graph.node(nid).kind == NodeKind.Checkpoint]
            if checkpoints:
                self._pause_at_checkpoint(checkpoints[0])
                continue
            # one batch per pass; the next pass recomputes the ready set
            self.execute_nodes(ready[:self.config.max_concurrency])

    def _current(self) -> ExecutionState:
        if self.state is None:
            raise AgentFlowError("No workflow loaded. Call Runtime.load() first")
        return self.state

    # ---------- Readiness ----------
    def _inputs_done(self, node_id: str) -> bool:
        state = self._current()
        return all(state.is_terminal(e.source) for e in state.graph.incoming(node_id, include_loops=False))

    def _ready_set(self) -> List[str]:
        state = self._current()
        ready = []
        for nid, node in state.graph.nodes.items():
            if node.status != NodeStatus.Pending or not self._inputs_done(nid):
                continue
            edges = state.graph.incoming(nid, include_loops=False)
            if all(evaluate(e.condition, state.outputs.get(e.source)) for e in edges):
                ready.append(nid)
        return ready

    def _settle(self) -> None:
        """Prune unreachable branches and complete synthetic nodes until nothing changes."""
        state = self._current()
        changed = True
        while changed:
            changed = False
            for nid, node in list(state.graph.nodes.items()):
                if node.status != NodeStatus.Pending or not self._inputs_done(nid):
                    continue
                edges = state.graph.incoming(nid, include_loops=False)
                blocked = [e for e in edges if not evaluate(e.condition, state.outputs.get(e.source))]
                if blocked:
                    state.transition(nid, NodeStatus.Skipped)
                    state.pruned.add(nid)
                    self.metrics["skipped"] += 1
                    self.log(f"[node] {node.display_name} pruned: {blocked[0].describe()} not taken", "DEBUG")
                    self.notify("node-pruned", nid)
                    changed = True
                elif node.is_synthetic:
                    self.complete_synthetic(nid)
                    changed = True

    def complete_synthetic(self, node_id: str) -> NodeOutput:
        state = self._current()
        node = state.graph.node(node_id)
        if node.kind == NodeKind.ParallelMerge:
            tributaries = [e.source for e in state.graph.incoming(node_id, include_loops=False)]
            outputs = [state.outputs.get(src) for src in tributaries]
            produced = [o for o in outputs if o is not None]
            output = NodeOutput(
                success=all(o.success for o in produced),
                result=[o.result if o is not None else None for o in outputs],
                branch_success=[o.success for o in produced],
            )
            self.log(f"[merge] {node_id}: {len(produced)}/{len(tributaries)} branches, success={output.success}")
        else:
            output = NodeOutput(success=True)
        state.record(node_id, output)
        state.transition(node_id, NodeStatus.Completed)
        self.notify("node-completed", node_id)
        self._fire_loops(node_id)
        return output

    # ---------- Step execution ----------
    def execute_nodes(self, node_ids: List[str], instructions: Optional[Dict[str, str]] = None) -> Dict[str, NodeOutput]:
        """Run step nodes as one batch and record their outputs in ``node_ids`` order.

        Interpolation happens here, on the scheduler thread; ``instructions``
        overrides the (already interpolated) text for given nodes.
        """
        state = self._current()
        outputs: Dict[str, NodeOutput] = {}
        jobs: List[Tuple[str, Optional[str]]] = []
        for nid in node_ids:
            node = state.graph.node(nid)
            state.transition(nid, NodeStatus.Executing)
            state.position = nid
            self.notify("node-started", nid)
            if instructions and nid in instructions:
                jobs.append((nid, instructions[nid]))
                continue
            try:
                jobs.append((nid, interpolate(node.instruction, state.variables, self.config.truncate_limit, nid)))
            except VariableError as e:
                outputs[nid] = NodeOutput(success=False, error=str(e), error_kind=e.kind)

        if jobs:
            outputs.update(self._dispatch(jobs))

        cancelled = self._cancel.is_set()
        for nid in node_ids:
            output = outputs[nid]
            node = state.graph.node(nid)
            state.record(nid, output)
            if output.success:
                state.transition(nid, NodeStatus.Completed)
                self.metrics["completed"] += 1
                self.log(f"[node] {node.display_name} completed in {output.duration_ms:.0f} ms")
                self.notify("node-completed", nid)
            else:
                state.transition(nid, NodeStatus.Failed)
                self.metrics["failed"] += 1
                self.log(f"[node] {node.display_name} failed ({output.error_kind}): {output.error}", "WARNING")
                self.notify("node-failed", nid)
            self.metrics["nodes_run"] += 1
            self.metrics["node_ms"][nid] = output.duration_ms

        if cancelled:
            self._abort("cancelled")
            return outputs
        for nid in node_ids:
            if state.status(nid) == NodeStatus.Completed:
                self._fire_loops(nid)
            elif state.status(nid) == NodeStatus.Failed:
                self._route_failure(nid)
        return outputs

    def _dispatch(self, jobs: List[Tuple[str, Optional[str]]]) -> Dict[str, NodeOutput]:
        state = self._current()
        parent_ctx = otel_context.get_current()
        timeout = self.config.node_timeout
        pool = ThreadPoolExecutor(max_workers=len(jobs), thread_name_prefix="agentflow")
        signals: Dict[str, CancelSignal] = {}
        started: Dict[str, float] = {}
        futures: Dict[Future, str] = {}
        outputs: Dict[str, NodeOutput] = {}
        try:
            for nid, instruction in jobs:
                signals[nid] = CancelSignal(parent=self._cancel)
                started[nid] = time.monotonic()
                node = state.graph.node(nid)
                futures[pool.submit(self._invoke, node, instruction, signals[nid], parent_ctx)] = nid
            if len(jobs) > 1:
                self.log(f"[run] Parallel batch: {[nid for nid, _ in jobs]}")

            pending = set(futures)
            while pending:
                done, pending = wait(pending, timeout=self.config.poll_interval, return_when=FIRST_COMPLETED)
                for fut in done:
                    nid = futures[fut]
                    outputs[nid] = self._cancelled(nid, started) if self._cancel.is_set() else fut.result()
                if self._cancel.is_set():
                    # cooperative: backends got the signal, wait for them to return
                    wait(pending)
                    for fut in pending:
                        outputs[futures[fut]] = self._cancelled(futures[fut], started)
                    break
                if timeout is None:
                    continue
                now = time.monotonic()
                for fut in list(pending):
                    nid = futures[fut]
                    if now - started[nid] >= timeout:
                        signals[nid].set()
                        pending.discard(fut)
                        outputs[nid] = NodeOutput(
                            success=False,
                            error=f"Node '{nid}' timed out after {timeout:g}s. Retry it or raise node_timeout",
                            error_kind="timeout",
                            duration_ms=(now - started[nid]) * 1000.0,
                        )
        finally:
            pool.shutdown(wait=False)
        return outputs

    def _cancelled(self, node_id: str, started: Dict[str, float]) -> NodeOutput:
        return NodeOutput(
            success=False,
            error=f"Node '{node_id}' was cancelled",
            error_kind="cancelled",
            duration_ms=(time.monotonic() - started[node_id]) * 1000.0,
        )

    def _invoke(self, node, instruction: Optional[str], signal: CancelSignal, parent_ctx) -> NodeOutput:
        # runs on a worker thread
        options = InvokeOptions(
            cancel_signal=signal, model=node.model, timeout=self.config.node_timeout, node_id=node.id,
        )
        t0 = time.perf_counter()
        with self.tracer.start_as_current_span(f"node:{node.id}", context=parent_ctx) as span:
            span.set_attribute("agentflow.step", node.step_name or "")
            try:
                result = coerce_result(self.backend.invoke(node.step_name, instruction, options))
            except Exception as e:  # a backend crash fails this node only
                result = StepResult(success=False, error=f"{type(e).__name__}: {e}")
            span.set_attribute("agentflow.success", result.success)
        dt_ms = (time.perf_counter() - t0) * 1000.0
        return NodeOutput(
            success=result.success,
            result=result.payload,
            error=result.error,
            error_kind=None if result.success else "backend",
            duration_ms=dt_ms,
        )

    # ---------- Loops ----------
    def _fire_loops(self, node_id: str) -> None:
        state = self._current()
        output = state.outputs.get(node_id)
        if output is None:
            return
        for edge in state.graph.outgoing(node_id):
            if not edge.loop or not evaluate(edge.condition, output):
                continue
            key = (edge.source, edge.target)
            count = state.loop_counts.get(key, 0)
            if count >= self.config.max_loop_iterations:
                self.log(
                    f"[loop] {edge.describe()} refused: already taken {count} time(s) "
                    f"(max_loop_iterations={self.config.max_loop_iterations})",
                    "WARNING",
                )
                continue
            state.loop_counts[key] = count + 1
            region = {edge.target} | state.graph.descendants(edge.target)
            state.reset(sorted(region, key=state.graph.index_of))
            self.metrics["loops"] += 1
            self.log(f"[loop] {edge.describe()} iteration {count + 1}: reset {len(region)} node(s)")
            self.notify("loop", edge.target)

    # ---------- Checkpoints ----------
    def _pause_at_checkpoint(self, node_id: str) -> None:
        state = self._current()
        node = state.graph.node(node_id)
        state.position = node_id
        self.metrics["checkpoints"] += 1
        self.log(f"[checkpoint] -> {node.display_name}")
        self.notify("checkpoint", node_id)
        if self.prompt is None or self.config.auto_approve or self.dry_run:
            self.log(f"[checkpoint] {node.display_name} continued automatically")
            self.complete_checkpoint(node_id)
            return
        self._steer(Pause(kind="checkpoint", node_id=node_id))

    def complete_checkpoint(self, node_id: str) -> None:
        state = self._current()
        state.record(node_id, NodeOutput(success=True))
        state.transition(node_id, NodeStatus.Completed)
        self.notify("node-completed", node_id)
        self._fire_loops(node_id)

    # ---------- Failures ----------
    def _route_failure(self, node_id: str) -> bool:
        """A failure some conditional edge accepts is handled by the graph itself."""
        state = self._current()
        output = state.outputs.get(node_id)
        if output is None or output.error_kind == "cancelled":
            return False
        if not any(e.condition and evaluate(e.condition, output) for e in state.graph.outgoing(node_id)):
            return False
        state.transition(node_id, NodeStatus.Skipped)
        self.log(f"[node] {state.graph.node(node_id).display_name} failure handled by a conditional edge")
        self.notify("node-skipped", node_id)
        self._fire_loops(node_id)
        return True

    def _handle_failure(self, node_id: str) -> None:
        state = self._current()
        node = state.graph.node(node_id)
        output = state.outputs.get(node_id) or NodeOutput(success=False, error="unknown failure", error_kind="backend")
        if self._route_failure(node_id):
            return

        policy = self.config.failure_policy
        if policy == FailurePolicy.Steer and (self.prompt is None or self.dry_run):
            policy = self.config.unattended_policy
        if policy == FailurePolicy.Steer:
            self._steer(Pause(kind="failure", node_id=node_id, error=output.error))
        elif policy == FailurePolicy.Retry:
            attempts = state.attempts.get(node_id, 0)
            if attempts >= self.config.retry_limit:
                self._abort(f"node '{node_id}' failed after {attempts} retries: {output.error}")
                return
            state.attempts[node_id] = attempts + 1
            self.metrics["retries"] += 1
            state.transition(node_id, NodeStatus.Pending)
            self.log(f"[node] {node.display_name} retry {attempts + 1}/{self.config.retry_limit}")
            self.notify("node-retry", node_id)
        elif policy == FailurePolicy.Skip:
            state.transition(node_id, NodeStatus.Skipped)
            self.metrics["skipped"] += 1
            self.log(f"[node] {node.display_name} skipped after failure", "WARNING")
            self.notify("node-skipped", node_id)
        else:
            self._abort(f"node '{node_id}' failed: {output.error}")

    # ---------- Steering ----------
    def _steer(self, pause: Pause) -> None:
        outcome = SteeringSession(self, pause).run()
        self.state = outcome.state
        if outcome.abort:
            self._abort(outcome.reason or "stopped by operator")

    def count_decision(self, command: str) -> None:
        steering = self.metrics["steering"]
        steering[command] = steering.get(command, 0) + 1

    def _abort(self, reason: str) -> None:
        state = self._current()
        if state.aborted:
            return
        state.aborted = True
        state.abort_reason = reason
        self.log(f"[run] Aborted: {reason}", "ERROR")

    # ---------- Reporting ----------
    def _summary(self) -> RunSummary:
        state = self._current()
        duration_ms = (time.monotonic() - state.started_at) * 1000.0
        if state.aborted:
            status, message = "aborted", state.abort_reason
        elif state.failed:
            status = "failed"
            message = f"unresolved failures: {state.failed}"
        elif state.pending:
            status = "deadlock"
            message = (
                f"nodes {state.pending} can never become ready. "
                f"Use a checkpoint with jump, or edit the workflow"
            )
            self.log(f"[run] Deadlock: {message}", "ERROR")
        else:
            status, message = "completed", ""
        return RunSummary(
            status=status,
            completed=state.completed,
            failed=state.failed,
            skipped=state.skipped,
            pending=state.pending,
            variables=state.variables.as_dict(),
            duration_ms=duration_ms,
            message=message,
        )

    def notify(self, event: str, node_id: Optional[str] = None) -> None:
        """Hand the renderer a snapshot of the current state."""
        if self.renderer is None or self.state is None:
            return
        if node_id is not None and node_id not in self.state.graph:
            node_id = None
        graph = self.state.graph.copy()
        view = StateView(
            graph=graph,
            statuses={nid: n.status for nid, n in graph.nodes.items()},
            variables=self.state.variables.as_dict(),
            event=event,
            node_id=node_id,
        )
        self.renderer.render(view)
