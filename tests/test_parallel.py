import threading
import time

from agentflow.config import EngineConfig
from agentflow.runtime import Runtime
from agentflow.schemas import StepResult
from agentflow.types import NodeStatus


def test_fan_out_and_fan_in(backend, make_runtime):
    rt = make_runtime('[x:"left" || y:"right"] -> z')
    summary = rt.run()
    assert summary.ok
    assert sorted(backend.steps()[:2]) == ["x", "y"]
    assert backend.steps()[2] == "z"
    merge = rt.state.outputs["parallel_merge_1"]
    assert merge.success
    assert merge.result == ["ok: left", "ok: right"]
    assert merge.branch_success == [True, True]


def test_branches_really_run_concurrently(backend, make_runtime):
    barrier = threading.Barrier(2)

    def meet(instruction, options):
        barrier.wait(timeout=2)
        return "met"
    backend.register("x", meet)
    backend.register("y", meet)
    summary = make_runtime("[x || y] -> z").run()
    assert summary.ok


def test_concurrency_ceiling(backend, directory):
    lock = threading.Lock()
    active = {"now": 0, "max": 0}

    def track(instruction, options):
        with lock:
            active["now"] += 1
            active["max"] = max(active["max"], active["now"])
        time.sleep(0.05)
        with lock:
            active["now"] -= 1
        return "done"
    backend.default = track
    rt = Runtime(backend=backend, directory=directory, config=EngineConfig(max_concurrency=2, poll_interval=0.01))
    rt.load("[a || b || c || x || y]")
    assert rt.run().ok
    assert active["max"] <= 2
    assert len(backend.calls) == 5


def test_merge_keeps_declaration_order(backend, make_runtime):
    def slow(instruction, options):
        time.sleep(0.1)
        return "slow"
    backend.register("x", slow)
    backend.register("y", lambda i, o: "fast")
    rt = make_runtime("[x || y]")
    rt.run()
    assert rt.state.outputs["parallel_merge_1"].result == ["slow", "fast"]


def test_aggregate_condition_after_merge(backend, failing, directory):
    backend.register("y", failing(times=5))
    rt = Runtime(backend=backend, directory=directory, config=EngineConfig(failure_policy="skip", poll_interval=0.01))
    rt.load("[x || y] (if any failed)~> fixer")
    summary = rt.run()
    assert summary.ok
    merge = rt.state.outputs["parallel_merge_1"]
    assert not merge.success
    assert merge.branch_success == [True, False]
    assert "fixer" in backend.steps()


def test_all_success_condition_prunes_when_a_branch_fails(backend, failing, directory):
    backend.register("y", failing(times=5))
    rt = Runtime(backend=backend, directory=directory, config=EngineConfig(failure_policy="skip", poll_interval=0.01))
    rt.load("[x || y] (if all success)~> deploy")
    rt.run()
    assert rt.state.status("deploy") == NodeStatus.Skipped
    assert "deploy" not in backend.steps()


def test_nested_regions(backend, make_runtime):
    rt = make_runtime("a -> [[b -> c] || d] -> e")
    assert rt.run().ok
    steps = backend.steps()
    assert steps[0] == "a" and steps[-1] == "e"
    assert steps.index("b") < steps.index("c")
    assert sorted(steps) == ["a", "b", "c", "d", "e"]


def test_failing_branch_leaves_sibling_untouched(backend, failing, directory):
    backend.register("x", lambda i, o: StepResult(success=False, error="nope"))
    rt = Runtime(backend=backend, directory=directory, config=EngineConfig(failure_policy="abort", poll_interval=0.01))
    rt.load("[x || y] -> z")
    summary = rt.run()
    assert summary.status == "aborted"
    assert rt.state.status("y") == NodeStatus.Completed
    assert rt.state.outputs["y"].success
    assert summary.pending == ["parallel_merge_1", "z"]


def test_ready_set_is_recomputed_between_batches(backend, directory):
    def check_y(instruction, options):
        assert rt.state.status("p") == NodeStatus.Completed
        return "ok"
    backend.register("y", check_y)
    config = EngineConfig(max_concurrency=1, max_loop_iterations=1, poll_interval=0.01)
    rt = Runtime(backend=backend, directory=directory, config=config)
    rt.load("p -> [[x (if passed)~> p] || y]")
    summary = rt.run()
    assert summary.ok
    # the loop fired by x resets y's predecessors before y gets its turn
    assert backend.steps() == ["p", "x", "p", "x", "y"]
    assert rt.metrics["loops"] == 1
