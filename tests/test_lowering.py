import pytest

from agentflow.ast import Sequence
from agentflow.directory import AgentDefinition, AgentDirectory, InMemoryAgentRepository
from agentflow.errors import AgentFlowError
from agentflow.lowering import Lowering, lower
from agentflow.parser import parse
from agentflow.types import AgentKind, NodeKind


def graph_of(text, directory=None):
    return Lowering(directory).lower(parse(text))


def test_linear_chain():
    g = graph_of("a -> b -> c")
    assert [n.kind for n in g.nodes.values()] == [NodeKind.Step] * 3
    assert list(g.nodes) == ["a", "b", "c"]
    assert [(e.source, e.target) for e in g.edges] == [("a", "b"), ("b", "c")]
    assert all(e.condition is None and not e.loop for e in g.edges)
    assert g.roots() == ["a"]


def test_parallel_region_structure():
    g = graph_of("[x || y] -> z")
    kinds = [n.kind for n in g.nodes.values()]
    assert kinds.count(NodeKind.ParallelEntry) == 1
    assert kinds.count(NodeKind.ParallelMerge) == 1
    assert len(g.step_nodes()) == 3
    incoming = g.incoming("z")
    assert len(incoming) == 1
    assert incoming[0].source == "parallel_merge_1"
    assert {e.target for e in g.outgoing("parallel_entry_1")} == {"x", "y"}
    assert [e.source for e in g.incoming("parallel_merge_1")] == ["x", "y"]


def test_parallel_regions_are_numbered():
    g = graph_of("[a || b] -> [c || d]")
    assert "parallel_entry_2" in g and "parallel_merge_2" in g
    assert g.incoming("parallel_entry_2")[0].source == "parallel_merge_1"


def test_conditional_edge_carries_condition():
    g = graph_of("tester (if passed)~> deploy")
    (edge,) = g.edges
    assert (edge.source, edge.target, edge.condition) == ("tester", "deploy", "if passed")


def test_condition_lands_on_edge_into_parallel_region():
    g = graph_of("a ~> [b || c]")
    assert g.outgoing("a")[0].target == "parallel_entry_1"
    assert g.outgoing("a")[0].condition == "if failed"
    assert all(e.condition is None for e in g.outgoing("parallel_entry_1"))


def test_repeated_steps_with_instructions_get_fresh_ids():
    g = graph_of('a:"one" -> a:"two" -> a:"three"')
    assert list(g.nodes) == ["a", "a_2", "a_3"]
    assert not any(e.loop for e in g.edges)


def test_bare_repeat_refers_back_and_makes_a_loop_edge():
    g = graph_of("a (if failed)~> b -> a")
    assert list(g.nodes) == ["a", "b"]
    forward = g.outgoing("a")[0]
    back = g.outgoing("b")[0]
    assert forward.condition == "if failed" and not forward.loop
    assert back.target == "a" and back.loop
    assert g.roots() == ["a"]


def test_checkpoint_ids():
    g = graph_of("a -> @review -> b -> @review")
    assert "@review" in g and "@review_2" in g
    cp = g.node("@review")
    assert cp.kind == NodeKind.Checkpoint
    assert cp.display_name == "@review"


def test_variables_recorded_on_nodes():
    g = graph_of('analyzer:"scan":bugs -> fixer:"fix {bugs} and {bugs} in {area}":fixed')
    assert g.node("analyzer").captures == "bugs"
    assert g.node("fixer").uses_variables == ["bugs", "area"]


def test_model_and_kind_come_from_directory():
    repo = InMemoryAgentRepository([AgentDefinition(name="analyzer", model="large")])
    directory = AgentDirectory(repository=repo)
    g = graph_of("analyzer -> debugger", directory)
    assert g.node("analyzer").model == "large"
    assert g.node("analyzer").agent_kind == AgentKind.Defined
    assert g.node("debugger").agent_kind == AgentKind.Builtin


def test_inline_temporary_agent_is_registered():
    directory = AgentDirectory()
    g = graph_of('$triage:"sort the bugs by severity" -> debugger', directory)
    assert directory.temporary("triage").instructions == "sort the bugs by severity"
    assert g.node("$triage").agent_kind == AgentKind.Temporary


def test_lowering_is_deterministic():
    text = 'a:"go":v -> [b:"{v}" || c] (if any failed)~> @fix -> d'
    assert lower(parse(text)).to_dict() == lower(parse(text)).to_dict()


def test_empty_sequence_cannot_be_lowered():
    with pytest.raises(AgentFlowError, match="empty sequence"):
        Lowering().lower(Sequence(()))
