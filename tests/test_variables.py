import pytest

from agentflow.errors import ExecutionError, VariableError
from agentflow.types import GraphNode, NodeKind
from agentflow.variables import (
    TRUNCATION_MARKER,
    VariableStore,
    find_references,
    interpolate,
    missing_variables,
)


def test_find_references_keeps_first_seen_order():
    assert find_references("fix {bugs} in {area}, then {bugs} again") == ["bugs", "area"]
    assert find_references(None) == []
    assert find_references("no placeholders, {not valid}") == []


def test_interpolate_replaces_values():
    store = VariableStore({"bugs": "3 issues", "area": "parser"})
    assert interpolate("fix {bugs} in {area}", store) == "fix 3 issues in parser"


def test_interpolate_leaves_text_without_placeholders():
    assert interpolate("plain text", VariableStore()) == "plain text"
    assert interpolate(None, VariableStore()) is None


def test_unknown_variable_names_it_and_lists_available():
    store = VariableStore({"analysis": "ok", "report": "done"})
    with pytest.raises(VariableError) as exc:
        interpolate("fix {bugs}", store, node_id="fixer")
    err = exc.value
    assert err.variable == "bugs"
    assert err.available == ["analysis", "report"]
    assert "{bugs}" in str(err)
    assert "Available variables: analysis, report" in str(err)
    assert "node 'fixer'" in str(err)
    assert isinstance(err, ExecutionError) and err.kind == "variable"


def test_unknown_variable_with_empty_store():
    with pytest.raises(VariableError, match="Available variables: none"):
        interpolate("{bugs}", VariableStore())


def test_variable_without_value():
    store = VariableStore({"bugs": None})
    with pytest.raises(VariableError, match="has no value yet"):
        interpolate("{bugs}", store)


def test_long_values_are_truncated():
    store = VariableStore({"log": "x" * 2500})
    out = interpolate("{log}", store)
    assert out == "x" * 2000 + TRUNCATION_MARKER
    assert interpolate("{log}", store, limit=10) == "x" * 10 + TRUNCATION_MARKER


def test_structured_values_become_json():
    store = VariableStore({"result": {"count": 3}})
    assert interpolate("{result}", store) == '{\n  "count": 3\n}'


def test_store_operations():
    store = VariableStore()
    store.capture("a", 1)
    store.capture("a", 2)
    assert store.get("a") == 2
    assert "a" in store and len(store) == 1
    clone = store.copy()
    store.discard("a")
    assert "a" not in store
    assert clone.get("a") == 2


def test_summary_previews():
    assert VariableStore().summary() == "No variables captured yet."
    store = VariableStore({"short": "hi", "long": "y" * 80, "empty": None})
    lines = store.summary().splitlines()
    assert lines[0] == "Current variables:"
    assert "  short: hi" in lines
    assert "  long: " + "y" * 50 + "..." in lines
    assert "  empty: (empty)" in lines


def test_missing_variables():
    node = GraphNode(id="fixer", kind=NodeKind.Step, step_name="fixer", uses_variables=["bugs", "area"])
    assert missing_variables(node, VariableStore({"area": "x"})) == ["bugs"]
    assert missing_variables(node, VariableStore({"area": "x", "bugs": "y"})) == []
