"""
Parser tests: operator precedence, folding and position-anchored errors.
"""
import pytest

from agentflow.ast import Conditional, Parallel, Sequence, Step, Subgraph, dump
from agentflow.errors import FlowSyntaxError
from agentflow.parser import build_ast, parse
from agentflow.tokenizer import tokenize


def test_sequence_folds_into_one_node():
    ast = parse("a -> b -> c")
    assert isinstance(ast, Sequence)
    assert [s.name for s in ast.steps] == ["a", "b", "c"]
    assert dump(ast) == "(seq a b c)"


def test_parallel_binds_tighter_than_sequence():
    assert dump(parse("x || y -> z")) == "(seq (par x y) z)"
    assert dump(parse("a -> x || y || w")) == "(seq a (par x y w))"


def test_brackets_group():
    ast = parse("[x || y] -> z")
    assert dump(ast) == "(seq [(par x y)] z)"
    assert isinstance(ast.steps[0], Subgraph)
    assert isinstance(ast.steps[0].child, Parallel)


def test_conditional_is_loosest():
    ast = parse("a (if passed)~> b -> c")
    assert isinstance(ast, Conditional)
    assert ast.condition == "if passed"
    assert dump(ast) == "(cond [if passed] a (seq b c))"


def test_conditional_defaults_to_if_failed():
    assert dump(parse("tester ~> fixer")) == "(cond [if failed] tester fixer)"


def test_chained_conditionals_fold_left():
    ast = parse("a ~> b (if passed)~> c")
    assert dump(ast) == "(cond [if passed] (cond [if failed] a b) c)"


def test_step_details_survive():
    step = parse('analyzer:"scan":bugs')
    assert step == Step(name="analyzer", instruction="scan", capture="bugs", offset=0)
    assert dump(step) == "analyzer 'scan' :bugs"
    assert not step.is_bare
    assert parse("analyzer").is_bare


def test_checkpoint_label():
    ast = parse("a -> @review -> b")
    assert dump(ast) == "(seq a @review b)"


def test_parse_is_deterministic():
    text = 'a:"go":v -> [b "{v}" || c] (if any failed)~> @fix -> d'
    assert parse(text) == parse(text)


def test_unclosed_bracket_reports_position():
    with pytest.raises(FlowSyntaxError, match="Unclosed bracket") as exc:
        parse("a -> [b -> c")
    # tokens: a -> [ b -> c, the ']' is missing at token 6
    assert exc.value.position == 6
    assert "token 6" in str(exc.value)
    assert exc.value.offset == len("a -> [b -> c")


def test_unclosed_bracket_before_other_token():
    with pytest.raises(FlowSyntaxError, match="Unclosed bracket"):
        build_ast(tokenize("[a -> b [c]"))


def test_unmatched_close_bracket():
    with pytest.raises(FlowSyntaxError, match=r"Unmatched '\]'"):
        parse("a -> b ]")


def test_condition_must_precede_conditional_operator():
    with pytest.raises(FlowSyntaxError, match="must be followed by '~>'") as exc:
        parse("a (if failed) -> b")
    assert exc.value.position == 2


def test_dangling_operator():
    with pytest.raises(FlowSyntaxError, match="Unexpected end of workflow"):
        parse("a -> ")


def test_empty_workflow():
    with pytest.raises(FlowSyntaxError, match="Empty workflow"):
        parse("   ")


def test_empty_brackets():
    with pytest.raises(FlowSyntaxError, match="Empty brackets"):
        parse("a -> []")


def test_adjacent_steps_need_an_operator():
    with pytest.raises(FlowSyntaxError, match="join steps with"):
        parse("a b")
