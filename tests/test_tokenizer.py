import pytest

from agentflow.errors import FlowSyntaxError
from agentflow.tokenizer import normalize_condition, tokenize
from agentflow.types import TokenKind


def kinds(text):
    return [t.kind for t in tokenize(text)]


def test_step_with_instruction_and_capture():
    toks = tokenize('analyzer:"scan the code":bugs -> fixer')
    assert [t.kind for t in toks] == [TokenKind.StepWithInstruction, TokenKind.Sequential, TokenKind.StepName]
    first = toks[0]
    assert first.name == "analyzer"
    assert first.instruction == "scan the code"
    assert first.capture == "bugs"
    assert toks[2].name == "fixer" and toks[2].instruction is None


def test_instruction_without_colon():
    tok = tokenize('reviewer "look at it"')[0]
    assert tok.kind == TokenKind.StepWithInstruction
    assert tok.name == "reviewer"
    assert tok.instruction == "look at it"


def test_capture_without_instruction():
    tok = tokenize("analyzer:bugs")[0]
    assert tok.kind == TokenKind.StepName
    assert tok.capture == "bugs"


def test_operators_and_brackets():
    assert kinds("[a || b] -> c ~> d") == [
        TokenKind.OpenBracket, TokenKind.StepName, TokenKind.Parallel, TokenKind.StepName,
        TokenKind.CloseBracket, TokenKind.Sequential, TokenKind.StepName, TokenKind.Conditional,
        TokenKind.StepName,
    ]


def test_operators_need_no_whitespace():
    assert kinds("a->b||c") == [
        TokenKind.StepName, TokenKind.Sequential, TokenKind.StepName, TokenKind.Parallel, TokenKind.StepName,
    ]


def test_hyphenated_names_stop_before_arrow():
    toks = tokenize("security-audit->style-check")
    assert [t.name for t in toks if t.name] == ["security-audit", "style-check"]


def test_checkpoint_and_condition():
    toks = tokenize("a -> @review -> b (if  all   success)~> c")
    checkpoint = toks[2]
    assert checkpoint.kind == TokenKind.Checkpoint
    assert checkpoint.value == "@review"
    condition = [t for t in toks if t.kind == TokenKind.Condition][0]
    assert condition.value == "if all success"


def test_temporary_agent_name():
    tok = tokenize('$triage:"sort the bugs"')[0]
    assert tok.name == "$triage"


def test_escaped_quotes_are_unescaped():
    tok = tokenize(r'a:"say \"hi\""')[0]
    assert tok.instruction == 'say "hi"'


def test_offsets_point_into_source():
    text = "alpha -> beta"
    toks = tokenize(text)
    assert [t.offset for t in toks] == [0, 6, 9]


def test_unterminated_quote():
    with pytest.raises(FlowSyntaxError, match="Unterminated quote") as exc:
        tokenize('a:"scan the code')
    assert exc.value.offset == 2


def test_unterminated_condition():
    with pytest.raises(FlowSyntaxError, match="Unterminated condition"):
        tokenize("a (if failed ~> b")


def test_condition_must_start_with_if():
    with pytest.raises(FlowSyntaxError, match=r"must start with '\(if '"):
        tokenize("a (when failed)~> b")


def test_unexpected_character():
    with pytest.raises(FlowSyntaxError, match="Unexpected character") as exc:
        tokenize("a -> b ; c")
    assert exc.value.offset == 7


def test_normalize_condition():
    assert normalize_condition("(if   failed )") == "if failed"
