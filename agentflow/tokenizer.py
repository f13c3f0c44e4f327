from __future__ import annotations
import re
from pathlib import Path
from typing import List, Optional

from lark import Lark, Token as LarkToken
from lark.exceptions import UnexpectedCharacters

from .errors import FlowSyntaxError
from .types import Token, TokenKind

GRAMMAR_PATH = Path(__file__).with_name("workflow.lark")

_lexer: Optional[Lark] = None

_KINDS = {
    "SEQ": TokenKind.Sequential,
    "PAR": TokenKind.Parallel,
    "COND": TokenKind.Conditional,
    "LBRACK": TokenKind.OpenBracket,
    "RBRACK": TokenKind.CloseBracket,
    "CONDITION": TokenKind.Condition,
    "CHECKPOINT": TokenKind.Checkpoint,
}

_STEP_RE = re.compile(
    r'(?P<name>\$?[A-Za-z_][\w.]*(?:-(?!>)[\w.]+)*)'
    r'(?:[ \t]*:?[ \t]*"(?P<instruction>(?:[^"\\]|\\.)*)")?'
    r'(?::(?P<capture>[A-Za-z_]\w*))?'
)
_CLOSED_QUOTE_RE = re.compile(r'"(?:[^"\\]|\\.)*"')
_ESCAPE_RE = re.compile(r'\\(.)')


def _load_lexer() -> Lark:
    global _lexer
    if _lexer is None:
        grammar = GRAMMAR_PATH.read_text(encoding="utf-8")
        _lexer = Lark(grammar, start="start", parser="lalr", lexer="basic")
    return _lexer


def normalize_condition(text: str) -> str:
    """``(if  all  success)`` -> ``if all success``."""
    inner = text.strip()
    if inner.startswith("(") and inner.endswith(")"):
        inner = inner[1:-1]
    return " ".join(inner.split())


def tokenize(text: str) -> List[Token]:
    """Turn workflow syntax into a flat token stream.

    Raises FlowSyntaxError on an unterminated quote or condition, or on any
    character that cannot start a token.
    """
    lexer = _load_lexer()
    tokens: List[Token] = []
    try:
        for tok in lexer.lex(text):
            tokens.append(_convert(tok))
    except UnexpectedCharacters as e:
        raise _lex_error(text, e.pos_in_stream) from e
    return tokens


def _convert(tok: LarkToken) -> Token:
    offset = tok.start_pos or 0
    if tok.type == "STEP":
        m = _STEP_RE.fullmatch(tok.value)
        if m is None:  # pragma: no cover - the lexer regex and _STEP_RE agree
            raise FlowSyntaxError(f"Malformed step reference {tok.value!r} at char {offset}", offset=offset)
        instruction = m.group("instruction")
        if instruction is not None:
            instruction = _ESCAPE_RE.sub(r"\1", instruction)
        kind = TokenKind.StepName if instruction is None else TokenKind.StepWithInstruction
        return Token(
            kind=kind,
            value=tok.value,
            offset=offset,
            name=m.group("name"),
            instruction=instruction,
            capture=m.group("capture"),
        )
    if tok.type == "CONDITION":
        return Token(kind=TokenKind.Condition, value=normalize_condition(tok.value), offset=offset)
    return Token(kind=_KINDS[tok.type], value=tok.value, offset=offset)


def _lex_error(text: str, offset: int) -> FlowSyntaxError:
    rest = text[offset:]
    # `name:"abc` stops the step token right before the colon
    stripped = rest.lstrip(": \t")
    quote_at = offset + (len(rest) - len(stripped))
    if stripped.startswith('"'):
        if _CLOSED_QUOTE_RE.match(stripped) is None:
            return FlowSyntaxError(
                f"Unterminated quote starting at char {quote_at}: add the closing '\"' to the instruction",
                offset=quote_at,
            )
        return FlowSyntaxError(
            f"Instruction at char {quote_at} is not attached to a step name; "
            f"write it as name:\"...\"",
            offset=quote_at,
        )
    if rest.startswith("(if"):
        return FlowSyntaxError(
            f"Unterminated condition starting at char {offset}: close it with ')' "
            f"(nested parentheses are not allowed inside a condition)",
            offset=offset,
        )
    if rest.startswith("("):
        return FlowSyntaxError(
            f"Condition at char {offset} must start with '(if ', e.g. (if failed)~> fixer",
            offset=offset,
        )
    return FlowSyntaxError(
        f"Unexpected character {rest[:1]!r} at char {offset}: "
        f"expected a step name, '@checkpoint', '[', ']', '->', '||' or '~>'",
        offset=offset,
    )
