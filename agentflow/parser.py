from __future__ import annotations
from pathlib import Path
from typing import List, Optional

from .ast import Checkpoint, Conditional, Node, Parallel, Sequence, Step, Subgraph
from .conditions import DEFAULT_CONDITION
from .errors import FlowSyntaxError
from .tokenizer import tokenize
from .types import Token, TokenKind

_STEP_KINDS = (TokenKind.StepName, TokenKind.StepWithInstruction)


class _Parser:
    """Operator-precedence recursive descent over the token list.

    Binding, tightest first: ``[...]``, ``||``, ``->``, ``~>``. Runs of the
    same operator fold into one Sequence/Parallel node instead of nested pairs.
    """

    def __init__(self, tokens: List[Token], end_offset: int):
        self.tokens = tokens
        self.pos = 0
        self.end_offset = end_offset

    def peek(self, ahead: int = 0) -> Optional[Token]:
        idx = self.pos + ahead
        return self.tokens[idx] if idx < len(self.tokens) else None

    def parse(self) -> Node:
        if not self.tokens:
            raise FlowSyntaxError(
                'Empty workflow: write at least one step, e.g. analyzer:"scan the code"',
                position=0,
                offset=0,
            )
        node = self._conditional()
        tok = self.peek()
        if tok is not None:
            if tok.kind == TokenKind.CloseBracket:
                raise FlowSyntaxError(
                    f"Unmatched ']' at token {self.pos} (char {tok.offset}): remove it or add the opening '['",
                    position=self.pos,
                    offset=tok.offset,
                )
            raise FlowSyntaxError(
                f"Unexpected {tok.value!r} at token {self.pos} (char {tok.offset}): "
                f"join steps with '->', '||' or '~>'",
                position=self.pos,
                offset=tok.offset,
            )
        return node

    def _conditional(self) -> Node:
        left = self._sequence()
        while True:
            tok = self.peek()
            if tok is None:
                break
            if tok.kind == TokenKind.Condition:
                nxt = self.peek(1)
                if nxt is None or nxt.kind != TokenKind.Conditional:
                    raise FlowSyntaxError(
                        f"Condition '({tok.value})' at char {tok.offset} must be followed by '~>', "
                        f"e.g. tester ({tok.value})~> fixer",
                        position=self.pos + 1,
                        offset=tok.offset,
                    )
                condition = tok.value
                self.pos += 2
            elif tok.kind == TokenKind.Conditional:
                condition = DEFAULT_CONDITION
                self.pos += 1
            else:
                break
            right = self._sequence()
            left = Conditional(source=left, condition=condition, target=right)
        return left

    def _sequence(self) -> Node:
        items = [self._parallel()]
        while self._accept(TokenKind.Sequential):
            items.append(self._parallel())
        return items[0] if len(items) == 1 else Sequence(tuple(items))

    def _parallel(self) -> Node:
        items = [self._primary()]
        while self._accept(TokenKind.Parallel):
            items.append(self._primary())
        return items[0] if len(items) == 1 else Parallel(tuple(items))

    def _primary(self) -> Node:
        tok = self.peek()
        if tok is None:
            raise FlowSyntaxError(
                f"Unexpected end of workflow at token {self.pos} (char {self.end_offset}): "
                f"expected a step, '@checkpoint' or '[' after the last operator",
                position=self.pos,
                offset=self.end_offset,
            )
        if tok.kind in _STEP_KINDS:
            self.pos += 1
            return Step(name=tok.name or tok.value, instruction=tok.instruction, capture=tok.capture, offset=tok.offset)
        if tok.kind == TokenKind.Checkpoint:
            self.pos += 1
            return Checkpoint(label=tok.value[1:], offset=tok.offset)
        if tok.kind == TokenKind.OpenBracket:
            return self._bracketed(tok)
        raise FlowSyntaxError(
            f"Unexpected {tok.value!r} at token {self.pos} (char {tok.offset}): "
            f"expected a step, '@checkpoint' or '['",
            position=self.pos,
            offset=tok.offset,
        )

    def _bracketed(self, open_tok: Token) -> Node:
        open_pos = self.pos
        self.pos += 1
        nxt = self.peek()
        if nxt is not None and nxt.kind == TokenKind.CloseBracket:
            raise FlowSyntaxError(
                f"Empty brackets at token {open_pos} (char {open_tok.offset}): put at least one step inside",
                position=open_pos,
                offset=open_tok.offset,
            )
        child = self._conditional()
        close = self.peek()
        if close is None:
            raise FlowSyntaxError(
                f"Unclosed bracket: '[' at token {open_pos} (char {open_tok.offset}) is never closed; "
                f"expected ']' at token {self.pos} (char {self.end_offset}). Add the missing ']'",
                position=self.pos,
                offset=self.end_offset,
            )
        if close.kind != TokenKind.CloseBracket:
            raise FlowSyntaxError(
                f"Unclosed bracket: '[' at token {open_pos} (char {open_tok.offset}) expected ']' "
                f"at token {self.pos} (char {close.offset}) but found {close.value!r}; "
                f"add ']' or join the steps with an operator",
                position=self.pos,
                offset=close.offset,
            )
        self.pos += 1
        return Subgraph(child=child)

    def _accept(self, kind: TokenKind) -> bool:
        tok = self.peek()
        if tok is not None and tok.kind == kind:
            self.pos += 1
            return True
        return False


def build_ast(tokens: List[Token], end_offset: Optional[int] = None) -> Node:
    if end_offset is None:
        end_offset = (tokens[-1].offset + len(tokens[-1].value)) if tokens else 0
    return _Parser(tokens, end_offset).parse()


def read_source(source: str | Path) -> str:
    if isinstance(source, Path):
        return source.read_text(encoding="utf-8")
    return str(source)


def parse(source: str | Path) -> Node:
    text = read_source(source)
    return build_ast(tokenize(text), len(text))
