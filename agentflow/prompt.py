"""Interactive Prompt collaborator used by steering.

``ask`` is single-select and returns the chosen label, ``ask_many`` is
multi-select, ``input`` collects free text (replacement syntax, debug
instructions, fork approaches).
"""
from __future__ import annotations
from typing import Callable, Iterable, List, Optional, Protocol

from .errors import SteeringError


class Prompt(Protocol):
    def ask(self, question: str, options: List[str]) -> str: ...

    def ask_many(self, question: str, options: List[str]) -> List[str]: ...

    def input(self, question: str) -> str: ...


class ConsolePrompt:
    """Numbered menus on stdin/stdout."""

    def __init__(self, read: Callable[[str], str] = input, write: Callable[[str], None] = print):
        self._read = read
        self._write = write

    def ask(self, question: str, options: List[str]) -> str:
        while True:
            self._menu(question, options)
            answer = self._read("> ").strip()
            choice = self._match(answer, options)
            if choice is not None:
                return choice
            self._write(f"Please pick one of 1-{len(options)}.")

    def ask_many(self, question: str, options: List[str]) -> List[str]:
        while True:
            self._menu(question + " (comma separated, empty for none)", options)
            answer = self._read("> ").strip()
            if not answer:
                return []
            picked = [self._match(part.strip(), options) for part in answer.split(",") if part.strip()]
            if picked and all(p is not None for p in picked):
                return [p for p in picked if p is not None]
            self._write(f"Please pick from 1-{len(options)}.")

    def input(self, question: str) -> str:
        self._write(question)
        return self._read("> ")

    def _menu(self, question: str, options: List[str]) -> None:
        self._write(question)
        for i, option in enumerate(options, 1):
            self._write(f"  {i}. {option}")

    @staticmethod
    def _match(answer: str, options: List[str]) -> Optional[str]:
        if answer.isdigit() and 1 <= int(answer) <= len(options):
            return options[int(answer) - 1]
        for option in options:
            if option.lower() == answer.lower():
                return option
        return None


class ScriptedPrompt:
    """Answers from a fixed script, for tests and unattended automation.

    Each answer is consumed in order whatever the call type; for ``ask_many``
    an answer may be a list. Options actually offered are recorded in
    ``asked`` so callers can inspect the menus.
    """

    def __init__(self, answers: Iterable[object]):
        self._answers = list(answers)
        self.asked: List[tuple] = []

    def _next(self, question: str, options: Optional[List[str]] = None) -> object:
        self.asked.append((question, list(options or [])))
        if not self._answers:
            raise SteeringError(f"Scripted prompt ran out of answers at: {question}")
        return self._answers.pop(0)

    def ask(self, question: str, options: List[str]) -> str:
        answer = str(self._next(question, options))
        if answer not in options:
            raise SteeringError(f"Scripted answer {answer!r} is not one of {options}")
        return answer

    def ask_many(self, question: str, options: List[str]) -> List[str]:
        answer = self._next(question, options)
        picked = list(answer) if isinstance(answer, (list, tuple)) else [str(answer)]
        unknown = [p for p in picked if p not in options]
        if unknown:
            raise SteeringError(f"Scripted answers {unknown} are not among {options}")
        return picked

    def input(self, question: str) -> str:
        return str(self._next(question))

    @property
    def remaining(self) -> int:
        return len(self._answers)
