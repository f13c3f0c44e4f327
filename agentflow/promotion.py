"""Promotion of temporary ($name) agents into defined agents after a run."""
from __future__ import annotations
import re
from dataclasses import dataclass, field
from typing import List, Optional

from loguru import logger

from .directory import AgentDirectory
from .prompt import Prompt

# workflow-specific: file paths, line numbers, bug references, project talk
SPECIFIC_INDICATORS = [
    re.compile(r"src/[a-zA-Z0-9/-]+\.(js|ts|py)"),
    re.compile(r"line \d+", re.IGNORECASE),
    re.compile(r"fix.*bug.*in", re.IGNORECASE),
    re.compile(r"(this project|our codebase)", re.IGNORECASE),
]

GENERIC_INDICATORS = [
    re.compile(r"analyze|scan|check|review|test", re.IGNORECASE),
    re.compile(r"responsibilities:", re.IGNORECASE),
    re.compile(r"output format:", re.IGNORECASE),
]

GENERIC_NAME = re.compile(r"^(analyzer|scanner|checker|reviewer|tester|fixer|validator|formatter)", re.IGNORECASE)


@dataclass(frozen=True)
class Reusability:
    reusable: bool
    reason: str


@dataclass(frozen=True)
class PromotionSuggestion:
    name: str
    recommended: bool
    reason: str


@dataclass
class PromotionResult:
    promoted: List[str] = field(default_factory=list)
    failed: List[tuple] = field(default_factory=list)  # (name, reason)


class AgentPromoter:
    """Decides which temporary agents are worth keeping and saves them."""

    def __init__(self, directory: AgentDirectory):
        self.directory = directory

    def analyze_reusability(self, name: str) -> Reusability:
        definition = self.directory.temporary(name)
        if definition is None:
            return Reusability(False, "Agent not found")
        content = f"{definition.description}\n{definition.instructions}"

        if any(p.search(content) for p in SPECIFIC_INDICATORS):
            return Reusability(
                False,
                "Contains workflow-specific references (file paths, line numbers, or project-specific context)",
            )
        if any(p.search(content) for p in GENERIC_INDICATORS):
            return Reusability(True, "Generic capability with structured format - likely useful for other workflows")
        if GENERIC_NAME.match(definition.name):
            return Reusability(True, "Generic agent name suggests reusable pattern")
        return Reusability(False, "Insufficient indicators of reusability")

    def promotion_suggestions(self, names: Optional[List[str]] = None) -> List[PromotionSuggestion]:
        names = self.directory.temporary_names() if names is None else [n.lstrip("$") for n in names]
        out = []
        for name in names:
            analysis = self.analyze_reusability(name)
            out.append(PromotionSuggestion(name, analysis.reusable, analysis.reason))
        return out

    @staticmethod
    def format_promotion_prompt(suggestions: List[PromotionSuggestion]) -> str:
        text = "Temp agents used in this workflow:\n\n"
        for s in suggestions:
            icon = "✓ [Recommended]" if s.recommended else "✗ [Not recommended]"
            text += f"{icon} {s.name}\n  {s.reason}\n\n"
        return text + "Select which agents to save as permanent defined agents:"

    def promote(self, names: List[str]) -> PromotionResult:
        result = PromotionResult()
        for raw in names:
            name = raw.lstrip("$")
            if self.directory.is_defined(name):
                result.failed.append((name, "Agent already exists in defined agents"))
                continue
            definition = self.directory.temporary(name)
            if definition is None:
                result.failed.append((name, "No temporary agent with that name"))
                continue
            self.directory.define(definition)
            self.directory.remove_temporary(name)
            result.promoted.append(name)
        if result.promoted:
            logger.info(f"[promote] saved {result.promoted}")
        return result

    def cleanup_temporary(self, keep: Optional[List[str]] = None) -> List[str]:
        """Drop every temporary agent not in ``keep``; returns the removed names."""
        kept = {k.lstrip("$") for k in keep or []}
        removed = [n for n in self.directory.temporary_names() if n not in kept]
        for name in removed:
            self.directory.remove_temporary(name)
        return removed

    def offer(self, prompt: Prompt) -> PromotionResult:
        """Ask the operator which temporary agents to keep, promote them, clear the rest."""
        suggestions = self.promotion_suggestions()
        if not suggestions:
            return PromotionResult()
        picked = prompt.ask_many(self.format_promotion_prompt(suggestions), [s.name for s in suggestions])
        result = self.promote(picked)
        self.cleanup_temporary(keep=result.promoted)
        return result
