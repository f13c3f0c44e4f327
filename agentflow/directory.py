"""Agent Directory: resolves step names to builtin, defined or temporary agents.

Defined agents live in a registry behind the ``AgentRepository`` interface
(``load()`` / ``save()``); the JSON file repository is one implementation.
Temporary agents are registered for the lifetime of one directory and are
written with a leading ``$`` in workflow syntax.
"""
from __future__ import annotations
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol

from pydantic import BaseModel, Field, field_validator
from loguru import logger

from .types import AgentKind

DEFAULT_BUILTINS = ("general-purpose", "debugger")


class AgentDefinition(BaseModel):
    """A reusable step definition."""
    name: str = Field(min_length=1)
    kind: AgentKind = AgentKind.Defined
    description: str = ""
    instructions: str = ""
    model: Optional[str] = None

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v):
        return v.strip() if isinstance(v, str) else v


class AgentRegistryFile(BaseModel):
    agents: List[AgentDefinition] = Field(default_factory=list)


@dataclass(frozen=True)
class Resolution:
    found: bool
    kind: Optional[AgentKind] = None
    definition: Optional[AgentDefinition] = None


class AgentRepository(Protocol):
    def load(self) -> List[AgentDefinition]: ...

    def save(self, agents: List[AgentDefinition]) -> None: ...


class InMemoryAgentRepository:

    def __init__(self, agents: Optional[Iterable[AgentDefinition]] = None):
        self._agents = list(agents or [])

    def load(self) -> List[AgentDefinition]:
        return list(self._agents)

    def save(self, agents: List[AgentDefinition]) -> None:
        self._agents = list(agents)


class JsonAgentRepository:
    """Agent registry stored as ``{"agents": [...]}`` in a JSON file."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def load(self) -> List[AgentDefinition]:
        if not self.path.exists():
            return []
        data = json.loads(self.path.read_text(encoding="utf-8"))
        return AgentRegistryFile.model_validate(data).agents

    def save(self, agents: List[AgentDefinition]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = AgentRegistryFile(agents=list(agents)).model_dump(mode="json")
        self.path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")


class AgentDirectory:

    def __init__(
        self,
        builtins: Iterable[str] = DEFAULT_BUILTINS,
        repository: Optional[AgentRepository] = None,
    ):
        self.builtins = set(builtins)
        self.repository: AgentRepository = repository or InMemoryAgentRepository()
        self._defined: Dict[str, AgentDefinition] = {a.name: a for a in self.repository.load()}
        self._temporary: Dict[str, AgentDefinition] = {}

    # ─── Resolution ──────────────────────────────────────────────

    def resolve(self, name: str) -> Resolution:
        if name.startswith("$"):
            temp = self._temporary.get(name[1:])
            return Resolution(True, AgentKind.Temporary, temp) if temp else Resolution(False)
        if name in self.builtins:
            return Resolution(True, AgentKind.Builtin)
        if name in self._defined:
            return Resolution(True, AgentKind.Defined, self._defined[name])
        return Resolution(False)

    def known_names(self) -> List[str]:
        names = set(self.builtins) | set(self._defined)
        names |= {f"${n}" for n in self._temporary}
        return sorted(names)

    # ─── Registration ────────────────────────────────────────────

    def register_temporary(self, name: str, instructions: str = "", description: str = "", model: Optional[str] = None) -> AgentDefinition:
        name = name.lstrip("$")
        definition = AgentDefinition(
            name=name, kind=AgentKind.Temporary, instructions=instructions,
            description=description, model=model,
        )
        self._temporary[name] = definition
        logger.debug(f"[directory] registered temporary agent '${name}'")
        return definition

    def temporary(self, name: str) -> Optional[AgentDefinition]:
        return self._temporary.get(name.lstrip("$"))

    def temporary_names(self) -> List[str]:
        return list(self._temporary)

    def remove_temporary(self, name: str) -> bool:
        return self._temporary.pop(name.lstrip("$"), None) is not None

    def copy(self) -> "AgentDirectory":
        """A scratch directory sharing builtins and the registry; temporaries are copied."""
        clone = AgentDirectory(self.builtins, self.repository)
        clone._defined = dict(self._defined)
        clone._temporary = dict(self._temporary)
        return clone

    def adopt_temporaries(self, other: "AgentDirectory") -> List[str]:
        """Take over temporaries registered on ``other`` that this directory lacks."""
        added = [name for name in other._temporary if name not in self._temporary]
        for name in added:
            self._temporary[name] = other._temporary[name]
            logger.debug(f"[directory] registered temporary agent '${name}'")
        return added

    def is_defined(self, name: str) -> bool:
        return name in self._defined

    def define(self, definition: AgentDefinition) -> None:
        """Add or replace a defined agent and persist the registry."""
        stored = definition.model_copy(update={"kind": AgentKind.Defined})
        self._defined[stored.name] = stored
        self.repository.save(list(self._defined.values()))
        logger.info(f"[directory] saved defined agent '{stored.name}'")
