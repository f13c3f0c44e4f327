"""Pydantic schemas for step backend results and run summaries.

Every backend response is validated into a StepResult before the engine
looks at it. A backend may return a StepResult, a dict, or a bare value
(taken as a successful payload).
"""

from __future__ import annotations
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator


class StepResult(BaseModel):
    """Schema for one backend invocation."""
    success: bool = True
    payload: Any = None
    error: Optional[str] = None

    @field_validator('success', mode='before')
    @classmethod
    def coerce_to_bool(cls, v: Any) -> bool:
        """Coerce various truthy values to bool."""
        if isinstance(v, bool):
            return v
        if isinstance(v, str):
            return v.lower() in ('true', 'yes', '1', 'ok', 'pass', 'passed', 'success')
        return bool(v)

    @field_validator('error', mode='before')
    @classmethod
    def coerce_error(cls, v: Any) -> Optional[str]:
        if v is None or isinstance(v, str):
            return v
        return str(v)

    @model_validator(mode='after')
    def failure_has_error(self) -> 'StepResult':
        if not self.success and not self.error:
            self.error = "step reported failure without an error message"
        return self


def coerce_result(raw: Any) -> StepResult:
    """Validate whatever a backend returned into a StepResult."""
    if isinstance(raw, StepResult):
        return raw
    if isinstance(raw, dict) and ("success" in raw or "payload" in raw or "error" in raw):
        return StepResult.model_validate(raw)
    return StepResult(success=True, payload=raw)


class RunSummary(BaseModel):
    """Outcome of one run, reported at the end (or on abort)."""
    status: str  # completed | aborted | deadlock | failed
    completed: List[str] = Field(default_factory=list)
    failed: List[str] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)
    pending: List[str] = Field(default_factory=list)
    variables: Dict[str, Any] = Field(default_factory=dict)
    duration_ms: float = 0.0
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.status == "completed"

    def describe(self) -> str:
        parts = [f"status={self.status}", f"completed={len(self.completed)}"]
        if self.failed:
            parts.append(f"failed={self.failed}")
        if self.skipped:
            parts.append(f"skipped={len(self.skipped)}")
        if self.pending:
            parts.append(f"pending={self.pending}")
        parts.append(f"{self.duration_ms:.0f} ms")
        text = " ".join(parts)
        return f"{text} - {self.message}" if self.message else text
