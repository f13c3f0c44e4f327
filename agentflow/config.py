from __future__ import annotations
import os
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class FailurePolicy(str, Enum):
    Steer = "steer"
    Retry = "retry"
    Skip = "skip"
    Abort = "abort"


_ENV_FIELDS = {
    "AGENTFLOW_MAX_CONCURRENCY": "max_concurrency",
    "AGENTFLOW_NODE_TIMEOUT": "node_timeout",
    "AGENTFLOW_FAILURE_POLICY": "failure_policy",
    "AGENTFLOW_UNATTENDED_POLICY": "unattended_policy",
    "AGENTFLOW_RETRY_LIMIT": "retry_limit",
    "AGENTFLOW_STRICT_CONDITIONS": "strict_conditions",
    "AGENTFLOW_AUTO_APPROVE": "auto_approve",
    "AGENTFLOW_MODEL": "default_model",
    "AGENTFLOW_PROMPT_TIMEOUT": "prompt_timeout",
    "AGENTFLOW_MAX_LOOPS": "max_loop_iterations",
}


class EngineConfig(BaseModel):
    """Engine settings. Defaults can be overridden through AGENTFLOW_* env vars."""
    model_config = ConfigDict(validate_assignment=True)

    max_concurrency: int = Field(default=5, ge=1, description="Parallel batch ceiling")
    node_timeout: Optional[float] = Field(default=None, gt=0, description="Per-node deadline in seconds")
    failure_policy: FailurePolicy = FailurePolicy.Steer
    unattended_policy: FailurePolicy = FailurePolicy.Abort
    retry_limit: int = Field(default=2, ge=0)
    truncate_limit: int = Field(default=2000, ge=1, description="Max characters per interpolated value")
    strict_conditions: bool = False
    max_loop_iterations: int = Field(default=3, ge=0)
    prompt_timeout: Optional[float] = Field(default=None, gt=0)
    auto_approve: bool = False
    poll_interval: float = Field(default=0.05, gt=0)
    debug_agent: str = "general-purpose"
    default_model: Optional[str] = None

    @field_validator("unattended_policy")
    @classmethod
    def unattended_cannot_steer(cls, v: FailurePolicy) -> FailurePolicy:
        if v == FailurePolicy.Steer:
            raise ValueError("unattended_policy must be retry, skip or abort")
        return v

    @field_validator("node_timeout", "prompt_timeout", "default_model", mode="before")
    @classmethod
    def empty_is_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides: Any) -> "EngineConfig":
        env = os.environ if environ is None else environ
        data: Dict[str, Any] = {}
        for var, field_name in _ENV_FIELDS.items():
            if var in env:
                data[field_name] = env[var]
        data.update({k: v for k, v in overrides.items() if v is not None})
        return cls.model_validate(data)
