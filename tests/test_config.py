import pytest
from pydantic import ValidationError

from agentflow.config import EngineConfig, FailurePolicy


def test_defaults():
    config = EngineConfig()
    assert config.max_concurrency == 5
    assert config.failure_policy == FailurePolicy.Steer
    assert config.unattended_policy == FailurePolicy.Abort
    assert config.node_timeout is None
    assert config.debug_agent == "general-purpose"


def test_from_env_reads_agentflow_variables():
    env = {
        "AGENTFLOW_MAX_CONCURRENCY": "2",
        "AGENTFLOW_NODE_TIMEOUT": "1.5",
        "AGENTFLOW_FAILURE_POLICY": "retry",
        "AGENTFLOW_AUTO_APPROVE": "true",
        "AGENTFLOW_MODEL": "",
        "UNRELATED": "x",
    }
    config = EngineConfig.from_env(env)
    assert config.max_concurrency == 2
    assert config.node_timeout == 1.5
    assert config.failure_policy == FailurePolicy.Retry
    assert config.auto_approve is True
    assert config.default_model is None


def test_overrides_win_and_none_is_ignored():
    env = {"AGENTFLOW_FAILURE_POLICY": "skip", "AGENTFLOW_MAX_CONCURRENCY": "3"}
    config = EngineConfig.from_env(env, failure_policy="abort", max_concurrency=None)
    assert config.failure_policy == FailurePolicy.Abort
    assert config.max_concurrency == 3


@pytest.mark.parametrize("field,value", [
    ("max_concurrency", 0),
    ("node_timeout", -1),
    ("retry_limit", -1),
    ("failure_policy", "panic"),
])
def test_invalid_values_are_rejected(field, value):
    with pytest.raises(ValidationError):
        EngineConfig(**{field: value})


def test_unattended_policy_cannot_be_steer():
    with pytest.raises(ValidationError, match="unattended_policy must be"):
        EngineConfig(unattended_policy="steer")


def test_assignment_is_validated():
    config = EngineConfig()
    with pytest.raises(ValidationError):
        config.max_concurrency = 0
