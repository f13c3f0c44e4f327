"""Tests for backend result validation.

Whatever a backend returns is validated into a StepResult before the
engine records it.
"""

import pytest
from pydantic import ValidationError

from agentflow.schemas import RunSummary, StepResult, coerce_result


class TestStepResultValidation:
    """Test StepResult coercion rules."""

    def test_bare_value_is_a_success(self):
        """A plain return value becomes the payload of a successful step."""
        result = coerce_result("3 issues")
        assert result.success is True
        assert result.payload == "3 issues"
        assert result.error is None

    def test_dict_with_result_keys_is_validated(self):
        result = coerce_result({"success": "false", "error": "lint failed"})
        assert result.success is False
        assert result.error == "lint failed"

    def test_other_dicts_are_payloads(self):
        """Dicts without success/payload/error keys are data, not results."""
        result = coerce_result({"count": 3})
        assert result.success is True
        assert result.payload == {"count": 3}

    @pytest.mark.parametrize("raw,expected", [
        ("yes", True), ("PASSED", True), ("1", True), ("nope", False), (0, False), (1, True),
    ])
    def test_success_flag_coercion(self, raw, expected):
        assert StepResult(success=raw).success is expected

    def test_failure_gets_an_error_message(self):
        """A failure without an error still explains itself."""
        result = StepResult(success=False)
        assert result.error == "step reported failure without an error message"

    def test_non_string_error_is_stringified(self):
        assert StepResult(success=False, error=ValueError("bad")).error == "bad"

    def test_step_result_passes_through(self):
        original = StepResult(payload=[1, 2])
        assert coerce_result(original) is original


class TestRunSummary:

    def test_status_is_required(self):
        with pytest.raises(ValidationError):
            RunSummary()

    def test_describe_includes_the_message(self):
        summary = RunSummary(status="aborted", completed=["a"], pending=["b"], message="cancelled")
        text = summary.describe()
        assert text.startswith("status=aborted completed=1 pending=['b']")
        assert text.endswith(" - cancelled")
        assert not summary.ok
