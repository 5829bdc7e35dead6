import pytest

from lt_common.config.env import (
    collect_env,
    parse_bool_env,
    parse_command_env,
    parse_float_env,
    parse_int_env,
)
from lt_common.errors import (
    ConfigurationError,
    LTError,
    PipeConnectTimeout,
    PipeError,
    SelectionContractViolation,
    SubprocessError,
    error_to_payload,
    wrap_error,
)


pytestmark = pytest.mark.unit_common


def test_error_hierarchy():
    assert issubclass(PipeConnectTimeout, PipeError)
    assert issubclass(SelectionContractViolation, SubprocessError)
    assert issubclass(ConfigurationError, LTError)


def test_wrap_error_keeps_cause_and_normalizes_context():
    cause = OSError("boom")
    error = wrap_error(
        PipeError, "pipe broke", context={"path": object(), "n": [1, (2, 3)]}, cause=cause
    )
    assert error.__cause__ is cause
    assert error.context["n"] == [1, [2, 3]]
    assert isinstance(error.context["path"], str)


def test_error_payload():
    payload = error_to_payload(ConfigurationError("bad", context={"flag": "totalJobs"}))
    assert payload == {
        "error_type": "ConfigurationError",
        "error": "bad",
        "error_context": {"flag": "totalJobs"},
    }
    assert ConfigurationError("bad").to_dict()["type"] == "ConfigurationError"


def test_env_parsers():
    assert parse_bool_env("Yes") is True
    assert parse_bool_env("0") is False
    assert parse_bool_env(None) is None
    assert parse_int_env("7") == 7
    assert parse_int_env("seven") is None
    assert parse_float_env("0.5") == 0.5
    assert parse_float_env("x") is None
    assert parse_command_env("python -m 'lt driver'") == ["python", "-m", "lt driver"]
    assert parse_command_env("  ") is None


def test_collect_env_skips_unparseable_values():
    env = {"A": "1.5", "B": "nope"}
    values = collect_env(env, {"A": "a", "B": "b", "C": "c"}, parse_float_env)
    assert values == {"a": 1.5}
