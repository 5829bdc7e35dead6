import pytest

from lt_common.errors import ConfigurationError
from lt_driver.args import REQUIRED_FLAGS, DriverArgs, parse_flag_pairs


pytestmark = pytest.mark.unit_driver


def _argv(**overrides):
    values = {
        "soapToken": "tok",
        "totalJobs": "100",
        "stepValue": "10",
        "hostname": "gw.example",
        "vpsid": "vps",
        "username": "alice",
        "password": "-starts-with-dash",
        "sessionId": "sess",
        "pipeName": "CLTto1DPipe_x",
        "queues": "q1 q2",
    }
    values.update(overrides)
    argv = []
    for key, value in values.items():
        if value is not None:
            argv += [f"-{key}", value]
    return argv


def test_flag_pairs_strip_dashes_and_ignore_order():
    assert parse_flag_pairs(["--b", "2", "-a", "1", "-dangling"]) == {"a": "1", "b": "2"}


def test_valid_argv_builds_run_config():
    args = DriverArgs.from_argv(_argv())
    config = args.to_run_config()
    assert config.total_jobs == 100
    assert config.step_size == 10
    assert config.queues == ("q1", "q2")
    assert config.pipe_name == "CLTto1DPipe_x"
    assert config.credentials.password == "-starts-with-dash"
    assert args.progress_pipe == "ProgressPipe"


def test_optional_progress_pipe_override():
    args = DriverArgs.from_argv(_argv() + ["-progressPipe", "AltProgress"])
    assert args.progress_pipe == "AltProgress"


@pytest.mark.parametrize("flag", REQUIRED_FLAGS)
def test_each_required_flag_is_enforced(flag):
    with pytest.raises(ConfigurationError) as excinfo:
        DriverArgs.from_argv(_argv(**{flag: None}))
    assert str(excinfo.value) == "Missing required arguments."
    assert excinfo.value.context["missing"] == [flag]


@pytest.mark.parametrize(
    "overrides",
    [{"totalJobs": "many"}, {"stepValue": "1.5"}, {"totalJobs": "0"}, {"stepValue": "-3"}],
)
def test_invalid_integers_are_rejected(overrides):
    with pytest.raises(ConfigurationError):
        DriverArgs.from_argv(_argv(**overrides))


def test_blank_queue_list_is_rejected():
    args = DriverArgs.from_argv(_argv(queues="  "))
    with pytest.raises(ConfigurationError):
        args.to_run_config()
