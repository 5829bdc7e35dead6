import pytest

from lt_driver import cli
from lt_driver.worker import DriverTimings


pytestmark = pytest.mark.unit_driver

VALID = [
    "-soapToken", "tok", "-totalJobs", "5", "-stepValue", "5", "-hostname", "gw",
    "-vpsid", "v", "-username", "u", "-password", "p", "-sessionId", "s",
    "-pipeName", "CLTto1DPipe_cli", "-queues", "q1",
]


def test_missing_arguments_exit_with_one(capsys):
    assert cli.main(["-totalJobs", "5"]) == 1
    assert "Missing required arguments." in capsys.readouterr().out


def test_invalid_integer_exits_with_one(capsys):
    argv = list(VALID)
    argv[argv.index("-totalJobs") + 1] = "five"
    assert cli.main(argv) == 1
    assert "Invalid arguments" in capsys.readouterr().out


def test_validation_happens_before_any_pipe_is_opened(monkeypatch, pipe_dir):
    monkeypatch.setenv("LT_PIPE_DIR", str(pipe_dir))
    assert cli.main(["-pipeName", "x"]) == 1
    assert list(pipe_dir.iterdir()) == []


def test_unreachable_controller_exits_with_one(monkeypatch, pipe_dir, capsys):
    monkeypatch.setenv("LT_PIPE_DIR", str(pipe_dir))
    monkeypatch.setenv("LT_CONNECT_TIMEOUT", "0.2")
    assert cli.main(VALID) == 1
    out = capsys.readouterr().out
    assert "Could not connect to controller pipe CLTto1DPipe_cli" in out
    assert "Driver state: failed" in out


def test_run_log_file_receives_lines(monkeypatch, pipe_dir, tmp_path):
    log_path = tmp_path / "driver.log"
    monkeypatch.setenv("LT_PIPE_DIR", str(pipe_dir))
    monkeypatch.setenv("LT_CONNECT_TIMEOUT", "0.2")
    monkeypatch.setenv("LT_RUN_LOG", str(log_path))
    cli.main(VALID)
    assert "Driver state: connecting" in log_path.read_text()


def test_timings_from_environment():
    env = {
        "LT_CONNECT_TIMEOUT": "1.5",
        "LT_INTER_BATCH_DELAY": "0",
        "LT_METRICS_THRESHOLD": "bogus",
        "LT_MAX_SUBMISSION_FAILURES": "4",
    }
    timings = DriverTimings.from_env(env)
    assert timings.connect_timeout == 1.5
    assert timings.inter_batch_delay == 0
    assert timings.metrics_threshold == 0.75
    assert timings.max_submission_failures == 4
