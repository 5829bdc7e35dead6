import json
import sys
from pathlib import Path

import pytest

from lt_common.errors import ConfigurationError
from lt_controller.settings import ControllerSettings


pytestmark = pytest.mark.unit_controller


def test_defaults_launch_the_bundled_driver():
    settings = ControllerSettings()
    assert settings.driver_command == [sys.executable, "-m", "lt_driver"]
    assert settings.connect_attempts == 5
    assert settings.connect_retry_delay == 1.0
    assert settings.progress_pipe_name == "ProgressPipe"
    assert settings.metrics_command is None


def test_command_strings_are_split():
    settings = ControllerSettings(driver_command="/opt/lt/driver --verbose")
    assert settings.driver_command == ["/opt/lt/driver", "--verbose"]


def test_from_env_reads_overrides(tmp_path):
    env = {
        "LT_CONNECT_ATTEMPTS": "2",
        "LT_CONNECT_RETRY_DELAY": "0.5",
        "LT_CANCEL_GRACE_PERIOD": "1.5",
        "LT_DRIVER_COMMAND": "driver-bin --flag",
        "LT_METRICS_COMMAND": "collector",
        "LT_PROGRESS_PIPE": "OtherProgress",
        "LT_PIPE_DIR": str(tmp_path),
    }
    settings = ControllerSettings.from_env(env)

    assert settings.connect_attempts == 2
    assert settings.connect_retry_delay == 0.5
    assert settings.cancel_grace_period == 1.5
    assert settings.driver_command == ["driver-bin", "--flag"]
    assert settings.metrics_command == ["collector"]
    assert settings.progress_pipe_name == "OtherProgress"
    assert settings.resolved_pipe_dir() == tmp_path


def test_from_env_explicit_overrides_win():
    settings = ControllerSettings.from_env({"LT_CONNECT_ATTEMPTS": "2"}, connect_attempts=7)
    assert settings.connect_attempts == 7


def test_from_env_ignores_unparsable_values():
    settings = ControllerSettings.from_env({"LT_CONNECT_ATTEMPTS": "many"})
    assert settings.connect_attempts == 5


@pytest.mark.parametrize("value", ["0", "-1"])
def test_from_env_rejects_out_of_range_values(value):
    with pytest.raises(ConfigurationError):
        ControllerSettings.from_env({"LT_CONNECT_ATTEMPTS": value})


def test_from_yaml_file(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text(
        "connect_attempts: 3\n"
        "driver_command: [python, -m, lt_driver]\n"
        "driver_env:\n"
        "  LT_INTER_BATCH_DELAY: '0'\n"
    )
    settings = ControllerSettings.from_file(path)
    assert settings.connect_attempts == 3
    assert settings.driver_command == ["python", "-m", "lt_driver"]
    assert settings.driver_env == {"LT_INTER_BATCH_DELAY": "0"}


def test_from_json_file(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"termination_timeout": 2.5}))
    assert ControllerSettings.from_file(path).termination_timeout == 2.5


def test_empty_file_uses_defaults(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text("")
    assert ControllerSettings.from_file(path) == ControllerSettings()


@pytest.mark.parametrize(
    "content",
    ["- just\n- a list\n", "connect_attempts: [unclosed\n", "unknown_field: 1\n"],
)
def test_bad_files_raise_configuration_error(tmp_path, content):
    path = tmp_path / "settings.yaml"
    path.write_text(content)
    with pytest.raises(ConfigurationError):
        ControllerSettings.from_file(path)


def test_missing_file_raises_configuration_error(tmp_path):
    with pytest.raises(ConfigurationError) as excinfo:
        ControllerSettings.from_file(tmp_path / "absent.yaml")
    assert "not found" in str(excinfo.value)


def test_child_env_carries_pipe_dir_and_extras(monkeypatch, tmp_path):
    monkeypatch.delenv("PYTHONUNBUFFERED", raising=False)
    settings = ControllerSettings(pipe_dir=tmp_path, driver_env={"EXTRA": "1"})
    env = settings.child_env()
    assert env["LT_PIPE_DIR"] == str(tmp_path)
    assert env["EXTRA"] == "1"
    assert env["PYTHONUNBUFFERED"] == "1"


def test_pipe_dir_falls_back_to_default(monkeypatch, tmp_path):
    monkeypatch.setenv("LT_PIPE_DIR", str(tmp_path / "pipes"))
    assert ControllerSettings().resolved_pipe_dir() == Path(tmp_path / "pipes")
