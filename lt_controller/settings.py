"""Controller settings loaded from defaults, environment and files."""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from lt_common.config.env import (
    collect_env,
    parse_command_env,
    parse_float_env,
    parse_int_env,
)
from lt_common.errors import ConfigurationError
from lt_common.pipes import PIPE_DIR_ENV, default_pipe_dir
from lt_common.protocol import DEFAULT_PROGRESS_PIPE


def _default_driver_command() -> list[str]:
    return [sys.executable, "-m", "lt_driver"]


_FLOAT_ENV = {
    "LT_CONNECT_RETRY_DELAY": "connect_retry_delay",
    "LT_CONNECT_ATTEMPT_TIMEOUT": "connect_attempt_timeout",
    "LT_CANCEL_GRACE_PERIOD": "cancel_grace_period",
    "LT_TERMINATION_TIMEOUT": "termination_timeout",
    "LT_PROGRESS_RETRY_DELAY": "progress_retry_delay",
    "LT_METRICS_CONNECT_TIMEOUT": "metrics_connect_timeout",
}
_INT_ENV = {"LT_CONNECT_ATTEMPTS": "connect_attempts"}
_COMMAND_ENV = {
    "LT_DRIVER_COMMAND": "driver_command",
    "LT_METRICS_COMMAND": "metrics_command",
}


class ControllerSettings(BaseModel):
    """How the controller launches, waits for and stops its children."""

    model_config = ConfigDict(extra="forbid")

    driver_command: list[str] = Field(
        default_factory=_default_driver_command,
        min_length=1,
        description="Command prefix launching the driver process",
    )
    connect_attempts: int = Field(default=5, ge=1)
    connect_retry_delay: float = Field(default=1.0, ge=0)
    connect_attempt_timeout: float = Field(default=5.0, gt=0)
    cancel_grace_period: float = Field(
        default=2.0, ge=0, description="Time the driver gets to honour 'cancel'"
    )
    termination_timeout: float = Field(default=5.0, gt=0)
    progress_pipe_name: str = Field(default=DEFAULT_PROGRESS_PIPE, min_length=1)
    progress_retry_delay: float = Field(default=1.0, ge=0)
    pipe_dir: Path | None = Field(
        default=None, description="Directory of pipe sockets; temp dir when unset"
    )
    metrics_command: list[str] | None = Field(
        default=None, description="Metrics collection helper run after completed runs"
    )
    metrics_connect_timeout: float = Field(default=10.0, gt=0)
    driver_env: dict[str, str] = Field(default_factory=dict)

    @field_validator("driver_command", "metrics_command", mode="before")
    @classmethod
    def _split_command(cls, value: Any) -> Any:
        if isinstance(value, str):
            return parse_command_env(value)
        return value

    @classmethod
    def from_env(
        cls, env: Mapping[str, str] | None = None, **overrides: Any
    ) -> "ControllerSettings":
        env = os.environ if env is None else env
        values: dict[str, Any] = {}
        values.update(collect_env(env, _FLOAT_ENV, parse_float_env))
        values.update(collect_env(env, _INT_ENV, parse_int_env))
        values.update(collect_env(env, _COMMAND_ENV, parse_command_env))
        if env.get("LT_PROGRESS_PIPE"):
            values["progress_pipe_name"] = env["LT_PROGRESS_PIPE"]
        if env.get(PIPE_DIR_ENV):
            values["pipe_dir"] = env[PIPE_DIR_ENV]
        values.update(overrides)
        return cls._validated(values, source="environment")

    @classmethod
    def from_file(cls, path: Path | str, **overrides: Any) -> "ControllerSettings":
        """Load settings from a YAML or JSON mapping."""
        config_path = Path(path)
        if not config_path.exists():
            raise ConfigurationError(
                f"Settings file not found: {config_path}",
                context={"path": str(config_path)},
            )
        text = config_path.read_text(encoding="utf-8")
        try:
            if config_path.suffix.lower() == ".json":
                data = json.loads(text or "{}")
            else:
                data = yaml.safe_load(text) or {}
        except (json.JSONDecodeError, yaml.YAMLError) as exc:
            raise ConfigurationError(
                f"Cannot parse settings file {config_path}: {exc}",
                context={"path": str(config_path)},
                cause=exc,
            ) from exc
        if not isinstance(data, dict):
            raise ConfigurationError(
                "Settings file must contain a mapping at the top level.",
                context={"path": str(config_path)},
            )
        data.update(overrides)
        return cls._validated(data, source=str(config_path))

    @classmethod
    def _validated(cls, values: Mapping[str, Any], source: str) -> "ControllerSettings":
        try:
            return cls.model_validate(dict(values))
        except ValidationError as exc:
            raise ConfigurationError(
                f"Invalid controller settings from {source}: {exc}",
                context={"source": source},
                cause=exc,
            ) from exc

    def resolved_pipe_dir(self) -> Path:
        return self.pipe_dir if self.pipe_dir is not None else default_pipe_dir()

    def child_env(self) -> dict[str, str]:
        """Environment for child processes: ours, the extras, and the pipe dir."""
        env = dict(os.environ)
        env.update(self.driver_env)
        env[PIPE_DIR_ENV] = str(self.resolved_pipe_dir())
        env.setdefault("PYTHONUNBUFFERED", "1")
        return env
