"""Driver command-line arguments: order-independent flag/value pairs."""

from __future__ import annotations

from typing import Mapping, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from lt_common.errors import ConfigurationError
from lt_common.models import GatewayCredentials, RunConfig
from lt_common.protocol import DEFAULT_PROGRESS_PIPE

REQUIRED_FLAGS: tuple[str, ...] = (
    "soapToken",
    "totalJobs",
    "stepValue",
    "hostname",
    "vpsid",
    "username",
    "password",
    "sessionId",
    "pipeName",
    "queues",
)
OPTIONAL_FLAGS: tuple[str, ...] = ("progressPipe",)


def parse_flag_pairs(argv: Sequence[str]) -> dict[str, str]:
    """Read ``-flag value`` pairs; leading dashes are stripped from flags.

    A trailing flag without a value is ignored. Later duplicates win.
    """
    values: dict[str, str] = {}
    for index in range(0, len(argv) - 1, 2):
        flag = argv[index].lstrip("-")
        if flag:
            values[flag] = argv[index + 1]
    return values


def missing_flags(values: Mapping[str, str]) -> list[str]:
    return [flag for flag in REQUIRED_FLAGS if flag not in values]


def _describe(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ()))
        parts.append(f"{location}: {error.get('msg')}")
    return "; ".join(parts)


class DriverArgs(BaseModel):
    """Validated driver invocation."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    soap_token: str = Field(alias="soapToken")
    total_jobs: int = Field(gt=0, alias="totalJobs")
    step_value: int = Field(gt=0, alias="stepValue")
    hostname: str = Field(min_length=1)
    vps_id: str = Field(alias="vpsid")
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)
    session_id: str = Field(min_length=1, alias="sessionId")
    pipe_name: str = Field(min_length=1, alias="pipeName")
    queues: str = Field(min_length=1)
    progress_pipe: str = Field(default=DEFAULT_PROGRESS_PIPE, alias="progressPipe")

    @classmethod
    def from_argv(cls, argv: Sequence[str]) -> "DriverArgs":
        """Parse and validate argv; raise ConfigurationError when unusable."""
        values = parse_flag_pairs(argv)
        missing = missing_flags(values)
        if missing:
            raise ConfigurationError(
                "Missing required arguments.", context={"missing": missing}
            )
        known = {
            key: value
            for key, value in values.items()
            if key in REQUIRED_FLAGS or key in OPTIONAL_FLAGS
        }
        try:
            return cls.model_validate(known)
        except ValidationError as exc:
            raise ConfigurationError(
                f"Invalid arguments: {_describe(exc)}", cause=exc
            ) from exc

    def to_run_config(self) -> RunConfig:
        try:
            credentials = GatewayCredentials(
                username=self.username,
                password=self.password,
                session_id=self.session_id,
                host=self.hostname,
                soap_token=self.soap_token,
                vps_id=self.vps_id,
            )
            return RunConfig(
                total_jobs=self.total_jobs,
                step_size=self.step_value,
                credentials=credentials,
                queues=self.queues,
                pipe_name=self.pipe_name,
            )
        except ValidationError as exc:
            raise ConfigurationError(
                f"Invalid arguments: {_describe(exc)}", cause=exc
            ) from exc
