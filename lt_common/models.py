"""Run configuration and batch planning shared by controller and driver."""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass
from typing import Iterator

from pydantic import BaseModel, ConfigDict, Field, field_validator

DRIVER_PIPE_PREFIX = "CLTto1DPipe"
METRICS_PIPE_PREFIX = "MetricsPipe"

_QUEUE_SPLIT_RE = re.compile(r"[,\s]+")


def generate_pipe_name(prefix: str = DRIVER_PIPE_PREFIX) -> str:
    """Return a pipe name that is unique per call."""
    return f"{prefix}_{uuid.uuid4().hex}"


def parse_queue_list(text: str) -> list[str]:
    """Split a space- and/or comma-delimited queue list, dropping blanks."""
    return [item for item in _QUEUE_SPLIT_RE.split(text.strip()) if item]


def total_batches(total_jobs: int, step_size: int) -> int:
    """Number of batches needed to submit `total_jobs` in steps of `step_size`."""
    if total_jobs <= 0 or step_size <= 0:
        raise ValueError("total_jobs and step_size must be positive")
    return -(-total_jobs // step_size)


@dataclass(frozen=True)
class BatchPlan:
    """Deterministic split of a run into batches."""

    total_jobs: int
    step_size: int

    def __post_init__(self) -> None:
        if self.total_jobs <= 0 or self.step_size <= 0:
            raise ValueError("total_jobs and step_size must be positive")

    @property
    def total_batches(self) -> int:
        return total_batches(self.total_jobs, self.step_size)

    def batch_size(self, submitted: int) -> int:
        """Size of the next batch once `submitted` jobs went out."""
        return max(0, min(self.step_size, self.total_jobs - submitted))

    def batch_sizes(self) -> Iterator[int]:
        submitted = 0
        while submitted < self.total_jobs:
            size = self.batch_size(submitted)
            yield size
            submitted += size


class GatewayCredentials(BaseModel):
    """Gateway account and session values handed to the driver."""

    model_config = ConfigDict(frozen=True)

    username: str = Field(min_length=1)
    password: str = Field(min_length=1)
    session_id: str = Field(min_length=1)
    host: str = Field(min_length=1, description="Gateway host name")
    soap_token: str = Field(default="", description="Opaque gateway logon token")
    vps_id: str = Field(default="", description="Print server identifier")

    @property
    def gateway_url(self) -> str:
        return f"https://{self.host}/lrs.gateway"


class RunConfig(BaseModel):
    """Immutable parameters of one load test run."""

    model_config = ConfigDict(frozen=True)

    total_jobs: int = Field(gt=0)
    step_size: int = Field(gt=0)
    credentials: GatewayCredentials
    queues: tuple[str, ...] = Field(min_length=1)
    pipe_name: str = Field(default_factory=generate_pipe_name, min_length=1)

    @field_validator("queues", mode="before")
    @classmethod
    def _split_queues(cls, value):
        if isinstance(value, str):
            return tuple(parse_queue_list(value))
        return value

    @field_validator("queues")
    @classmethod
    def _reject_blank_queues(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        cleaned = tuple(item.strip() for item in value)
        if any(not item for item in cleaned):
            raise ValueError("queue names must not be blank")
        return cleaned

    def batch_plan(self) -> BatchPlan:
        return BatchPlan(self.total_jobs, self.step_size)

    def with_fresh_pipe_name(self) -> "RunConfig":
        return self.model_copy(update={"pipe_name": generate_pipe_name()})

    def driver_arguments(self) -> list[str]:
        """Flag/value argv understood by the driver process."""
        creds = self.credentials
        return [
            "-soapToken", creds.soap_token,
            "-totalJobs", str(self.total_jobs),
            "-stepValue", str(self.step_size),
            "-hostname", creds.host,
            "-vpsid", creds.vps_id,
            "-username", creds.username,
            "-password", creds.password,
            "-sessionId", creds.session_id,
            "-pipeName", self.pipe_name,
            "-queues", " ".join(self.queues),
        ]
