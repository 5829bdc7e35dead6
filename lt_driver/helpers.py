"""Helper executable locations and their argument contracts."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Sequence

TOOLS_ROOT_NAME = "LoadGenTool"

SELECTION_HELPER_NAME = "updatedRandom.exe"
SUBMISSION_HELPER_NAME = "lrsGatewayTester.exe"
METRICS_HELPER_NAME = "LRSMetrics.exe"

SELECTION_HELPER_ENV = "LT_SELECTION_HELPER"
SUBMISSION_HELPER_ENV = "LT_SUBMISSION_HELPER"
METRICS_HELPER_ENV = "LT_METRICS_HELPER"
TOOLS_ROOT_ENV = "LT_TOOLS_ROOT"


def find_tools_root(start: Path | str | None = None) -> Path | None:
    """Return the nearest ancestor of `start` named ``LoadGenTool``."""
    current = Path(start or Path.cwd()).resolve()
    for candidate in (current, *current.parents):
        if candidate.name == TOOLS_ROOT_NAME:
            return candidate
    return None


@dataclass(frozen=True)
class HelperPaths:
    """Where the three helper executables live."""

    selection: Path
    submission: Path
    metrics_monitor: Path

    @classmethod
    def from_root(cls, root: Path | str) -> "HelperPaths":
        base = Path(root)
        return cls(
            selection=base / SELECTION_HELPER_NAME,
            submission=base / SUBMISSION_HELPER_NAME,
            metrics_monitor=base / METRICS_HELPER_NAME,
        )

    @classmethod
    def from_env(
        cls,
        env: Mapping[str, str] | None = None,
        base_dir: Path | str | None = None,
    ) -> "HelperPaths":
        """Explicit per-helper variables win over the tools root.

        The tools root is `LT_TOOLS_ROOT`, else the nearest ``LoadGenTool``
        ancestor of `base_dir`, else `base_dir` itself.
        """
        env = os.environ if env is None else env
        root: Path | str | None = env.get(TOOLS_ROOT_ENV)
        if not root:
            start = Path(base_dir) if base_dir is not None else Path.cwd()
            root = find_tools_root(start) or start
        defaults = cls.from_root(root)
        return cls(
            selection=Path(env.get(SELECTION_HELPER_ENV) or defaults.selection),
            submission=Path(env.get(SUBMISSION_HELPER_ENV) or defaults.submission),
            metrics_monitor=Path(
                env.get(METRICS_HELPER_ENV) or defaults.metrics_monitor
            ),
        )


def selection_arguments(queues: Sequence[str]) -> list[str]:
    return ["-queues", ",".join(queues)]


def submission_arguments(
    gateway_url: str,
    username: str,
    password: str,
    queue: str,
    job: str,
    batch_size: int,
) -> list[str]:
    return [
        "-g", gateway_url,
        "-u", username,
        "-p", password,
        "-q", queue,
        "-j", job,
        "-t", str(batch_size),
    ]


def metrics_monitor_arguments(session_id: str, total_jobs: int) -> list[str]:
    return ["-sessID", session_id, "-jobsAmount", str(total_jobs)]
