"""Environment variable parsing utilities."""

from __future__ import annotations

import shlex
from typing import Mapping


def parse_bool_env(value: str | None) -> bool | None:
    """Parse a boolean from an environment variable string.

    Returns True for "1", "true", "yes", "on" (case-insensitive).
    Returns None if value is None.
    """
    if value is None:
        return None
    return value.strip().lower() in {"1", "true", "yes", "on"}


def parse_int_env(value: str | None) -> int | None:
    """Parse an integer from an environment variable string.

    Returns None if value is None or cannot be parsed.
    """
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_float_env(value: str | None) -> float | None:
    """Parse a float from an environment variable string.

    Returns None if value is None or cannot be parsed.
    """
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_command_env(value: str | None) -> list[str] | None:
    """Split a command line stored in an environment variable.

    Uses POSIX shell quoting rules. Returns None for unset or blank values.
    """
    if value is None or not value.strip():
        return None
    return shlex.split(value)


def collect_env(
    env: Mapping[str, str], mapping: Mapping[str, str], parser
) -> dict[str, object]:
    """Parse every present variable of `mapping` (env name -> field name).

    Values the parser rejects (returns None) are left out so model defaults
    apply.
    """
    values: dict[str, object] = {}
    for env_name, field_name in mapping.items():
        parsed = parser(env.get(env_name))
        if parsed is not None:
            values[field_name] = parsed
    return values
