"""Configuration parsing helpers."""

from lt_common.config.env import (
    collect_env,
    parse_bool_env,
    parse_command_env,
    parse_float_env,
    parse_int_env,
)

__all__ = [
    "collect_env",
    "parse_bool_env",
    "parse_command_env",
    "parse_float_env",
    "parse_int_env",
]
