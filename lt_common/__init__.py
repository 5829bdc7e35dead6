"""Shared helpers for the print load tester."""

from lt_common.api import GatewayCredentials, RunConfig, configure_logging

__all__ = ["configure_logging", "GatewayCredentials", "RunConfig"]
