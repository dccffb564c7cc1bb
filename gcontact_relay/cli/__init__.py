"""CLI package for gcontact_relay."""

from gcontact_relay.cli.formatters import (
    show_buffer_status,
    show_run_log,
    show_run_report,
)
from gcontact_relay.cli.main import (
    PARTY_ENV_VAR,
    build_orchestrator,
    cli,
    get_relay_config,
    open_buffer,
    open_lock,
)

__all__ = [
    "PARTY_ENV_VAR",
    "build_orchestrator",
    "cli",
    "get_relay_config",
    "open_buffer",
    "open_lock",
    "show_buffer_status",
    "show_run_log",
    "show_run_report",
]
