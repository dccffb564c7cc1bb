"""
gcontact_relay.daemon - Periodic runner

Runs one party's relay at a fixed interval in the foreground, with signal
handling and a per-party PID file.
"""

import re

_INTERVAL_RE = re.compile(r"^(\d+)\s*([smhd])$")

_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_interval(interval: str | int) -> int:
    """Parse an interval such as "30s", "15m", "1h", "1d" or 900 into seconds.

    Raises:
        ValueError: If the interval is malformed, uses an unknown unit or is
            not positive.
    """
    if isinstance(interval, bool):
        raise ValueError("Invalid interval type: bool. Expected str or int.")

    if isinstance(interval, int):
        seconds = interval
    elif isinstance(interval, str):
        text = interval.lower().strip()
        if text.isdigit():
            seconds = int(text)
        else:
            match = _INTERVAL_RE.match(text)
            if not match:
                raise ValueError(
                    f"Invalid interval format: '{interval}'. "
                    "Use format like '30s', '5m', '1h', or '1d'."
                )
            seconds = int(match.group(1)) * _UNIT_SECONDS[match.group(2)]
    else:
        raise ValueError(
            f"Invalid interval type: {type(interval).__name__}. Expected str or int."
        )

    if seconds <= 0:
        raise ValueError(f"Interval must be positive, got '{interval}'")
    return seconds


# Imports after parse_interval to avoid circular dependencies
from gcontact_relay.daemon.scheduler import (  # noqa: E402
    DaemonAlreadyRunningError,
    DaemonError,
    DaemonScheduler,
    DaemonStats,
    PIDFileError,
    PIDFileManager,
    default_pid_file,
)

# Default interval between two runs
DEFAULT_INTERVAL = "15m"

__all__ = [
    "parse_interval",
    "DaemonScheduler",
    "DaemonStats",
    "DaemonError",
    "PIDFileError",
    "DaemonAlreadyRunningError",
    "PIDFileManager",
    "default_pid_file",
    "DEFAULT_INTERVAL",
]
