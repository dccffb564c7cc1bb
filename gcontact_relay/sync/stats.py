"""
Run statistics and run log entries.

Each run produces one RunStats, which becomes one row of the run log:
timestamp | account | direction | pushed | new | merged | failed | errors
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

# Run log columns, in sheet order
RUN_LOG_COLUMNS = (
    "timestamp",
    "account",
    "direction",
    "pushed",
    "new",
    "merged",
    "failed",
    "errors",
)

# Separator between individual error messages in the errors column
ERROR_SEPARATOR = "; "


class Direction(str, Enum):
    """Which phase(s) a run log row describes."""

    PUSH = "push"
    PULL = "pull"
    SYNC = "sync"


@dataclass
class RunStats:
    """
    Counters collected during one run.

    Attributes:
        pushed: Buffer rows inserted or overwritten by the push phase
        new: Local records created from incoming rows
        merged: Local records updated from incoming rows
        failed: Rows or records that could not be processed
        skipped: Records or rows left untouched (echoes, unchanged)
        errors: Human-readable failure messages, in order
    """

    pushed: int = 0
    new: int = 0
    merged: int = 0
    failed: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)

    def record_failure(self, message: str) -> None:
        """Count one failure and keep its message."""
        self.failed += 1
        self.errors.append(message)

    def error_text(self, max_length: int) -> str:
        """Joined error messages, truncated to max_length characters."""
        text = ERROR_SEPARATOR.join(self.errors)
        if max_length >= 0 and len(text) > max_length:
            return text[:max_length]
        return text

    def summary(self) -> str:
        """One-line summary for console output."""
        return (
            f"pushed={self.pushed} new={self.new} merged={self.merged} "
            f"failed={self.failed} skipped={self.skipped}"
        )


@dataclass(frozen=True)
class RunLogEntry:
    """One row of the run log."""

    timestamp: datetime
    account: str
    direction: Direction
    pushed: int = 0
    new: int = 0
    merged: int = 0
    failed: int = 0
    errors: str = ""

    @classmethod
    def from_stats(
        cls,
        account: str,
        direction: Direction,
        stats: RunStats,
        max_error_length: int,
        timestamp: datetime | None = None,
    ) -> RunLogEntry:
        """Build a log entry from a run's statistics."""
        return cls(
            timestamp=timestamp or datetime.now(timezone.utc),
            account=account,
            direction=direction,
            pushed=stats.pushed,
            new=stats.new,
            merged=stats.merged,
            failed=stats.failed,
            errors=stats.error_text(max_error_length),
        )

    def as_list(self) -> list[str | int]:
        """Return the ordered run log cells."""
        return [
            self.timestamp.isoformat(),
            self.account,
            self.direction.value,
            self.pushed,
            self.new,
            self.merged,
            self.failed,
            self.errors,
        ]
