"""
Sync engine for the two-party contact relay.

Sequences one run for one party under the shared lock:

    IDLE -> LOCKING -> PULLING -> PUSHING -> IDLE
                  \\
                   -> ABORTED   (lock not acquired in time)

Pull always runs before push. Records just created from incoming rows are
then already Consumed when the push phase builds its echo set, so they are
not sent straight back to the party they came from.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from gcontact_relay.config.relay_config import (
    PartyIdentity,
    RelayConfig,
)
from gcontact_relay.sync.collaborators import Buffer, Directory, Lock, RunLog
from gcontact_relay.sync.pull import PullProcessor
from gcontact_relay.sync.push import BufferReconciler
from gcontact_relay.sync.stats import Direction, RunLogEntry, RunStats

logger = logging.getLogger(__name__)

__all__ = [
    "Direction",
    "RunLogEntry",
    "RunReport",
    "RunState",
    "RunStats",
    "SyncOrchestrator",
]


class RunState(str, Enum):
    """States of a single run."""

    IDLE = "idle"
    LOCKING = "locking"
    PULLING = "pulling"
    PUSHING = "pushing"
    ABORTED = "aborted"


@dataclass
class RunReport:
    """
    Outcome of one run.

    Attributes:
        direction: Which phase(s) the run executed
        state: Final state (IDLE after a completed run, ABORTED if the lock
               could not be acquired)
        stats: Counters collected by the phases that ran
        error: Message of an unexpected failure inside a phase, if any
    """

    direction: Direction
    state: RunState
    stats: RunStats = field(default_factory=RunStats)
    error: str | None = None

    @property
    def aborted(self) -> bool:
        """True if the run never acquired the lock."""
        return self.state is RunState.ABORTED

    @property
    def ok(self) -> bool:
        """True if the run completed without any failure."""
        return not self.aborted and self.error is None and self.stats.failed == 0

    def summary(self) -> str:
        """One-line summary for console output."""
        if self.aborted:
            return f"{self.direction.value}: aborted ({self.error})"
        return f"{self.direction.value}: {self.stats.summary()}"


class SyncOrchestrator:
    """
    Runs pull and push for one party against the shared buffer.

    Usage:
        orchestrator = SyncOrchestrator(
            config=config,
            party="alice@example.com",
            directory=PeopleAPI(credentials, sync_fields=config.sync_fields),
            buffer=buffer,
            run_log=buffer,
            lock=FileLock(config.lock_file),
        )
        report = orchestrator.sync()
        print(report.summary())
    """

    def __init__(
        self,
        config: RelayConfig,
        party: str | PartyIdentity,
        directory: Directory,
        buffer: Buffer,
        run_log: RunLog,
        lock: Lock,
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Relay configuration
            party: Identity this run executes as
            directory: This party's contact directory
            buffer: Shared buffer
            run_log: Where the run's log row is appended
            lock: Lock shared by both parties

        Raises:
            ConfigurationError: If party is not one of the configured parties
        """
        self.config = config
        self.party = config.party(party)
        self.directory = directory
        self.buffer = buffer
        self.run_log = run_log
        self.lock = lock

        self.pull_processor = PullProcessor(config, self.party, directory, buffer)
        self.reconciler = BufferReconciler(config, self.party, directory, buffer)

        self.state = RunState.IDLE
        # Every state entered, in order (reset at the start of each run)
        self.history: list[RunState] = [RunState.IDLE]

    def _enter(self, state: RunState) -> None:
        logger.debug(f"[{self.party}] {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    def sync(self) -> RunReport:
        """Run the pull phase then the push phase."""
        return self._run(Direction.SYNC, pull=True, push=True)

    def pull(self) -> RunReport:
        """Run only the pull phase."""
        return self._run(Direction.PULL, pull=True, push=False)

    def push(self) -> RunReport:
        """Run only the push phase."""
        return self._run(Direction.PUSH, pull=False, push=True)

    def _run(self, direction: Direction, pull: bool, push: bool) -> RunReport:
        self.state = RunState.IDLE
        self.history = [RunState.IDLE]
        stats = RunStats()

        logger.info(f"Starting {direction.value} run as {self.party}")
        self._enter(RunState.LOCKING)

        if not self.lock.acquire(self.config.lock_timeout_ms):
            message = (
                f"Could not acquire lock within {self.config.lock_timeout_ms} ms"
            )
            logger.warning(f"{message}; aborting run")
            self._enter(RunState.ABORTED)
            stats.record_failure(message)
            self._write_log(Direction.SYNC, stats)
            return RunReport(direction, RunState.ABORTED, stats, message)

        error: str | None = None
        try:
            if pull:
                self._enter(RunState.PULLING)
                error = self._phase("pull", self.pull_processor.run, stats)

            # An unexpected pull failure leaves the echo set unreliable
            if push and error is None:
                self._enter(RunState.PUSHING)
                error = self._phase("push", self.reconciler.run, stats)
        finally:
            self.lock.release()
            self._enter(RunState.IDLE)

        self._write_log(direction, stats)
        logger.info(f"Finished {direction.value} run: {stats.summary()}")
        return RunReport(direction, RunState.IDLE, stats, error)

    def _phase(
        self, name: str, run: Callable[[RunStats], RunStats], stats: RunStats
    ) -> str | None:
        """Run one phase, turning an unexpected exception into a failure."""
        try:
            run(stats)
        except Exception as e:
            logger.exception(f"Unexpected error during {name}: {e}")
            stats.record_failure(f"{name}: {e}")
            return str(e)
        return None

    def _write_log(self, direction: Direction, stats: RunStats) -> None:
        entry = RunLogEntry.from_stats(
            account=self.party.identifier,
            direction=direction,
            stats=stats,
            max_error_length=self.config.log_error_max_length,
        )
        try:
            self.run_log.append(entry)
        except Exception as e:
            logger.error(f"Failed to write run log entry: {e}")
