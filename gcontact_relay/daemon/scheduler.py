"""
Foreground periodic runner for one relay party.

Provides a DaemonScheduler class that manages:
- Relay runs at a configurable interval
- Signal handling for graceful shutdown (SIGTERM/SIGINT)
- A PID file per party, so a party never runs two daemons at once
- Statistics of completed, failed and aborted cycles
"""

from __future__ import annotations

import logging
import os
import signal
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from gcontact_relay.utils.paths import party_slug, resolve_config_dir

logger = logging.getLogger(__name__)


class DaemonError(Exception):
    """Base exception for daemon-related errors."""

    pass


class PIDFileError(DaemonError):
    """Raised when PID file operations fail."""

    pass


class DaemonAlreadyRunningError(DaemonError):
    """Raised when a daemon for the same party is already running."""

    pass


def default_pid_file(party: str, config_dir: Path | None = None) -> Path:
    """PID file of a party's daemon inside the configuration directory."""
    return resolve_config_dir(config_dir) / f"daemon_{party_slug(party)}.pid"


@dataclass
class DaemonStats:
    """
    Statistics from daemon operation.

    A cycle is "successful" when the run completed with no failed rows,
    "failed" otherwise (including aborted runs and exceptions).
    """

    started_at: datetime = field(default_factory=datetime.now)
    cycle_count: int = 0
    success_count: int = 0
    error_count: int = 0
    last_run_at: datetime | None = None
    last_run_success: bool = False
    last_error: str | None = None


class PIDFileManager:
    """Creates, reads and removes the PID file of a daemon process."""

    def __init__(self, pid_file: Path):
        self.pid_file = pid_file

    def create(self) -> None:
        """
        Create the PID file with the current process ID.

        Raises:
            PIDFileError: If the PID file cannot be created.
            DaemonAlreadyRunningError: If a daemon is already running.
        """
        existing_pid = self.read()
        if existing_pid is not None:
            if self._is_process_running(existing_pid):
                raise DaemonAlreadyRunningError(
                    f"Daemon already running with PID {existing_pid}"
                )
            logger.warning(
                f"Removing stale PID file (process {existing_pid} not running)"
            )
            self.remove()

        try:
            self.pid_file.parent.mkdir(parents=True, exist_ok=True)
            pid = os.getpid()
            self.pid_file.write_text(str(pid))
            logger.debug(f"Created PID file: {self.pid_file} (PID: {pid})")
        except OSError as e:
            raise PIDFileError(f"Failed to create PID file {self.pid_file}: {e}") from e

    def read(self) -> int | None:
        """
        Read the PID from the PID file.

        Returns:
            The PID stored in the file, or None if the file doesn't exist.

        Raises:
            PIDFileError: If the PID file exists but cannot be read or parsed.
        """
        if not self.pid_file.exists():
            return None

        try:
            content = self.pid_file.read_text().strip()
            return int(content)
        except ValueError as e:
            raise PIDFileError(f"Invalid PID in file {self.pid_file}: {content}") from e
        except OSError as e:
            raise PIDFileError(f"Failed to read PID file {self.pid_file}: {e}") from e

    def remove(self) -> None:
        """Remove the PID file. Does nothing if it doesn't exist."""
        if not self.pid_file.exists():
            return

        try:
            self.pid_file.unlink()
            logger.debug(f"Removed PID file: {self.pid_file}")
        except OSError as e:
            raise PIDFileError(f"Failed to remove PID file {self.pid_file}: {e}") from e

    def _is_process_running(self, pid: int) -> bool:
        try:
            # Signal 0 only checks that the process exists
            os.kill(pid, 0)
            return True
        except ProcessLookupError:
            return False
        except PermissionError:
            return True


class DaemonScheduler:
    """
    Runs a relay callback immediately and then at a fixed interval.

    Usage:
        scheduler = DaemonScheduler(interval=900, pid_file=default_pid_file(party))
        scheduler.set_run_callback(lambda: orchestrator.sync().ok)

        # Blocks until SIGTERM/SIGINT or stop()
        scheduler.run()

    Attributes:
        interval: Seconds between two runs
        pid_file: Path to PID file
        stats: Daemon statistics
    """

    def __init__(
        self,
        interval: int,
        pid_file: Path,
        run_immediately: bool = True,
    ):
        """
        Initialize the daemon scheduler.

        Args:
            interval: Seconds between two runs (must be positive)
            pid_file: Path to PID file
            run_immediately: If True, run once on start before waiting

        Raises:
            ValueError: If interval is not positive
        """
        if interval <= 0:
            raise ValueError(f"Interval must be positive, got {interval}")
        self.interval = interval
        self.run_immediately = run_immediately
        self._pid_manager = PIDFileManager(pid_file)
        self._run_callback: Callable[[], bool] | None = None
        self._running = False
        self._shutdown_requested = False
        self._original_sigterm_handler: signal.Handlers | None = None  # type: ignore[assignment]
        self._original_sigint_handler: signal.Handlers | None = None  # type: ignore[assignment]
        self.stats = DaemonStats()

    @property
    def pid_file(self) -> Path:
        """Get the PID file path."""
        return self._pid_manager.pid_file

    @property
    def is_running(self) -> bool:
        """True while run() is looping."""
        return self._running

    def set_run_callback(self, callback: Callable[[], bool]) -> None:
        """
        Set the function executed on every cycle.

        Args:
            callback: Returns True when the run completed without failures
        """
        self._run_callback = callback

    def _setup_signal_handlers(self) -> None:
        self._original_sigterm_handler = signal.signal(  # type: ignore[assignment]
            signal.SIGTERM, self._signal_handler
        )
        self._original_sigint_handler = signal.signal(  # type: ignore[assignment]
            signal.SIGINT, self._signal_handler
        )
        logger.debug("Signal handlers installed for SIGTERM and SIGINT")

    def _restore_signal_handlers(self) -> None:
        if self._original_sigterm_handler is not None:
            signal.signal(signal.SIGTERM, self._original_sigterm_handler)
        if self._original_sigint_handler is not None:
            signal.signal(signal.SIGINT, self._original_sigint_handler)
        logger.debug("Signal handlers restored")

    def _signal_handler(self, signum: int, frame: object) -> None:
        signal_name = signal.Signals(signum).name
        logger.info(f"Received {signal_name}, stopping after the current run...")
        self._shutdown_requested = True

    def _run_cycle(self) -> bool:
        """
        Execute the callback once and update statistics.

        Returns:
            True if the run succeeded, False otherwise.
        """
        if self._run_callback is None:
            logger.warning("No run callback configured, skipping cycle")
            return False

        self.stats.cycle_count += 1
        self.stats.last_run_at = datetime.now()

        try:
            logger.info(f"Starting run (cycle #{self.stats.cycle_count})")
            success = self._run_callback()
        except Exception as e:
            self.stats.error_count += 1
            self.stats.last_run_success = False
            self.stats.last_error = str(e)
            logger.error(f"Run failed with exception: {e}")
            return False

        if success:
            self.stats.success_count += 1
            self.stats.last_run_success = True
            self.stats.last_error = None
            logger.info("Run completed successfully")
        else:
            self.stats.error_count += 1
            self.stats.last_run_success = False
            logger.warning("Run completed with errors")
        return success

    def _sleep_interruptible(self, seconds: int) -> bool:
        """
        Sleep for the specified duration, checking for shutdown every second.

        Uses wall-clock time so a run is due right after the machine wakes
        from suspend.

        Returns:
            True if sleep completed normally, False if interrupted by shutdown.
        """
        end_time = time.time() + seconds
        while time.time() < end_time and not self._shutdown_requested:
            remaining = end_time - time.time()
            sleep_time = min(1.0, max(0, remaining))
            if sleep_time > 0:
                time.sleep(sleep_time)

        return not self._shutdown_requested

    def run(self) -> None:
        """
        Run the scheduler loop until a shutdown signal is received.

        Raises:
            PIDFileError: If the PID file cannot be written.
            DaemonAlreadyRunningError: If a daemon for this PID file is running.
        """
        logger.info(f"Starting daemon scheduler (interval: {self.interval}s)")

        self._pid_manager.create()
        logger.info(f"Daemon started (PID: {os.getpid()}, PID file: {self.pid_file})")

        self._setup_signal_handlers()

        self._running = True
        self._shutdown_requested = False
        self.stats = DaemonStats()

        try:
            if self.run_immediately:
                self._run_cycle()

            while not self._shutdown_requested:
                logger.debug(f"Sleeping for {self.interval} seconds until next run")
                if not self._sleep_interruptible(self.interval):
                    break
                self._run_cycle()

        finally:
            self._running = False
            self._restore_signal_handlers()
            self._pid_manager.remove()
            logger.info(
                f"Daemon scheduler stopped after {self.stats.cycle_count} run(s) "
                f"({self.stats.error_count} with errors)"
            )

    def stop(self) -> None:
        """
        Request daemon shutdown.

        Can be called from within the run callback or another thread.
        """
        logger.info("Stop requested")
        self._shutdown_requested = True
