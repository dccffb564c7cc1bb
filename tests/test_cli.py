"""
Tests for the CLI module.

Tests the command-line interface using Click's testing utilities.
"""

import logging
from unittest.mock import MagicMock, patch

import pytest
import yaml
from click.testing import CliRunner

from gcontact_relay import __version__
from gcontact_relay.cli import cli, open_buffer, open_lock
from gcontact_relay.config.relay_config import (
    ConfigurationError,
    PartyIdentity,
    RelayConfig,
)
from gcontact_relay.storage.db import BufferDatabase
from gcontact_relay.storage.lock import FileLock, LeaseLock
from gcontact_relay.storage.sheet import SheetBuffer
from gcontact_relay.sync.engine import RunReport, RunState
from gcontact_relay.sync.record import BufferRow
from gcontact_relay.sync.stats import Direction, RunStats
from gcontact_relay.utils.logging import ROOT_LOGGER_NAME

ALICE = "alice@example.com"
BOB = "bob@example.com"


@pytest.fixture(autouse=True)
def restore_package_logger():
    """The CLI points console logging at the runner's captured stream."""
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    handlers = list(logger.handlers)
    level = logger.level
    propagate = logger.propagate
    yield
    logger.handlers = handlers
    logger.setLevel(level)
    logger.propagate = propagate


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def config_dir(tmp_path, monkeypatch):
    """A configuration directory with file logging disabled."""
    monkeypatch.setenv("GCONTACT_RELAY_LOG_FILE", "none")
    monkeypatch.delenv("GCONTACT_RELAY_PARTY", raising=False)
    monkeypatch.delenv("GCONTACT_RELAY_CONFIG_FILE", raising=False)
    return tmp_path / "config"


@pytest.fixture
def configured_dir(config_dir):
    """A configuration directory holding a valid sqlite configuration."""
    config_dir.mkdir(parents=True)
    (config_dir / "config.yaml").write_text(
        yaml.safe_dump({"parties": [ALICE, BOB], "lock_timeout_ms": 100})
    )
    return config_dir


def invoke(runner, config_dir, *args):
    return runner.invoke(cli, ["--config-dir", str(config_dir), *args])


class TestCLIBasics:
    """Tests for the command group itself."""

    def test_help(self, runner):
        result = runner.invoke(cli, ["--help"])

        assert result.exit_code == 0
        for command in ("auth", "status", "init-config", "sync", "pull", "push"):
            assert command in result.output

    def test_version(self, runner):
        result = runner.invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_invalid_config_is_reported(self, runner, config_dir):
        """A config file with bad types warns, then commands fail."""
        config_dir.mkdir(parents=True)
        (config_dir / "config.yaml").write_text("lock_timeout_ms: soon\n")

        result = invoke(runner, config_dir, "sync", "--party", ALICE)

        assert result.exit_code == 1
        assert "Configuration error" in result.output


class TestInitConfigCommand:
    """Tests for the init-config command."""

    def test_creates_config_file(self, runner, config_dir):
        result = invoke(
            runner, config_dir, "init-config", "--party", ALICE, "--party", BOB
        )

        assert result.exit_code == 0
        data = yaml.safe_load((config_dir / "config.yaml").read_text())
        assert data["parties"] == [ALICE, BOB]

    def test_requires_two_parties(self, runner, config_dir):
        result = invoke(runner, config_dir, "init-config", "--party", ALICE)

        assert result.exit_code == 1
        assert "exactly twice" in result.output
        assert not (config_dir / "config.yaml").exists()

    def test_refuses_to_overwrite(self, runner, configured_dir):
        result = invoke(runner, configured_dir, "init-config")

        assert result.exit_code == 1
        assert "--force" in result.output

    def test_force_overwrites(self, runner, configured_dir):
        result = invoke(runner, configured_dir, "init-config", "--force")

        assert result.exit_code == 0
        assert "party-one@example.com" in (configured_dir / "config.yaml").read_text()


class TestMissingConfiguration:
    """Commands that need a configuration fail cleanly without one."""

    @pytest.mark.parametrize(
        "args",
        [
            ["status"],
            ["sync", "--party", ALICE],
            ["pull", "--party", ALICE],
            ["push", "--party", ALICE],
            ["auth", "--party", ALICE],
            ["daemon", "--party", ALICE],
        ],
    )
    def test_exits_with_error(self, runner, config_dir, args):
        result = invoke(runner, config_dir, *args)

        assert result.exit_code == 1
        assert "init-config" in result.output

    def test_party_is_required(self, runner, configured_dir):
        result = invoke(runner, configured_dir, "sync")

        assert result.exit_code == 2
        assert "--party" in result.output


class TestRunCommands:
    """Tests for sync, pull and push with a mocked orchestrator."""

    @staticmethod
    def orchestrator_returning(report):
        orchestrator = MagicMock()
        orchestrator.sync.return_value = report
        orchestrator.pull.return_value = report
        orchestrator.push.return_value = report
        return orchestrator

    @patch("gcontact_relay.cli.main.build_orchestrator")
    def test_sync_success(self, mock_build, runner, configured_dir):
        report = RunReport(Direction.SYNC, RunState.IDLE, RunStats(pushed=2, new=1))
        mock_build.return_value = self.orchestrator_returning(report)

        result = invoke(runner, configured_dir, "sync", "--party", ALICE)

        assert result.exit_code == 0
        assert "Rows pushed:      2" in result.output
        assert "Contacts created: 1" in result.output
        mock_build.return_value.sync.assert_called_once()
        assert mock_build.call_args.args[1] == ALICE

    @patch("gcontact_relay.cli.main.build_orchestrator")
    def test_party_from_environment(self, mock_build, runner, configured_dir):
        report = RunReport(Direction.PUSH, RunState.IDLE)
        mock_build.return_value = self.orchestrator_returning(report)

        result = runner.invoke(
            cli,
            ["--config-dir", str(configured_dir), "push"],
            env={"GCONTACT_RELAY_PARTY": BOB},
        )

        assert result.exit_code == 0
        mock_build.return_value.push.assert_called_once()
        assert mock_build.call_args.args[1] == BOB

    @patch("gcontact_relay.cli.main.build_orchestrator")
    def test_aborted_run_exits_with_error(self, mock_build, runner, configured_dir):
        report = RunReport(
            Direction.SYNC,
            RunState.ABORTED,
            error="Could not acquire lock within 100 ms",
        )
        mock_build.return_value = self.orchestrator_returning(report)

        result = invoke(runner, configured_dir, "sync", "--party", ALICE)

        assert result.exit_code == 1
        assert "Could not acquire lock" in result.output

    @patch("gcontact_relay.cli.main.build_orchestrator")
    def test_row_failures_do_not_fail_the_command(
        self, mock_build, runner, configured_dir
    ):
        """Per-row failures are reported but the run itself completed."""
        stats = RunStats()
        stats.record_failure("create rejected")
        report = RunReport(Direction.PULL, RunState.IDLE, stats)
        mock_build.return_value = self.orchestrator_returning(report)

        result = invoke(runner, configured_dir, "pull", "--party", ALICE)

        assert result.exit_code == 0
        assert "create rejected" in result.output

    @patch("gcontact_relay.cli.main.build_orchestrator")
    def test_unknown_party(self, mock_build, runner, configured_dir):
        mock_build.side_effect = ConfigurationError("Unknown party: eve")

        result = invoke(runner, configured_dir, "sync", "--party", "eve")

        assert result.exit_code == 1
        assert "Unknown party" in result.output

    def test_unauthenticated_party(self, runner, configured_dir):
        result = invoke(runner, configured_dir, "sync", "--party", ALICE)

        assert result.exit_code == 1
        assert "gcontact-relay auth --party" in result.output


class TestStatusCommand:
    """Tests for the status command."""

    def test_status_before_any_run(self, runner, configured_dir):
        result = invoke(runner, configured_dir, "status")

        assert result.exit_code == 0
        assert "Not authenticated" in result.output
        assert "not initialized" in result.output
        assert f"gcontact-relay auth --party {BOB}" in result.output

    def test_status_shows_buffer_counts(self, runner, configured_dir):
        db = BufferDatabase(configured_dir / "buffer.db")
        db.initialize()
        db.upsert("fp1", BufferRow("fp1", ALICE, "{}"))

        result = invoke(runner, configured_dir, "status")

        assert result.exit_code == 0
        assert f"{ALICE}: 1 pending, 0 consumed" in result.output


class TestAuthCommand:
    """Tests for the auth command."""

    def test_unknown_party(self, runner, configured_dir):
        result = invoke(runner, configured_dir, "auth", "--party", "eve@example.com")

        assert result.exit_code == 1
        assert "Unknown party" in result.output

    def test_missing_client_secrets(self, runner, configured_dir):
        result = invoke(runner, configured_dir, "auth", "--party", ALICE)

        assert result.exit_code == 1
        assert "People API and Sheets API" in result.output

    @patch("gcontact_relay.cli.main.GoogleAuth")
    def test_already_authenticated(self, mock_auth, runner, configured_dir):
        mock_auth.return_value.is_authenticated.return_value = True

        result = invoke(runner, configured_dir, "auth", "--party", ALICE)

        assert result.exit_code == 0
        assert "already authenticated" in result.output
        mock_auth.return_value.authenticate.assert_not_called()


class TestDaemonCommand:
    """Tests for the daemon command."""

    def test_invalid_interval(self, runner, configured_dir):
        result = invoke(
            runner, configured_dir, "daemon", "--party", ALICE, "--interval", "soon"
        )

        assert result.exit_code == 1
        assert "Invalid interval format" in result.output

    @patch("gcontact_relay.cli.main.DaemonScheduler")
    def test_starts_scheduler(self, mock_scheduler, runner, configured_dir):
        result = invoke(
            runner, configured_dir, "daemon", "--party", ALICE, "--interval", "5m"
        )

        assert result.exit_code == 0
        kwargs = mock_scheduler.call_args.kwargs
        assert kwargs["interval"] == 300
        assert kwargs["run_immediately"] is True
        mock_scheduler.return_value.run.assert_called_once()


class TestOpenBufferAndLock:
    """Tests for wiring the buffer and lock from the configuration."""

    def test_sqlite_uses_file_lock(self, tmp_path):
        config = RelayConfig.from_dict({"parties": [ALICE, BOB]}, config_dir=tmp_path)

        lock = open_lock(config, PartyIdentity(ALICE), MagicMock(spec=BufferDatabase))

        assert isinstance(lock, FileLock)
        assert lock.lock_file == config.lock_file

    def test_sheet_uses_lease_in_spreadsheet(self, tmp_path):
        """Parties on separate machines must share the lock through the sheet."""
        config = RelayConfig.from_dict(
            {
                "parties": [ALICE, BOB],
                "buffer_backend": "sheet",
                "spreadsheet_id": "abc",
                "lock_lease_seconds": 600,
            },
            config_dir=tmp_path,
        )
        sheet = MagicMock(spec=SheetBuffer)

        lock = open_lock(config, PartyIdentity(BOB), sheet)

        assert isinstance(lock, LeaseLock)
        assert lock.store is sheet
        assert lock.owner == BOB
        assert lock.lease_seconds == 600

    def test_sheet_with_lock_file_uses_file_lock(self, tmp_path):
        config = RelayConfig.from_dict(
            {
                "parties": [ALICE, BOB],
                "buffer_backend": "sheet",
                "spreadsheet_id": "abc",
                "lock_file": str(tmp_path / "relay.lock"),
            },
            config_dir=tmp_path,
        )

        lock = open_lock(config, PartyIdentity(ALICE), MagicMock(spec=SheetBuffer))

        assert isinstance(lock, FileLock)

    def test_lease_needs_sheet_buffer(self):
        config = MagicMock(spec=RelayConfig)
        config.lock_file = None

        with pytest.raises(ConfigurationError, match="lock_file is required"):
            open_lock(config, PartyIdentity(ALICE), MagicMock(spec=BufferDatabase))

    def test_sqlite_without_path_raises_configuration_error(self):
        """A missing buffer path is reported, not asserted."""
        config = MagicMock(spec=RelayConfig)
        config.buffer_backend = "sqlite"
        config.buffer_path = None

        with pytest.raises(ConfigurationError, match="buffer_path is required"):
            open_buffer(config, credentials=None)
