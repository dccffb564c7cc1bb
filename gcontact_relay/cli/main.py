"""
Command-line interface for gcontact_relay.

Provides CLI commands for authentication, relay runs and status checking.
Each party runs the relay on its own machine (or account) against the same
shared buffer and lock.

Usage:
    # Show help
    gcontact-relay --help

    # Write a config file listing both parties
    gcontact-relay init-config --party alice@example.com --party bob@example.com

    # Authorize this party's Google account
    gcontact-relay auth --party alice@example.com

    # Check status
    gcontact-relay status

    # Run pull then push
    gcontact-relay sync --party alice@example.com

    # Run every 15 minutes in the foreground
    gcontact-relay daemon --party alice@example.com --interval 15m
"""

import logging
import sys
from pathlib import Path
from typing import Any, Union

import click

from gcontact_relay import __version__
from gcontact_relay.api.people_api import (
    DEFAULT_INITIAL_RETRY_DELAY,
    DEFAULT_MAX_RETRIES,
    DEFAULT_MAX_RETRY_DELAY,
    DEFAULT_PAGE_SIZE,
    PeopleAPI,
    PeopleAPIError,
)
from gcontact_relay.auth.google_auth import (
    DEFAULT_AUTH_TIMEOUT,
    AuthenticationError,
    GoogleAuth,
)
from gcontact_relay.cli.formatters import (
    show_buffer_status,
    show_run_log,
    show_run_report,
)
from gcontact_relay.config.generator import save_config_file
from gcontact_relay.config.loader import DEFAULT_CONFIG_FILE, ConfigError, ConfigLoader
from gcontact_relay.config.relay_config import (
    BACKEND_SHEET,
    ConfigurationError,
    PartyIdentity,
    RelayConfig,
)
from gcontact_relay.daemon import (
    DEFAULT_INTERVAL,
    DaemonAlreadyRunningError,
    DaemonError,
    DaemonScheduler,
    default_pid_file,
    parse_interval,
)
from gcontact_relay.storage.db import BufferDatabase
from gcontact_relay.storage.lock import FileLock, LeaseLock
from gcontact_relay.storage.sheet import SheetBuffer, SheetBufferError
from gcontact_relay.sync.engine import RunReport, SyncOrchestrator
from gcontact_relay.utils import resolve_config_dir
from gcontact_relay.utils.logging import cleanup_old_logs, setup_logging

logger = logging.getLogger(__name__)

# Environment variable naming the party a machine runs as
PARTY_ENV_VAR = "GCONTACT_RELAY_PARTY"

# Number of run log rows shown by `status`
STATUS_LOG_ROWS = 5

Buffer = Union[BufferDatabase, SheetBuffer]


def get_config_file(config_dir: Path, config_file: str | None) -> Path:
    """Get the configuration file path."""
    if config_file:
        return Path(config_file).expanduser()
    return config_dir / DEFAULT_CONFIG_FILE


def get_relay_config(ctx: click.Context) -> RelayConfig:
    """
    Build the relay configuration from the loaded config file.

    Raises:
        ConfigurationError: If there is no configuration or it is invalid
    """
    raw = ctx.obj.get("config") or {}
    if not raw:
        raise ConfigurationError(
            f"No configuration found at {ctx.obj['config_file']}. "
            "Run 'gcontact-relay init-config' and list the two parties."
        )
    return RelayConfig.from_dict(raw, config_dir=ctx.obj["config_dir"])


def open_buffer(config: RelayConfig, credentials: Any) -> Buffer:
    """
    Open the shared buffer configured for this relay.

    Args:
        config: Relay configuration
        credentials: Credentials of the running party (sheet backend only)

    Returns:
        BufferDatabase or SheetBuffer, ready to use
    """
    if config.buffer_backend == BACKEND_SHEET:
        sheet = SheetBuffer(
            credentials,
            spreadsheet_id=config.spreadsheet_id or "",
            log_retention_rows=config.log_retention_rows,
        )
        sheet.ensure_structure()
        return sheet

    if config.buffer_path is None:
        raise ConfigurationError("buffer_path is required for the sqlite backend")
    config.buffer_path.parent.mkdir(parents=True, exist_ok=True)
    database = BufferDatabase(
        str(config.buffer_path), log_retention_rows=config.log_retention_rows
    )
    database.initialize()
    return database


def open_lock(
    config: RelayConfig, me: PartyIdentity, buffer: Buffer
) -> FileLock | LeaseLock:
    """
    Open the lock both parties serialize their runs with.

    A configured lock_file wins. Otherwise the sheet backend keeps a lease
    in its Lock tab, which works across machines.
    """
    if config.lock_file is not None:
        return FileLock(config.lock_file)
    if not isinstance(buffer, SheetBuffer):
        raise ConfigurationError("lock_file is required for the sqlite backend")
    return LeaseLock(
        buffer, owner=me.identifier, lease_seconds=config.lock_lease_seconds
    )


def build_orchestrator(ctx: click.Context, party: str) -> SyncOrchestrator:
    """
    Wire configuration, credentials, directory, buffer and lock for a party.

    Raises:
        ConfigurationError: If the configuration is missing or the party unknown
        AuthenticationError: If the party has not authorized
    """
    config = get_relay_config(ctx)
    raw = ctx.obj.get("config") or {}
    me = config.party(party)

    auth = GoogleAuth(
        parties=config.parties,
        config_dir=ctx.obj["config_dir"],
        auth_timeout=raw.get("auth_timeout", DEFAULT_AUTH_TIMEOUT),
    )
    credentials = auth.require_credentials(me.identifier)

    directory = PeopleAPI(
        credentials,
        sync_fields=config.sync_fields,
        page_size=raw.get("api_page_size", DEFAULT_PAGE_SIZE),
        max_retries=raw.get("api_max_retries", DEFAULT_MAX_RETRIES),
        initial_retry_delay=raw.get(
            "api_initial_retry_delay", DEFAULT_INITIAL_RETRY_DELAY
        ),
        max_retry_delay=raw.get("api_max_retry_delay", DEFAULT_MAX_RETRY_DELAY),
    )
    buffer = open_buffer(config, credentials)

    return SyncOrchestrator(
        config=config,
        party=me,
        directory=directory,
        buffer=buffer,
        run_log=buffer,
        lock=open_lock(config, me, buffer),
    )


def party_option(func: Any) -> Any:
    """The --party option shared by every per-party command."""
    return click.option(
        "--party",
        "-p",
        required=True,
        envvar=PARTY_ENV_VAR,
        help=f"Party identifier this run executes as (or ${PARTY_ENV_VAR}).",
    )(func)


@click.group()
@click.version_option(version=__version__, prog_name="gcontact-relay")
@click.option(
    "--verbose", "-v", is_flag=True, help="Enable verbose output with detailed logging."
)
@click.option(
    "--config-dir",
    "-c",
    type=click.Path(exists=False, file_okay=False, dir_okay=True),
    envvar="GCONTACT_RELAY_CONFIG_DIR",
    help="Configuration directory path (default: ~/.gcontact-relay).",
)
@click.option(
    "--config-file",
    "-f",
    type=click.Path(exists=False, file_okay=True, dir_okay=False),
    envvar="GCONTACT_RELAY_CONFIG_FILE",
    help="Configuration file path (default: <config dir>/config.yaml).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    config_dir: str | None,
    config_file: str | None,
) -> None:
    """
    Two-party Google Contacts relay.

    Keeps the labelled contacts of two Google accounts in step through a
    shared buffer that each party polls on its own schedule.
    """
    ctx.ensure_object(dict)

    resolved_config_dir = resolve_config_dir(config_dir)
    resolved_config_file = get_config_file(resolved_config_dir, config_file)

    ctx.obj["config_dir"] = resolved_config_dir
    ctx.obj["config_file"] = resolved_config_file

    config: dict[str, Any] = {}
    try:
        loader = ConfigLoader(config_dir=resolved_config_dir)
        config = loader.load_from_file(resolved_config_file)
        if config:
            loader.validate(config)
    except ConfigError as e:
        # Commands that need the configuration report it again and fail
        click.echo(
            click.style(f"Warning: Configuration error: {e}", fg="yellow"), err=True
        )
        config = {}

    ctx.obj["config"] = config

    # CLI flag takes precedence over the config file
    effective_verbose = verbose or config.get("verbose", False)
    ctx.obj["verbose"] = effective_verbose

    log_dir = Path(config["log_dir"]).expanduser() if config.get("log_dir") else None
    if log_dir is None:
        log_dir = resolved_config_dir / "logs"

    setup_logging(verbose=effective_verbose, log_dir=log_dir, enable_file_logging=True)
    cleanup_old_logs(log_dir=log_dir, keep_count=config.get("log_retention_count", 10))


# =============================================================================
# Auth Command
# =============================================================================


@cli.command("auth")
@party_option
@click.option(
    "--force",
    "-f",
    is_flag=True,
    help="Force re-authentication even if already authenticated.",
)
@click.pass_context
def auth_command(ctx: click.Context, party: str, force: bool) -> None:
    """
    Authorize a party's Google account.

    Opens a browser window to complete the OAuth flow and stores
    the credentials for future runs.

    Examples:

        gcontact-relay auth --party alice@example.com

        # Force re-authentication
        gcontact-relay auth --party alice@example.com --force
    """
    config_dir = ctx.obj["config_dir"]

    try:
        config = get_relay_config(ctx)
        me = config.party(party)
        auth = GoogleAuth(parties=config.parties, config_dir=config_dir)

        if not force and auth.is_authenticated(me.identifier):
            click.echo(
                click.style(f"{me} is already authenticated.", fg="green")
            )
            click.echo("Use --force to re-authenticate.")
            return

        click.echo(f"Authenticating {me}...")
        auth.authenticate(me.identifier, force_reauth=force)

        email = auth.get_account_email(me.identifier)
        label = f"{me} ({email})" if email and email != me.identifier else str(me)
        click.echo(click.style(f"Successfully authenticated {label}!", fg="green"))
        logger.info(f"Authentication completed for {me}")

    except ConfigurationError as e:
        click.echo(click.style(f"Configuration error: {e}", fg="red"), err=True)
        sys.exit(1)

    except FileNotFoundError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        click.echo("\nTo get started:", err=True)
        click.echo("1. Go to https://console.cloud.google.com/", err=True)
        click.echo(
            "2. Create a project and enable the People API and Sheets API", err=True
        )
        click.echo("3. Create OAuth 2.0 credentials (Desktop application)", err=True)
        click.echo(
            f"4. Download and save as: {config_dir / 'credentials.json'}", err=True
        )
        sys.exit(1)

    except AuthenticationError as e:
        logger.error(f"Authentication failed: {e}")
        click.echo(click.style(f"Authentication failed: {e}", fg="red"), err=True)
        sys.exit(1)


# =============================================================================
# Status Command
# =============================================================================


@cli.command("status")
@click.pass_context
def status_command(ctx: click.Context) -> None:
    """
    Show authentication, buffer and run log status.

    Example:

        gcontact-relay status
    """
    try:
        config = get_relay_config(ctx)
    except ConfigurationError as e:
        click.echo(click.style(f"Configuration error: {e}", fg="red"), err=True)
        sys.exit(1)

    auth = GoogleAuth(parties=config.parties, config_dir=ctx.obj["config_dir"])
    auth_status = auth.get_auth_status()

    click.echo("=== Google Contacts Relay Status ===\n")
    click.echo(f"Configuration directory: {auth_status['config_dir']}")
    creds_status = (
        "Found" if auth_status["credentials_exist"] else click.style("Not found", fg="red")
    )
    click.echo(f"OAuth credentials: {creds_status}")
    click.echo(f"Sync label: {config.sync_label}")
    click.echo()

    authenticated: list[str] = []
    for party in config.parties:
        party_status = auth_status.get(party)
        if isinstance(party_status, dict) and party_status.get("authenticated"):
            authenticated.append(party)
            status_text = click.style("Authenticated", fg="green")
        elif isinstance(party_status, dict) and party_status.get("token_exists"):
            status_text = click.style("Token expired or invalid", fg="yellow")
        else:
            status_text = click.style("Not authenticated", fg="red")
        click.echo(f"{party}: {status_text}")
    click.echo()

    buffer: Buffer | None = None
    try:
        if config.buffer_backend == BACKEND_SHEET:
            if authenticated:
                buffer = open_buffer(
                    config, auth.require_credentials(authenticated[0])
                )
            else:
                click.echo("Buffer: unavailable until a party is authenticated")
        elif config.buffer_path is not None and config.buffer_path.exists():
            buffer = open_buffer(config, None)
        else:
            click.echo("Buffer: not initialized (no runs performed yet)")

        if buffer is not None:
            show_buffer_status(buffer.get_status_counts())
            click.echo()
            show_run_log(buffer.get_run_log(limit=STATUS_LOG_ROWS))
    except (SheetBufferError, AuthenticationError, OSError) as e:
        click.echo(click.style(f"Buffer unavailable: {e}", fg="yellow"))

    missing = [p for p in config.parties if p not in authenticated]
    click.echo()
    if not missing:
        click.echo(click.style("Ready to relay!", fg="green"))
    else:
        for party in missing:
            click.echo(f"  Run: gcontact-relay auth --party {party}")


# =============================================================================
# Init-Config Command
# =============================================================================


@cli.command("init-config")
@click.option(
    "--party",
    "-p",
    "parties",
    multiple=True,
    help="Party identifier to pre-fill (give it twice).",
)
@click.option(
    "--force",
    is_flag=True,
    help="Overwrite existing configuration file if it exists.",
)
@click.pass_context
def init_config_command(
    ctx: click.Context, parties: tuple[str, ...], force: bool
) -> None:
    """
    Generate a default configuration file.

    Examples:

        gcontact-relay init-config --party alice@example.com --party bob@example.com

        # Overwrite existing config file
        gcontact-relay init-config --force
    """
    config_file = ctx.obj["config_file"]

    if parties and len(parties) != 2:
        click.echo(
            click.style("Error: give --party exactly twice, or not at all.", fg="red"),
            err=True,
        )
        sys.exit(1)

    click.echo(f"Creating configuration file: {config_file}")
    success, error = save_config_file(
        config_file, overwrite=force, parties=list(parties) or None
    )

    if success:
        click.echo(click.style("Configuration file created successfully!", fg="green"))
        click.echo(f"\nLocation: {config_file}")
        click.echo("\nNext steps:")
        click.echo("1. Edit the file: list both parties and choose the buffer")
        click.echo("2. Run 'gcontact-relay auth --party <identifier>' on each side")
    else:
        click.echo(click.style(f"Error: {error}", fg="red"), err=True)
        sys.exit(1)


# =============================================================================
# Run Commands
# =============================================================================


def _run(ctx: click.Context, party: str, direction: str) -> RunReport:
    """Build the orchestrator, run one direction and report; exit 1 on abort."""
    try:
        orchestrator = build_orchestrator(ctx, party)
    except ConfigurationError as e:
        click.echo(click.style(f"Configuration error: {e}", fg="red"), err=True)
        sys.exit(1)
    except AuthenticationError as e:
        click.echo(click.style(f"Authentication error: {e}", fg="red"), err=True)
        sys.exit(1)
    except (SheetBufferError, PeopleAPIError, OSError) as e:
        logger.error(f"Could not open collaborators: {e}")
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)

    report: RunReport = getattr(orchestrator, direction)()
    show_run_report(report, verbose=ctx.obj["verbose"])

    if report.aborted or report.error:
        sys.exit(1)
    return report


@cli.command("sync")
@party_option
@click.pass_context
def sync_command(ctx: click.Context, party: str) -> None:
    """
    Pull the other party's changes, then push this party's.

    Example:

        gcontact-relay sync --party alice@example.com
    """
    _run(ctx, party, "sync")


@cli.command("pull")
@party_option
@click.pass_context
def pull_command(ctx: click.Context, party: str) -> None:
    """Only consume the other party's pending buffer rows."""
    _run(ctx, party, "pull")


@cli.command("push")
@party_option
@click.pass_context
def push_command(ctx: click.Context, party: str) -> None:
    """Only publish this party's labelled contacts to the buffer."""
    _run(ctx, party, "push")


# =============================================================================
# Daemon Command
# =============================================================================


@cli.command("daemon")
@party_option
@click.option(
    "--interval",
    "-i",
    default=None,
    help=(
        "Run interval (e.g., '30s', '5m', '1h', '1d'). "
        f"Defaults to config value or '{DEFAULT_INTERVAL}'."
    ),
)
@click.option(
    "--no-initial-run",
    is_flag=True,
    help="Wait one interval before the first run.",
)
@click.pass_context
def daemon_command(
    ctx: click.Context, party: str, interval: str | None, no_initial_run: bool
) -> None:
    """
    Run sync for a party at a fixed interval in the foreground.

    Stops on SIGTERM or Ctrl+C after the current run.

    Example:

        gcontact-relay daemon --party alice@example.com --interval 15m
    """
    config = ctx.obj.get("config", {})
    effective_interval = interval or config.get("daemon_interval", DEFAULT_INTERVAL)

    try:
        interval_seconds = parse_interval(effective_interval)
        me = get_relay_config(ctx).party(party)
    except ValueError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)
    except ConfigurationError as e:
        click.echo(click.style(f"Configuration error: {e}", fg="red"), err=True)
        sys.exit(1)

    def run_once() -> bool:
        # Rebuilt every cycle so refreshed credentials and config are used
        report = build_orchestrator(ctx, me.identifier).sync()
        logger.info(report.summary())
        return report.ok

    click.echo(f"Running as {me} every {effective_interval} (Ctrl+C to stop)")

    try:
        scheduler = DaemonScheduler(
            interval=interval_seconds,
            pid_file=default_pid_file(me.identifier, ctx.obj["config_dir"]),
            run_immediately=not no_initial_run,
        )
        scheduler.set_run_callback(run_once)
        scheduler.run()
    except DaemonAlreadyRunningError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)
    except DaemonError as e:
        logger.error(f"Daemon error: {e}")
        click.echo(click.style(f"Daemon error: {e}", fg="red"), err=True)
        sys.exit(1)

    click.echo(click.style("\nDaemon stopped gracefully.", fg="green"))
