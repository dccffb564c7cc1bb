"""CLI output formatting functions.

This module contains functions for displaying run reports, buffer status
and the run log on the command line.
"""

from typing import TYPE_CHECKING, Any

import click

if TYPE_CHECKING:
    from gcontact_relay.sync.engine import RunReport

# Number of error messages listed before truncating
MAX_ERRORS_SHOWN = 10


def show_run_report(report: "RunReport", verbose: bool = False) -> None:
    """
    Display the outcome of one run.

    Args:
        report: Report returned by the orchestrator
        verbose: If True, list every error message
    """
    direction = report.direction.value

    if report.aborted:
        click.echo(click.style(f"Run aborted: {report.error}", fg="red"), err=True)
        return

    stats = report.stats
    click.echo(f"\n=== {direction.capitalize()} Results ===\n")
    if direction in ("push", "sync"):
        click.echo(f"Rows pushed:      {stats.pushed}")
    if direction in ("pull", "sync"):
        click.echo(f"Contacts created: {stats.new}")
        click.echo(f"Contacts merged:  {stats.merged}")
    click.echo(f"Skipped:          {stats.skipped}")
    failed_text = str(stats.failed)
    if stats.failed:
        failed_text = click.style(failed_text, fg="yellow")
    click.echo(f"Failed:           {failed_text}")

    if stats.errors:
        limit = None if verbose else MAX_ERRORS_SHOWN
        click.echo("\nErrors:")
        for message in stats.errors[:limit]:
            click.echo(f"  ! {message}")
        if limit is not None and len(stats.errors) > limit:
            click.echo(f"  ... and {len(stats.errors) - limit} more (use --verbose)")

    if report.error:
        click.echo(
            click.style(f"\nRun stopped early: {report.error}", fg="red"), err=True
        )
    elif stats.failed:
        click.echo(click.style("\nRun completed with failures.", fg="yellow"))
    else:
        click.echo(click.style("\nRun completed successfully.", fg="green"))


def show_buffer_status(counts: dict[str, dict[str, int]]) -> None:
    """
    Display Pending and Consumed row counts per publishing party.

    Args:
        counts: Mapping of source -> {"pending": n, "consumed": n}
    """
    if not counts:
        click.echo("Buffer: empty")
        return

    click.echo("Buffer rows by publisher:")
    for source in sorted(counts):
        entry = counts[source]
        click.echo(
            f"  {source}: {entry.get('pending', 0)} pending, "
            f"{entry.get('consumed', 0)} consumed"
        )


def show_run_log(entries: list[dict[str, Any]]) -> None:
    """Display run log rows, newest first."""
    if not entries:
        click.echo("Run log: no runs recorded yet")
        return

    click.echo("Recent runs:")
    for entry in entries:
        line = (
            f"  {entry.get('timestamp', '')}  {entry.get('account', '')}  "
            f"{entry.get('direction', '')}: pushed={entry.get('pushed', 0)} "
            f"new={entry.get('new', 0)} merged={entry.get('merged', 0)} "
            f"failed={entry.get('failed', 0)}"
        )
        if str(entry.get("failed", 0)) not in ("0", ""):
            line = click.style(line, fg="yellow")
        click.echo(line)
