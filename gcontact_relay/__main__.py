"""
Entry point for running gcontact_relay as a module.

Usage:
    python -m gcontact_relay --help
    python -m gcontact_relay auth --party alice@example.com
    python -m gcontact_relay sync --party alice@example.com
"""

from gcontact_relay.cli import cli

if __name__ == "__main__":
    cli()
