"""Command-line interface: ``txoutbox migrate | flush | unblock | show | status | purge``."""

from txoutbox.cli.app import app

__all__ = ["app"]
