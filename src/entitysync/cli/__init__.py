"""Command-line interface for entitysync.

Commands:
- serve: Run the HTTP service with workers and the poll scheduler
- status: Show queue depth, failures and per-type sync times
- conflicts list / resolve: Review conflicts awaiting an operator
- queue retry / cancel: Administer individual queue items
- queue purge: Delete completed queue items from the database
- pull: Enqueue a pull of remote changes for an entity type
"""

from __future__ import annotations

import click

from entitysync.cli.admin import conflicts, pull, queue, status
from entitysync.cli.serve import serve


@click.group()
@click.version_option(package_name="entitysync")
def cli() -> None:
    """entitysync - bidirectional entity synchronization."""


cli.add_command(serve)
cli.add_command(status)
cli.add_command(conflicts)
cli.add_command(queue)
cli.add_command(pull)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = ["cli", "main"]
