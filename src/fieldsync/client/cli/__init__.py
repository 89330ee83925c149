"""Command-line interface for fieldsync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- status: Item counts and next scheduled retry
- list: Queue items, optionally filtered by status
- abandoned: Items that need manual action
- retry: Give an abandoned item a fresh retry budget
- purge: Delete old completed items
"""

from __future__ import annotations

import logging
from pathlib import Path

import click

from fieldsync.client.cli.config import (
    get_config_dir,
    get_config_file,
    get_queue_db_path,
    load_config,
    load_sync_config,
    save_config,
)
from fieldsync.client.cli.queue import abandoned, list_items, purge, retry, status


@click.group()
@click.version_option(package_name="fieldsync")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging.")
@click.option(
    "--db",
    "db_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Queue database (default: queue.db in the config directory).",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, db_path: Path | None) -> None:
    """fieldsync - offline sync queue for expert recordings."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["db_path"] = db_path


# Queue commands
cli.add_command(status)
cli.add_command(list_items)
cli.add_command(abandoned)
cli.add_command(retry)
cli.add_command(purge)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    # Main entry points
    "cli",
    "main",
    # Config utilities
    "get_config_dir",
    "get_config_file",
    "get_queue_db_path",
    "load_config",
    "load_sync_config",
    "save_config",
]
