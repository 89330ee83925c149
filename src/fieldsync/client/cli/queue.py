"""Queue inspection commands for the fieldsync CLI.

Commands:
- status: Item counts by status and next scheduled attempt
- list: Queue items, optionally filtered by status
- abandoned: Items that need manual action, with their last error
- retry: Give an abandoned item a fresh retry budget
- purge: Delete completed items older than N days
"""

from __future__ import annotations

import sys
from datetime import datetime
from pathlib import Path

import click

from fieldsync.client.cli.config import get_queue_db_path, load_sync_config
from fieldsync.client.sync.queue import SyncQueue
from fieldsync.client.sync.types import QueueError, QueueItem
from fieldsync.core.config import DAY
from fieldsync.core.types import QueueStatus


def _format_time(timestamp: float | None) -> str:
    if timestamp is None:
        return "-"
    return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d %H:%M:%S")


def _open_queue(ctx: click.Context) -> SyncQueue:
    """Open the queue database selected by --db or the config file."""
    db_path: Path = ctx.obj.get("db_path") or get_queue_db_path()
    if not db_path.exists():
        click.echo(f"Error: Queue database not found: {db_path}", err=True)
        sys.exit(1)
    try:
        config = load_sync_config()
    except ValueError as e:
        click.echo(f"Error: Invalid sync configuration: {e}", err=True)
        sys.exit(1)
    return SyncQueue.from_config(db_path, config)


def _echo_item(item: QueueItem) -> None:
    click.echo(
        f"{item.id}  {item.status.value:<10} {item.entity_type.value}-{item.operation.value:<7} "
        f"{item.entity_id}  retries={item.retry_count}/{item.max_retries}  "
        f"next={_format_time(item.scheduled_at)}"
    )
    if item.error_message:
        click.echo(f"    {item.error_message}")


@click.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show item counts by status."""
    queue = _open_queue(ctx)
    try:
        counts = queue.stats()
        next_at = queue.next_scheduled_at()
    finally:
        queue.close()

    for queue_status in QueueStatus:
        click.echo(f"{queue_status.value.lower():<11} {counts[queue_status]}")
    click.echo(f"next attempt {_format_time(next_at)}")


@click.command("list")
@click.option(
    "--status",
    "status_filter",
    type=click.Choice([s.value for s in QueueStatus], case_sensitive=False),
    default=None,
    help="Only show items in this status.",
)
@click.pass_context
def list_items(ctx: click.Context, status_filter: str | None) -> None:
    """List queue items in processing order."""
    queue = _open_queue(ctx)
    try:
        if status_filter:
            items = queue.items_by_status(QueueStatus(status_filter.upper()))
        else:
            items = queue.all_items()
    finally:
        queue.close()

    if not items:
        click.echo("Queue is empty.")
        return
    for item in items:
        _echo_item(item)


@click.command()
@click.pass_context
def abandoned(ctx: click.Context) -> None:
    """List items that stopped retrying and need manual action."""
    queue = _open_queue(ctx)
    try:
        items = queue.abandoned_items()
    finally:
        queue.close()

    if not items:
        click.echo("No abandoned items.")
        return
    click.echo(f"{len(items)} item(s) need attention:")
    for item in items:
        _echo_item(item)


@click.command()
@click.argument("item_id")
@click.pass_context
def retry(ctx: click.Context, item_id: str) -> None:
    """Retry an abandoned item with a fresh retry budget."""
    queue = _open_queue(ctx)
    try:
        item = queue.retry_abandoned(item_id)
    except QueueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    finally:
        queue.close()
    click.echo(f"Requeued {item.entity_type.value}-{item.operation.value} {item.entity_id}")


@click.command()
@click.option(
    "--days",
    "-d",
    type=click.FloatRange(min=0),
    default=None,
    help="Delete completed items older than N days (default: configured retention).",
)
@click.pass_context
def purge(ctx: click.Context, days: float | None) -> None:
    """Delete old completed items."""
    queue = _open_queue(ctx)
    try:
        deleted = queue.purge_completed(None if days is None else days * DAY)
    finally:
        queue.close()

    if deleted > 0:
        click.echo(f"Purged {deleted} completed item(s).")
    else:
        click.echo("No items to purge.")
