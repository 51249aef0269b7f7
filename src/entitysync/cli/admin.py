"""Operator commands for entitysync CLI.

Most commands talk to a running service over its HTTP API; `queue purge`
works directly on the database so it can run from cron.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

import click
import httpx

DEFAULT_URL = "http://127.0.0.1:8000"

url_option = click.option(
    "--url",
    envvar="ENTITYSYNC_URL",
    default=DEFAULT_URL,
    show_default=True,
    help="Base URL of the running service.",
)


def _call(url: str, method: str, path: str, **kwargs: Any) -> Any:
    """Call the service API and exit with a message on failure."""
    try:
        with httpx.Client(base_url=url.rstrip("/"), timeout=10.0) as client:
            response = client.request(method, path, **kwargs)
    except httpx.RequestError as e:
        click.echo(f"Error: Cannot reach {url}: {e}", err=True)
        sys.exit(1)

    if response.status_code >= 400:
        try:
            detail = response.json().get("detail", response.text)
        except ValueError:
            detail = response.text
        click.echo(f"Error ({response.status_code}): {detail}", err=True)
        sys.exit(1)
    return response.json()


def _format_value(value: Any) -> str:
    return json.dumps(value, default=str)


@click.command()
@url_option
@click.option("--json", "as_json", is_flag=True, help="Print the raw status document.")
def status(url: str, as_json: bool) -> None:
    """Show sync status."""
    report = _call(url, "GET", "/sync/status")
    if as_json:
        click.echo(json.dumps(report, indent=2, default=str))
        return

    queue_info = report["queue"]
    click.echo(f"Queue depth:      {queue_info['depth']}")
    age = queue_info.get("oldest_pending_age_seconds")
    click.echo(f"Oldest pending:   {f'{age:.0f}s' if age is not None else '-'}")
    counts = ", ".join(f"{k}={v}" for k, v in sorted(queue_info["counts"].items()))
    click.echo(f"Items:            {counts or '-'}")
    click.echo(f"Open reviews:     {report['open_reviews']}")
    click.echo(f"Paused entities:  {report['paused_entities']}")

    entity_types = report.get("entity_types", {})
    if entity_types:
        click.echo("")
        click.echo(f"{'TYPE':<16} {'LAST PULL':<27} {'LAST PUSH':<27} {'FAILS':>5} {'PENDING':>7}")
        for name, info in sorted(entity_types.items()):
            click.echo(
                f"{name:<16} {info.get('last_pull_at') or '-':<27} "
                f"{info.get('last_push_at') or '-':<27} "
                f"{info.get('consecutive_failures', 0):>5} {info.get('pending', 0):>7}"
            )


@click.command()
@url_option
@click.argument("entity_type")
def pull(url: str, entity_type: str) -> None:
    """Enqueue a pull of remote changes for ENTITY_TYPE."""
    item = _call(url, "POST", "/sync/changes", json={
        "entity_type": entity_type,
        "direction": "pull",
        "origin": "system",
    })
    click.echo(f"Enqueued pull of {entity_type} as item {item['id']}")


# === Conflicts ===


@click.group()
def conflicts() -> None:
    """Review conflicts awaiting an operator."""


@conflicts.command("list")
@url_option
@click.option(
    "--status",
    "status_filter",
    default="manual_review",
    show_default=True,
    help="Conflict status to list.",
)
@click.option("--entity-type", default=None, help="Only this entity type.")
@click.option("--limit", default=50, show_default=True, type=int)
def list_conflicts(url: str, status_filter: str, entity_type: str | None, limit: int) -> None:
    """List conflict records."""
    params: dict[str, Any] = {"status": status_filter, "limit": limit}
    if entity_type:
        params["entity_type"] = entity_type
    records = _call(url, "GET", "/sync/conflicts", params=params)
    if not records:
        click.echo("No conflicts.")
        return
    for record in records:
        target = record["field"] or f"duplicate of {record['candidate_local_id']}"
        click.echo(
            f"#{record['id']} {record['entity_type']}/{record['local_id']} {target} "
            f"local={_format_value(record['local_value'])} "
            f"remote={_format_value(record['remote_value'])} [{record['status']}]"
        )


@conflicts.command("resolve")
@url_option
@click.argument("conflict_id", type=int)
@click.option("--value", default=None, help="Resolved value, parsed as JSON when possible.")
@click.option("--merge/--keep-separate", default=None, help="Decision for duplicate reviews.")
@click.option("--by", "resolved_by", required=True, help="Operator name.")
def resolve_conflict(
    url: str,
    conflict_id: int,
    value: str | None,
    merge: bool | None,
    resolved_by: str,
) -> None:
    """Resolve a conflict under manual review.

    Examples:

        # Choose a value for a field conflict
        entitysync conflicts resolve 12 --value '"Acme Ltd"' --by alice

        # Merge a possible duplicate into its candidate
        entitysync conflicts resolve 13 --merge --by alice
    """
    if value is None and merge is None:
        click.echo("Error: Give --value for a field conflict or --merge/--keep-separate.", err=True)
        sys.exit(1)

    parsed: Any = value
    if value is not None:
        try:
            parsed = json.loads(value)
        except ValueError:
            parsed = value

    record = _call(url, "POST", f"/sync/conflicts/{conflict_id}/resolve", json={
        "resolved_by": resolved_by,
        "value": parsed,
        "merge": merge,
    })
    click.echo(f"Conflict #{record['id']} {record['status']}")


# === Queue ===


@click.group()
def queue() -> None:
    """Administer the change queue."""


@queue.command("retry")
@url_option
@click.argument("item_id", type=int)
def retry_item(url: str, item_id: int) -> None:
    """Retry a failed queue item with a fresh attempt budget."""
    item = _call(url, "POST", f"/sync/queue/{item_id}/retry")
    click.echo(f"Item {item['id']} is {item['status']} (max attempts {item['max_attempts']})")


@queue.command("cancel")
@url_option
@click.argument("item_id", type=int)
def cancel_item(url: str, item_id: int) -> None:
    """Cancel a pending queue item."""
    item = _call(url, "POST", f"/sync/queue/{item_id}/cancel")
    click.echo(f"Item {item['id']} is {item['status']}")


@queue.command("purge")
@click.option(
    "--older-than-days",
    "-d",
    type=int,
    default=None,
    help="Delete items finished more than N days ago (default: retention_days).",
)
@click.option(
    "--db-path",
    type=click.Path(path_type=Path),
    default=None,
    help="Path to database file (default: ENTITYSYNC_DB_PATH or ./entitysync.db).",
)
def purge_queue(older_than_days: int | None, db_path: Path | None) -> None:
    """Delete completed and cancelled queue items.

    Failed items are kept until an operator retries or cancels them.
    """
    from entitysync.core.config import ConfigStore, SyncConfig
    from entitysync.server.database import Database
    from entitysync.sync.alerts import AlertSink
    from entitysync.sync.audit import AuditLog
    from entitysync.sync.queue import ChangeQueue

    config = SyncConfig.from_env()
    db_file = db_path or config.db_path
    days = older_than_days if older_than_days is not None else config.retention_days

    if not db_file.exists():
        click.echo(f"Error: Database not found: {db_file}", err=True)
        sys.exit(1)

    click.echo(f"Database: {db_file}")
    click.echo(f"Purging items older than {days} days...")

    db = Database(db_file)
    try:
        change_queue = ChangeQueue(db, ConfigStore(config), AuditLog(db), AlertSink())
        deleted = change_queue.purge_completed(days)
        if deleted > 0:
            click.echo(f"Purged {deleted} queue items.")
        else:
            click.echo("No items to purge.")
    finally:
        db.close()
