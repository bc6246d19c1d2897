"""
``sentinel queue`` commands: inspect and clear work queues.
"""

from __future__ import annotations

import typer

from sentinel.cli.utils import cli_errors, console, load_settings, parse_conditions

app = typer.Typer(no_args_is_help=True)

_WHERE_HELP = "Condition key=value (siteId, dataType, data or a payload key); repeatable"


def _queue(identifier: str, database: str | None):
    from sentinel.core.connection import open_connection
    from sentinel.queue import SqlQueue

    conn, dialect = open_connection(load_settings(database).database_url)
    return SqlQueue(identifier, conn, dialect)


@app.command("count")
def count_items(
    identifier: str = typer.Argument(..., help="Queue identifier, e.g. mail"),
    site_id: int | None = typer.Option(None, "--site-id", help="Only items of this site"),
    where: list[str] | None = typer.Option(None, "--where", "-w", help=_WHERE_HELP),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Count the items waiting in a queue."""
    conditions = parse_conditions(where)
    if site_id is not None:
        conditions["siteId"] = site_id
    with cli_errors():
        total = _queue(identifier, database).count_by_condition(conditions)
    console.print(str(total))


@app.command("clear")
def clear_items(
    identifier: str = typer.Argument(..., help="Queue identifier, e.g. mail"),
    site_id: int | None = typer.Option(None, "--site-id", help="Only items of this site"),
    where: list[str] | None = typer.Option(None, "--where", "-w", help=_WHERE_HELP),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Delete items from a queue (all of them without conditions)."""
    conditions = parse_conditions(where)
    if site_id is not None:
        conditions["siteId"] = site_id
    with cli_errors():
        deleted = _queue(identifier, database).clear(conditions)
    console.print(f"Deleted {deleted} item(s) from queue '{identifier}'.")
