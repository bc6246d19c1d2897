"""
``sentinel db`` commands: database management.
"""

from __future__ import annotations

import typer

from sentinel.cli.utils import cli_errors, console, err_console, load_settings, output_data

app = typer.Typer(no_args_is_help=True)


@app.command()
def init(
    database: str | None = typer.Option(None, "--database", "-d", help="Database URL"),
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Initialise the database schema (apply pending migrations)."""
    from sentinel.core.connection import open_connection
    from sentinel.core.migrations import MigrationRunner

    with cli_errors():
        conn, dialect = open_connection(load_settings(database).database_url)
        result = MigrationRunner(conn, dialect).apply_pending()

    output_data(
        {"applied": result.applied, "skipped": result.skipped, "errors": result.errors},
        as_json=json_out,
        title="Database Init",
    )
    if not result.success:
        err_console.print("[bold red]Migration failed[/bold red]")
        raise typer.Exit(code=1)
    if not json_out:
        console.print("[green]Schema up to date.[/green]")
