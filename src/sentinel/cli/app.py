"""
Root Typer application for the Sentinel CLI.

Run ``sentinel task run`` from the host's cron every minute.
"""

from __future__ import annotations

import typer
from typer import Typer

from sentinel.cli.utils import cli_errors, console, load_settings, make_runner

app = Typer(
    name="sentinel",
    help="Sentinel: cron-driven task scheduler and work queue.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from sentinel import __version__

        typer.echo(f"sentinel {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="Override SENTINEL_LOG_LEVEL"),
) -> None:
    """Sentinel CLI: run and manage scheduled tasks and work queues."""
    from sentinel.core.logging import configure_logging

    settings = load_settings()
    configure_logging(
        level=log_level or settings.log_level,
        json_format=settings.log_json,
        log_file=settings.log_path,
    )


@app.command("logrotate")
def logrotate(
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Rotate log files now, outside the schedule."""
    with cli_errors():
        status = make_runner(database).run_callback("logrotate")
    console.print(f"logrotate: {status.for_humans()}", highlight=False)
    if status.is_failure:
        raise typer.Exit(code=1)


# ── Sub-command registration ─────────────────────────────────────────────

from sentinel.cli.db import app as db_app  # noqa: E402
from sentinel.cli.queue import app as queue_app  # noqa: E402
from sentinel.cli.serve import app as serve_app  # noqa: E402
from sentinel.cli.task import app as task_app  # noqa: E402

app.add_typer(task_app, name="task", help="Run the scheduler and manage tasks.")
app.add_typer(queue_app, name="queue", help="Work queue inspection.")
app.add_typer(db_app, name="db", help="Database operations.")
app.add_typer(serve_app, name="serve", help="Start the web-cron server.")


if __name__ == "__main__":
    app()
