"""
``sentinel serve`` commands: host the web-cron endpoint.

For hosts that cannot run a CLI from cron but can have an external
service (or the host's panel) hit ``GET /cron?key=...`` every minute.
"""

from __future__ import annotations

import typer

from sentinel.cli.utils import console, fail, load_settings

app = typer.Typer(no_args_is_help=True)


@app.command("start")
def start(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(8080, "--port", "-p", help="Bind port"),
    log_level: str = typer.Option("warning", "--log-level", help="uvicorn access/error log level"),
) -> None:
    """Serve ``GET /cron?key=...`` with uvicorn."""
    try:
        import uvicorn
    except ImportError:
        fail("uvicorn is not installed; pip install 'sentinel-scheduler[api]'")

    if not load_settings().webcron_key:
        console.print("[yellow]SENTINEL_WEBCRON_KEY is empty: every request will get 403.[/yellow]")
    console.print(f"Web-cron listening on http://{host}:{port}/cron", highlight=False)
    uvicorn.run("sentinel.api:create_app", factory=True, host=host, port=port, log_level=log_level)
