"""
CLI helpers for settings, runner construction and output formatting.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict
from typing import Any, NoReturn

import typer
from rich.console import Console
from rich.table import Table

from sentinel.core.errors import SentinelError
from sentinel.core.settings import SentinelSettings, get_settings
from sentinel.scheduling import TaskRunner, create_runner

console = Console()
err_console = Console(stderr=True)


# ── Settings / runner helpers ────────────────────────────────────────────


def load_settings(database: str | None = None) -> SentinelSettings:
    """Process settings, with ``--database`` overriding ``SENTINEL_DATABASE_URL``."""
    settings = get_settings()
    if database:
        settings = settings.model_copy(update={"database_url": database})
    return settings


def make_runner(database: str | None = None) -> TaskRunner:
    """Runner wired to the configured database (repository + registry)."""
    return create_runner(load_settings(database))


def parse_json_object(value: str | None, option: str) -> dict[str, Any] | None:
    if value is None:
        return None
    try:
        data = json.loads(value)
    except ValueError:
        fail(f"{option} must be a JSON object")
    if not isinstance(data, dict):
        fail(f"{option} must be a JSON object")
    return data


def parse_conditions(pairs: list[str] | None) -> dict[str, Any]:
    """``key=value`` pairs; values are read as JSON when they parse."""
    conditions: dict[str, Any] = {}
    for pair in pairs or []:
        key, sep, raw = pair.partition("=")
        if not sep or not key.strip():
            fail(f"Invalid condition {pair!r}, expected key=value")
        try:
            conditions[key.strip()] = json.loads(raw)
        except ValueError:
            conditions[key.strip()] = raw
    return conditions


# ── Error handling ───────────────────────────────────────────────────────


def fail(message: str, code: int = 1) -> NoReturn:
    err_console.print(f"[bold red]Error[/bold red]: {message}")
    raise typer.Exit(code=code)


@contextmanager
def cli_errors() -> Iterator[None]:
    """Turn Sentinel errors into a red message and exit code 1."""
    try:
        yield
    except SentinelError as e:
        fail(e.message)


# ── Output helpers ───────────────────────────────────────────────────────


def _to_dict(obj: Any) -> dict[str, Any]:
    """Convert a model / dataclass / dict to a plain dict."""
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if hasattr(obj, "__dataclass_fields__"):
        return asdict(obj)
    if isinstance(obj, dict):
        return obj
    return {"value": str(obj)}


def output_data(data: Any, *, as_json: bool = False, title: str = "") -> None:
    """Render a single object or a list of rows to the terminal."""
    if as_json:
        payload = [_to_dict(d) for d in data] if isinstance(data, list | tuple) else _to_dict(data)
        console.print_json(json.dumps(payload, default=str))
        return

    if isinstance(data, list | tuple):
        if not data:
            console.print("[dim]No items.[/dim]")
            return
        _print_table(data, title=title)
    else:
        _print_dict(_to_dict(data), title=title)


# ── Private helpers ──────────────────────────────────────────────────────


def _print_table(items: list | tuple, *, title: str = "") -> None:
    """Render a list of dicts as a Rich table."""
    first = _to_dict(items[0])
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in first:
        table.add_column(col, overflow="fold")
    for item in items:
        d = _to_dict(item)
        table.add_row(*("" if v is None else str(v) for v in d.values()))
    console.print(table)


def _print_dict(data: dict[str, Any], *, title: str = "") -> None:
    """Render a single dict as key-value pairs."""
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {v}", highlight=False)
