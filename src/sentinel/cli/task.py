"""
``sentinel task`` commands: run the scheduler and manage task rows.
"""

from __future__ import annotations

import json

import typer

from sentinel.cli.utils import (
    cli_errors,
    console,
    fail,
    make_runner,
    output_data,
    parse_json_object,
)

app = typer.Typer(no_args_is_help=True)


def _row(task) -> dict:
    """Compact listing row."""
    return {
        "id": task.id,
        "type": task.type,
        "cron": task.cron_expression,
        "site": task.site_id,
        "enabled": "yes" if task.enabled else "no",
        "priority": task.priority,
        "last_exit": task.last_exit_code.for_humans(),
        "next_execution": task.next_execution.isoformat(sep=" ", timespec="seconds")
        if task.next_execution
        else None,
    }


@app.command("run")
def run_tasks(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Run due tasks within the configured time budget.

    Exits 0 whatever the tasks' outcomes; outcomes are stored on the tasks.
    """
    with cli_errors():
        summary = make_runner(database).run(source="cli")
    if json_out:
        console.print_json(json.dumps(summary.to_dict()))
    else:
        console.print(summary.to_text(), highlight=False)


@app.command("list")
def list_tasks(
    site_id: int | None = typer.Option(None, "--site-id"),
    enabled: bool | None = typer.Option(None, "--enabled/--disabled", help="Filter by state"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List scheduled tasks."""
    with cli_errors():
        tasks = make_runner(database).repository.list_all(site_id=site_id, enabled=enabled)
    if json_out:
        output_data(tasks, as_json=True)
    else:
        output_data([_row(t) for t in tasks], title="Tasks")


@app.command("show")
def show_task(
    task_id: int = typer.Argument(..., help="Task ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show one task, including its storage."""
    with cli_errors():
        task = make_runner(database).repository.get(task_id)
    if task is None:
        fail(f"Task {task_id} not found")
    output_data(task, as_json=json_out, title=f"Task {task_id}")


@app.command("add")
def add_task(
    task_type: str = typer.Argument(..., help="Handler type, e.g. logrotate"),
    cron: str = typer.Option(..., "--cron", help="Cron expression"),
    site_id: int | None = typer.Option(None, "--site-id"),
    priority: int = typer.Option(0, "--priority", help="Lower runs first"),
    params: str | None = typer.Option(None, "--params", help="Handler parameters (JSON object)"),
    run_once: str = typer.Option("none", "--run-once", help="none, disable or delete"),
    enabled: bool = typer.Option(True, "--enabled/--disabled"),
    force: bool = typer.Option(False, "--force", help="Allow types no handler serves (yet)"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Schedule a new task."""
    from sentinel.scheduling import TaskCreate

    with cli_errors():
        runner = make_runner(database)
        if not force and not runner.registry.has(task_type):
            fail(f"No handler for task type {task_type!r} (use --force to add it anyway)")
        task = runner.repository.create(
            TaskCreate(
                type=task_type,
                cron_expression=cron,
                site_id=site_id,
                params=parse_json_object(params, "--params"),
                enabled=enabled,
                priority=priority,
                run_once=run_once,
            )
        )
    output_data(task, as_json=json_out, title="Task Created")


@app.command("update")
def update_task(
    task_id: int = typer.Argument(..., help="Task ID"),
    cron: str | None = typer.Option(None, "--cron"),
    site_id: int | None = typer.Option(None, "--site-id"),
    priority: int | None = typer.Option(None, "--priority"),
    params: str | None = typer.Option(None, "--params", help="Handler parameters (JSON object)"),
    run_once: str | None = typer.Option(None, "--run-once"),
    enabled: bool | None = typer.Option(None, "--enabled/--disabled"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Update an existing task."""
    from sentinel.scheduling import TaskUpdate

    with cli_errors():
        task = make_runner(database).repository.update(
            task_id,
            TaskUpdate(
                cron_expression=cron,
                enabled=enabled,
                priority=priority,
                params=parse_json_object(params, "--params"),
                run_once=run_once,
                site_id=site_id,
            ),
        )
    if task is None:
        fail(f"Task {task_id} not found")
    output_data(task, as_json=json_out, title="Task Updated")


def _set_enabled(task_id: int, enabled: bool, database: str | None) -> None:
    from sentinel.scheduling import TaskUpdate

    with cli_errors():
        task = make_runner(database).repository.update(task_id, TaskUpdate(enabled=enabled))
    if task is None:
        fail(f"Task {task_id} not found")
    console.print(f"Task {task_id} {'enabled' if enabled else 'disabled'}.")


@app.command("enable")
def enable_task(
    task_id: int = typer.Argument(..., help="Task ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Enable a task."""
    _set_enabled(task_id, True, database)


@app.command("disable")
def disable_task(
    task_id: int = typer.Argument(..., help="Task ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Disable a task."""
    _set_enabled(task_id, False, database)


@app.command("delete")
def delete_task(
    task_id: int = typer.Argument(..., help="Task ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Delete a task."""
    with cli_errors():
        deleted = make_runner(database).repository.delete(task_id)
    if not deleted:
        fail(f"Task {task_id} not found")
    console.print(f"Task {task_id} deleted.")


@app.command("types")
def list_types(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List the task types registered handlers serve."""
    with cli_errors():
        types = make_runner(database).registry.list_types()
    output_data(
        [{"type": name, "description": description} for name, description in types],
        as_json=json_out,
        title="Task Types",
    )


@app.command("status")
def scheduler_status(
    threshold: int | None = typer.Option(None, "--threshold", help="Stuck threshold in minutes"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show the last scheduler run and any stuck tasks."""
    with cli_errors():
        repository = make_runner(database).repository
        heartbeat = repository.last_runner_heartbeat()
        stuck = repository.list_stuck(threshold)

    data = {
        "last_run": heartbeat.at.isoformat() if heartbeat else None,
        "last_run_source": heartbeat.source if heartbeat else None,
        "tasks": repository.count(),
        "stuck": [t.id for t in stuck],
    }
    if json_out:
        output_data(data, as_json=True)
        return
    output_data(data, title="Scheduler Status")
    if stuck:
        console.print(
            f"[yellow]{len(stuck)} stuck task(s); release them with "
            "'sentinel task release-stuck'.[/yellow]"
        )


@app.command("release-stuck")
def release_stuck(
    threshold: int | None = typer.Option(None, "--threshold", help="Stuck threshold in minutes"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Unlock stuck tasks, recording a timeout on each."""
    with cli_errors():
        released = make_runner(database).repository.release_stuck(threshold)
    console.print(f"Released {released} stuck task(s).")
