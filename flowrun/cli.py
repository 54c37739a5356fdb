"""Command line interface for flowrun definitions, runs and tasks."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, NoReturn, Optional

import typer
import yaml

from flowrun import TaskManager, WorkflowService, get_stores
from flowrun.config import load_config
from flowrun.contracts import Envelope, Execution, RunStatus
from flowrun.exceptions import FlowrunError

app = typer.Typer(help="CLI for flowrun workflows")

# Command groups
definition_app = typer.Typer(help="Commands for managing definitions")
run_app = typer.Typer(help="Commands for starting and inspecting runs")
task_app = typer.Typer(help="Commands for managing tasks")

app.add_typer(definition_app, name="definition")
app.add_typer(run_app, name="run")
app.add_typer(task_app, name="task")


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(
        None, help="Logging level; defaults to the configured log_level"
    ),
) -> None:
    """flowrun CLI entry point."""
    config = load_config()
    logging.basicConfig(
        level=(log_level or config.log_level).upper(),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )


def _service() -> WorkflowService:
    return WorkflowService(stores=get_stores(), config=load_config())


def _tasks() -> TaskManager:
    return TaskManager(store=get_stores().tasks)


def _unwrap(envelope: Envelope) -> Any:
    if not envelope.success:
        typer.secho(envelope.error or "Request failed", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    return envelope.data


def _fail(exc: FlowrunError) -> NoReturn:
    typer.secho(exc.message, fg=typer.colors.RED)
    raise typer.Exit(code=1)


def _echo_run(run: Execution) -> None:
    typer.echo(f"Run {run.id}: {run.status.value} ({run.progress}%)")
    if run.definition_id:
        typer.echo(f"Definition: {run.definition_id} {run.definition_name}")
    if run.error:
        typer.echo(f"Error: {run.error}")
    for state in run.steps:
        typer.echo(
            f"- {state.step_id}: {state.status.value}"
            + (
                f" ({state.started_at} -> {state.completed_at})"
                if state.started_at or state.completed_at
                else ""
            )
        )


# ----------------------------------------------------------------------
# Definitions
@definition_app.command("list")
def definition_list(
    category: Optional[str] = None,
    enabled_only: bool = typer.Option(False, help="Only list enabled definitions"),
    search: Optional[str] = typer.Option(None, help="Case-insensitive name/description match"),
) -> None:
    """
    List definitions, most recently updated first.

    Example:
        flowrun definition list --category sales --enabled-only
        # Output: wf_1a2b3c4d5e6f7a8b    Lead follow-up    sales    enabled
    """
    filters = {"category": category, "enabled_only": enabled_only, "search_text": search}
    definitions = _unwrap(asyncio.run(_service().list_definitions(filters)))
    if not definitions:
        typer.echo("No definitions found")
        return
    for d in definitions:
        state = "enabled" if d.enabled else "disabled"
        typer.echo(f"{d.id}\t{d.name}\t{d.category}\t{state}")


@definition_app.command("show")
def definition_show(definition_id: str) -> None:
    """Show a definition and its ordered steps."""
    envelope = asyncio.run(_service().get_definition(definition_id))
    if not envelope.success:
        typer.echo("Definition not found")
        raise typer.Exit(code=1)
    d = envelope.data
    typer.echo(f"Definition {d.id}: {d.name} [{d.category}]")
    if d.description:
        typer.echo(d.description)
    typer.echo(f"Triggers: {', '.join(d.triggers)}")
    for step in d.steps:
        typer.echo(f"- {step.id} [{step.type}] {step.name}")


@definition_app.command("create")
def definition_create(path: Path, user: Optional[str] = None) -> None:
    """
    Create a definition from a YAML file.

    Example:
        flowrun definition create ./report.yaml
        # Output: Created definition wf_1a2b3c4d5e6f7a8b
    """
    if not path.exists():
        typer.secho("Specified path does not exist", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    definition = _unwrap(asyncio.run(_service().create_definition(data, user_id=user)))
    typer.echo(f"Created definition {definition.id}")


@definition_app.command("from-template")
def definition_from_template(template_id: str, name: Optional[str] = None) -> None:
    """Create a definition from a built-in template."""
    overrides = {"name": name} if name else {}
    definition = _unwrap(asyncio.run(_service().create_from_template(template_id, overrides)))
    typer.echo(f"Created definition {definition.id} from {template_id}")


@definition_app.command("delete")
def definition_delete(definition_id: str) -> None:
    """Delete a definition. Past runs are kept."""
    _unwrap(asyncio.run(_service().delete_definition(definition_id)))
    typer.echo(f"Deleted definition {definition_id}")


# ----------------------------------------------------------------------
# Runs
@run_app.command("start")
def run_start(
    definition_id: str,
    input: Optional[str] = typer.Option(None, help="JSON object passed as run input"),
    user: str = "system",
) -> None:
    """
    Run a definition with the simulated step executor and print the result.

    Example:
        flowrun run start wf_1a2b3c4d5e6f7a8b --input '{"score": 90}'
        # Output: Run exec_9f8e7d6c5b4a3f2e: completed (100%)
    """
    try:
        payload = json.loads(input) if input else {}
    except json.JSONDecodeError as exc:
        typer.secho(f"Invalid --input JSON: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    run = _unwrap(asyncio.run(_service().start_run(definition_id, payload, user)))
    _echo_run(run)


@run_app.command("list")
def run_list(
    definition: Optional[str] = typer.Option(None, help="Filter by definition id"),
    status: Optional[RunStatus] = typer.Option(None, help="Filter by run status"),
    limit: Optional[int] = typer.Option(None, help="Maximum number of runs"),
) -> None:
    """List runs, newest first."""
    filters: dict[str, Any] = {"definition_id": definition, "status": status}
    if limit:
        filters["limit"] = limit
    runs = _unwrap(asyncio.run(_service().list_runs(filters)))
    if not runs:
        typer.echo("No runs found")
        return
    for run in runs:
        typer.echo(f"{run.id}\t{run.definition_id}\t{run.status.value}\t{run.progress}%")


@run_app.command("show")
def run_show(run_id: str) -> None:
    """Show a run's status, step states and error."""
    envelope = asyncio.run(_service().get_run(run_id))
    if not envelope.success:
        typer.echo("Run not found")
        raise typer.Exit(code=1)
    _echo_run(envelope.data)


@run_app.command("cancel")
def run_cancel(run_id: str, reason: str = "") -> None:
    """Cancel a run that has not finished."""
    run = _unwrap(asyncio.run(_service().cancel_run(run_id, reason)))
    typer.echo(f"Run {run.id}: {run.status.value}")


# ----------------------------------------------------------------------
# Tasks
@task_app.command("list")
def task_list(
    status: Optional[RunStatus] = typer.Option(None, help="Filter by task status"),
    user: Optional[str] = typer.Option(None, help="Filter by user id"),
) -> None:
    """List tasks by priority, then newest first."""
    tasks = asyncio.run(_tasks().list_tasks({"status": status, "user_id": user}))
    if not tasks:
        typer.echo("No tasks found")
        return
    for task in tasks:
        typer.echo(
            f"{task.id}\tP{int(task.priority)}\t{task.status.value}\t{task.progress}%\t{task.goal.text}"
        )


@task_app.command("show")
def task_show(task_id: str) -> None:
    """Show a task's goal, status and step states."""
    try:
        task = asyncio.run(_tasks().get_task(task_id))
    except FlowrunError:
        typer.echo("Task not found")
        raise typer.Exit(code=1)
    typer.echo(f"Task {task.id}: {task.status.value} ({task.progress}%)")
    typer.echo(f"Goal: {task.goal.text}")
    if task.user_decision:
        typer.echo(f"Decision: {task.user_decision}")
    if task.error:
        typer.echo(f"Error: {task.error}")
    for state in task.steps:
        typer.echo(f"- {state.step_id}: {state.status.value}")


@task_app.command("create")
def task_create(path: Path) -> None:
    """
    Create a task from a YAML file holding a goal and a plan.

    Example:
        flowrun task create ./newsletter.yaml
        # Output: Created task task_1a2b3c4d5e6f7a8b (3 step(s))
    """
    if not path.exists():
        typer.secho("Specified path does not exist", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict) or "goal" not in data:
        typer.secho("Task file must be a mapping with a goal", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    options = {
        key: data[key]
        for key in ("priority", "user_id", "channel", "tags", "metadata", "constraints")
        if key in data
    }
    try:
        task = asyncio.run(_tasks().create_task(data["goal"], data.get("plan"), **options))
    except FlowrunError as exc:
        _fail(exc)
    typer.echo(f"Created task {task.id} ({task.total_steps} step(s))")


@task_app.command("execute")
def task_execute(task_id: str) -> None:
    """Run a task's plan with the simulated step executor."""
    try:
        task = asyncio.run(_tasks().execute_task(task_id))
    except FlowrunError as exc:
        _fail(exc)
    typer.echo(f"Task {task.id}: {task.status.value} ({task.progress}%)")
    if task.user_decision:
        typer.echo(f"Decision: {task.user_decision}")
    if task.error:
        typer.echo(f"Error: {task.error}")


@task_app.command("stats")
def task_stats(user: Optional[str] = None) -> None:
    """Print aggregate task statistics."""
    stats = asyncio.run(_tasks().get_statistics(user))
    typer.echo(f"Total: {stats.total}")
    for status, count in stats.by_status.items():
        typer.echo(f"{status}: {count}")
    typer.echo(f"Completed today: {stats.completed_today}")
    typer.echo(f"Average duration: {stats.average_duration}s")
    typer.echo(f"Success rate: {stats.success_rate}%")


@task_app.command("cancel")
def task_cancel(task_id: str, reason: str = "") -> None:
    """Cancel a task that has not completed."""
    try:
        task = asyncio.run(_tasks().cancel_task(task_id, reason))
    except FlowrunError as exc:
        _fail(exc)
    typer.echo(f"Task {task.id}: {task.status.value}")


@task_app.command("retry")
def task_retry(task_id: str) -> None:
    """Reset a failed or cancelled task to pending."""
    try:
        task = asyncio.run(_tasks().retry_task(task_id))
    except FlowrunError as exc:
        _fail(exc)
    typer.echo(f"Task {task.id}: {task.status.value}")


# ----------------------------------------------------------------------
@app.command("templates")
def templates() -> None:
    """List built-in definition templates."""
    for template in _unwrap(asyncio.run(_service().list_templates())):
        typer.echo(f"{template['id']}\t{template['name']}\t{len(template['steps'])} step(s)")


@app.command("step-types")
def step_types() -> None:
    """List registered step types."""
    for descriptor in _unwrap(asyncio.run(_service().get_step_type_catalog())):
        typer.echo(f"{descriptor['type']}\t{descriptor['icon']} {descriptor['name']}")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
