"""Command line interface for managing and running nexflow flows."""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from pathlib import Path
from typing import NoReturn, Optional

import typer
from pydantic import ValidationError

from nexflow import FlowRunner, FlowScheduler, get_repository
from nexflow.cli_utils.flow_files import format_timestamp, load_flow_file
from nexflow.config import load_config
from nexflow.constants import NEW_FLOW_LOOKBACK_SECONDS
from nexflow.contracts import FlowConfig
from nexflow.cron import is_due, next_run_after
from nexflow.errors import NexflowError
from nexflow.utils.time import parse_timestamp, utc_now

app = typer.Typer(help="CLI for nexflow scheduled flows")

# Command groups
flow_app = typer.Typer(help="Commands for managing flows")
scheduler_app = typer.Typer(help="Commands for running the scheduler")
cron_app = typer.Typer(help="Commands for inspecting cron schedules")

app.add_typer(flow_app, name="flow")
app.add_typer(scheduler_app, name="scheduler")
app.add_typer(cron_app, name="cron")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at INFO level"),
) -> None:
    """nexflow CLI entry point."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _fail(message: str) -> NoReturn:
    typer.secho(message, fg=typer.colors.RED)
    raise typer.Exit(code=1)


def _load_definition(path: Path) -> FlowConfig:
    try:
        return load_flow_file(path)
    except FileNotFoundError:
        _fail(f"Flow file not found: {path}")
    except (ValidationError, ValueError) as exc:
        _fail(f"Invalid flow file {path}: {exc}")


@flow_app.command("create")
def flow_create(path: Path) -> None:
    """
    Create a flow from a YAML or JSON definition file.

    The flow id is derived from the flow name (lowercase, dashes between
    words). Creating a flow whose name normalizes to an existing id fails.

    Example:
        nexflow flow create ./guides/price_alert.yaml
        # Output: Created flow btc-price-alert
    """
    config = _load_definition(path)
    repo = get_repository()
    try:
        record = asyncio.run(repo.create_flow(config))
    except NexflowError as exc:
        _fail(exc.message)
    typer.echo(f"Created flow {record.id}")


@flow_app.command("update")
def flow_update(flow_id: str, path: Path) -> None:
    """Replace the definition of an existing flow."""
    config = _load_definition(path)
    repo = get_repository()
    try:
        record = asyncio.run(repo.update_flow(flow_id, config))
    except NexflowError as exc:
        _fail(exc.message)
    typer.echo(f"Updated flow {record.id}")


@flow_app.command("list")
def flow_list() -> None:
    """
    List all flows with schedule, enabled flag and last run time.

    Example:
        nexflow flow list
        # Output: btc-price-alert    */5 * * * *    enabled    2025-01-01T12:00:00+00:00
    """
    repo = get_repository()
    flows = asyncio.run(repo.list_flows())
    if not flows:
        typer.echo("No flows found")
        return
    for flow in flows:
        state = "enabled" if flow.enabled else "disabled"
        typer.echo(
            f"{flow.id}\t{flow.schedule}\t{state}\t{format_timestamp(flow.last_run_at)}"
        )


@flow_app.command("show")
def flow_show(flow_id: str) -> None:
    """Show a flow's definition and bookkeeping timestamps."""
    repo = get_repository()
    try:
        flow = asyncio.run(repo.get_flow(flow_id))
    except NexflowError as exc:
        _fail(exc.message)
    typer.echo(f"Flow {flow.id}: {flow.name}")
    typer.echo(f"Schedule: {flow.schedule} ({'enabled' if flow.enabled else 'disabled'})")
    typer.echo(f"Created: {format_timestamp(flow.created_at)}")
    typer.echo(f"Updated: {format_timestamp(flow.updated_at)}")
    typer.echo(f"Last run: {format_timestamp(flow.last_run_at)}")
    for index, step in enumerate(flow.steps, start=1):
        label = f"{step.type}:{step.id}" if step.type == "fetch" else step.type
        typer.echo(f"  {index}. {label}")


@flow_app.command("delete")
def flow_delete(flow_id: str) -> None:
    """Delete a flow and its run history."""
    repo = get_repository()
    try:
        asyncio.run(repo.delete_flow(flow_id))
    except NexflowError as exc:
        _fail(exc.message)
    typer.echo(f"Deleted flow {flow_id}")


def _set_enabled(flow_id: str, enabled: bool) -> None:
    repo = get_repository()
    try:
        flow = asyncio.run(repo.set_enabled(flow_id, enabled))
    except NexflowError as exc:
        _fail(exc.message)
    typer.echo(f"Flow {flow.id} {'enabled' if flow.enabled else 'disabled'}")


@flow_app.command("enable")
def flow_enable(flow_id: str) -> None:
    """Let the scheduler run this flow."""
    _set_enabled(flow_id, True)


@flow_app.command("disable")
def flow_disable(flow_id: str) -> None:
    """Stop the scheduler from running this flow."""
    _set_enabled(flow_id, False)


@flow_app.command("run")
def flow_run(flow_id: str) -> None:
    """
    Run a flow immediately and record the run.

    Prints the run status followed by the run log. Exits with code 1 when
    the run failed.

    Example:
        nexflow flow run btc-price-alert
        # Output: Run 6f1c... success
        #         [system] Triggered by manual at 2025-01-01T12:00:00+00:00
        #         [fetch:price] GET https://api.example.com/price -> 200
    """
    config = load_config()
    runner = FlowRunner(
        repository=get_repository(), http_timeout=config.http.timeout_seconds
    )
    try:
        record = asyncio.run(runner.run_flow(flow_id, trigger="manual"))
    except NexflowError as exc:
        _fail(exc.message)
    typer.echo(f"Run {record.id} {record.status}")
    for line in record.log_lines:
        typer.echo(line)
    if not record.succeeded:
        raise typer.Exit(code=1)


@flow_app.command("logs")
def flow_logs(
    flow_id: str,
    limit: Optional[int] = typer.Option(None, help="Show at most this many runs"),
) -> None:
    """Show a flow's run history, most recent first."""
    repo = get_repository()
    try:
        runs = asyncio.run(repo.list_runs(flow_id, limit=limit))
    except NexflowError as exc:
        _fail(exc.message)
    if not runs:
        typer.echo("No runs recorded")
        return
    for run in runs:
        typer.echo(
            f"{run.finished_at.isoformat()}\t{run.trigger}\t{run.status}\t{run.id}"
        )
        failed = next((s for s in run.steps if s.error), None)
        if failed is not None:
            typer.echo(f"  {failed.step_id}: {failed.error}")


@scheduler_app.command("start")
def scheduler_start(
    interval: Optional[float] = typer.Option(
        None, help="Seconds between scheduler ticks (default from config)"
    ),
    lifespan: Optional[float] = typer.Option(
        None, help="Stop after this many seconds (default: run indefinitely)"
    ),
) -> None:
    """
    Poll the store and run every due flow until stopped.

    Example:
        nexflow -v scheduler start
        nexflow scheduler start --interval 5 --lifespan 60
    """
    config = load_config()
    repo = get_repository()
    runner = FlowRunner(repository=repo, http_timeout=config.http.timeout_seconds)
    scheduler = FlowScheduler(
        repository=repo,
        runner=runner,
        interval=interval or config.scheduler.interval_seconds,
    )
    typer.echo(f"Starting scheduler (interval {scheduler.interval}s)")
    try:
        asyncio.run(scheduler.start(lifespan=lifespan))
    except KeyboardInterrupt:
        typer.echo("Scheduler interrupted")


@cron_app.command("check")
def cron_check(
    schedule: str,
    last_run: Optional[str] = typer.Option(None, help="ISO timestamp of the last run"),
    now: Optional[str] = typer.Option(None, help="ISO timestamp to evaluate at"),
) -> None:
    """
    Report whether a schedule is due.

    Example:
        nexflow cron check "*/5 * * * *" --last-run 2025-01-01T11:55:00Z --now 2025-01-01T12:00:00Z
        # Output: DUE (next run 2025-01-01T12:00:00+00:00)
    """
    try:
        check_time = parse_timestamp(now) if now else utc_now()
        last_run_at = parse_timestamp(last_run) if last_run else None
    except ValueError as exc:
        _fail(f"Invalid timestamp: {exc}")

    reference = last_run_at or check_time - timedelta(seconds=NEW_FLOW_LOOKBACK_SECONDS)
    try:
        upcoming = next_run_after(schedule, reference)
    except ValueError as exc:
        _fail(f'Invalid cron expression "{schedule}": {exc}')

    verdict = "DUE" if is_due(schedule, last_run_at, check_time) else "WAIT"
    typer.echo(f"{verdict} (next run {upcoming.isoformat()})")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
