"""Dripline CLI - Main entry point."""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from dripline import __version__
from dripline.errors import DriplineError

app = typer.Typer(
    name="dripline",
    help="Drip-campaign workflow engine.",
    add_completion=False,
    no_args_is_help=True,
    rich_markup_mode="rich",
)
console = Console()


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"[bold cyan]dripline[/bold cyan] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-V",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
):
    """Dripline - move enrolled contacts through multi-step workflows.

    [bold]Quick Start:[/bold]

        dripline validate FILE      Check a YAML workflow
        dripline load FILE --org O  Store a workflow
        dripline sweep              Run one scheduler sweep
        dripline run                Sweep on an interval until interrupted
        dripline serve              Start the HTTP API
    """
    from dripline.config import configure_logging, get_settings

    settings = get_settings()
    configure_logging(
        level=settings.log_level,
        format=settings.log_format,
        sanitize_logs=settings.sanitize_logs,
    )


# =============================================================================
# Helpers
# =============================================================================


def _get_driver():
    from dripline.scheduler import SchedulerDriver

    try:
        return SchedulerDriver.from_settings()
    except Exception as e:
        console.print(f"[red]Could not initialize scheduler:[/red] {e}")
        raise typer.Exit(1)


def _print_report(report) -> None:
    table = Table(title="Sweep", show_header=True, header_style="bold cyan")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    data = report.to_dict()
    for key in ("fetched", "processed", "deferred", "conflicts", "errors"):
        table.add_row(key, str(data[key]))
    table.add_row("effects sent", str(data["effects_sent"]))
    table.add_row("effects failed", str(data["effects_failed"]))
    for outcome, count in sorted(data["outcomes"].items()):
        table.add_row(f"[dim]{outcome}[/dim]", str(count))
    table.add_row("duration", f"{data['duration_ms']:.1f}ms")
    console.print(table)
    if report.closed_workflows:
        console.print(f"[dim]Window closed:[/dim] {', '.join(report.closed_workflows)}")


# =============================================================================
# Workflow definitions
# =============================================================================


@app.command()
def validate(
    workflow_file: Path = typer.Argument(..., help="Path to a YAML workflow"),
):
    """Validate a YAML workflow without storing it."""
    import yaml

    from dripline.workflow.loader import validate_workflow

    if not workflow_file.exists():
        console.print(f"[red]File not found:[/red] {workflow_file}")
        raise typer.Exit(1)

    try:
        data = yaml.safe_load(workflow_file.read_text())
    except yaml.YAMLError as e:
        console.print(f"[red]Invalid YAML:[/red] {e}")
        raise typer.Exit(1)

    errors = validate_workflow(data) if isinstance(data, dict) else ["Not a YAML mapping"]
    if errors:
        console.print(f"[red]✗ {workflow_file} is invalid:[/red]")
        for error in errors:
            console.print(f"  • {error}")
        raise typer.Exit(1)

    console.print(f"[green]✓ {workflow_file} is valid[/green] ({len(data['steps'])} steps)")


@app.command()
def load(
    workflow_file: Path = typer.Argument(..., help="Path to a YAML workflow"),
    organization: str = typer.Option(..., "--org", "-o", help="Owning organization id"),
    inactive: bool = typer.Option(False, "--inactive", help="Store the workflow paused"),
):
    """Store a YAML workflow in the database."""
    from dripline.state import get_database
    from dripline.store import WorkflowRepository
    from dripline.workflow.loader import load_workflow

    try:
        definition = load_workflow(workflow_file, organization_id=organization)
    except FileNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    except DriplineError as e:
        console.print(f"[red]Invalid workflow:[/red] {e.message}")
        raise typer.Exit(1)

    if inactive:
        definition.active = False
    WorkflowRepository(get_database()).save(definition)
    console.print(f"[green]✓ Workflow stored:[/green] {definition.id}")


@app.command("list")
def list_workflows(
    organization: str = typer.Option(None, "--org", "-o", help="Only this organization"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """List stored workflows."""
    from dripline.state import get_database
    from dripline.store import WorkflowRepository

    definitions = WorkflowRepository(get_database()).list_definitions(organization)
    if json_output:
        print(json.dumps([d.to_dict() for d in definitions], indent=2))
        return
    if not definitions:
        console.print("[yellow]No workflows[/yellow]")
        return

    table = Table(title="Workflows")
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="bold")
    table.add_column("Org")
    table.add_column("Steps", justify="right")
    table.add_column("Daily limit", justify="right")
    table.add_column("Window")
    table.add_column("Status")
    for d in definitions:
        window = "-"
        if d.drip_window_start and d.drip_window_end:
            window = (
                f"{d.drip_window_start:%H:%M}-{d.drip_window_end:%H:%M} {d.timezone}"
            )
        status = "[green]active[/green]" if d.active else "[yellow]paused[/yellow]"
        table.add_row(
            d.id,
            d.name,
            d.organization_id,
            str(len(d.steps)),
            str(d.daily_contact_limit or "-"),
            window,
            status,
        )
    console.print(table)


@app.command()
def status(
    workflow_id: str = typer.Argument(..., help="Workflow id"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Show contact counts per status and per step for a workflow."""
    from dripline.state import get_database
    from dripline.store import ContactStateRepository, WorkflowRepository

    backend = get_database()
    definition = WorkflowRepository(backend).get(workflow_id)
    if definition is None:
        console.print(f"[red]Workflow not found:[/red] {workflow_id}")
        raise typer.Exit(1)

    states = ContactStateRepository(backend)
    counts = states.status_counts(definition.organization_id, workflow_id)
    steps = states.step_counts(workflow_id, definition.organization_id)
    if json_output:
        print(json.dumps({"statuses": counts, "steps": steps}, indent=2))
        return

    table = Table(title=f"{definition.name} ({workflow_id})")
    table.add_column("Status", style="cyan")
    table.add_column("Contacts", justify="right")
    for name, count in counts.items():
        table.add_row(name, str(count))
    console.print(table)

    step_table = Table(title="In progress by step")
    step_table.add_column("#", justify="right")
    step_table.add_column("Kind")
    step_table.add_column("Contacts", justify="right")
    for index, step in enumerate(definition.steps):
        step_table.add_row(str(index), step.kind, str(steps.get(index, 0)))
    console.print(step_table)


# =============================================================================
# Scheduling
# =============================================================================


@app.command()
def sweep(
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Run a single scheduler sweep."""
    report = _get_driver().sweep()
    if json_output:
        print(json.dumps(report.to_dict(), indent=2))
        return
    _print_report(report)


@app.command()
def run(
    interval: int = typer.Option(None, "--interval", "-i", help="Seconds between sweeps"),
):
    """Sweep on an interval until interrupted."""
    driver = _get_driver()
    if interval:
        driver.interval_seconds = interval

    driver.start()
    console.print(
        f"[green]Scheduler running[/green] every {driver.interval_seconds}s. "
        "Press Ctrl+C to stop."
    )
    try:
        while driver.running:
            time.sleep(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopping...[/yellow]")
    finally:
        driver.shutdown()


@app.command()
def serve(
    host: str = typer.Option(None, "--host", help="Bind address"),
    port: int = typer.Option(None, "--port", "-p", help="Port"),
    with_scheduler: bool = typer.Option(
        False, "--with-scheduler", help="Also run the sweep scheduler in this process"
    ),
):
    """Start the HTTP API."""
    import os

    import uvicorn

    from dripline.config import get_settings

    settings = get_settings()
    if with_scheduler:
        os.environ["DRIPLINE_API_RUN_SCHEDULER"] = "true"
        get_settings.cache_clear()

    uvicorn.run(
        "dripline.api:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        log_config=None,
    )


if __name__ == "__main__":
    app()
