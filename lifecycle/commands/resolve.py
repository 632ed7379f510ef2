"""Lifecycle resolve command - clear a manual pause on a task."""

from pathlib import Path

import click
from rich.console import Console

from lifecycle.commands._utils import detect_run, load_config
from lifecycle.logging import get_logger
from lifecycle.phases import resolve_manual_task
from lifecycle.state import RunStateStore

console = Console()
logger = get_logger("resolve")


@click.command()
@click.argument("task_id")
@click.option("--run", "-r", "run_id", help="Run the task belongs to (default: most recent)")
@click.pass_context
def resolve(ctx: click.Context, task_id: str, run_id: str | None) -> None:
    """Mark a task waiting on manual resolution as resolved.

    The owning group is verified again when the run is resumed.

    Examples:

        lifecycle resolve TASK-004

        lifecycle resolve TASK-004 --run user-auth
    """
    try:
        config = load_config(ctx)
        state_dir = Path(config.project.root) / config.state.directory

        if not run_id:
            run_id = detect_run(state_dir)
        if not run_id:
            console.print("[red]Error:[/red] No run found")
            console.print("Specify a run with [cyan]--run[/cyan]")
            raise SystemExit(1)

        store = RunStateStore(run_id, state_dir)
        if not store.exists():
            console.print(f"[red]Error:[/red] No state found for run '{run_id}'")
            raise SystemExit(1)

        if not resolve_manual_task(store, task_id):
            console.print(f"[yellow]{task_id} is not waiting on manual resolution[/yellow]")
            raise SystemExit(1)

        console.print(f"[green]✓[/green] {task_id} resolved")
        console.print("Continue with [cyan]lifecycle run <work-item> --resume[/cyan]")

    except Exception as e:
        console.print(f"\n[red]Error:[/red] {e}")
        raise SystemExit(1) from e
