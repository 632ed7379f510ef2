"""Lifecycle run command - execute the full pipeline for a work item."""

import json
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from lifecycle.commands._utils import (
    build_reviewer,
    build_verifier,
    build_workers,
    load_catalog,
    load_config,
    load_work_item,
)
from lifecycle.commands.decompose import show_decomposition
from lifecycle.decomposer import Decomposer
from lifecycle.logging import get_logger, setup_logging
from lifecycle.phases import PhaseController
from lifecycle.state import RunStateStore, run_id_for
from lifecycle.types import RunOutcome
from lifecycle.vcs import GitVersionControl

console = Console()
logger = get_logger("run")

# Exit code for a run that ended Incomplete (1 is reserved for errors)
EXIT_INCOMPLETE = 2


@click.command()
@click.argument("work_item", type=click.Path(exists=True, dir_okay=False))
@click.option("--resume", is_flag=True, help="Continue the persisted run for this work item")
@click.option("--dry-run", is_flag=True, help="Show the decomposition without executing")
@click.option("--no-push", is_flag=True, help="Do not push on finalize")
@click.option("--justification", help="Justification for proceeding with optional review fixes")
@click.option("--verbose", "-v", is_flag=True, help="Log to the console")
@click.option("--json", "json_output", is_flag=True, help="Output the outcome as JSON")
@click.pass_context
def run(
    ctx: click.Context,
    work_item: str,
    resume: bool,
    dry_run: bool,
    no_push: bool,
    justification: str | None,
    verbose: bool,
    json_output: bool,
) -> None:
    """Run the lifecycle pipeline for a work item.

    Phases: plan, decompose, implement, review, fix, finalize.

    Examples:

        lifecycle run feature.yaml

        lifecycle run feature.yaml --dry-run

        lifecycle run feature.yaml --resume
    """
    try:
        config = load_config(ctx)
        if no_push:
            config.scheduler.push_on_finalize = False

        item = load_work_item(work_item)
        catalog = load_catalog(config)

        if dry_run:
            show_decomposition(Decomposer(catalog, config.review.domains).decompose(item))
            console.print("\n[dim]Dry run - nothing executed[/dim]")
            return

        root = Path(config.project.root).resolve()
        setup_logging(
            level=config.logging.level,
            log_dir=root / config.logging.directory,
            json_output=config.logging.json_output,
            console_output=verbose,
        )

        store = RunStateStore(run_id_for(item.name), root / config.state.directory)
        if resume and not store.exists():
            console.print(f"[red]Error:[/red] No run state found for '{item.name}'")
            raise SystemExit(1)
        if not resume and store.exists():
            console.print(
                f"[red]Error:[/red] A run for '{item.name}' already exists. "
                "Use [cyan]--resume[/cyan] to continue it."
            )
            raise SystemExit(1)

        controller = PhaseController(
            config=config,
            work_item=item,
            workers=build_workers(config, root),
            verifier=build_verifier(config, root),
            vcs=GitVersionControl(root),
            reviewer=build_reviewer(config, root),
            catalog=catalog,
            store=store,
            justification=justification,
        )

        console.print(f"\n[bold cyan]Lifecycle Run[/bold cyan] - {item.name}\n")
        try:
            outcome = controller.run(resume=resume)
        except KeyboardInterrupt:
            console.print("\n[yellow]Interrupted - run can be resumed with --resume[/yellow]")
            raise SystemExit(EXIT_INCOMPLETE) from None

        if json_output:
            console.print_json(json.dumps(outcome.to_dict()))
        else:
            show_outcome(outcome)

        if not outcome.complete:
            raise SystemExit(EXIT_INCOMPLETE)

    except Exception as e:
        console.print(f"\n[red]Error:[/red] {e}")
        raise SystemExit(1) from e


def show_outcome(outcome: RunOutcome) -> None:
    """Render the terminal status and the checklist."""
    table = Table(show_header=True, header_style="bold")
    table.add_column("Check")
    table.add_column("Result", justify="center")
    table.add_column("Detail")

    for check in outcome.checklist:
        if check.passed:
            mark = "[green]✓[/green]"
        elif check.required:
            mark = "[red]✗[/red]"
        else:
            mark = "[yellow]![/yellow]"
        table.add_row(check.name, mark, check.detail)

    console.print(table)

    if outcome.complete:
        console.print("\n[bold green]Run complete[/bold green]")
        return

    console.print("\n[bold red]Run incomplete[/bold red]")
    for reason in outcome.reasons:
        console.print(f"  • {reason}")
    if outcome.halt is not None and outcome.halt.paused:
        console.print("\nResolve the paused work, then continue with [cyan]lifecycle run --resume[/cyan]")
