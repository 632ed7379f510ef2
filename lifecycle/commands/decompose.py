"""Lifecycle decompose command - show how a work item is split into groups."""

import json

import click
from rich.console import Console
from rich.table import Table

from lifecycle.commands._utils import load_catalog, load_config, load_work_item
from lifecycle.decomposer import Decomposer
from lifecycle.graph import validate_task_graph
from lifecycle.logging import get_logger
from lifecycle.types import Decomposition

console = Console()
logger = get_logger("decompose")

TIER_COLORS = {"basic": "green", "standard": "yellow", "advanced": "red", "manual": "magenta"}


@click.command()
@click.argument("work_item", type=click.Path(exists=True, dir_okay=False))
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def decompose(ctx: click.Context, work_item: str, json_output: bool) -> None:
    """Decompose a work item into tasks and groups without running anything.

    Examples:

        lifecycle decompose feature.yaml

        lifecycle decompose feature.yaml --json
    """
    try:
        config = load_config(ctx)
        item = load_work_item(work_item)
        decomposition = Decomposer(load_catalog(config), config.review.domains).decompose(item)

        if json_output:
            console.print_json(json.dumps(decomposition.to_dict()))
            return

        show_decomposition(decomposition)

    except Exception as e:
        console.print(f"\n[red]Error:[/red] {e}")
        raise SystemExit(1) from e


def show_decomposition(decomposition: Decomposition) -> None:
    """Render groups, tasks, tier distribution and review tiers."""
    console.print(
        f"\n[bold cyan]Lifecycle Decomposition[/bold cyan] - {decomposition.work_item} "
        f"[dim](catalog {decomposition.catalog_version})[/dim]\n"
    )

    table = Table(show_header=True, header_style="bold")
    table.add_column("Group", justify="right")
    table.add_column("Name")
    table.add_column("Mode")
    table.add_column("Check")
    table.add_column("Task")
    table.add_column("Kind")
    table.add_column("Tier")
    table.add_column("Depends on")

    for group in decomposition.groups:
        for n, task_id in enumerate(group.task_ids):
            task = decomposition.task(task_id)
            color = TIER_COLORS.get(task.tier.label, "white")
            table.add_row(
                str(group.index) if n == 0 else "",
                group.name if n == 0 else "",
                group.mode.value if n == 0 else "",
                group.verification if n == 0 else "",
                task.id,
                task.kind,
                f"[{color}]{task.tier.label}[/{color}]",
                ", ".join(task.dependencies) or "-",
            )

    console.print(table)

    distribution = ", ".join(f"{tier}: {count}" for tier, count in decomposition.tier_distribution.items())
    console.print(f"\n[bold]Tier distribution:[/bold] {distribution}")

    review = ", ".join(f"{domain}={tier.label}" for domain, tier in decomposition.review_tiers.items())
    console.print(f"[bold]Review tiers:[/bold] {review}")

    _, warnings = validate_task_graph(decomposition.tasks, decomposition.groups)
    for warning in warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")
