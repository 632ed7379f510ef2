"""Lifecycle status command - show the state of a run."""

import json
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from lifecycle.commands._utils import detect_run, load_config
from lifecycle.constants import PHASE_ORDER
from lifecycle.logging import get_logger
from lifecycle.phases import evaluate_run
from lifecycle.state import RunState, RunStateStore

console = Console()
logger = get_logger("status")

PHASE_SYMBOLS = {
    "complete": "[green]✓[/green]",
    "current": "[yellow]●[/yellow]",
    "pending": "[dim]○[/dim]",
}


@click.command()
@click.option("--run", "-r", "run_id", help="Run to show (default: most recent)")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.option("--events", "events_count", default=10, type=int, help="Number of recent events to show")
@click.pass_context
def status(ctx: click.Context, run_id: str | None, json_output: bool, events_count: int) -> None:
    """Show phases, checkpoints, escalations, review and checklist of a run.

    Examples:

        lifecycle status

        lifecycle status --run user-auth --json
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

        state = store.load()
        outcome = evaluate_run(state, config, store)

        if json_output:
            console.print_json(json.dumps({"state": state.to_dict(), "outcome": outcome.to_dict()}, default=str))
            return

        console.print(f"\n[bold cyan]Lifecycle Status[/bold cyan] - {run_id}\n")
        show_phases(state)
        show_checkpoints(state)
        show_escalations(state)
        show_review(state)
        show_events(state, events_count)

        console.print(f"\n[bold]Status:[/bold] {outcome.status.value}")
        for reason in outcome.reasons:
            console.print(f"  • {reason}")

    except Exception as e:
        console.print(f"\n[red]Error:[/red] {e}")
        raise SystemExit(1) from e


def show_phases(state: RunState) -> None:
    parts = []
    for phase in PHASE_ORDER:
        if phase in state.completed_phases:
            key = "complete"
        elif phase is state.current_phase:
            key = "current"
        else:
            key = "pending"
        parts.append(f"{PHASE_SYMBOLS[key]} {phase.value}")
    console.print("  ".join(parts))
    console.print()


def show_checkpoints(state: RunState) -> None:
    if state.decomposition is None:
        console.print("[dim]Not decomposed yet[/dim]")
        return

    committed = {c.group: c for c in state.checkpoints}
    table = Table(title="Groups", show_header=True, header_style="bold")
    table.add_column("Group", justify="right")
    table.add_column("Name")
    table.add_column("Tasks", justify="right")
    table.add_column("Status")
    table.add_column("Commit")

    for group in state.decomposition.groups:
        checkpoint = committed.get(group.index)
        table.add_row(
            str(group.index),
            group.name,
            str(len(group.task_ids)),
            "committed" if checkpoint else group.status.value,
            checkpoint.commit_ref[:10] if checkpoint else "-",
        )
    console.print(table)


def show_escalations(state: RunState) -> None:
    escalated = [s for s in state.escalation.values() if s.escalated or s.failures]
    if not escalated:
        return

    table = Table(title="Escalations", show_header=True, header_style="bold")
    table.add_column("Task")
    table.add_column("Tier")
    table.add_column("History")
    table.add_column("Failures", justify="right")
    table.add_column("Last error")

    for item in escalated:
        tier = item.tier.label
        if item.is_manual:
            tier = "[magenta]manual (resolved)[/magenta]" if item.resolved else "[magenta]manual[/magenta]"
        table.add_row(
            item.task_id,
            tier,
            " → ".join(t.label for t in item.tier_history),
            str(item.failures),
            (item.last_error or "")[:60],
        )
    console.print(table)


def show_review(state: RunState) -> None:
    review = state.review
    if review is None:
        return

    table = Table(title=f"Review {review.score} - {review.recommendation.value}", show_header=True, header_style="bold")
    table.add_column("Domain")
    table.add_column("Score", justify="right")
    table.add_column("Status")
    table.add_column("Critical", justify="right")
    table.add_column("Medium", justify="right")
    table.add_column("Low", justify="right")

    for report in review.reports:
        counts = {sev: 0 for sev in ("critical", "medium", "low")}
        for issue in report.issues:
            counts[issue.severity.value] += 1
        table.add_row(
            report.domain,
            str(report.score),
            report.status.value,
            str(counts["critical"]),
            str(counts["medium"]),
            str(counts["low"]),
        )
    console.print(table)


def show_events(state: RunState, count: int) -> None:
    if count <= 0 or not state.events:
        return
    console.print("\n[bold]Recent events:[/bold]")
    for event in state.events[-count:]:
        details = ", ".join(f"{k}={v}" for k, v in event.items() if k not in ("ts", "event"))
        console.print(f"  [dim]{event['ts'][11:19]}[/dim] {event['event']} {details}")
