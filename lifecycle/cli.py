"""Lifecycle command-line interface."""

import click
from rich.console import Console

from lifecycle import __version__
from lifecycle.commands import decompose, resolve, run, status

console = Console()


@click.group()
@click.version_option(version=__version__, prog_name="lifecycle")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Configuration file (default: .lifecycle/config.yaml)",
)
@click.pass_context
def cli(ctx: click.Context, config_path: str | None) -> None:
    """Lifecycle - feature lifecycle pipeline orchestrator.

    Decompose work into grouped tasks, run them behind verified checkpoints
    and review the result.
    """
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


# Register implemented commands
cli.add_command(decompose)
cli.add_command(resolve)
cli.add_command(run)
cli.add_command(status)


if __name__ == "__main__":
    cli()
