"""Lifecycle CLI commands."""

from lifecycle.commands.decompose import decompose
from lifecycle.commands.resolve import resolve
from lifecycle.commands.run import run
from lifecycle.commands.status import status

__all__ = [
    "decompose",
    "resolve",
    "run",
    "status",
]
