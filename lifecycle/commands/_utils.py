"""Shared utilities for lifecycle CLI commands."""

import os
from pathlib import Path

import click
import yaml  # type: ignore[import-untyped]

from lifecycle.catalog import Catalog
from lifecycle.config import LifecycleConfig
from lifecycle.constants import Tier
from lifecycle.exceptions import ConfigurationError
from lifecycle.review import SubprocessReviewer
from lifecycle.types import WorkItem
from lifecycle.verifier import STACK_PROFILES, CommandVerifier
from lifecycle.worker import SubprocessWorker, Worker, WorkerPool


def load_config(ctx: click.Context) -> LifecycleConfig:
    """Configuration from the path given to the CLI group, or the default location."""
    config_path = (ctx.obj or {}).get("config_path")
    return LifecycleConfig.load(config_path)


def load_work_item(path: str | Path) -> WorkItem:
    """Read a work-item YAML file.

    Raises:
        ConfigurationError: If the file is not valid YAML or lacks a name
    """
    item_path = Path(path)
    try:
        with open(item_path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {item_path}", {"error": str(e)}) from e

    if not isinstance(data, dict) or not data.get("name"):
        raise ConfigurationError(f"Work item {item_path} must be a mapping with a 'name'")
    try:
        return WorkItem.from_dict(data)
    except (KeyError, TypeError) as e:
        raise ConfigurationError(f"Invalid work item {item_path}", {"error": str(e)}) from e


def load_catalog(config: LifecycleConfig) -> Catalog:
    return Catalog.load(config.catalog.path)


def detect_run(state_dir: str | Path) -> str | None:
    """Detect the run to act on.

    Priority order:
    1. LIFECYCLE_RUN env var
    2. Most recently modified state file

    Returns:
        Run ID or None if no run can be found.
    """
    env_run = os.environ.get("LIFECYCLE_RUN", "").strip()
    if env_run:
        return env_run

    directory = Path(state_dir)
    if directory.exists():
        state_files = list(directory.glob("*.json"))
        if state_files:
            state_files.sort(key=lambda p: p.stat().st_mtime, reverse=True)
            return state_files[0].stem

    return None


def build_workers(config: LifecycleConfig, root: Path) -> WorkerPool:
    """Subprocess workers from ``workers.commands``.

    Raises:
        ConfigurationError: If no worker command is configured
    """
    commands = config.worker_commands()
    if not commands:
        raise ConfigurationError("No worker commands configured (workers.commands in the config file)")
    workers: dict[Tier, Worker] = {
        tier: SubprocessWorker(command, cwd=root, timeout=config.workers.timeout) for tier, command in commands.items()
    }
    return WorkerPool(workers)


def build_verifier(config: LifecycleConfig, root: Path) -> CommandVerifier:
    """Command verifier for the project.

    Raises:
        ConfigurationError: If the configured stack is unknown
    """
    stack = None
    if config.verification.stack:
        stack = STACK_PROFILES.get(config.verification.stack)
        if stack is None:
            raise ConfigurationError(
                f"Unknown stack '{config.verification.stack}'",
                {"known": sorted(STACK_PROFILES)},
            )
    return CommandVerifier(
        project_root=root,
        commands=config.verification.commands,
        stack=stack,
        timeout=config.verification.timeout,
    )


def build_reviewer(config: LifecycleConfig, root: Path) -> SubprocessReviewer:
    """Subprocess reviewer from ``reviewers.command``.

    Raises:
        ConfigurationError: If no reviewer command is configured
    """
    if not config.reviewers.command:
        raise ConfigurationError("No reviewer command configured (reviewers.command in the config file)")
    return SubprocessReviewer(config.reviewers.command, cwd=root, timeout=config.reviewers.timeout)
