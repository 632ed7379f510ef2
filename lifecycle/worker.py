"""Task executors: the Worker protocol, the tiered pool and a subprocess worker."""

from __future__ import annotations

import json
import os
import shlex
import subprocess
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from lifecycle.constants import AUTOMATED_TIERS, DIAGNOSTIC_TAIL_LINES, Tier
from lifecycle.exceptions import ConfigurationError, TaskError
from lifecycle.logging import get_logger
from lifecycle.types import Task, WorkerResult

logger = get_logger("worker")


@runtime_checkable
class Worker(Protocol):
    """Executes one task against the artifacts committed by earlier groups."""

    def execute(self, task: Task, dependency_artifacts: frozenset[str]) -> WorkerResult: ...


class WorkerPool:
    """Map tiers to workers.

    A tier with no worker of its own is served by the next higher tier that
    has one. A task is never handed to a lower tier than it was assigned.
    """

    def __init__(self, workers: dict[Tier, Worker]) -> None:
        for tier in workers:
            if tier is Tier.MANUAL:
                raise ConfigurationError("The manual tier cannot be served by a worker")
        if not workers:
            raise ConfigurationError("At least one worker tier must be configured")
        self._workers = dict(workers)

    @classmethod
    def single(cls, worker: Worker) -> WorkerPool:
        """One worker for every automated tier."""
        return cls({tier: worker for tier in AUTOMATED_TIERS})

    @property
    def tiers(self) -> list[Tier]:
        return sorted(self._workers)

    def for_tier(self, tier: Tier) -> Worker:
        """Worker for a tier, falling back upward.

        Raises:
            TaskError: For the manual tier or when no worker at or above the tier exists
        """
        if tier is Tier.MANUAL:
            raise TaskError("Manual tasks are not dispatched to workers")
        for candidate in AUTOMATED_TIERS:
            if candidate >= tier and candidate in self._workers:
                if candidate is not tier:
                    logger.debug(f"No {tier.label} worker, using {candidate.label}")
                return self._workers[candidate]
        raise TaskError(f"No worker available at or above tier {tier.label}")


class SubprocessWorker:
    """Run an external command per task.

    The command template may use ``{task_id}``, ``{kind}``, ``{tier}`` and
    ``{group}``. The full task plus dependency artifacts is written to the
    command's stdin as JSON. If the command prints a JSON object with
    ``success``/``artifacts``/``diagnostics`` that is the result; otherwise
    the exit code decides and the task's existing targets are reported as
    artifacts.
    """

    def __init__(self, command: str, cwd: str | Path = ".", timeout: int = 1800) -> None:
        if not command.strip():
            raise ConfigurationError("Worker command must not be empty")
        self.command = command
        self.cwd = Path(cwd)
        self.timeout = timeout

    def build_command(self, task: Task) -> list[str]:
        fields = {"task_id": task.id, "kind": task.kind, "tier": task.tier.label, "group": task.group}
        return [arg.format(**fields) for arg in shlex.split(self.command)]

    def execute(self, task: Task, dependency_artifacts: frozenset[str]) -> WorkerResult:
        payload = {"task": task.to_dict(), "dependency_artifacts": sorted(dependency_artifacts)}
        env = os.environ.copy()
        env.update({"LIFECYCLE_TASK_ID": task.id, "LIFECYCLE_TIER": task.tier.label})
        cmd = self.build_command(task)

        logger.debug(f"Executing {task.id}: {' '.join(cmd)}", extra={"task_id": task.id})
        try:
            result = subprocess.run(
                cmd,
                input=json.dumps(payload),
                cwd=str(self.cwd),
                env=env,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            return WorkerResult(success=False, diagnostics=f"worker timed out after {self.timeout}s")
        except FileNotFoundError as e:
            return WorkerResult(success=False, diagnostics=f"worker command not found: {e.filename or cmd[0]}")

        parsed = self._parse_output(result.stdout)
        if parsed is not None:
            return WorkerResult(
                success=bool(parsed.get("success", result.returncode == 0)),
                artifacts=[str(a) for a in parsed.get("artifacts", [])],
                diagnostics=str(parsed.get("diagnostics", "")),
            )

        output = f"{result.stdout}\n{result.stderr}".strip()
        diagnostics = "\n".join(output.splitlines()[-DIAGNOSTIC_TAIL_LINES:])
        if result.returncode != 0:
            return WorkerResult(success=False, diagnostics=diagnostics)
        artifacts = [t for t in task.targets if (self.cwd / t).exists()]
        return WorkerResult(success=True, artifacts=artifacts, diagnostics=diagnostics)

    @staticmethod
    def _parse_output(stdout: str) -> dict[str, Any] | None:
        """Last stdout line that parses as a JSON object, if any."""
        for line in reversed(stdout.strip().splitlines()):
            line = line.strip()
            if not line.startswith("{"):
                continue
            try:
                data = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(data, dict):
                return data
        return None
