"""Pytest configuration and fixtures for lifecycle tests."""

import logging
import os
import subprocess
from collections.abc import Generator
from pathlib import Path

import pytest

from lifecycle.config import LifecycleConfig
from lifecycle.logging import clear_run_context
from lifecycle.state import RunState, RunStateStore
from lifecycle.types import WorkItem


def _run_git(*args: str, cwd: Path | None = None) -> None:
    """Run git command safely without shell=True."""
    subprocess.run(
        ["git", *args],
        cwd=cwd,
        capture_output=True,
        check=True,
    )


@pytest.fixture
def tmp_repo(tmp_path: Path) -> Generator[Path, None, None]:
    """Create a temporary git repository.

    Yields:
        Path to the temporary repository
    """
    orig_dir = os.getcwd()
    os.chdir(tmp_path)

    _run_git("init", "-q", "-b", "main", cwd=tmp_path)
    _run_git("config", "user.email", "test@test.com", cwd=tmp_path)
    _run_git("config", "user.name", "Test", cwd=tmp_path)

    (tmp_path / "README.md").write_text("# Test Repo")
    _run_git("add", "-A", cwd=tmp_path)
    _run_git("commit", "-q", "-m", "Initial commit", cwd=tmp_path)

    yield tmp_path

    os.chdir(orig_dir)


@pytest.fixture(autouse=True)
def reset_lifecycle_logging() -> Generator[None, None, None]:
    """Keep handlers and run context from leaking between tests."""
    yield
    clear_run_context()
    root = logging.getLogger("lifecycle")
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.propagate = True
    root.setLevel(logging.NOTSET)


@pytest.fixture
def sample_config() -> LifecycleConfig:
    """Configuration with push enabled and the default review domains."""
    return LifecycleConfig()


@pytest.fixture
def three_group_item() -> WorkItem:
    """Work item spanning foundation, contract and adapter kinds (three groups)."""
    return WorkItem.from_dict(
        {
            "name": "user-auth",
            "description": "Password login",
            "units": [
                {"id": "TASK-001", "kind": "foundation-model", "targets": ["src/user.py"]},
                {"id": "TASK-002", "kind": "foundation-model", "targets": ["src/session.py"]},
                {
                    "id": "TASK-003",
                    "kind": "contract",
                    "targets": ["src/auth_port.py"],
                    "depends_on": ["TASK-001"],
                },
                {
                    "id": "TASK-004",
                    "kind": "adapter",
                    "targets": ["src/auth_db.py"],
                    "depends_on": ["TASK-003"],
                },
            ],
        }
    )


@pytest.fixture
def full_item() -> WorkItem:
    """Work item using every kind of the default catalog."""
    kinds = [
        "foundation-model",
        "contract",
        "adapter",
        "orchestration-logic",
        "inbound-adapter",
        "observability",
        "test",
    ]
    return WorkItem.from_dict(
        {
            "name": "orders",
            "units": [
                {"id": f"T{n}", "kind": kind, "targets": [f"src/{kind}.py"]} for n, kind in enumerate(kinds, start=1)
            ],
        }
    )


@pytest.fixture
def run_state() -> RunState:
    return RunState(run_id="test-run")


@pytest.fixture
def state_store(tmp_path: Path) -> RunStateStore:
    return RunStateStore("test-run", tmp_path / "state")
