"""Tests for lifecycle.worker module."""

import json
from pathlib import Path

import pytest

from lifecycle.constants import Tier
from lifecycle.exceptions import ConfigurationError, TaskError
from lifecycle.worker import SubprocessWorker, Worker, WorkerPool
from tests.mocks import MockWorker, make_task


class TestWorkerPool:
    """Tests for WorkerPool class."""

    def test_exact_tier(self) -> None:
        """Test that a tier with its own worker gets it."""
        basic, advanced = MockWorker(), MockWorker()
        pool = WorkerPool({Tier.BASIC: basic, Tier.ADVANCED: advanced})

        assert pool.for_tier(Tier.BASIC) is basic
        assert pool.for_tier(Tier.ADVANCED) is advanced

    def test_falls_back_upward(self) -> None:
        """Test that a missing tier is served by the next higher one."""
        advanced = MockWorker()
        pool = WorkerPool({Tier.BASIC: MockWorker(), Tier.ADVANCED: advanced})

        assert pool.for_tier(Tier.STANDARD) is advanced

    def test_never_falls_back_downward(self) -> None:
        """Test that a task is never handed to a lower tier."""
        pool = WorkerPool({Tier.BASIC: MockWorker()})

        with pytest.raises(TaskError, match="standard"):
            pool.for_tier(Tier.STANDARD)

    def test_manual_tier_not_dispatched(self) -> None:
        """Test that manual tasks have no worker."""
        pool = WorkerPool.single(MockWorker())

        with pytest.raises(TaskError):
            pool.for_tier(Tier.MANUAL)

    def test_single_covers_automated_tiers(self) -> None:
        """Test that one worker can serve every automated tier."""
        assert WorkerPool.single(MockWorker()).tiers == [Tier.BASIC, Tier.STANDARD, Tier.ADVANCED]

    def test_invalid_pools(self) -> None:
        """Test that empty pools and manual workers are rejected."""
        with pytest.raises(ConfigurationError):
            WorkerPool({})
        with pytest.raises(ConfigurationError):
            WorkerPool({Tier.MANUAL: MockWorker()})


class TestSubprocessWorker:
    """Tests for SubprocessWorker class."""

    def test_satisfies_protocol(self) -> None:
        """Test that the subprocess worker is a Worker."""
        assert isinstance(SubprocessWorker("true"), Worker)

    def test_empty_command_rejected(self) -> None:
        """Test that a blank command is a configuration error."""
        with pytest.raises(ConfigurationError):
            SubprocessWorker("   ")

    def test_build_command_placeholders(self) -> None:
        """Test that task fields are substituted into the template."""
        worker = SubprocessWorker("agent run --task {task_id} --tier {tier} --group {group} --kind {kind}")
        task = make_task("TASK-007", 3, tier=Tier.STANDARD, kind="adapter")

        assert worker.build_command(task) == [
            "agent", "run", "--task", "TASK-007", "--tier", "standard", "--group", "3", "--kind", "adapter",
        ]

    def test_json_result_line(self, tmp_path: Path) -> None:
        """Test that a JSON object printed last is used as the result."""
        script = tmp_path / "worker.sh"
        script.write_text(
            "cat > /dev/null\n"
            "echo 'working...'\n"
            'echo "{\\"success\\": true, \\"artifacts\\": [\\"out/$LIFECYCLE_TASK_ID.txt\\"], '
            '\\"diagnostics\\": \\"$LIFECYCLE_TIER\\"}"\n'
        )
        worker = SubprocessWorker(f"sh {script}", cwd=tmp_path)

        result = worker.execute(make_task("T1", 1), frozenset())

        assert result.success
        assert result.artifacts == ["out/T1.txt"]
        assert result.diagnostics == "basic"

    def test_stdin_payload(self, tmp_path: Path) -> None:
        """Test that the task and dependency artifacts arrive on stdin."""
        worker = SubprocessWorker("sh -c 'cat > payload.json'", cwd=tmp_path)

        worker.execute(make_task("T1", 2, targets=["src/t1.py"]), frozenset({"b.py", "a.py"}))

        payload = json.loads((tmp_path / "payload.json").read_text())
        assert payload["task"]["id"] == "T1"
        assert payload["task"]["targets"] == ["src/t1.py"]
        assert payload["dependency_artifacts"] == ["a.py", "b.py"]

    def test_exit_code_success_reports_existing_targets(self, tmp_path: Path) -> None:
        """Test that without a JSON line the existing targets are the artifacts."""
        (tmp_path / "made.py").write_text("")
        worker = SubprocessWorker("true", cwd=tmp_path)

        result = worker.execute(make_task("T1", 1, targets=["made.py", "missing.py"]), frozenset())

        assert result.success
        assert result.artifacts == ["made.py"]

    def test_exit_code_failure(self, tmp_path: Path) -> None:
        """Test that a non-zero exit without JSON is a failure with diagnostics."""
        worker = SubprocessWorker("sh -c 'echo boom >&2; exit 3'", cwd=tmp_path)

        result = worker.execute(make_task("T1", 1), frozenset())

        assert not result.success
        assert "boom" in result.diagnostics

    def test_missing_command(self, tmp_path: Path) -> None:
        """Test that an executable that does not exist is a failed result."""
        result = SubprocessWorker("no-such-agent-xyz", cwd=tmp_path).execute(make_task("T1", 1), frozenset())

        assert not result.success
        assert "not found" in result.diagnostics

    def test_timeout(self, tmp_path: Path) -> None:
        """Test that a hanging worker is a failed result."""
        result = SubprocessWorker("sleep 5", cwd=tmp_path, timeout=1).execute(make_task("T1", 1), frozenset())

        assert not result.success
        assert "timed out" in result.diagnostics
