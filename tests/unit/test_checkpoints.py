"""Tests for lifecycle.checkpoints module."""

import pytest

from lifecycle.checkpoints import CheckpointManager
from lifecycle.exceptions import CheckpointError, StateError
from lifecycle.state import RunState, RunStateStore
from tests.mocks import MockVersionControl


class FailingStore(RunStateStore):
    """Store whose writes always fail."""

    def write(self, data: dict) -> None:
        raise StateError("disk full")


class TestCheckpointManager:
    """Tests for CheckpointManager class."""

    def test_commit_in_order(self, run_state: RunState) -> None:
        """Test that consecutive groups are recorded with their commit refs."""
        vcs = MockVersionControl()
        manager = CheckpointManager(vcs, run_state)

        first = manager.commit(1, ["a.py"], "group 1")
        second = manager.commit(2, ["b.py", "c.py"], "group 2")

        assert [c.group for c in manager.checkpoints] == [1, 2]
        assert first.commit_ref == "commit0001"
        assert second.artifacts == frozenset({"b.py", "c.py"})
        assert manager.last_committed == 2
        assert manager.next_group == 3

    def test_out_of_order_commit_rejected(self, run_state: RunState) -> None:
        """Test that a gap in the checkpoint sequence is refused."""
        vcs = MockVersionControl()
        manager = CheckpointManager(vcs, run_state)

        with pytest.raises(CheckpointError, match="next expected group is 1"):
            manager.commit(2, ["b.py"])

        assert vcs.commits == []
        assert manager.checkpoints == []

    def test_vcs_failure_records_nothing(self, run_state: RunState) -> None:
        """Test that a failed commit leaves no checkpoint behind."""
        manager = CheckpointManager(MockVersionControl(fail_on_groups={1}), run_state)

        with pytest.raises(CheckpointError, match="Commit for group 1 failed"):
            manager.commit(1, ["a.py"])

        assert manager.checkpoints == []
        assert manager.last_committed is None

    def test_checkpoint_persisted_before_visible(self, run_state: RunState, state_store: RunStateStore) -> None:
        """Test that the stored state already carries the new checkpoint."""
        manager = CheckpointManager(MockVersionControl(), run_state, state_store)

        manager.commit(1, ["a.py"])

        assert [c.group for c in state_store.load().checkpoints] == [1]

    def test_state_write_failure_records_nothing(self, run_state: RunState, tmp_path) -> None:
        """Test that a checkpoint whose state write fails is not recorded."""
        manager = CheckpointManager(MockVersionControl(), run_state, FailingStore("r", tmp_path))

        with pytest.raises(CheckpointError, match="Persisting checkpoint"):
            manager.commit(1, ["a.py"])

        assert manager.checkpoints == []

    def test_extract_is_union_up_to_group(self, run_state: RunState) -> None:
        """Test that extract unions artifacts of checkpoints 1..n only."""
        manager = CheckpointManager(MockVersionControl(), run_state)
        manager.commit(1, ["a.py"])
        manager.commit(2, ["b.py"])
        manager.commit(3, ["c.py"])

        assert manager.extract(0) == frozenset()
        assert manager.extract(2) == frozenset({"a.py", "b.py"})
        assert manager.extract(10) == frozenset({"a.py", "b.py", "c.py"})
