"""Tests for lifecycle.state module."""

import json
from pathlib import Path

import pytest

from lifecycle.constants import Component, LogEvent, Phase, Recommendation, Severity, Tier
from lifecycle.exceptions import PhaseError, StateError
from lifecycle.review import consolidate
from lifecycle.state import RunState, RunStateStore, run_id_for
from lifecycle.types import Checkpoint, EscalationState, HaltRecord
from tests.mocks import make_decomposition
from tests.mocks.mock_reviewer import report_with


class TestRunId:
    """Tests for run_id_for."""

    def test_slugifies_name(self) -> None:
        """Test that names become filesystem-safe identifiers."""
        assert run_id_for("User Auth / Login!") == "user-auth-login"

    def test_empty_name(self) -> None:
        """Test that a name with no usable characters still gives an id."""
        assert run_id_for("!!!") == "run"


class TestPhaseSequencing:
    """Tests for RunState phase transitions."""

    def test_phases_in_order(self, run_state: RunState) -> None:
        """Test walking the phases in their fixed order."""
        for phase in Phase:
            assert run_state.next_phase() is phase
            run_state.start_phase(phase)
            run_state.complete_phase(phase)

        assert run_state.finished
        assert run_state.next_phase() is None
        assert len(run_state.events_of(LogEvent.PHASE_COMPLETED)) == 6

    def test_cannot_skip_phase(self, run_state: RunState) -> None:
        """Test that entering a later phase first is refused."""
        with pytest.raises(PhaseError, match="next phase is plan"):
            run_state.start_phase(Phase.IMPLEMENT)

    def test_cannot_complete_unstarted_phase(self, run_state: RunState) -> None:
        """Test that a phase must be entered before it is completed."""
        with pytest.raises(PhaseError):
            run_state.complete_phase(Phase.PLAN)

    def test_last_checkpoint(self, run_state: RunState) -> None:
        """Test that the last checkpoint is the highest committed group."""
        assert run_state.last_checkpoint is None

        run_state.checkpoints.append(Checkpoint(group=1, artifacts=frozenset(), commit_ref="abc"))

        assert run_state.last_checkpoint == 1


class TestRunStateStore:
    """Tests for RunStateStore persistence."""

    @pytest.mark.smoke
    def test_round_trip_full_state(self, state_store: RunStateStore) -> None:
        """Test that every part of the state survives a save and load."""
        state = RunState(run_id="test-run", work_item={"name": "feature"})
        state.start_phase(Phase.PLAN)
        state.complete_phase(Phase.PLAN)
        state.decomposition = make_decomposition([2, 1])
        state.checkpoints.append(Checkpoint(group=1, artifacts=frozenset({"a.py"}), commit_ref="abc123"))
        state.escalation = {
            "G1-T1": EscalationState(task_id="G1-T1", tier=Tier.STANDARD, tier_history=[Tier.BASIC, Tier.STANDARD])
        }
        state.review = consolidate([report_with("security", Severity.MEDIUM)])
        state.halt = HaltRecord(component=Component.VERIFIER, reason="broken", group=2, last_checkpoint=1)

        state_store.save(state)
        loaded = state_store.load()

        assert loaded.completed_phases == [Phase.PLAN]
        assert loaded.decomposition.group(1).task_ids == ["G1-T1", "G1-T2"]
        assert loaded.checkpoints[0].artifacts == frozenset({"a.py"})
        assert loaded.escalation["G1-T1"].tier is Tier.STANDARD
        assert loaded.review.recommendation is Recommendation.FIX_OPTIONAL
        assert loaded.halt.component is Component.VERIFIER
        assert loaded.halt.last_checkpoint == 1

    def test_save_is_atomic(self, state_store: RunStateStore) -> None:
        """Test that no temporary files are left next to the state file."""
        state_store.save(RunState(run_id="test-run"))

        assert [p.name for p in state_store.state_dir.iterdir()] == ["test-run.json"]

    def test_load_missing_state(self, state_store: RunStateStore) -> None:
        """Test that loading without a state file raises StateError."""
        with pytest.raises(StateError, match="No state found"):
            state_store.load()

    def test_load_corrupt_state(self, state_store: RunStateStore) -> None:
        """Test that a corrupt state file raises StateError."""
        state_store.state_dir.mkdir(parents=True)
        state_store.path.write_text("{not json")

        with pytest.raises(StateError, match="Failed to parse"):
            state_store.load()

    def test_write_failure_raises_state_error(self, tmp_path: Path) -> None:
        """Test that an unwritable state directory is reported as StateError."""
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        store = RunStateStore("x", blocker / "state")

        with pytest.raises(StateError, match="Failed to write"):
            store.save(RunState(run_id="x"))

    def test_delete(self, state_store: RunStateStore) -> None:
        """Test removing persisted state."""
        state_store.save(RunState(run_id="test-run"))
        state_store.delete()

        assert not state_store.exists()

    def test_file_is_json(self, state_store: RunStateStore) -> None:
        """Test that the state file is plain JSON with a schema version."""
        state_store.save(RunState(run_id="test-run"))

        data = json.loads(state_store.path.read_text())

        assert data["schema"] == 1
        assert data["run_id"] == "test-run"
