"""Tests for lifecycle.escalation module."""

import pytest

from lifecycle.constants import EscalationAction, Tier
from lifecycle.escalation import EscalationManager
from lifecycle.exceptions import TaskError
from lifecycle.types import EscalationState
from tests.mocks import make_task


@pytest.fixture
def manager() -> EscalationManager:
    mgr = EscalationManager(max_attempts_per_tier=2, rate_threshold=0.15)
    mgr.register([make_task("A", 1), make_task("B", 1, tier=Tier.ADVANCED)])
    return mgr


class TestRecordFailure:
    """Tests for the tier ladder."""

    def test_first_failure_retries_same_tier(self, manager: EscalationManager) -> None:
        """Test that a first failure stays at the tier."""
        decision = manager.record_failure("A", "compile")

        assert decision.action is EscalationAction.RETRY
        assert decision.tier is Tier.BASIC
        assert decision.retry is True
        assert manager.state("A").same_tier_attempts == 1

    def test_second_failure_escalates_with_fresh_counter(self, manager: EscalationManager) -> None:
        """Test that exhausting a tier moves up one tier and resets the count."""
        manager.record_failure("A", "compile")
        decision = manager.record_failure("A", "compile")

        assert decision.action is EscalationAction.ESCALATE
        assert decision.previous_tier is Tier.BASIC
        assert decision.tier is Tier.STANDARD
        state = manager.state("A")
        assert state.same_tier_attempts == 0
        assert state.tier_history == [Tier.BASIC, Tier.STANDARD]
        assert state.escalated

    def test_full_ladder_ends_in_manual(self, manager: EscalationManager) -> None:
        """Test that six failures walk Basic -> Standard -> Advanced -> Manual."""
        actions = [manager.record_failure("A", "compile").action for _ in range(6)]

        assert actions == [
            EscalationAction.RETRY,
            EscalationAction.ESCALATE,
            EscalationAction.RETRY,
            EscalationAction.ESCALATE,
            EscalationAction.RETRY,
            EscalationAction.MANUAL,
        ]
        assert manager.current_tier("A") is Tier.MANUAL
        assert manager.is_awaiting_manual("A")
        assert manager.manual_tasks() == ["A"]

    def test_manual_is_terminal(self, manager: EscalationManager) -> None:
        """Test that further failures of a manual task change nothing."""
        for _ in range(2):
            manager.record_failure("B", "test_failure")
        failures = manager.state("B").failures

        decision = manager.record_failure("B", "again")

        assert decision.action is EscalationAction.MANUAL
        assert decision.retry is False
        assert manager.state("B").failures == failures

    def test_tier_never_decreases(self, manager: EscalationManager) -> None:
        """Test that the tier is monotonically non-decreasing."""
        tiers = []
        for _ in range(6):
            tiers.append(manager.record_failure("A").tier)

        assert tiers == sorted(tiers)

    def test_unknown_task_raises(self, manager: EscalationManager) -> None:
        """Test that an untracked task is a TaskError."""
        with pytest.raises(TaskError):
            manager.record_failure("nope")

    def test_single_attempt_per_tier(self) -> None:
        """Test a ladder with one attempt per tier."""
        mgr = EscalationManager(max_attempts_per_tier=1)
        mgr.register([make_task("A", 1)])

        assert mgr.record_failure("A").action is EscalationAction.ESCALATE

    def test_invalid_attempt_bound(self) -> None:
        """Test that at least one attempt per tier is required."""
        with pytest.raises(ValueError):
            EscalationManager(max_attempts_per_tier=0)


class TestManualResolution:
    """Tests for resolving manual tasks."""

    def test_resolve_manual_task(self, manager: EscalationManager) -> None:
        """Test that a manual task can be marked resolved."""
        for _ in range(2):
            manager.record_failure("B")

        assert manager.resolve_manual("B") is True
        assert manager.is_resolved_manually("B")
        assert not manager.is_awaiting_manual("B")
        assert manager.is_manual_state("B")
        assert manager.manual_tasks() == []
        assert manager.manual_tasks(include_resolved=True) == ["B"]

    def test_resolve_non_manual_task(self, manager: EscalationManager) -> None:
        """Test that only manual tasks can be resolved."""
        assert manager.resolve_manual("A") is False

    def test_resolve_twice(self, manager: EscalationManager) -> None:
        """Test that resolving is not repeated."""
        for _ in range(2):
            manager.record_failure("B")
        manager.resolve_manual("B")

        assert manager.resolve_manual("B") is False


class TestEscalationRate:
    """Tests for the catalog feedback signal."""

    def test_rate_and_recommendation(self) -> None:
        """Test that one escalated task out of five exceeds 15%."""
        mgr = EscalationManager(rate_threshold=0.15)
        mgr.register([make_task(f"T{i}", 1) for i in range(5)])
        mgr.record_failure("T0")
        mgr.record_failure("T0")

        assert mgr.escalation_rate == pytest.approx(0.2)
        assert mgr.catalog_review_recommended
        summary = mgr.summary()
        assert summary["escalated_tasks"] == ["T0"]
        assert summary["catalog_review_recommended"] is True

    def test_retry_without_escalation_does_not_count(self) -> None:
        """Test that same-tier retries are not escalations."""
        mgr = EscalationManager()
        mgr.register([make_task("T0", 1)])
        mgr.record_failure("T0")

        assert mgr.escalation_rate == 0.0
        assert not mgr.catalog_review_recommended

    def test_empty_manager_rate(self) -> None:
        """Test the rate with nothing tracked."""
        assert EscalationManager().escalation_rate == 0.0


class TestRestore:
    """Tests for restoring persisted escalation state."""

    def test_restore_then_register_keeps_progress(self) -> None:
        """Test that registering after restore does not reset known tasks."""
        mgr = EscalationManager()
        mgr.restore({"A": EscalationState(task_id="A", tier=Tier.STANDARD, tier_history=[Tier.BASIC, Tier.STANDARD])})
        mgr.register([make_task("A", 1), make_task("B", 1)])

        assert mgr.current_tier("A") is Tier.STANDARD
        assert mgr.current_tier("B") is Tier.BASIC
        assert set(mgr.states) == {"A", "B"}
