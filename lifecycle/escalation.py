"""Retry and tier-escalation state machine for failing tasks."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from lifecycle.constants import (
    DEFAULT_ESCALATION_RATE_THRESHOLD,
    DEFAULT_MAX_ATTEMPTS_PER_TIER,
    EscalationAction,
    Tier,
)
from lifecycle.exceptions import TaskError
from lifecycle.logging import get_logger
from lifecycle.types import EscalationState, Task

logger = get_logger("escalation")


@dataclass
class EscalationDecision:
    """What to do with a task after a failed attempt."""

    task_id: str
    action: EscalationAction
    tier: Tier
    previous_tier: Tier

    @property
    def retry(self) -> bool:
        return self.action is not EscalationAction.MANUAL


class EscalationManager:
    """Own the per-task ladder Basic → Standard → Advanced → Manual.

    A task gets ``max_attempts_per_tier`` attempts at a tier. Once those
    are used up it moves to the next tier with a fresh counter. Tiers only
    move forward, and Manual is terminal until a human resolves the task.
    """

    def __init__(
        self,
        max_attempts_per_tier: int = DEFAULT_MAX_ATTEMPTS_PER_TIER,
        rate_threshold: float = DEFAULT_ESCALATION_RATE_THRESHOLD,
    ) -> None:
        if max_attempts_per_tier < 1:
            raise ValueError("max_attempts_per_tier must be at least 1")
        self.max_attempts_per_tier = max_attempts_per_tier
        self.rate_threshold = rate_threshold
        self._states: dict[str, EscalationState] = {}

    def register(self, tasks: list[Task]) -> None:
        """Start tracking tasks at their assigned tier. Known tasks are left alone."""
        for task in tasks:
            if task.id not in self._states:
                self._states[task.id] = EscalationState(task_id=task.id, tier=task.tier)

    def restore(self, states: dict[str, EscalationState]) -> None:
        self._states = dict(states)

    def state(self, task_id: str) -> EscalationState:
        try:
            return self._states[task_id]
        except KeyError:
            raise TaskError(f"Task {task_id} is not tracked by the escalation manager", task_id=task_id) from None

    def current_tier(self, task_id: str) -> Tier:
        return self.state(task_id).tier

    def record_failure(self, task_id: str, error: str | None = None) -> EscalationDecision:
        """Record one failed attempt and advance the ladder.

        Args:
            task_id: Failing task
            error: Classified reason, kept for reporting

        Returns:
            The decision for the next attempt
        """
        state = self.state(task_id)
        previous = state.tier
        if state.is_manual:
            return EscalationDecision(task_id, EscalationAction.MANUAL, Tier.MANUAL, previous)

        state.failures += 1
        state.same_tier_attempts += 1
        state.last_error = error

        if state.same_tier_attempts < self.max_attempts_per_tier:
            logger.warning(
                f"Task {task_id} failed at {previous.label} "
                f"(attempt {state.same_tier_attempts}/{self.max_attempts_per_tier}), retrying",
                extra={"task_id": task_id, "tier": previous.label},
            )
            return EscalationDecision(task_id, EscalationAction.RETRY, previous, previous)

        next_tier = Tier(previous + 1)
        state.tier = next_tier
        state.same_tier_attempts = 0
        state.tier_history.append(next_tier)

        if next_tier is Tier.MANUAL:
            logger.error(
                f"Task {task_id} exhausted the tier ladder, manual intervention required: {error}",
                extra={"task_id": task_id, "tier": next_tier.label},
            )
            return EscalationDecision(task_id, EscalationAction.MANUAL, next_tier, previous)

        logger.warning(
            f"Task {task_id} escalated {previous.label} -> {next_tier.label}",
            extra={"task_id": task_id, "tier": next_tier.label},
        )
        return EscalationDecision(task_id, EscalationAction.ESCALATE, next_tier, previous)

    def resolve_manual(self, task_id: str) -> bool:
        """Mark a Manual task as resolved by a human.

        Returns:
            True if the task was in the Manual state and is now resolved
        """
        state = self.state(task_id)
        if not state.is_manual or state.resolved:
            return False
        state.resolved = True
        logger.info(f"Task {task_id} resolved manually")
        return True

    def manual_tasks(self, include_resolved: bool = False) -> list[str]:
        return [
            tid for tid, s in self._states.items() if s.is_manual and (include_resolved or not s.resolved)
        ]

    def is_awaiting_manual(self, task_id: str) -> bool:
        state = self._states.get(task_id)
        return state is not None and state.is_manual and not state.resolved

    def is_manual_state(self, task_id: str) -> bool:
        state = self._states.get(task_id)
        return state is not None and state.is_manual

    def is_resolved_manually(self, task_id: str) -> bool:
        state = self._states.get(task_id)
        return state is not None and state.is_manual and state.resolved

    @property
    def escalation_rate(self) -> float:
        """Escalated tasks ÷ tracked tasks."""
        if not self._states:
            return 0.0
        escalated = sum(1 for s in self._states.values() if s.escalated)
        return escalated / len(self._states)

    @property
    def catalog_review_recommended(self) -> bool:
        """Feedback signal only: the kind catalog is placing tasks too low."""
        return self.escalation_rate > self.rate_threshold

    def summary(self) -> dict[str, Any]:
        escalated = [tid for tid, s in self._states.items() if s.escalated]
        return {
            "total_tasks": len(self._states),
            "escalated_tasks": escalated,
            "manual_tasks": self.manual_tasks(include_resolved=True),
            "escalation_rate": round(self.escalation_rate, 4),
            "rate_threshold": self.rate_threshold,
            "catalog_review_recommended": self.catalog_review_recommended,
        }

    @property
    def states(self) -> dict[str, EscalationState]:
        return dict(self._states)
