"""Phase controller: the outermost state machine of a lifecycle run."""

from __future__ import annotations

import threading
from collections.abc import Callable

from lifecycle.catalog import Catalog
from lifecycle.checkpoints import CheckpointManager
from lifecycle.config import LifecycleConfig
from lifecycle.constants import (
    PHASE_ORDER,
    Component,
    GroupMode,
    LogEvent,
    Phase,
    Recommendation,
    RunStatus,
    Severity,
    Tier,
)
from lifecycle.decomposer import Decomposer
from lifecycle.escalation import EscalationManager
from lifecycle.exceptions import (
    CatalogError,
    DecompositionError,
    LifecycleError,
    PhaseError,
    RunHaltedError,
    StateError,
)
from lifecycle.logging import clear_run_context, get_logger, set_run_context
from lifecycle.review import ReviewAggregator, Reviewer, is_incomplete
from lifecycle.scheduler import GroupScheduler
from lifecycle.state import RunState, RunStateStore, run_id_for
from lifecycle.types import CheckResult, Group, HaltRecord, ReviewIssue, RunOutcome, Task, WorkItem
from lifecycle.vcs import VersionControl
from lifecycle.verifier import Verifier, VerifierGate
from lifecycle.worker import WorkerPool

logger = get_logger("phases")

CORRECTIVE_KIND = "corrective"


class PhaseController:
    """Sequence plan -> decompose -> implement -> review -> fix -> finalize.

    A phase is completed only when its exit predicate holds; no phase is
    ever skipped. A review with Critical issues sends the run through a
    bounded corrective cycle (fix group, re-review) before it pauses for
    manual resolution.

    Structural failures stop the run with a HaltRecord. The run state is
    saved after every transition, so a halted or paused run can be resumed
    with ``run(resume=True)``.
    """

    def __init__(
        self,
        config: LifecycleConfig,
        work_item: WorkItem,
        workers: WorkerPool,
        verifier: Verifier,
        vcs: VersionControl,
        reviewer: Reviewer,
        catalog: Catalog | None = None,
        store: RunStateStore | None = None,
        justification: str | None = None,
    ) -> None:
        self.config = config
        self.work_item = work_item
        self.workers = workers
        self.gate = VerifierGate(verifier)
        self.vcs = vcs
        self.catalog = catalog or Catalog.default()
        self.store = store
        self.justification = justification
        self.aggregator = ReviewAggregator(reviewer, config.review.domains)

        self.run_id = store.run_id if store is not None else run_id_for(work_item.name)
        self.state = RunState(run_id=self.run_id, work_item=work_item.to_dict())
        self.escalation = EscalationManager(
            max_attempts_per_tier=config.escalation.max_attempts_per_tier,
            rate_threshold=config.escalation.rate_threshold,
        )

        self._lock = threading.Lock()
        self._abort_reason: str | None = None
        self._scheduler: GroupScheduler | None = None
        self._rereview = False

        self._handlers: dict[Phase, Callable[[], None]] = {
            Phase.PLAN: self._plan,
            Phase.DECOMPOSE: self._decompose,
            Phase.IMPLEMENT: self._implement,
            Phase.REVIEW: self._review,
            Phase.FIX: self._fix,
            Phase.FINALIZE: self._finalize,
        }
        self._exit_criteria: dict[Phase, Callable[[], bool]] = {
            Phase.PLAN: lambda: bool(self.state.plan.get("units")),
            Phase.DECOMPOSE: lambda: self.state.decomposition is not None,
            Phase.IMPLEMENT: self._all_groups_committed,
            Phase.REVIEW: lambda: self.state.review is not None,
            Phase.FIX: lambda: review_allows_proceed(self.state),
            Phase.FINALIZE: lambda: self.state.pushed or not self.config.scheduler.push_on_finalize,
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(self, resume: bool = False) -> RunOutcome:
        """Run the remaining phases and report the outcome.

        Args:
            resume: Continue from the persisted run state instead of starting fresh

        Raises:
            StateError: If resume is requested and no state can be loaded
        """
        if resume:
            self._load()
        set_run_context(run_id=self.run_id, work_item=self.work_item.name)

        try:
            while (phase := self.state.next_phase()) is not None:
                if self._abort_reason is not None:
                    raise RunHaltedError(self._halt(Component.PHASE_CONTROLLER, f"Aborted: {self._abort_reason}"))

                self.state.start_phase(phase)
                set_run_context(run_id=self.run_id, work_item=self.work_item.name, phase=phase.value)
                logger.info(f"Entering phase {phase.value}")
                self._save()

                self._handlers[phase]()

                if not self._exit_criteria[phase]():
                    raise RunHaltedError(
                        self._halt(Component.PHASE_CONTROLLER, f"Exit criterion for phase {phase.value} not satisfied")
                    )
                self.state.complete_phase(phase)
                self._save()

            self.state.append_event(LogEvent.RUN_COMPLETED)
            self._save()
        except RunHaltedError as e:
            self._record_halt(e.halt)
        except StateError as e:
            self._record_halt(self._halt(Component.CHECKPOINT, f"Run state could not be saved: {e.message}"))
        except KeyboardInterrupt:
            self.abort("interrupted by user")
            self._record_halt(self._halt(Component.PHASE_CONTROLLER, "Aborted: interrupted by user"))
            raise
        finally:
            self._scheduler = None
            clear_run_context()

        return self.outcome()

    def resolve(self, task_id: str) -> bool:
        """Record that a human resolved a Manual task.

        The persisted state is loaded first when a store is configured, so
        this works on a paused run from a fresh process.
        """
        if self.store is not None and self.store.exists():
            self._load()
        self.escalation.restore(self.state.escalation)
        resolved = self.escalation.resolve_manual(task_id)
        if resolved:
            self.state.escalation = self.escalation.states
            self.state.append_event(LogEvent.TASK_MANUAL, {"task_id": task_id, "resolved": True})
            self._save()
        return resolved

    def abort(self, reason: str) -> None:
        """Stop the run at the next safe point; nothing further is committed."""
        with self._lock:
            self._abort_reason = reason
            scheduler = self._scheduler
        if scheduler is not None:
            scheduler.abort(reason)

    def outcome(self) -> RunOutcome:
        return evaluate_run(self.state, self.config, self.store)

    # ------------------------------------------------------------------
    # Phase handlers
    # ------------------------------------------------------------------

    def _plan(self) -> None:
        units = self.work_item.units
        if not units:
            raise RunHaltedError(
                self._halt(Component.PHASE_CONTROLLER, f"Work item '{self.work_item.name}' has no units of work")
            )
        self.state.plan = {
            "work_item": self.work_item.name,
            "units": len(units),
            "kinds": sorted({u.kind for u in units}),
            "catalog_version": self.catalog.version,
        }

    def _decompose(self) -> None:
        decomposer = Decomposer(self.catalog, self.config.review.domains)
        try:
            decomposition = decomposer.decompose(self.work_item)
        except (CatalogError, DecompositionError) as e:
            raise RunHaltedError(self._halt(Component.DECOMPOSER, str(e))) from e

        self.state.decomposition = decomposition
        logger.info(
            f"Decomposed into {len(decomposition.tasks)} tasks across {len(decomposition.groups)} groups "
            f"(tiers: {decomposition.tier_distribution})"
        )

    def _implement(self) -> None:
        scheduler = self._make_scheduler()
        try:
            result = scheduler.run()
        except StateError as e:
            raise RunHaltedError(self._halt(Component.CHECKPOINT, f"Run state could not be saved: {e.message}")) from e
        finally:
            with self._lock:
                self._scheduler = None
        if result.halt is not None:
            raise RunHaltedError(result.halt)

        if self.escalation.catalog_review_recommended:
            logger.warning(
                f"Escalation rate {self.escalation.escalation_rate:.0%} exceeds "
                f"{self.escalation.rate_threshold:.0%}; the kind catalog should be reviewed"
            )

    def _review(self) -> None:
        decomposition = self.state.decomposition
        assert decomposition is not None
        artifacts = CheckpointManager(self.vcs, self.state).extract(len(decomposition.groups))
        review = self.aggregator.review(artifacts, decomposition.review_tiers)

        self.state.review = review
        self.state.review_rounds += 1
        self.state.append_event(
            LogEvent.REVIEW_COMPLETED,
            {
                "round": self.state.review_rounds,
                "score": str(review.score),
                "recommendation": review.recommendation.value,
                "critical": len(review.critical_issues),
            },
        )

    def _fix(self) -> None:
        # A corrective group left uncommitted by a halted run goes first
        if not self._all_groups_committed():
            self._implement()
            self._review()
        elif self._rereview:
            # Resumed from a review pause; the issues may have been resolved by hand
            self._review()
        self._rereview = False

        max_cycles = self.config.phases.max_corrective_cycles
        while True:
            review = self.state.review
            assert review is not None
            if review.recommendation is Recommendation.GO:
                return
            if review.recommendation is Recommendation.FIX_OPTIONAL:
                self.state.justification = self.justification or self._default_justification()
                logger.info(f"Proceeding with optional fixes: {self.state.justification}")
                return

            if self.state.corrective_cycles >= max_cycles:
                raise RunHaltedError(
                    self._halt(
                        Component.REVIEW,
                        f"{len(review.critical_issues)} critical review issue(s) remain after "
                        f"{self.state.corrective_cycles} corrective cycle(s); manual resolution required",
                        paused=True,
                    )
                )

            self.state.corrective_cycles += 1
            cycle = self.state.corrective_cycles
            # Incomplete reviews are re-run, not fixed
            defects = [issue for issue in review.critical_issues if not is_incomplete(issue)]
            if not defects:
                logger.warning(f"Corrective cycle {cycle}: review incomplete, reviewing again")
                self.state.append_event(LogEvent.CORRECTIVE_CYCLE, {"cycle": cycle, "group": None, "tasks": 0})
                self._save()
                self._review()
                continue

            group = self._add_corrective_group(defects, cycle)
            self.state.append_event(
                LogEvent.CORRECTIVE_CYCLE,
                {"cycle": cycle, "group": group.index, "tasks": len(group.task_ids)},
            )
            self._save()

            self._implement()
            self._review()

    def _finalize(self) -> None:
        if not self.config.scheduler.push_on_finalize or self.state.pushed:
            return
        try:
            pushed = self.vcs.push()
        except LifecycleError as e:
            raise RunHaltedError(self._halt(Component.CHECKPOINT, f"Push failed: {e.message}")) from e
        if not pushed:
            raise RunHaltedError(self._halt(Component.CHECKPOINT, "Push was not acknowledged"))
        self.state.pushed = True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _make_scheduler(self) -> GroupScheduler:
        decomposition = self.state.decomposition
        if decomposition is None:
            raise PhaseError("Cannot schedule before decomposition")
        scheduler = GroupScheduler(
            decomposition=decomposition,
            workers=self.workers,
            verifier=self.gate,
            checkpoints=CheckpointManager(self.vcs, self.state, self.store),
            escalation=self.escalation,
            state=self.state,
            store=self.store,
            max_in_flight=self.config.scheduler.max_in_flight,
        )
        with self._lock:
            self._scheduler = scheduler
            if self._abort_reason is not None:
                scheduler.abort(self._abort_reason)
        return scheduler

    def _add_corrective_group(self, issues: list[ReviewIssue], cycle: int) -> Group:
        """Append one group with a fix task per Critical issue."""
        decomposition = self.state.decomposition
        assert decomposition is not None
        index = len(decomposition.groups) + 1
        verification = decomposition.groups[-1].verification if decomposition.groups else "compile"
        group = Group(index=index, name=f"corrective-{cycle}", mode=GroupMode.PARALLEL, verification=verification)

        for n, issue in enumerate(issues, start=1):
            tier = decomposition.review_tiers.get(issue.domain, Tier.BASIC)
            task = Task(
                id=f"FIX-{cycle}-{n:02d}",
                kind=CORRECTIVE_KIND,
                tier=tier,
                group=index,
                title=f"Fix {issue.id}",
                description=f"[{issue.domain}] {issue.description}",
            )
            decomposition.tasks.append(task)
            group.task_ids.append(task.id)

        decomposition.groups.append(group)
        logger.info(f"Corrective cycle {cycle}: group {index} with {len(group.task_ids)} fix tasks")
        return group

    def _all_groups_committed(self) -> bool:
        decomposition = self.state.decomposition
        if decomposition is None:
            return False
        return [c.group for c in self.state.checkpoints] == [g.index for g in decomposition.groups]

    def _default_justification(self) -> str:
        review = self.state.review
        assert review is not None
        medium = len(review.issues.get(Severity.MEDIUM, []))
        low = len(review.issues.get(Severity.LOW, []))
        return f"No critical issues; {medium} medium and {low} low issue(s) accepted for follow-up"

    def _halt(self, component: Component, reason: str, paused: bool = False) -> HaltRecord:
        return HaltRecord(
            component=component,
            reason=reason,
            last_checkpoint=self.state.last_checkpoint,
            paused=paused,
        )

    def _load(self) -> None:
        if self.store is None:
            raise StateError("Cannot resume without a state store")
        state = self.store.load()
        if state.work_item and state.work_item.get("name") != self.work_item.name:
            raise StateError(
                f"Persisted run is for work item '{state.work_item.get('name')}', not '{self.work_item.name}'"
            )
        self._rereview = state.halt is not None and state.halt.component is Component.REVIEW
        state.halt = None
        self.state = state
        self.escalation.restore(state.escalation)
        logger.info(
            f"Resuming run {self.run_id}: completed phases "
            f"{[p.value for p in state.completed_phases]}, last checkpoint {state.last_checkpoint}"
        )

    def _save(self) -> None:
        self.state.escalation = self.escalation.states or self.state.escalation
        if self.store is not None:
            self.store.save(self.state)

    def _record_halt(self, halt: HaltRecord) -> None:
        self.state.halt = halt
        self.state.append_event(LogEvent.RUN_HALTED, halt.to_dict())
        if halt.paused:
            logger.warning(halt.describe())
        else:
            logger.error(halt.describe())
        try:
            self._save()
        except StateError as e:
            logger.error(f"Could not save run state: {e}")


def evaluate_run(
    state: RunState,
    config: LifecycleConfig | None = None,
    store: RunStateStore | None = None,
) -> RunOutcome:
    """Build the checklist for a run state and derive the terminal status.

    The run is complete only when it has not halted and every required
    check passes. Advisory checks are reported but never block.
    """
    config = config or LifecycleConfig()
    escalation = EscalationManager(
        max_attempts_per_tier=config.escalation.max_attempts_per_tier,
        rate_threshold=config.escalation.rate_threshold,
    )
    escalation.restore(state.escalation)

    checks = [CheckResult(f"phase.{phase.value}", phase in state.completed_phases, "phase") for phase in PHASE_ORDER]

    review = state.review
    decomposition = state.decomposition
    total_groups = len(decomposition.groups) if decomposition else 0
    all_committed = decomposition is not None and [c.group for c in state.checkpoints] == [
        g.index for g in decomposition.groups
    ]
    manual = escalation.manual_tasks()
    rate = escalation.escalation_rate

    checks += [
        CheckResult(
            "quality.all_groups_committed",
            all_committed,
            "quality",
            f"{len(state.checkpoints)}/{total_groups} groups committed",
        ),
        CheckResult(
            "quality.no_critical_issues",
            review is not None and not review.critical_issues,
            "quality",
            f"{len(review.critical_issues)} critical issue(s)" if review else "no review",
        ),
        CheckResult(
            "quality.review_recommendation",
            review_allows_proceed(state),
            "quality",
            review.recommendation.value if review else "no review",
        ),
        CheckResult("quality.no_manual_tasks", not manual, "quality", ", ".join(manual)),
        CheckResult(
            "quality.escalation_rate",
            rate <= escalation.rate_threshold,
            "quality",
            f"{rate:.0%} escalated (threshold {escalation.rate_threshold:.0%})",
            required=False,
        ),
    ]

    groups = [c.group for c in state.checkpoints]
    push_required = config.scheduler.push_on_finalize
    checks += [
        CheckResult(
            "persistence.checkpoints_gap_free",
            groups == list(range(1, len(groups) + 1)),
            "persistence",
            f"{len(groups)} checkpoint(s)",
        ),
        CheckResult(
            "persistence.state_saved",
            store is not None and store.exists(),
            "persistence",
            str(store.path) if store is not None else "no state store configured",
            required=store is not None,
        ),
        CheckResult(
            "persistence.pushed",
            state.pushed or not push_required,
            "persistence",
            "" if push_required else "push disabled",
        ),
    ]

    reasons = [f"{c.name}: {c.detail}" if c.detail else c.name for c in checks if c.required and not c.passed]
    if state.halt is not None:
        reasons.insert(0, state.halt.describe())
    status = RunStatus.INCOMPLETE if reasons else RunStatus.COMPLETE
    return RunOutcome(status=status, reasons=reasons, checklist=checks, halt=state.halt)


def review_allows_proceed(state: RunState) -> bool:
    """Go, or fix-optional with a recorded justification."""
    review = state.review
    if review is None:
        return False
    if review.recommendation is Recommendation.FIX_OPTIONAL:
        return bool(state.justification)
    return review.recommendation.may_proceed


def resolve_manual_task(store: RunStateStore, task_id: str) -> bool:
    """Mark a Manual task of a persisted run as resolved by a human.

    Returns:
        True if the task was waiting on manual resolution

    Raises:
        StateError: If the run state cannot be loaded or saved
        TaskError: If the task is unknown to the run
    """
    state = store.load()
    escalation = EscalationManager()
    escalation.restore(state.escalation)
    if not escalation.resolve_manual(task_id):
        return False
    state.escalation = escalation.states
    state.append_event(LogEvent.TASK_MANUAL, {"task_id": task_id, "resolved": True})
    store.save(state)
    return True
