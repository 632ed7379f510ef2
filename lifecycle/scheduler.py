"""Group scheduler: barrier-ordered dispatch, verification, checkpoint and escalation."""

from __future__ import annotations

import threading
from concurrent.futures import FIRST_COMPLETED, CancelledError, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any

from lifecycle.checkpoints import CheckpointManager
from lifecycle.constants import (
    DEFAULT_MAX_IN_FLIGHT,
    Component,
    ErrorClass,
    EscalationAction,
    GroupMode,
    LogEvent,
    TaskStatus,
)
from lifecycle.escalation import EscalationManager
from lifecycle.exceptions import CheckpointError, ConfigurationError, TaskError
from lifecycle.groups import GroupController
from lifecycle.logging import get_logger, get_task_logger
from lifecycle.state import RunState, RunStateStore
from lifecycle.types import Decomposition, Group, HaltRecord, Task, VerificationOutcome, WorkerResult
from lifecycle.verifier import Verifier, VerifierGate
from lifecycle.worker import Worker, WorkerPool

logger = get_logger("scheduler")


@dataclass
class ScheduleResult:
    """Where the scheduler stopped."""

    committed: list[int] = field(default_factory=list)
    halt: HaltRecord | None = None
    manual_tasks: list[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return self.halt is None


class GroupScheduler:
    """Run groups in ascending order behind a commit barrier.

    Per group: Dispatch -> AwaitAll -> Verify -> Commit, or escalate the
    failing tasks and go round again. Group n+1 is never dispatched before
    group n has a checkpoint. Groups already checkpointed in the run state
    are skipped, so a resumed run continues at the first uncommitted group.
    """

    def __init__(
        self,
        decomposition: Decomposition,
        workers: WorkerPool,
        verifier: Verifier | VerifierGate,
        checkpoints: CheckpointManager,
        escalation: EscalationManager,
        state: RunState,
        store: RunStateStore | None = None,
        max_in_flight: int = DEFAULT_MAX_IN_FLIGHT,
    ) -> None:
        if max_in_flight < 1:
            raise ValueError("max_in_flight must be at least 1")
        self.decomposition = decomposition
        self.workers = workers
        self.gate = verifier if isinstance(verifier, VerifierGate) else VerifierGate(verifier)
        self.checkpoints = checkpoints
        self.escalation = escalation
        self.state = state
        self.store = store
        self.max_in_flight = max_in_flight

        self._lock = threading.Lock()
        self._abort = threading.Event()
        self._abort_reason: str | None = None
        self._running: set[Future[WorkerResult]] = set()

        self.controller = GroupController()
        self.controller.initialize(decomposition.tasks, decomposition.groups)
        self.controller.restore_committed([c.group for c in state.checkpoints])

        if state.escalation:
            self.escalation.restore(state.escalation)
        self.escalation.register(decomposition.tasks)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(self) -> ScheduleResult:
        """Run every uncommitted group in order until done or halted."""
        while (index := self.controller.next_group()) is not None:
            if self._abort.is_set():
                return self._stop(self._aborted(index))
            halt = self.run_group(index)
            if halt is not None:
                return self._stop(halt)

        self._persist()
        return ScheduleResult(committed=[c.group for c in self.state.checkpoints])

    def run_group(self, index: int) -> HaltRecord | None:
        """Drive one group to a checkpoint.

        Returns:
            None once the group is committed, otherwise the halt or pause record
        """
        group = self.decomposition.group(index)
        task_ids = self.controller.start_group(index)
        base_artifacts = self.checkpoints.extract(index - 1)
        self._event(LogEvent.GROUP_STARTED, group=index, name=group.name, tasks=len(task_ids))
        logger.info(f"Dispatching group {index} ({group.name})", extra={"group": index})

        # Human-resolved tasks contribute their targets without being re-run
        produced: dict[str, list[str]] = {
            tid: list(self.controller.get_task(tid).targets)  # type: ignore[union-attr]
            for tid in task_ids
            if self.escalation.is_resolved_manually(tid)
        }
        for tid in produced:
            self.controller.set_task_status(tid, TaskStatus.RUNNING)

        halt = self._critical_manual_halt(group)
        if halt is not None:
            return halt
        to_run = [
            tid
            for tid in task_ids
            if tid not in produced
            and not self.escalation.is_awaiting_manual(tid)
            and not self._blocked_by_manual(tid, group)
        ]

        while True:
            dispatched: list[str] = []

            # Dispatch and AwaitAll until every task has a candidate result or is Manual
            while to_run:
                if self._abort.is_set():
                    return self._aborted(index)
                results = self._dispatch(group, to_run, base_artifacts, produced)
                for tid in results:
                    if tid not in dispatched:
                        dispatched.append(tid)

                retry: list[str] = []
                for tid in to_run:
                    result = results.get(tid)
                    if result is None:
                        retry.append(tid)
                    elif result.success:
                        self._event(LogEvent.TASK_COMPLETED, task_id=tid, group=index)
                    else:
                        self.controller.set_task_status(tid, TaskStatus.FAILED)
                        self._event(LogEvent.TASK_FAILED, task_id=tid, group=index, reason="worker")
                        if self._escalate(tid, f"worker: {result.diagnostics[:200]}"):
                            retry.append(tid)

                if self._abort.is_set():
                    return self._aborted(index)
                halt = self._critical_manual_halt(group)
                if halt is not None:
                    return halt
                to_run = [tid for tid in retry if not self._blocked_by_manual(tid, group)]

            # Verify once for the whole group
            self.controller.mark_verifying(index)
            artifacts = sorted({a for paths in produced.values() for a in paths})
            try:
                outcome = self.gate.run(group, artifacts, committed=base_artifacts)
            except ConfigurationError as e:
                self.controller.mark_failed(index, "no verification command")
                self._event(LogEvent.GROUP_FAILED, group=index, reason="configuration")
                return self._halt(Component.VERIFIER, f"Group {index} cannot be verified: {e}", group=index)

            if outcome.passed:
                self._event(LogEvent.VERIFICATION_PASSED, group=index)
                awaiting = self._awaiting_manual(group)
                if awaiting:
                    return self._manual_halt(group, awaiting)
                return self._commit(group, artifacts)

            self._event(
                LogEvent.VERIFICATION_FAILED,
                group=index,
                error_class=outcome.error_class.value if outcome.error_class else None,
                failed_targets=list(outcome.failed_targets),
            )

            if outcome.error_class is ErrorClass.MISSING_DEPENDENCY:
                self.controller.mark_failed(index, "missing dependency")
                self._event(LogEvent.GROUP_FAILED, group=index, reason=outcome.error_class.value)
                return self._halt(
                    Component.VERIFIER,
                    f"Group {index} verification reported a missing dependency: {outcome.diagnostics[-300:]}",
                    group=index,
                    error_class=outcome.error_class,
                )

            failing = self.attribute_failure(group, outcome, produced, dispatched)
            if not failing:
                self.controller.mark_failed(index, "verification failed with no retryable task")
                return self._halt(
                    Component.VERIFIER,
                    f"Group {index} verification failed and no automated task is left to retry",
                    group=index,
                    error_class=outcome.error_class,
                )

            error = outcome.error_class.value if outcome.error_class else "verification"
            to_run = []
            for tid in failing:
                produced.pop(tid, None)
                self.controller.set_task_status(tid, TaskStatus.FAILED)
                self._event(LogEvent.TASK_FAILED, task_id=tid, group=index, reason=error)
                if self._escalate(tid, error):
                    to_run.append(tid)
            self._persist()

            halt = self._critical_manual_halt(group)
            if halt is not None:
                return halt
            to_run = [tid for tid in to_run if not self._blocked_by_manual(tid, group)]
            if not to_run:
                # Every blamed task is now waiting on a human
                return self._manual_halt(group, self._awaiting_manual(group))

    def attribute_failure(
        self,
        group: Group,
        outcome: VerificationOutcome,
        produced: dict[str, list[str]],
        dispatched: list[str],
    ) -> list[str]:
        """Tasks blamed for a failed verification.

        A task is blamed when one of its targets or artifacts appears in the
        failed targets. When nothing matches, every task dispatched since the
        last verification is blamed. Human-resolved tasks are never blamed.
        """
        failed = set(outcome.failed_targets)
        candidates = [tid for tid in group.task_ids if not self.escalation.is_manual_state(tid)]
        blamed: list[str] = []
        if failed:
            for tid in candidates:
                task = self.controller.get_task(tid)
                touched = set(task.targets if task else []) | set(produced.get(tid, []))
                if touched & failed:
                    blamed.append(tid)
        if not blamed:
            blamed = [tid for tid in dispatched if tid in candidates]
        return blamed

    def abort(self, reason: str) -> None:
        """Stop dispatching, cancel tasks not yet started and commit nothing further."""
        with self._lock:
            self._abort_reason = reason
            self._abort.set()
            for future in list(self._running):
                future.cancel()
        logger.warning(f"Abort requested: {reason}")

    @property
    def aborted(self) -> bool:
        return self._abort.is_set()

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _dispatch(
        self,
        group: Group,
        task_ids: list[str],
        base_artifacts: frozenset[str],
        produced: dict[str, list[str]],
    ) -> dict[str, WorkerResult]:
        """Run one round of tasks and wait for all of them.

        Sequential groups run one task at a time in declaration order and
        stop at the first failure. Parallel groups run up to max_in_flight
        tasks at once. A task whose same-group dependency has not succeeded
        waits for it, and is left out of the round if that dependency fails.
        Successful results are added to ``produced`` as they arrive.
        """
        sequential = group.mode is GroupMode.SEQUENTIAL
        limit = 1 if sequential else max(1, min(self.max_in_flight, len(task_ids)))
        in_group = set(group.task_ids)
        requested = set(task_ids)
        remaining = [tid for tid in group.task_ids if tid in requested]
        results: dict[str, WorkerResult] = {}

        with ThreadPoolExecutor(max_workers=limit, thread_name_prefix=f"group-{group.index}") as executor:
            running: dict[Future[WorkerResult], str] = {}
            while remaining or running:
                if sequential and any(not r.success for r in results.values()):
                    for tid in remaining:
                        self.controller.set_task_status(tid, TaskStatus.BLOCKED)
                    remaining = []

                if not self._abort.is_set():
                    for tid in list(remaining):
                        if len(running) >= limit:
                            break
                        readiness = self._readiness(tid, in_group, produced, remaining, running)
                        if readiness == "ready":
                            remaining.remove(tid)
                            future = self._submit(executor, group, tid, base_artifacts, produced)
                            running[future] = tid
                        elif readiness == "blocked":
                            remaining.remove(tid)
                            self.controller.set_task_status(tid, TaskStatus.BLOCKED)
                        elif sequential:
                            break

                if not running:
                    status = TaskStatus.PENDING if self._abort.is_set() else TaskStatus.BLOCKED
                    for tid in remaining:
                        self.controller.set_task_status(tid, status)
                    break

                done, _ = wait(running, return_when=FIRST_COMPLETED)
                for future in done:
                    tid = running.pop(future)
                    with self._lock:
                        self._running.discard(future)
                    result = self._collect(future, tid)
                    if result is None:
                        continue
                    results[tid] = result
                    if result.success:
                        produced[tid] = list(result.artifacts)

        return results

    def _readiness(
        self,
        task_id: str,
        in_group: set[str],
        produced: dict[str, list[str]],
        remaining: list[str],
        running: dict[Future[WorkerResult], str],
    ) -> str:
        """``ready``, ``waiting`` on a same-group dependency, or ``blocked`` by one that failed."""
        task = self.controller.get_task(task_id)
        waiting = set(remaining) | set(running.values())
        for dep in task.dependencies if task else []:
            if dep not in in_group or dep in produced:
                continue
            if dep in waiting and dep != task_id:
                return "waiting"
            return "blocked"
        return "ready"

    def _submit(
        self,
        executor: ThreadPoolExecutor,
        group: Group,
        task_id: str,
        base_artifacts: frozenset[str],
        produced: dict[str, list[str]],
    ) -> Future[WorkerResult]:
        task = self.controller.get_task(task_id)
        assert task is not None
        tier = self.escalation.current_tier(task_id)
        task.tier = tier
        attempt = task.record_attempt(tier)
        self.controller.set_task_status(task_id, TaskStatus.RUNNING)

        same_group = {a for dep in task.dependencies if dep in produced for a in produced[dep]}
        artifacts = base_artifacts | same_group

        worker: Worker | None = None
        reason = ""
        try:
            worker = self.workers.for_tier(tier)
        except TaskError as e:
            reason = e.message

        self._event(LogEvent.TASK_DISPATCHED, task_id=task_id, group=group.index, tier=tier.label, attempt=attempt)
        if worker is None:
            future: Future[WorkerResult] = Future()
            future.set_result(WorkerResult(success=False, diagnostics=reason))
            return future

        future = executor.submit(self._execute, worker, task, artifacts)
        with self._lock:
            self._running.add(future)
        return future

    @staticmethod
    def _execute(worker: Worker, task: Task, artifacts: frozenset[str]) -> WorkerResult:
        task_logger = get_task_logger(task.id, task.group)
        task_logger.info(f"Executing at tier {task.tier.label}")
        result = worker.execute(task, artifacts)
        if result.success:
            task_logger.info(f"Completed with {len(result.artifacts)} artifacts")
        else:
            task_logger.warning(f"Failed: {result.diagnostics[:200]}")
        return result

    def _collect(self, future: Future[WorkerResult], task_id: str) -> WorkerResult | None:
        try:
            return future.result()
        except CancelledError:
            self.controller.set_task_status(task_id, TaskStatus.PENDING)
            return None
        except Exception as e:
            logger.error(f"Worker raised for {task_id}: {e}", extra={"task_id": task_id})
            return WorkerResult(success=False, diagnostics=f"worker error: {e}")

    # ------------------------------------------------------------------
    # Escalation and manual pauses
    # ------------------------------------------------------------------

    def _escalate(self, task_id: str, error: str) -> bool:
        """Record a failure. Returns True when the task should be dispatched again."""
        decision = self.escalation.record_failure(task_id, error)
        task = self.controller.get_task(task_id)
        if task is not None:
            task.tier = decision.tier

        if decision.action is EscalationAction.ESCALATE:
            self.controller.set_task_status(task_id, TaskStatus.ESCALATED)
            self._event(
                LogEvent.TASK_ESCALATED,
                task_id=task_id,
                from_tier=decision.previous_tier.label,
                to_tier=decision.tier.label,
            )
        elif decision.action is EscalationAction.MANUAL:
            self.controller.set_task_status(task_id, TaskStatus.BLOCKED)
            self._event(LogEvent.TASK_MANUAL, task_id=task_id, error=error)
        return decision.retry

    def _awaiting_manual(self, group: Group) -> list[str]:
        return [tid for tid in group.task_ids if self.escalation.is_awaiting_manual(tid)]

    def _blocked_by_manual(self, task_id: str, group: Group) -> bool:
        task = self.controller.get_task(task_id)
        if task is None:
            return False
        return any(dep in group.task_ids and self.escalation.is_awaiting_manual(dep) for dep in task.dependencies)

    def _critical_manual_halt(self, group: Group) -> HaltRecord | None:
        awaiting = self._awaiting_manual(group)
        tasks = [self.controller.get_task(tid) for tid in awaiting]
        if not any(task is not None and task.critical for task in tasks):
            return None
        return self._manual_halt(group, awaiting)

    def _manual_halt(self, group: Group, task_ids: list[str]) -> HaltRecord:
        self.controller.mark_failed(group.index, "awaiting manual resolution")
        self._event(LogEvent.GROUP_FAILED, group=group.index, reason="manual", tasks=task_ids)
        return self._halt(
            Component.ESCALATION,
            f"Task(s) {', '.join(task_ids)} in group {group.index} require manual resolution",
            group=group.index,
            task_id=task_ids[0] if task_ids else None,
            paused=True,
        )

    # ------------------------------------------------------------------
    # Commit, halt and persistence
    # ------------------------------------------------------------------

    def _commit(self, group: Group, artifacts: list[str]) -> HaltRecord | None:
        message = f"{self.decomposition.work_item}: group {group.index} {group.name}"
        try:
            checkpoint = self.checkpoints.commit(group.index, artifacts, message)
        except CheckpointError as e:
            self.controller.mark_failed(group.index, e.message)
            return self._halt(Component.CHECKPOINT, e.message, group=group.index)

        self.controller.mark_committed(group.index)
        self._event(
            LogEvent.GROUP_COMMITTED,
            group=group.index,
            commit_ref=checkpoint.commit_ref,
            artifacts=len(checkpoint.artifacts),
        )
        self._persist()
        return None

    def _halt(
        self,
        component: Component,
        reason: str,
        group: int | None = None,
        error_class: ErrorClass | None = None,
        task_id: str | None = None,
        paused: bool = False,
    ) -> HaltRecord:
        halt = HaltRecord(
            component=component,
            reason=reason,
            error_class=error_class,
            group=group,
            task_id=task_id,
            last_checkpoint=self.checkpoints.last_committed,
            paused=paused,
        )
        log = logger.warning if paused else logger.error
        log(halt.describe(), extra={"group": group} if group is not None else {})
        return halt

    def _aborted(self, index: int) -> HaltRecord:
        self._event(LogEvent.RUN_ABORTED, group=index, reason=self._abort_reason)
        return self._halt(Component.SCHEDULER, f"Aborted: {self._abort_reason or 'no reason given'}", group=index)

    def _stop(self, halt: HaltRecord) -> ScheduleResult:
        with self._lock:
            self.state.halt = halt
        self._event(LogEvent.RUN_HALTED, **halt.to_dict())
        self._persist()
        return ScheduleResult(
            committed=[c.group for c in self.state.checkpoints],
            halt=halt,
            manual_tasks=self.escalation.manual_tasks(),
        )

    def _event(self, event: LogEvent, **data: Any) -> None:
        with self._lock:
            self.state.append_event(event, data)

    def _persist(self) -> None:
        with self._lock:
            self.state.escalation = self.escalation.states
            if self.store is not None:
                self.store.save(self.state)
