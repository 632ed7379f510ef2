"""Group-based execution control for lifecycle runs."""

from lifecycle.constants import GroupStatus, TaskStatus
from lifecycle.exceptions import GroupError
from lifecycle.logging import get_logger
from lifecycle.types import Group, Task

logger = get_logger("groups")


class GroupController:
    """Control group transitions and track task status within groups.

    Enforces the rule that group N+1 cannot be dispatched until group N is
    committed.
    """

    def __init__(self) -> None:
        self._groups: dict[int, Group] = {}
        self._tasks: dict[str, Task] = {}

    def initialize(self, tasks: list[Task], groups: list[Group]) -> None:
        """Initialize controller with a decomposition.

        Args:
            tasks: Tasks from the decomposition
            groups: Groups from the decomposition

        Raises:
            GroupError: If group indexes are not 1..n or a task names an unknown group
        """
        self._tasks = {t.id: t for t in tasks}
        self._groups = {g.index: g for g in groups}

        expected = list(range(1, len(groups) + 1))
        if sorted(self._groups) != expected:
            raise GroupError(
                "Group indexes must form a contiguous sequence starting at 1",
                details={"indexes": sorted(self._groups)},
            )
        for task in tasks:
            if task.group not in self._groups:
                raise GroupError(f"Task {task.id} references unknown group {task.group}", group=task.group)

        logger.info(f"Initialized with {len(tasks)} tasks across {len(groups)} groups")

    def start_group(self, index: int) -> list[str]:
        """Mark a group dispatched.

        Args:
            index: Group index to start

        Returns:
            Task IDs of the group, in declaration order

        Raises:
            GroupError: If the group does not exist or an earlier group is not committed
        """
        if index not in self._groups:
            raise GroupError(f"Group {index} does not exist", group=index)

        for prev in range(1, index):
            if self._groups[prev].status is not GroupStatus.COMMITTED:
                raise GroupError(
                    f"Cannot start group {index}: group {prev} not committed",
                    group=index,
                    details={"blocking_group": prev},
                )

        group = self._groups[index]
        if group.status is GroupStatus.COMMITTED:
            raise GroupError(f"Group {index} is already committed", group=index)

        group.status = GroupStatus.DISPATCHED
        logger.info(f"Started group {index} ({group.name}, {group.mode.value}) with {len(group.task_ids)} tasks")
        return list(group.task_ids)

    def mark_verifying(self, index: int) -> None:
        self._groups[index].status = GroupStatus.VERIFYING

    def mark_committed(self, index: int) -> None:
        """Mark a group committed; all of its tasks become verified."""
        group = self._groups[index]
        group.status = GroupStatus.COMMITTED
        for task_id in group.task_ids:
            self._tasks[task_id].status = TaskStatus.VERIFIED
        logger.info(f"Group {index} committed")

    def mark_failed(self, index: int, reason: str | None = None) -> None:
        self._groups[index].status = GroupStatus.FAILED
        logger.error(f"Group {index} failed: {reason or 'unknown reason'}")

    def restore_committed(self, indexes: list[int]) -> None:
        """Mark already-checkpointed groups committed when resuming."""
        for index in indexes:
            if index in self._groups:
                self.mark_committed(index)

    def set_task_status(self, task_id: str, status: TaskStatus) -> None:
        if task_id not in self._tasks:
            logger.warning(f"Unknown task: {task_id}")
            return
        self._tasks[task_id].status = status
        logger.debug(f"Task {task_id} -> {status.value}")

    def next_group(self) -> int | None:
        """Lowest group index not yet committed, or None when all are."""
        for index in sorted(self._groups):
            if self._groups[index].status is not GroupStatus.COMMITTED:
                return index
        return None

    def get_task(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)
