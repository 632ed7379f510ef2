"""Task graph validation for lifecycle decomposition."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable

from lifecycle.constants import GroupMode
from lifecycle.types import Group, Task


def validate_task_graph(
    tasks: list[Task],
    groups: list[Group] | None = None,
) -> tuple[list[str], list[str]]:
    """Validate DAG and group placement properties of a task set.

    Args:
        tasks: Tasks with group placement and dependencies.
        groups: Group definitions (mode and declaration order). When omitted,
            every group is treated as Parallel.

    Returns:
        (errors, warnings) -- errors are fatal, warnings are logged.
    """
    errors: list[str] = []
    warnings: list[str] = []

    task_ids = {t.id for t in tasks}
    groups_by_index = {g.index: g for g in groups or []}

    # 1. Duplicate IDs
    _check_duplicate_ids(tasks, errors)

    # 2. Dependency references -- all must point to existing task IDs
    _check_dependency_references(tasks, task_ids, errors)

    # 3. Group ordering -- a dependency may not live in a later group
    for task_id, dep_id, task_group, dep_group in group_order_violations(tasks):
        errors.append(f"Task '{task_id}' (group {task_group}) depends on '{dep_id}' in later group {dep_group}")

    # 4. Cycles
    cycle = find_dependency_cycle(tasks)
    if cycle:
        errors.append(f"Dependency cycle: {' -> '.join(cycle)}")

    # 5. Sequential groups run in declaration order
    _check_sequential_order(tasks, groups_by_index, errors)

    # 6. Parallel groups need disjoint targets
    _check_target_overlap(tasks, groups_by_index, errors)

    # 7. Orphans
    _check_orphan_tasks(tasks, warnings)

    return errors, warnings


def group_order_violations(tasks: Iterable[Task]) -> list[tuple[str, str, int, int]]:
    """Return (task, dependency, task group, dependency group) for every backward edge."""
    task_list = list(tasks)
    group_of = {t.id: t.group for t in task_list}
    violations = []
    for task in task_list:
        for dep_id in task.dependencies:
            dep_group = group_of.get(dep_id)
            if dep_group is not None and dep_group > task.group:
                violations.append((task.id, dep_id, task.group, dep_group))
    return violations


def find_dependency_cycle(tasks: Iterable[Task]) -> list[str] | None:
    """Find one dependency cycle, if any.

    Returns:
        The cycle as a closed path (first node repeated last), or None.
    """
    task_list = list(tasks)
    known = {t.id for t in task_list}
    adj: dict[str, list[str]] = {t.id: [d for d in t.dependencies if d in known] for t in task_list}

    white, gray, black = 0, 1, 2
    color: dict[str, int] = dict.fromkeys(adj, white)

    def visit(node: str, path: list[str]) -> list[str] | None:
        color[node] = gray
        path.append(node)
        for neighbor in adj[node]:
            if color[neighbor] == gray:
                return path[path.index(neighbor) :] + [neighbor]
            if color[neighbor] == white:
                found = visit(neighbor, path)
                if found:
                    return found
        path.pop()
        color[node] = black
        return None

    for node in adj:
        if color[node] == white:
            cycle = visit(node, [])
            if cycle:
                return cycle
    return None


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


def _check_duplicate_ids(tasks: list[Task], errors: list[str]) -> None:
    seen: set[str] = set()
    for task in tasks:
        if task.id in seen:
            errors.append(f"Duplicate task id '{task.id}'")
        seen.add(task.id)


def _check_dependency_references(
    tasks: list[Task],
    task_ids: set[str],
    errors: list[str],
) -> None:
    """Check that every dependency references an existing task ID."""
    for task in tasks:
        for dep_id in task.dependencies:
            if dep_id not in task_ids:
                errors.append(f"Task '{task.id}' depends on unknown task '{dep_id}'")
            elif dep_id == task.id:
                errors.append(f"Task '{task.id}' depends on itself")


def _check_sequential_order(
    tasks: list[Task],
    groups_by_index: dict[int, Group],
    errors: list[str],
) -> None:
    """In a Sequential group, a task may only depend on siblings declared before it."""
    for index, group in groups_by_index.items():
        if group.mode is not GroupMode.SEQUENTIAL:
            continue
        position = {tid: pos for pos, tid in enumerate(group.task_ids)}
        for task in tasks:
            if task.group != index:
                continue
            for dep_id in task.dependencies:
                if dep_id in position and position[dep_id] > position.get(task.id, -1):
                    errors.append(
                        f"Task '{task.id}' in sequential group {index} depends on later-declared '{dep_id}'"
                    )


def _check_target_overlap(
    tasks: list[Task],
    groups_by_index: dict[int, Group],
    errors: list[str],
) -> None:
    """Tasks sharing a Parallel group must touch disjoint targets."""
    owners: dict[tuple[int, str], str] = {}
    for task in tasks:
        group = groups_by_index.get(task.group)
        if group is not None and group.mode is GroupMode.SEQUENTIAL:
            continue
        for target in task.targets:
            key = (task.group, target)
            if key in owners and owners[key] != task.id:
                errors.append(
                    f"Target '{target}' claimed by both '{owners[key]}' and '{task.id}' in group {task.group}"
                )
            else:
                owners[key] = task.id


def _check_orphan_tasks(tasks: list[Task], warnings: list[str]) -> None:
    """Warn about non-final-group tasks that nothing depends on."""
    if not tasks:
        return
    last_group = max(t.group for t in tasks)
    depended_on: dict[str, int] = defaultdict(int)
    for task in tasks:
        for dep_id in task.dependencies:
            depended_on[dep_id] += 1

    for task in tasks:
        if task.group in (1, last_group) or depended_on[task.id]:
            continue
        warnings.append(f"Task '{task.id}' (group {task.group}) has no dependents, possible orphan")
