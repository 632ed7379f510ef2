"""Tests for lifecycle.graph module."""

from lifecycle.constants import GroupMode
from lifecycle.graph import find_dependency_cycle, group_order_violations, validate_task_graph
from lifecycle.types import Group
from tests.mocks import make_task


class TestValidateTaskGraph:
    """Tests for validate_task_graph."""

    def test_valid_graph(self) -> None:
        """Test that a well-formed graph has no errors."""
        tasks = [
            make_task("A", 1),
            make_task("B", 2, dependencies=["A"]),
            make_task("C", 2, dependencies=["A"]),
        ]

        errors, warnings = validate_task_graph(tasks)

        assert errors == []
        assert warnings == []

    def test_duplicate_ids(self) -> None:
        """Test that duplicate task ids are reported."""
        tasks = [make_task("A", 1, targets=["a.py"]), make_task("A", 1, targets=["b.py"])]

        errors, _ = validate_task_graph(tasks)

        assert any("Duplicate" in e for e in errors)

    def test_self_dependency(self) -> None:
        """Test that a task depending on itself is reported."""
        errors, _ = validate_task_graph([make_task("A", 1, dependencies=["A"])])

        assert any("depends on itself" in e for e in errors)

    def test_sequential_group_forward_reference(self) -> None:
        """Test that a sequential task may not depend on a later sibling."""
        tasks = [make_task("A", 1, dependencies=["B"]), make_task("B", 1)]
        groups = [Group(index=1, name="seq", mode=GroupMode.SEQUENTIAL, task_ids=["A", "B"])]

        errors, _ = validate_task_graph(tasks, groups)

        assert any("later-declared 'B'" in e for e in errors)

    def test_orphan_warning(self) -> None:
        """Test that a middle-group task with no dependents is flagged."""
        tasks = [make_task("A", 1), make_task("B", 2), make_task("C", 3)]

        _, warnings = validate_task_graph(tasks)

        assert len(warnings) == 1
        assert "'B'" in warnings[0]


class TestGraphHelpers:
    """Tests for cycle detection, order violations and topological order."""

    def test_find_cycle(self) -> None:
        """Test that a cycle is returned as a closed path."""
        tasks = [make_task("A", 1, dependencies=["C"]), make_task("B", 1, dependencies=["A"]), make_task("C", 1, dependencies=["B"])]

        cycle = find_dependency_cycle(tasks)

        assert cycle is not None
        assert cycle[0] == cycle[-1]
        assert set(cycle) == {"A", "B", "C"}

    def test_no_cycle(self) -> None:
        """Test that an acyclic graph has no cycle."""
        assert find_dependency_cycle([make_task("A", 1), make_task("B", 1, dependencies=["A"])]) is None

    def test_group_order_violations(self) -> None:
        """Test that edges pointing to later groups are listed."""
        tasks = [make_task("A", 1, dependencies=["B"]), make_task("B", 2)]

        assert group_order_violations(tasks) == [("A", "B", 1, 2)]
