"""Tests for lifecycle.decomposer module."""

import pytest

from lifecycle.constants import GroupMode, Tier
from lifecycle.decomposer import Decomposer
from lifecycle.exceptions import CatalogError, DecompositionError, DependencyCycleError, GroupOrderError
from lifecycle.types import WorkItem


def _item(*units: dict) -> WorkItem:
    return WorkItem.from_dict({"name": "feature", "units": list(units)})


class TestDecompose:
    """Tests for Decomposer.decompose."""

    @pytest.mark.smoke
    def test_three_kinds_give_three_groups(self, three_group_item: WorkItem) -> None:
        """Test placement, tiers and review tiers for a small work item."""
        decomposition = Decomposer().decompose(three_group_item)

        assert [g.index for g in decomposition.groups] == [1, 2, 3]
        assert decomposition.group(1).task_ids == ["TASK-001", "TASK-002"]
        assert decomposition.task("TASK-004").tier is Tier.STANDARD
        assert decomposition.task("TASK-004").group == 3
        assert decomposition.tier_distribution == {"basic": 3, "standard": 1, "advanced": 0}
        assert decomposition.review_tiers == {
            "security": Tier.STANDARD,
            "performance": Tier.STANDARD,
            "correctness": Tier.STANDARD,
            "operability": Tier.BASIC,
        }

    def test_unused_groups_are_dropped_and_renumbered(self) -> None:
        """Test that only the groups in use remain, numbered 1..n in catalog order."""
        decomposition = Decomposer().decompose(
            _item({"kind": "test", "targets": ["tests/a.py"]}, {"kind": "foundation-model", "targets": ["a.py"]})
        )

        assert [(g.index, g.name) for g in decomposition.groups] == [(1, "foundation"), (2, "tests")]
        assert decomposition.group(2).verification == "test"
        assert decomposition.task("TASK-001").group == 2

    def test_generated_ids_follow_unit_position(self) -> None:
        """Test that units without ids get TASK-nnn by position."""
        decomposition = Decomposer().decompose(
            _item({"kind": "contract", "targets": ["a.py"]}, {"id": "X", "kind": "contract", "targets": ["b.py"]})
        )

        assert [t.id for t in decomposition.tasks] == ["TASK-001", "X"]

    def test_every_task_in_exactly_one_group(self, full_item: WorkItem) -> None:
        """Test that group membership partitions the task set."""
        decomposition = Decomposer().decompose(full_item)

        members = [tid for g in decomposition.groups for tid in g.task_ids]
        assert sorted(members) == sorted(t.id for t in decomposition.tasks)
        assert len(members) == len(set(members))
        assert decomposition.group(4).mode is GroupMode.SEQUENTIAL

    def test_oversized_ambiguous_kind_upgraded(self) -> None:
        """Test that an ambiguous Standard kind above the size threshold becomes Advanced."""
        decomposition = Decomposer().decompose(
            _item(
                {"id": "small", "kind": "adapter", "targets": ["a.py"]},
                {"id": "big", "kind": "adapter", "targets": ["b.py"], "size": 5},
            )
        )

        assert decomposition.task("small").tier is Tier.STANDARD
        assert decomposition.task("big").tier is Tier.ADVANCED

    def test_unambiguous_kind_never_upgraded(self) -> None:
        """Test that size does not move a non-ambiguous kind."""
        decomposition = Decomposer().decompose(_item({"kind": "inbound-adapter", "targets": ["a.py"], "size": 50}))

        assert decomposition.tasks[0].tier is Tier.STANDARD

    def test_non_critical_kind_propagates(self) -> None:
        """Test that catalog criticality reaches the task."""
        decomposition = Decomposer().decompose(_item({"kind": "observability", "targets": ["metrics.py"]}))

        assert decomposition.tasks[0].critical is False


class TestDecomposeErrors:
    """Tests for decomposition failures."""

    def test_empty_work_item_rejected(self) -> None:
        """Test that a work item with no units cannot be decomposed."""
        with pytest.raises(DecompositionError, match="no units"):
            Decomposer().decompose(_item())

    def test_unknown_kind_is_catalog_error(self) -> None:
        """Test that an unknown kind is never silently dropped."""
        with pytest.raises(CatalogError) as exc_info:
            Decomposer().decompose(_item({"kind": "contract"}, {"kind": "blockchain"}))

        assert exc_info.value.kind == "blockchain"

    def test_dependency_on_later_group_rejected(self) -> None:
        """Test that a backward edge across groups is a GroupOrderError."""
        with pytest.raises(GroupOrderError) as exc_info:
            Decomposer().decompose(
                _item(
                    {"id": "C", "kind": "contract", "targets": ["c.py"], "depends_on": ["A"]},
                    {"id": "A", "kind": "adapter", "targets": ["a.py"]},
                )
            )

        assert exc_info.value.task_id == "C"
        assert exc_info.value.dependency == "A"

    def test_cycle_rejected(self) -> None:
        """Test that a dependency cycle inside a group is rejected."""
        with pytest.raises(DependencyCycleError) as exc_info:
            Decomposer().decompose(
                _item(
                    {"id": "A", "kind": "foundation-model", "targets": ["a.py"], "depends_on": ["B"]},
                    {"id": "B", "kind": "foundation-model", "targets": ["b.py"], "depends_on": ["A"]},
                )
            )

        assert exc_info.value.cycle[0] == exc_info.value.cycle[-1]

    def test_shared_target_in_parallel_group_rejected(self) -> None:
        """Test that two parallel tasks may not claim the same file."""
        with pytest.raises(DecompositionError) as exc_info:
            Decomposer().decompose(
                _item(
                    {"id": "A", "kind": "contract", "targets": ["port.py"]},
                    {"id": "B", "kind": "contract", "targets": ["port.py"]},
                )
            )

        assert any("port.py" in e for e in exc_info.value.errors)

    def test_shared_target_allowed_in_sequential_group(self) -> None:
        """Test that sequential tasks may touch the same file."""
        decomposition = Decomposer().decompose(
            _item(
                {"id": "A", "kind": "orchestration-logic", "targets": ["service.py"]},
                {"id": "B", "kind": "orchestration-logic", "targets": ["service.py"], "depends_on": ["A"]},
            )
        )

        assert decomposition.group(1).task_ids == ["A", "B"]

    def test_unknown_dependency_rejected(self) -> None:
        """Test that depending on a task that does not exist is an error."""
        with pytest.raises(DecompositionError) as exc_info:
            Decomposer().decompose(_item({"id": "A", "kind": "contract", "targets": ["a.py"], "depends_on": ["Z"]}))

        assert any("unknown task 'Z'" in e for e in exc_info.value.errors)
