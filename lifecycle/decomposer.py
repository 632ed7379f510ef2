"""Work-item decomposition into a grouped task DAG."""

from __future__ import annotations

from collections.abc import Sequence

from lifecycle.catalog import Catalog, CatalogEntry
from lifecycle.constants import AUTOMATED_TIERS, DEFAULT_REVIEW_DOMAINS, Tier
from lifecycle.exceptions import DecompositionError, DependencyCycleError, GroupOrderError
from lifecycle.graph import find_dependency_cycle, group_order_violations, validate_task_graph
from lifecycle.logging import get_logger
from lifecycle.types import Decomposition, Group, Task, WorkItem, WorkUnit

logger = get_logger("decomposer")


class Decomposer:
    """Turn a work item into Tasks placed in ordered groups.

    Placement comes from the catalog. Groups the work item does not use are
    dropped and the remaining ones renumbered 1..n in catalog order, so the
    checkpoint sequence of a run has no gaps.
    """

    def __init__(
        self,
        catalog: Catalog | None = None,
        review_domains: Sequence[str] = DEFAULT_REVIEW_DOMAINS,
    ) -> None:
        self.catalog = catalog or Catalog.default()
        self.review_domains = list(review_domains)

    def decompose(self, work_item: WorkItem) -> Decomposition:
        """Decompose a work item.

        Args:
            work_item: Requested units of work

        Returns:
            Validated Decomposition

        Raises:
            CatalogError: A unit's kind is not in the catalog
            GroupOrderError: A unit depends on one placed in a later group
            DependencyCycleError: Unit dependencies form a cycle
            DecompositionError: Any other structural problem
        """
        if not work_item.units:
            raise DecompositionError(f"Work item '{work_item.name}' has no units of work")

        # Look every kind up before building anything; a miss must not drop work
        entries = [self.catalog.lookup(unit.kind) for unit in work_item.units]

        used_groups = sorted({entry.group for entry in entries})
        renumber = {catalog_index: n for n, catalog_index in enumerate(used_groups, start=1)}

        tasks: list[Task] = []
        for position, (unit, entry) in enumerate(zip(work_item.units, entries, strict=True), start=1):
            size = self._estimate_size(unit, entry)
            tasks.append(
                Task(
                    id=unit.id or f"TASK-{position:03d}",
                    kind=unit.kind,
                    tier=self.assign_tier(entry, size),
                    group=renumber[entry.group],
                    title=unit.title or unit.kind,
                    description=unit.description,
                    dependencies=list(unit.depends_on),
                    targets=list(unit.targets),
                    size=size,
                    critical=unit.critical and entry.critical,
                )
            )

        groups = []
        for catalog_index in used_groups:
            spec = self.catalog.group_spec(catalog_index)
            index = renumber[catalog_index]
            groups.append(
                Group(
                    index=index,
                    name=spec.name,
                    mode=spec.mode,
                    verification=spec.verification,
                    task_ids=[t.id for t in tasks if t.group == index],
                )
            )

        self._validate(tasks, groups)

        decomposition = Decomposition(
            work_item=work_item.name,
            catalog_version=self.catalog.version,
            tasks=tasks,
            groups=groups,
            tier_distribution=self.tier_distribution(tasks),
            review_tiers=self.review_tier_assignment(tasks),
        )

        logger.info(
            f"Decomposed '{work_item.name}' into {len(tasks)} tasks across {len(groups)} groups "
            f"(catalog {self.catalog.version}, tiers {decomposition.tier_distribution})"
        )
        return decomposition

    def assign_tier(self, entry: CatalogEntry, size: int) -> Tier:
        """Catalog tier, upgraded Standard → Advanced for oversized ambiguous kinds."""
        if entry.ambiguous and entry.tier is Tier.STANDARD and size > entry.upgrade_threshold:
            logger.debug(f"Upgrading '{entry.kind}' to advanced (size {size} > {entry.upgrade_threshold})")
            return Tier.ADVANCED
        return entry.tier

    def tier_distribution(self, tasks: Sequence[Task]) -> dict[str, int]:
        distribution = {tier.label: 0 for tier in AUTOMATED_TIERS}
        for task in tasks:
            distribution[task.tier.label] += 1
        return distribution

    def review_tier_assignment(self, tasks: Sequence[Task]) -> dict[str, Tier]:
        """Per review domain, the highest tier among the tasks it reviews.

        Domains with nothing in scope review at the basic tier.
        """
        assignment: dict[str, Tier] = {}
        for domain in self.review_domains:
            kinds = self.catalog.kinds_for_domain(domain)
            tiers = [t.tier for t in tasks if t.kind in kinds]
            assignment[domain] = max(tiers, default=Tier.BASIC)
        return assignment

    def _estimate_size(self, unit: WorkUnit, entry: CatalogEntry) -> int:
        if unit.size is not None:
            return max(1, unit.size)
        if unit.targets:
            return len(unit.targets)
        return entry.typical_size

    def _validate(self, tasks: list[Task], groups: list[Group]) -> None:
        errors, warnings = validate_task_graph(tasks, groups)
        for warning in warnings:
            logger.warning(warning)
        if not errors:
            return

        violations = group_order_violations(tasks)
        if violations:
            task_id, dep_id, task_group, dep_group = violations[0]
            raise GroupOrderError(
                f"Task '{task_id}' (group {task_group}) depends on '{dep_id}' in later group {dep_group}",
                task_id=task_id,
                dependency=dep_id,
            )

        cycle = find_dependency_cycle(tasks)
        if cycle:
            raise DependencyCycleError(f"Dependency cycle: {' -> '.join(cycle)}", cycle=cycle)

        raise DecompositionError("Invalid task graph", errors=errors)
