"""Lifecycle type definitions using TypedDict and dataclass."""

__all__ = [
    # Input types
    "WorkUnitSpec",
    "WorkItemSpec",
    "WorkUnit",
    "WorkItem",
    # Task graph types
    "Task",
    "Group",
    "Decomposition",
    # Collaborator results
    "WorkerResult",
    "VerificationOutcome",
    # Checkpoint and escalation types
    "Checkpoint",
    "EscalationState",
    # Review types
    "Score",
    "ReviewIssue",
    "ReviewReport",
    "ConsolidatedReview",
    # Run outcome types
    "HaltRecord",
    "CheckResult",
    "RunOutcome",
]

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, TypedDict

from lifecycle.constants import (
    Component,
    ErrorClass,
    GroupMode,
    GroupStatus,
    Recommendation,
    ReviewStatus,
    RunStatus,
    Severity,
    TaskStatus,
    Tier,
)

# ============================================================================
# Work item input
# ============================================================================


class WorkUnitSpec(TypedDict, total=False):
    """One unit of work as written in a work-item file."""

    id: str
    kind: str
    title: str
    description: str
    targets: list[str]
    depends_on: list[str]
    size: int
    critical: bool


class WorkItemSpec(TypedDict, total=False):
    """A work-item file."""

    name: str
    description: str
    units: list[WorkUnitSpec]


@dataclass
class WorkUnit:
    """A requested unit of work before tier/group placement."""

    kind: str
    id: str | None = None
    title: str = ""
    description: str = ""
    targets: list[str] = field(default_factory=list)
    depends_on: list[str] = field(default_factory=list)
    size: int | None = None
    critical: bool = True

    @classmethod
    def from_dict(cls, data: WorkUnitSpec | dict[str, Any]) -> "WorkUnit":
        return cls(
            kind=data["kind"],
            id=data.get("id"),
            title=data.get("title", ""),
            description=data.get("description", ""),
            targets=list(data.get("targets", [])),
            depends_on=list(data.get("depends_on", [])),
            size=data.get("size"),
            critical=data.get("critical", True),
        )


@dataclass
class WorkItem:
    """A feature-sized unit of work handed to the decomposer."""

    name: str
    description: str = ""
    units: list[WorkUnit] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: WorkItemSpec | dict[str, Any]) -> "WorkItem":
        return cls(
            name=data["name"],
            description=data.get("description", ""),
            units=[WorkUnit.from_dict(u) for u in data.get("units", [])],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "units": [
                {
                    "id": u.id,
                    "kind": u.kind,
                    "title": u.title,
                    "description": u.description,
                    "targets": list(u.targets),
                    "depends_on": list(u.depends_on),
                    "size": u.size,
                    "critical": u.critical,
                }
                for u in self.units
            ],
        }


# ============================================================================
# Task graph
# ============================================================================


@dataclass
class Task:
    """A single typed unit of work placed in a group."""

    id: str
    kind: str
    tier: Tier
    group: int
    title: str = ""
    description: str = ""
    dependencies: list[str] = field(default_factory=list)
    targets: list[str] = field(default_factory=list)
    size: int = 1
    critical: bool = True
    status: TaskStatus = TaskStatus.PENDING
    attempts: dict[str, int] = field(default_factory=dict)  # tier label -> dispatch count

    def record_attempt(self, tier: Tier) -> int:
        self.attempts[tier.label] = self.attempts.get(tier.label, 0) + 1
        return self.attempts[tier.label]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "tier": self.tier.label,
            "group": self.group,
            "title": self.title,
            "description": self.description,
            "dependencies": list(self.dependencies),
            "targets": list(self.targets),
            "size": self.size,
            "critical": self.critical,
            "status": self.status.value,
            "attempts": dict(self.attempts),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        return cls(
            id=data["id"],
            kind=data["kind"],
            tier=Tier.parse(data["tier"]),
            group=data["group"],
            title=data.get("title", ""),
            description=data.get("description", ""),
            dependencies=list(data.get("dependencies", [])),
            targets=list(data.get("targets", [])),
            size=data.get("size", 1),
            critical=data.get("critical", True),
            status=TaskStatus(data.get("status", TaskStatus.PENDING.value)),
            attempts=dict(data.get("attempts", {})),
        )


@dataclass
class Group:
    """An ordered, verification-gated bucket of tasks."""

    index: int
    name: str
    mode: GroupMode = GroupMode.PARALLEL
    verification: str = "compile"
    task_ids: list[str] = field(default_factory=list)  # declaration order
    status: GroupStatus = GroupStatus.PENDING

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "name": self.name,
            "mode": self.mode.value,
            "verification": self.verification,
            "task_ids": list(self.task_ids),
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Group":
        return cls(
            index=data["index"],
            name=data.get("name", f"group_{data['index']}"),
            mode=GroupMode(data.get("mode", GroupMode.PARALLEL.value)),
            verification=data.get("verification", "compile"),
            task_ids=list(data.get("task_ids", [])),
            status=GroupStatus(data.get("status", GroupStatus.PENDING.value)),
        )


@dataclass
class Decomposition:
    """Decomposer output: the task DAG plus derived summaries."""

    work_item: str
    catalog_version: str
    tasks: list[Task]
    groups: list[Group]
    tier_distribution: dict[str, int] = field(default_factory=dict)
    review_tiers: dict[str, Tier] = field(default_factory=dict)

    def task(self, task_id: str) -> Task:
        for task in self.tasks:
            if task.id == task_id:
                return task
        raise KeyError(task_id)

    def group(self, index: int) -> Group:
        for group in self.groups:
            if group.index == index:
                return group
        raise KeyError(index)

    def to_dict(self) -> dict[str, Any]:
        return {
            "work_item": self.work_item,
            "catalog_version": self.catalog_version,
            "tasks": [t.to_dict() for t in self.tasks],
            "groups": [g.to_dict() for g in self.groups],
            "tier_distribution": dict(self.tier_distribution),
            "review_tiers": {domain: tier.label for domain, tier in self.review_tiers.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Decomposition":
        return cls(
            work_item=data["work_item"],
            catalog_version=data.get("catalog_version", ""),
            tasks=[Task.from_dict(t) for t in data.get("tasks", [])],
            groups=[Group.from_dict(g) for g in data.get("groups", [])],
            tier_distribution=dict(data.get("tier_distribution", {})),
            review_tiers={d: Tier.parse(t) for d, t in data.get("review_tiers", {}).items()},
        )


# ============================================================================
# Collaborator results
# ============================================================================


@dataclass
class WorkerResult:
    """What a Worker reports for one task execution."""

    success: bool
    artifacts: list[str] = field(default_factory=list)
    diagnostics: str = ""


@dataclass
class VerificationOutcome:
    """What a Verifier reports for one group check."""

    passed: bool
    error_class: ErrorClass | None = None
    failed_targets: list[str] = field(default_factory=list)
    unresolved: list[str] = field(default_factory=list)  # names the check could not resolve
    diagnostics: str = ""
    command: str = ""
    duration_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "passed": self.passed,
            "error_class": self.error_class.value if self.error_class else None,
            "failed_targets": list(self.failed_targets),
            "unresolved": list(self.unresolved),
            "diagnostics": self.diagnostics,
            "command": self.command,
            "duration_ms": self.duration_ms,
        }


# ============================================================================
# Checkpoint and escalation
# ============================================================================


@dataclass(frozen=True)
class Checkpoint:
    """Immutable record that a group was verified and committed."""

    group: int
    artifacts: frozenset[str]
    commit_ref: str
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "group": self.group,
            "artifacts": sorted(self.artifacts),
            "commit_ref": self.commit_ref,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Checkpoint":
        return cls(
            group=data["group"],
            artifacts=frozenset(data.get("artifacts", [])),
            commit_ref=data["commit_ref"],
            created_at=(datetime.fromisoformat(data["created_at"]) if data.get("created_at") else datetime.now()),
        )


@dataclass
class EscalationState:
    """Per-task retry bookkeeping along the tier ladder."""

    task_id: str
    tier: Tier
    same_tier_attempts: int = 0
    tier_history: list[Tier] = field(default_factory=list)
    failures: int = 0
    last_error: str | None = None
    resolved: bool = False

    def __post_init__(self) -> None:
        if not self.tier_history:
            self.tier_history = [self.tier]

    @property
    def escalated(self) -> bool:
        return len(self.tier_history) > 1

    @property
    def is_manual(self) -> bool:
        return self.tier is Tier.MANUAL

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "tier": self.tier.label,
            "same_tier_attempts": self.same_tier_attempts,
            "tier_history": [t.label for t in self.tier_history],
            "failures": self.failures,
            "last_error": self.last_error,
            "resolved": self.resolved,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EscalationState":
        return cls(
            task_id=data["task_id"],
            tier=Tier.parse(data["tier"]),
            same_tier_attempts=data.get("same_tier_attempts", 0),
            tier_history=[Tier.parse(t) for t in data.get("tier_history", [])],
            failures=data.get("failures", 0),
            last_error=data.get("last_error"),
            resolved=data.get("resolved", False),
        )


# ============================================================================
# Review
# ============================================================================


@dataclass(frozen=True)
class Score:
    """Review score as numerator/denominator."""

    numerator: int
    denominator: int

    def __add__(self, other: "Score") -> "Score":
        return Score(self.numerator + other.numerator, self.denominator + other.denominator)

    def __str__(self) -> str:
        return f"{self.numerator}/{self.denominator}"

    @property
    def ratio(self) -> float:
        return self.numerator / self.denominator if self.denominator else 0.0

    @classmethod
    def parse(cls, value: "str | Score | dict[str, int]") -> "Score":
        if isinstance(value, Score):
            return value
        if isinstance(value, dict):
            return cls(int(value["numerator"]), int(value["denominator"]))
        numerator, _, denominator = str(value).partition("/")
        return cls(int(numerator), int(denominator or 0))


@dataclass
class ReviewIssue:
    """A single issue raised by a review domain."""

    id: str
    description: str
    severity: Severity
    domain: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "severity": self.severity.value,
            "domain": self.domain,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], domain: str = "") -> "ReviewIssue":
        return cls(
            id=str(data["id"]),
            description=data.get("description", ""),
            severity=Severity(str(data.get("severity", "low")).lower()),
            domain=data.get("domain", domain),
        )


@dataclass
class ReviewReport:
    """Output of one review domain."""

    domain: str
    score: Score
    status: ReviewStatus
    issues: list[ReviewIssue] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "domain": self.domain,
            "score": str(self.score),
            "status": self.status.value,
            "issues": [i.to_dict() for i in self.issues],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ReviewReport":
        domain = data["domain"]
        return cls(
            domain=domain,
            score=Score.parse(data.get("score", "0/0")),
            status=ReviewStatus(data.get("status", ReviewStatus.NEEDS_WORK.value)),
            issues=[ReviewIssue.from_dict(i, domain) for i in data.get("issues", [])],
        )


@dataclass
class ConsolidatedReview:
    """Fan-in result of all review domains."""

    reports: list[ReviewReport]
    score: Score
    issues: dict[Severity, list[ReviewIssue]]
    domain_statuses: dict[str, ReviewStatus]
    recommendation: Recommendation

    @property
    def critical_issues(self) -> list[ReviewIssue]:
        return self.issues.get(Severity.CRITICAL, [])

    @property
    def is_go(self) -> bool:
        return self.recommendation is Recommendation.GO

    def to_dict(self) -> dict[str, Any]:
        return {
            "reports": [r.to_dict() for r in self.reports],
            "score": str(self.score),
            "issues": {sev.value: [i.to_dict() for i in self.issues.get(sev, [])] for sev in Severity},
            "domain_statuses": {d: s.value for d, s in self.domain_statuses.items()},
            "recommendation": self.recommendation.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConsolidatedReview":
        return cls(
            reports=[ReviewReport.from_dict(r) for r in data.get("reports", [])],
            score=Score.parse(data.get("score", "0/0")),
            issues={
                Severity(sev): [ReviewIssue.from_dict(i) for i in items]
                for sev, items in data.get("issues", {}).items()
            },
            domain_statuses={d: ReviewStatus(s) for d, s in data.get("domain_statuses", {}).items()},
            recommendation=Recommendation(data["recommendation"]),
        )


# ============================================================================
# Run outcome
# ============================================================================


@dataclass
class HaltRecord:
    """Why forward progress stopped, and where it can resume from."""

    component: Component
    reason: str
    error_class: ErrorClass | None = None
    group: int | None = None
    task_id: str | None = None
    last_checkpoint: int | None = None
    paused: bool = False  # waiting on a human rather than halted by a defect
    timestamp: datetime = field(default_factory=datetime.now)

    def describe(self) -> str:
        kind = "paused" if self.paused else "halted"
        where = (
            f"last checkpoint: group {self.last_checkpoint}" if self.last_checkpoint is not None else "no checkpoint"
        )
        cls = f" [{self.error_class.value}]" if self.error_class else ""
        return f"{self.component.value} {kind}{cls}: {self.reason} ({where})"

    def to_dict(self) -> dict[str, Any]:
        return {
            "component": self.component.value,
            "reason": self.reason,
            "error_class": self.error_class.value if self.error_class else None,
            "group": self.group,
            "task_id": self.task_id,
            "last_checkpoint": self.last_checkpoint,
            "paused": self.paused,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HaltRecord":
        return cls(
            component=Component(data["component"]),
            reason=data["reason"],
            error_class=ErrorClass(data["error_class"]) if data.get("error_class") else None,
            group=data.get("group"),
            task_id=data.get("task_id"),
            last_checkpoint=data.get("last_checkpoint"),
            paused=data.get("paused", False),
            timestamp=(datetime.fromisoformat(data["timestamp"]) if data.get("timestamp") else datetime.now()),
        )


@dataclass
class CheckResult:
    """One named, independently inspectable boolean check."""

    name: str
    passed: bool
    category: str  # phase | quality | persistence
    detail: str = ""
    required: bool = True  # advisory checks do not affect the run status

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "passed": self.passed,
            "category": self.category,
            "detail": self.detail,
            "required": self.required,
        }


@dataclass
class RunOutcome:
    """Terminal status of a run plus its checklist."""

    status: RunStatus
    reasons: list[str] = field(default_factory=list)
    checklist: list[CheckResult] = field(default_factory=list)
    halt: HaltRecord | None = None

    @property
    def complete(self) -> bool:
        return self.status is RunStatus.COMPLETE

    def check(self, name: str) -> CheckResult:
        for item in self.checklist:
            if item.name == name:
                return item
        raise KeyError(name)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "reasons": list(self.reasons),
            "checklist": [c.to_dict() for c in self.checklist],
            "halt": self.halt.to_dict() if self.halt else None,
        }
