"""Lifecycle constants and enumerations."""

from enum import Enum, IntEnum


class Tier(IntEnum):
    """Capability ladder for task executors.

    MANUAL sits above every automated tier and is terminal.
    """

    BASIC = 1
    STANDARD = 2
    ADVANCED = 3
    MANUAL = 4

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def parse(cls, value: "str | int | Tier") -> "Tier":
        """Parse a tier from its name or numeric value."""
        if isinstance(value, Tier):
            return value
        if isinstance(value, int):
            return cls(value)
        try:
            return cls[str(value).strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown tier: {value}") from None


# Automated tiers, in ladder order
AUTOMATED_TIERS = (Tier.BASIC, Tier.STANDARD, Tier.ADVANCED)


class TaskStatus(Enum):
    """Task execution status."""

    PENDING = "pending"
    RUNNING = "running"
    VERIFIED = "verified"
    FAILED = "failed"
    ESCALATED = "escalated"
    BLOCKED = "blocked"


class GroupMode(Enum):
    """How tasks inside a group are dispatched."""

    PARALLEL = "parallel"
    SEQUENTIAL = "sequential"


class GroupStatus(Enum):
    """Group lifecycle status."""

    PENDING = "pending"
    DISPATCHED = "dispatched"
    VERIFYING = "verifying"
    COMMITTED = "committed"
    FAILED = "failed"


class ErrorClass(Enum):
    """Classified verification failure."""

    COMPILE = "compile"
    MISSING_DEPENDENCY = "missing_dependency"
    BUILD_INFRA = "build_infra"
    TEST_FAILURE = "test_failure"

    @property
    def is_retryable(self) -> bool:
        return self is not ErrorClass.MISSING_DEPENDENCY


class EscalationAction(Enum):
    """Outcome of recording a task failure."""

    RETRY = "retry"  # same tier
    ESCALATE = "escalate"  # next tier
    MANUAL = "manual"  # ladder exhausted


class Severity(Enum):
    """Review issue severity."""

    CRITICAL = "critical"
    MEDIUM = "medium"
    LOW = "low"


class ReviewStatus(Enum):
    """Per-domain review verdict."""

    APPROVED = "approved"
    ADEQUATE = "adequate"
    NEEDS_WORK = "needs_work"


class Recommendation(Enum):
    """Consolidated review recommendation."""

    GO = "go"
    FIX_OPTIONAL = "fix_optional"  # may proceed with justification
    FIX_MANDATORY = "fix_mandatory"

    @property
    def may_proceed(self) -> bool:
        return self is not Recommendation.FIX_MANDATORY


class Phase(Enum):
    """Lifecycle phases, in mandatory order."""

    PLAN = "plan"
    DECOMPOSE = "decompose"
    IMPLEMENT = "implement"
    REVIEW = "review"
    FIX = "fix"
    FINALIZE = "finalize"


PHASE_ORDER = (
    Phase.PLAN,
    Phase.DECOMPOSE,
    Phase.IMPLEMENT,
    Phase.REVIEW,
    Phase.FIX,
    Phase.FINALIZE,
)


class RunStatus(Enum):
    """Terminal run status."""

    COMPLETE = "complete"
    INCOMPLETE = "incomplete"


class Component(Enum):
    """Components that can raise a halt or pause."""

    DECOMPOSER = "decomposer"
    SCHEDULER = "scheduler"
    VERIFIER = "verifier"
    ESCALATION = "escalation"
    CHECKPOINT = "checkpoint"
    REVIEW = "review"
    PHASE_CONTROLLER = "phase_controller"


# Default configuration values
DEFAULT_MAX_IN_FLIGHT = 4
DEFAULT_MAX_ATTEMPTS_PER_TIER = 2
DEFAULT_ESCALATION_RATE_THRESHOLD = 0.15
DEFAULT_MAX_CORRECTIVE_CYCLES = 2
DEFAULT_VERIFICATION_TIMEOUT = 600
DEFAULT_REVIEW_DOMAINS = ("security", "performance", "correctness", "operability")
DIAGNOSTIC_TAIL_LINES = 20

# State file locations
LIFECYCLE_DIR = ".lifecycle"
CONFIG_FILE = ".lifecycle/config.yaml"
STATE_DIR = ".lifecycle/state"
LOGS_DIR = ".lifecycle/logs"


class LogEvent(Enum):
    """Run event types recorded in the state event log."""

    PHASE_STARTED = "phase_started"
    PHASE_COMPLETED = "phase_completed"
    GROUP_STARTED = "group_started"
    TASK_DISPATCHED = "task_dispatched"
    TASK_COMPLETED = "task_completed"
    TASK_FAILED = "task_failed"
    TASK_ESCALATED = "task_escalated"
    TASK_MANUAL = "task_manual"
    VERIFICATION_PASSED = "verification_passed"
    VERIFICATION_FAILED = "verification_failed"
    GROUP_COMMITTED = "group_committed"
    GROUP_FAILED = "group_failed"
    REVIEW_COMPLETED = "review_completed"
    CORRECTIVE_CYCLE = "corrective_cycle"
    RUN_HALTED = "run_halted"
    RUN_ABORTED = "run_aborted"
    RUN_COMPLETED = "run_completed"
