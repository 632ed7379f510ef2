"""Lifecycle - feature lifecycle pipeline orchestrator.

Decompose a work item into grouped tasks, run the groups behind
verification-gated checkpoints, escalate failing tasks and review the result.
"""

__version__ = "0.1.0"

from lifecycle.catalog import Catalog
from lifecycle.config import LifecycleConfig
from lifecycle.constants import ErrorClass, Phase, Recommendation, RunStatus, Severity, TaskStatus, Tier
from lifecycle.decomposer import Decomposer
from lifecycle.exceptions import LifecycleError
from lifecycle.phases import PhaseController
from lifecycle.scheduler import GroupScheduler
from lifecycle.types import RunOutcome, WorkItem

__all__ = [
    "__version__",
    "Tier",
    "TaskStatus",
    "Phase",
    "ErrorClass",
    "Severity",
    "Recommendation",
    "RunStatus",
    "LifecycleError",
    "LifecycleConfig",
    # Pipeline
    "Catalog",
    "Decomposer",
    "GroupScheduler",
    "PhaseController",
    "RunOutcome",
    "WorkItem",
]
