"""Lifecycle exception hierarchy."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from lifecycle.types import HaltRecord


class LifecycleError(Exception):
    """Base exception for all lifecycle errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class ConfigurationError(LifecycleError):
    """Error in lifecycle configuration."""

    pass


class CatalogError(LifecycleError):
    """Catalog has no entry for a required kind of work."""

    def __init__(self, message: str, kind: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, {"kind": kind, **(details or {})})
        self.kind = kind


class DecompositionError(LifecycleError):
    """Work item could not be turned into a valid task graph."""

    def __init__(
        self, message: str, errors: list[str] | None = None, details: dict[str, Any] | None = None
    ) -> None:
        super().__init__(message, details)
        self.errors = errors or []

    def __str__(self) -> str:
        if self.errors:
            return f"{self.message}: " + "; ".join(self.errors)
        return super().__str__()


class DependencyCycleError(DecompositionError):
    """Task dependencies form a cycle."""

    def __init__(self, message: str, cycle: list[str]) -> None:
        super().__init__(message, details={"cycle": cycle})
        self.cycle = cycle


class GroupOrderError(DecompositionError):
    """A task depends on a task placed in a later group."""

    def __init__(self, message: str, task_id: str, dependency: str) -> None:
        super().__init__(message, details={"task_id": task_id, "dependency": dependency})
        self.task_id = task_id
        self.dependency = dependency


class TaskError(LifecycleError):
    """Base error for task-related issues."""

    def __init__(
        self, message: str, task_id: str | None = None, details: dict[str, Any] | None = None
    ) -> None:
        super().__init__(message, details)
        self.task_id = task_id


class GroupError(LifecycleError):
    """Error in group sequencing."""

    def __init__(
        self, message: str, group: int | None = None, details: dict[str, Any] | None = None
    ) -> None:
        super().__init__(message, details)
        self.group = group


class CheckpointError(LifecycleError):
    """Checkpoint could not be recorded."""

    def __init__(
        self, message: str, group: int | None = None, details: dict[str, Any] | None = None
    ) -> None:
        super().__init__(message, details)
        self.group = group


class VersionControlError(LifecycleError):
    """Error in the version-control sink."""

    def __init__(
        self,
        message: str,
        command: str | None = None,
        exit_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.command = command
        self.exit_code = exit_code


class StateError(LifecycleError):
    """Error in run state management."""

    pass


class PhaseError(LifecycleError):
    """Error in phase sequencing."""

    pass


class RunHaltedError(LifecycleError):
    """Forward progress stopped by a structural condition."""

    def __init__(self, halt: HaltRecord) -> None:
        super().__init__(halt.reason, halt.to_dict())
        self.halt = halt
