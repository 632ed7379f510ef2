"""Checkpoint management: one commit per verified group."""

from __future__ import annotations

import threading
from collections.abc import Iterable

from lifecycle.exceptions import CheckpointError, LifecycleError
from lifecycle.logging import get_logger
from lifecycle.state import RunState, RunStateStore
from lifecycle.types import Checkpoint
from lifecycle.vcs import VersionControl

logger = get_logger("checkpoints")


class CheckpointManager:
    """Append-only, gap-free checkpoint list backed by a version-control sink.

    The checkpoint list on the RunState is the only cross-group shared data.
    A checkpoint becomes visible only after the commit succeeded and the
    state carrying it was persisted.
    """

    def __init__(
        self,
        vcs: VersionControl,
        state: RunState,
        store: RunStateStore | None = None,
    ) -> None:
        self._vcs = vcs
        self._state = state
        self._store = store
        self._lock = threading.Lock()

    @property
    def checkpoints(self) -> list[Checkpoint]:
        return list(self._state.checkpoints)

    @property
    def last_committed(self) -> int | None:
        return self._state.last_checkpoint

    @property
    def next_group(self) -> int:
        return len(self._state.checkpoints) + 1

    def commit(self, group: int, artifacts: Iterable[str], message: str | None = None) -> Checkpoint:
        """Commit a group's artifacts and record the checkpoint.

        Args:
            group: Group index; must be the next one in sequence
            artifacts: Files produced or modified by the group
            message: Commit message

        Returns:
            The recorded checkpoint

        Raises:
            CheckpointError: Out-of-order group, or the commit or state write failed.
                Nothing is recorded in that case.
        """
        artifact_set = frozenset(artifacts)
        with self._lock:
            expected = self.next_group
            if group != expected:
                raise CheckpointError(
                    f"Cannot checkpoint group {group}: next expected group is {expected}",
                    group=group,
                    details={"last_committed": self.last_committed},
                )

            try:
                commit_ref = self._vcs.commit(group, sorted(artifact_set), message or f"Checkpoint group {group}")
            except LifecycleError as e:
                raise CheckpointError(f"Commit for group {group} failed: {e.message}", group=group) from e

            checkpoint = Checkpoint(group=group, artifacts=artifact_set, commit_ref=commit_ref)

            if self._store is not None:
                snapshot = self._state.to_dict()
                snapshot["checkpoints"].append(checkpoint.to_dict())
                try:
                    self._store.write(snapshot)
                except LifecycleError as e:
                    raise CheckpointError(f"Persisting checkpoint for group {group} failed: {e.message}", group=group) from e

            self._state.checkpoints.append(checkpoint)

        logger.info(
            f"Checkpoint group {group}: {len(artifact_set)} artifacts at {commit_ref[:12]}",
            extra={"group": group},
        )
        return checkpoint

    def extract(self, upto_group: int) -> frozenset[str]:
        """Union of artifacts from checkpoints 1..upto_group (read-only dependency input)."""
        artifacts: set[str] = set()
        for checkpoint in self._state.checkpoints:
            if checkpoint.group <= upto_group:
                artifacts |= checkpoint.artifacts
        return frozenset(artifacts)
