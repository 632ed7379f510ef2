"""Run state record and its file-based persistence."""

from __future__ import annotations

import json
import os
import re
import tempfile
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from lifecycle.constants import PHASE_ORDER, STATE_DIR, LogEvent, Phase
from lifecycle.exceptions import PhaseError, StateError
from lifecycle.logging import get_logger
from lifecycle.types import Checkpoint, ConsolidatedReview, Decomposition, EscalationState, HaltRecord

logger = get_logger("state")

STATE_SCHEMA_VERSION = 1


def run_id_for(name: str) -> str:
    """Filesystem-safe run identifier for a work item name."""
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug or "run"


@dataclass
class RunState:
    """Everything a resuming controller needs to continue a run."""

    run_id: str
    work_item: dict[str, Any] | None = None
    current_phase: Phase | None = None
    completed_phases: list[Phase] = field(default_factory=list)
    plan: dict[str, Any] = field(default_factory=dict)
    decomposition: Decomposition | None = None
    checkpoints: list[Checkpoint] = field(default_factory=list)
    escalation: dict[str, EscalationState] = field(default_factory=dict)
    review: ConsolidatedReview | None = None
    review_rounds: int = 0
    corrective_cycles: int = 0
    justification: str | None = None
    pushed: bool = False
    halt: HaltRecord | None = None
    events: list[dict[str, Any]] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.now)

    def start_phase(self, phase: Phase) -> None:
        """Enter a phase. Only the next phase in the fixed order may be entered."""
        expected = self.next_phase()
        if phase is not expected:
            raise PhaseError(
                f"Cannot enter phase {phase.value}: next phase is {expected.value if expected else 'none'}",
                {"completed": [p.value for p in self.completed_phases]},
            )
        self.current_phase = phase
        self.append_event(LogEvent.PHASE_STARTED, {"phase": phase.value})

    def complete_phase(self, phase: Phase) -> None:
        if phase is not self.current_phase or phase is not self.next_phase():
            raise PhaseError(f"Cannot complete phase {phase.value} out of order")
        self.completed_phases.append(phase)
        self.append_event(LogEvent.PHASE_COMPLETED, {"phase": phase.value})

    def next_phase(self) -> Phase | None:
        for phase in PHASE_ORDER:
            if phase not in self.completed_phases:
                return phase
        return None

    @property
    def finished(self) -> bool:
        return self.next_phase() is None

    @property
    def last_checkpoint(self) -> int | None:
        return self.checkpoints[-1].group if self.checkpoints else None

    def append_event(self, event: LogEvent | str, data: dict[str, Any] | None = None) -> None:
        name = event.value if isinstance(event, LogEvent) else event
        self.events.append({"ts": datetime.now().isoformat(), "event": name, **(data or {})})

    def events_of(self, event: LogEvent) -> list[dict[str, Any]]:
        return [e for e in self.events if e["event"] == event.value]

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema": STATE_SCHEMA_VERSION,
            "run_id": self.run_id,
            "work_item": self.work_item,
            "current_phase": self.current_phase.value if self.current_phase else None,
            "completed_phases": [p.value for p in self.completed_phases],
            "plan": self.plan,
            "decomposition": self.decomposition.to_dict() if self.decomposition else None,
            "checkpoints": [c.to_dict() for c in self.checkpoints],
            "escalation": {tid: s.to_dict() for tid, s in self.escalation.items()},
            "review": self.review.to_dict() if self.review else None,
            "review_rounds": self.review_rounds,
            "corrective_cycles": self.corrective_cycles,
            "justification": self.justification,
            "pushed": self.pushed,
            "halt": self.halt.to_dict() if self.halt else None,
            "events": self.events,
            "started_at": self.started_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RunState:
        return cls(
            run_id=data["run_id"],
            work_item=data.get("work_item"),
            current_phase=Phase(data["current_phase"]) if data.get("current_phase") else None,
            completed_phases=[Phase(p) for p in data.get("completed_phases", [])],
            plan=data.get("plan", {}),
            decomposition=Decomposition.from_dict(data["decomposition"]) if data.get("decomposition") else None,
            checkpoints=[Checkpoint.from_dict(c) for c in data.get("checkpoints", [])],
            escalation={tid: EscalationState.from_dict(s) for tid, s in data.get("escalation", {}).items()},
            review=ConsolidatedReview.from_dict(data["review"]) if data.get("review") else None,
            review_rounds=data.get("review_rounds", 0),
            corrective_cycles=data.get("corrective_cycles", 0),
            justification=data.get("justification"),
            pushed=data.get("pushed", False),
            halt=HaltRecord.from_dict(data["halt"]) if data.get("halt") else None,
            events=list(data.get("events", [])),
            started_at=(datetime.fromisoformat(data["started_at"]) if data.get("started_at") else datetime.now()),
        )


class RunStateStore:
    """Persist a RunState as JSON with atomic replace."""

    def __init__(self, run_id: str, state_dir: str | Path | None = None) -> None:
        """Initialize the store.

        Args:
            run_id: Run identifier for state isolation
            state_dir: Directory for state files (defaults to .lifecycle/state)
        """
        self.run_id = run_id
        self.state_dir = Path(state_dir or STATE_DIR)
        self._state_file = self.state_dir / f"{run_id}.json"
        self._lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self._state_file

    def exists(self) -> bool:
        return self._state_file.exists()

    def load(self) -> RunState:
        """Load state from file.

        Raises:
            StateError: If no state exists or it cannot be parsed
        """
        with self._lock:
            if not self._state_file.exists():
                raise StateError(f"No state found for run '{self.run_id}'", {"path": str(self._state_file)})
            try:
                with open(self._state_file) as f:
                    data = json.load(f)
                state = RunState.from_dict(data)
            except (json.JSONDecodeError, KeyError, ValueError) as e:
                raise StateError(f"Failed to parse state file: {e}", {"path": str(self._state_file)}) from e

            logger.debug(f"Loaded state for run {self.run_id}")
            return state

    def save(self, state: RunState) -> None:
        self.write(state.to_dict())

    def write(self, data: dict[str, Any]) -> None:
        """Write a serialized state atomically.

        Raises:
            StateError: If the file cannot be written
        """
        with self._lock:
            try:
                self.state_dir.mkdir(parents=True, exist_ok=True)
                fd, tmp_path = tempfile.mkstemp(dir=str(self.state_dir), suffix=".tmp")
                with os.fdopen(fd, "w") as f:
                    json.dump(data, f, indent=2, default=str)
                os.replace(tmp_path, self._state_file)
            except OSError as e:
                raise StateError(f"Failed to write state file: {e}", {"path": str(self._state_file)}) from e
            logger.debug(f"Saved state for run {self.run_id}")

    def delete(self) -> None:
        with self._lock:
            if self._state_file.exists():
                self._state_file.unlink()
