import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from bluegreen.models.artifact_ref import ArtifactRef


class ReleaseState(Enum):
    IDLE = "Idle"
    SLOT_SELECTED = "SlotSelected"
    DEPLOYING = "Deploying"
    PROBING = "Probing"
    CUTTING_OVER = "CuttingOver"
    DECOMMISSIONING = "Decommissioning"
    DONE = "Done"
    ROLLING_BACK = "RollingBack"


class DeploymentOutcome(Enum):
    PENDING = "Pending"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    ROLLED_BACK = "RolledBack"


class TransitionRecord(BaseModel):
    state: ReleaseState
    at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    detail: Optional[str] = None


class DeploymentAttempt(BaseModel):
    attempt_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    environment: str
    artifact: ArtifactRef
    target_slot: Optional[str] = None
    previous_slot: Optional[str] = None
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    outcome: DeploymentOutcome = DeploymentOutcome.PENDING
    transitions: List[TransitionRecord] = Field(default_factory=list)
    error: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)

    @property
    def is_final(self) -> bool:
        return self.outcome != DeploymentOutcome.PENDING

    @property
    def state(self) -> ReleaseState:
        return self.transitions[-1].state if self.transitions else ReleaseState.IDLE

    def record_transition(self, state: ReleaseState, detail: str = None):
        if self.is_final:
            raise RuntimeError(f"Attempt {self.attempt_id} is already finalized as {self.outcome.value}.")
        self.transitions.append(TransitionRecord(state=state, detail=detail))

    def add_warning(self, message: str):
        self.warnings.append(message)

    def finalize(self, outcome: DeploymentOutcome, error: str = None):
        if outcome == DeploymentOutcome.PENDING:
            raise ValueError("An attempt cannot be finalized as Pending.")
        if self.is_final:
            raise RuntimeError(f"Attempt {self.attempt_id} is already finalized as {self.outcome.value}.")
        self.outcome = outcome
        self.error = error
        self.finished_at = datetime.now(timezone.utc)

    def duration_seconds(self) -> float:
        end = self.finished_at or datetime.now(timezone.utc)
        return (end - self.started_at).total_seconds()

    def to_dict(self):
        """Flat row for the CSV history (transitions are stored separately)."""
        return {
            "attempt_id": self.attempt_id,
            "environment": self.environment,
            "artifact": str(self.artifact),
            "target_slot": self.target_slot,
            "previous_slot": self.previous_slot,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_seconds": self.duration_seconds(),
            "outcome": self.outcome.value,
            "error": self.error,
            "warnings": " | ".join(self.warnings),
        }
