from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from bluegreen.constants import SLOT_IDS
from bluegreen.models.artifact_ref import ArtifactRef


class SlotStatus(Enum):
    STOPPED = "Stopped"
    STARTING = "Starting"
    HEALTHY = "Healthy"
    UNHEALTHY = "Unhealthy"
    DRAINING = "Draining"


@dataclass
class Slot:
    id: str
    port: int
    current_artifact: Optional[ArtifactRef] = None
    status: SlotStatus = SlotStatus.STOPPED
    workload_id: Optional[str] = None
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        if self.id not in SLOT_IDS:
            raise ValueError(f"Unknown slot id '{self.id}', expected one of {SLOT_IDS}.")

    def with_status(self, status: SlotStatus, **changes) -> "Slot":
        """Copy of this slot in a new status, stamped with the current time."""
        return replace(self, status=status, updated_at=datetime.now(timezone.utc), **changes)

    def to_dict(self):
        return {
            "id": self.id,
            "port": self.port,
            "current_artifact": self.current_artifact.to_dict() if self.current_artifact else None,
            "status": self.status.value,
            "workload_id": self.workload_id,
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=data["id"],
            port=int(data["port"]),
            current_artifact=ArtifactRef.from_dict(data.get("current_artifact")),
            status=SlotStatus(data.get("status", SlotStatus.STOPPED.value)),
            workload_id=data.get("workload_id"),
            updated_at=datetime.fromisoformat(data["updated_at"]) if data.get("updated_at")
            else datetime.now(timezone.utc),
        )


def other_slot_id(slot_id: str) -> str:
    return SLOT_IDS[1] if slot_id == SLOT_IDS[0] else SLOT_IDS[0]
