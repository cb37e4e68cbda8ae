from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class RoutingState:
    """What traffic currently sees. active_slot_id is None only before the first cutover."""
    active_slot_id: Optional[str] = None
    last_switched_at: Optional[datetime] = None

    def to_dict(self):
        return {
            "active_slot_id": self.active_slot_id,
            "last_switched_at": self.last_switched_at.isoformat() if self.last_switched_at else None,
        }
