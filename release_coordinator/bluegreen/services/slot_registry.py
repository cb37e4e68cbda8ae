import fcntl
import json
import logging
import os
import tempfile
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional

from bluegreen import constants
from bluegreen.exceptions import ConcurrentDeployment, StateCorrupt
from bluegreen.models.environment import Environment
from bluegreen.models.routing_state import RoutingState
from bluegreen.models.slot import Slot, other_slot_id

logger = logging.getLogger(__name__)


def atomic_write_json(path: Path, data: dict):
    """Write JSON next to the target and rename it into place, so readers never see a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=4, sort_keys=True)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise

    dir_fd = os.open(path.parent, os.O_RDONLY)
    try:
        os.fsync(dir_fd)
    finally:
        os.close(dir_fd)


class SlotRegistry:
    """Tracks the two slots of each environment and which one RoutingState marks active."""

    def __init__(self, state_dir):
        self.state_dir = Path(state_dir)
        self.state_dir.mkdir(parents=True, exist_ok=True)

    def routing_path(self, env: Environment) -> Path:
        return self.state_dir / f"{env.name}{constants.ROUTING_FILE_SUFFIX}"

    def slots_path(self, env: Environment) -> Path:
        return self.state_dir / f"{env.name}{constants.SLOTS_FILE_SUFFIX}"

    def lock_path(self, env: Environment) -> Path:
        return self.state_dir / f"{env.name}{constants.LOCK_FILE_SUFFIX}"

    def _read_json(self, path: Path):
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StateCorrupt(f"Cannot read state file {path}: {e}") from e

    # =========================
    # RoutingState
    # =========================
    def load_routing(self, env: Environment) -> RoutingState:
        path = self.routing_path(env)
        if not path.exists():
            logger.info(f"No routing state for '{env.name}' yet, environment has never been cut over")
            return RoutingState()

        data = self._read_json(path)
        if not isinstance(data, dict):
            raise StateCorrupt(f"Routing state {path} is not a record: {data!r}")

        active = data.get("active_slot_id")
        if isinstance(active, list):
            raise StateCorrupt(f"Routing state {path} marks more than one slot active: {active}")
        if active not in constants.SLOT_IDS:
            raise StateCorrupt(f"Routing state {path} marks no valid slot active: {active!r}")

        switched_at = data.get("last_switched_at")
        try:
            switched_at = datetime.fromisoformat(switched_at) if switched_at else None
        except (TypeError, ValueError) as e:
            raise StateCorrupt(f"Routing state {path} has an invalid last_switched_at: {switched_at!r}") from e

        return RoutingState(active_slot_id=active, last_switched_at=switched_at)

    def commit_active(self, env: Environment, slot_id: str) -> RoutingState:
        if slot_id not in constants.SLOT_IDS:
            raise ValueError(f"Unknown slot id '{slot_id}'")

        current = self.load_routing(env)
        if current.active_slot_id == slot_id:
            logger.info(f"Slot {slot_id} already active for '{env.name}', routing state left as is")
            return current

        routing = RoutingState(active_slot_id=slot_id, last_switched_at=datetime.now(timezone.utc))
        atomic_write_json(self.routing_path(env), routing.to_dict())
        logger.info(f"Committed active slot {slot_id} for '{env.name}' (was {current.active_slot_id})")
        return routing

    # =========================
    # Slots
    # =========================
    def load_slots(self, env: Environment) -> Dict[str, Slot]:
        slots = {slot_id: Slot(id=slot_id, port=port) for slot_id, port in env.slots.items()}
        path = self.slots_path(env)
        if not path.exists():
            return slots

        data = self._read_json(path)
        try:
            for slot_id, record in data.items():
                if slot_id not in slots:
                    raise StateCorrupt(f"Slot records {path} name an unknown slot '{slot_id}'")
                # Ports always come from the environment config
                slots[slot_id] = Slot.from_dict({**record, "id": slot_id, "port": env.slots[slot_id]})
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise StateCorrupt(f"Slot records {path} are invalid: {e}") from e
        return slots

    def get_slot(self, env: Environment, slot_id: str) -> Slot:
        return self.load_slots(env)[slot_id]

    def save_slot(self, env: Environment, slot: Slot):
        slots = self.load_slots(env)
        slots[slot.id] = slot
        atomic_write_json(self.slots_path(env), {slot_id: s.to_dict() for slot_id, s in slots.items()})
        logger.debug(f"Saved slot {slot.id} for '{env.name}': {slot.status.value}")

    def get_active_slot(self, env: Environment) -> Optional[Slot]:
        routing = self.load_routing(env)
        if routing.active_slot_id is None:
            return None
        return self.get_slot(env, routing.active_slot_id)

    def get_inactive_slot(self, env: Environment) -> Slot:
        routing = self.load_routing(env)
        if routing.active_slot_id is None:
            target = constants.SLOT_IDS[0]
        else:
            target = other_slot_id(routing.active_slot_id)
        return self.get_slot(env, target)

    # =========================
    # Mutual exclusion
    # =========================
    @contextmanager
    def lock(self, env: Environment):
        path = self.lock_path(env)
        fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            raise ConcurrentDeployment(f"A release is already in progress for environment '{env.name}'")

        try:
            os.ftruncate(fd, 0)
            os.write(fd, f"{os.getpid()}\n".encode("utf-8"))
            logger.debug(f"Acquired release lock {path}")
            yield
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
            os.close(fd)
            logger.debug(f"Released release lock {path}")
