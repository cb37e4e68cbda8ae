import logging
import os
import subprocess
import uuid
from pathlib import Path
from typing import Optional

from bluegreen.exceptions import RouterError
from bluegreen.models.environment import RouterConfig

logger = logging.getLogger(__name__)

class TrafficRouter:
    """Symlink-and-reload routing: the active link points at exactly one slot's proxy config.

    The link is replaced with a rename, so at every instant it names either the
    old or the new config. switch_to is all-or-nothing: when verification or
    reload fails the link is put back before RouterError is raised.
    """

    def __init__(self, config: RouterConfig):
        self.config = config
        self.active_link = Path(config.active_link)

    def _resolve(self, target: str) -> str:
        return os.path.normpath(os.path.join(self.active_link.parent, target))

    def slot_config_path(self, slot_id: str) -> str:
        try:
            return self.config.slot_configs[slot_id]
        except KeyError:
            raise RouterError(f"No proxy config defined for slot '{slot_id}'")

    def current_target(self) -> Optional[str]:
        if self.active_link.is_symlink():
            return os.readlink(self.active_link)
        if self.active_link.exists():
            raise RouterError(f"{self.active_link} exists but is not a symlink, refusing to manage it")
        return None

    def current_slot(self) -> Optional[str]:
        target = self.current_target()
        if target is None:
            return None
        for slot_id, config_path in self.config.slot_configs.items():
            if self._resolve(config_path) == self._resolve(target):
                return slot_id
        raise RouterError(f"{self.active_link} points at '{target}', which is not a slot config")

    def _point_link(self, target: str):
        self.active_link.parent.mkdir(parents=True, exist_ok=True)
        tmp_link = self.active_link.parent / f".{self.active_link.name}.{uuid.uuid4().hex}.tmp"
        os.symlink(target, tmp_link)
        try:
            os.replace(tmp_link, self.active_link)
        except OSError:
            os.unlink(tmp_link)
            raise

    def _repoint(self, previous: Optional[str]):
        if previous is None:
            if self.active_link.is_symlink():
                os.unlink(self.active_link)
            logger.warning(f"Removed {self.active_link}, there was no previous routing target")
        else:
            self._point_link(previous)
            logger.warning(f"Restored {self.active_link} -> {previous}")

    def _run(self, command, step):
        logger.debug(f"  $ {' '.join(command)}")
        try:
            subprocess.run(command, check=True, capture_output=True, text=True, timeout=self.config.timeout)
        except subprocess.TimeoutExpired:
            raise RouterError(f"{step} timed out after {self.config.timeout}s: {' '.join(command)}")
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or "").strip()
            raise RouterError(f"{step} failed (rc={e.returncode}): {stderr}")
        except OSError as e:
            raise RouterError(f"{step} could not run '{' '.join(command)}': {e}")

    def switch_to(self, slot_id: str):
        target = self.slot_config_path(slot_id)
        if not os.path.exists(self._resolve(target)):
            raise RouterError(f"Proxy config for slot {slot_id} not found: {target}")

        previous = self.current_target()
        if previous is not None and self._resolve(previous) == self._resolve(target):
            logger.info(f"Traffic already routed to slot {slot_id}, nothing to switch")
            return

        self._point_link(target)
        logger.info(f"Repointed {self.active_link} -> {target}")

        try:
            self._run(self.config.verify_command, "Proxy config verification")
        except RouterError as e:
            logger.error(f"{e}, restoring previous routing target")
            self._repoint(previous)
            raise

        try:
            self._run(self.config.reload_command, "Proxy reload")
        except RouterError as e:
            logger.error(f"{e}, restoring previous routing target")
            self._repoint(previous)
            try:
                self._run(self.config.reload_command, "Proxy reload of restored config")
            except RouterError as reload_error:
                logger.error(f"Proxy may still serve slot {slot_id}, manual check required: {reload_error}")
                raise RouterError(f"{e}; reload of restored config also failed: {reload_error}",
                                  restored=False) from e
            raise

        logger.info(f"Traffic switched to slot {slot_id}")

    def restore(self, previous: Optional[str]):
        """Put back a target captured with current_target() and reload the proxy onto it.

        Raises RouterError with restored=False when the proxy could not be moved back.
        """
        if self.current_target() == previous:
            return
        try:
            self._repoint(previous)
            self._run(self.config.reload_command, "Proxy reload of restored config")
        except (RouterError, OSError) as e:
            raise RouterError(f"Could not restore {self.active_link} -> {previous}: {e}", restored=False) from e
