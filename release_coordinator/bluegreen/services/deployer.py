import logging

from bluegreen import constants
from bluegreen.exceptions import DeployError
from bluegreen.models.artifact_ref import ArtifactRef
from bluegreen.models.environment import Environment
from bluegreen.models.slot import Slot, SlotStatus
from bluegreen.services.workload_runtime import WorkloadRuntime

logger = logging.getLogger(__name__)

class Deployer:
    """Materializes an artifact in one slot.

    Start-before-stop across slots: the new slot comes up while the old active
    slot keeps serving, and the old one is stopped only after cutover. Within a
    single port the stale occupant is always stopped before the new one binds.
    """

    def __init__(self, runtime: WorkloadRuntime, env: Environment):
        self.runtime = runtime
        self.env = env

    def deploy(self, slot: Slot, artifact: ArtifactRef) -> Slot:
        name = self.env.workload_name(slot.id)
        try:
            stale = self.runtime.occupant(slot.port)
            if stale:
                logger.warning(f"Port {slot.port} of slot {slot.id} is held by '{stale}', stopping it first")
                self.runtime.stop(stale, constants.STOP_TIMEOUT)
            if stale != name:
                # A stopped container may still hold the name
                self.runtime.stop(name, constants.STOP_TIMEOUT)

            workload_id = self.runtime.start(name, artifact, slot.port, self.env.deploy_timeout)
        except DeployError:
            raise
        except Exception as e:
            raise DeployError(f"Unexpected runtime failure deploying {artifact} to slot {slot.id}: {e}") from e

        logger.info(f"Slot {slot.id} starting {artifact} on port {slot.port}")
        return slot.with_status(SlotStatus.STARTING, current_artifact=artifact, workload_id=workload_id)

    def stop(self, slot: Slot) -> Slot:
        name = self.env.workload_name(slot.id)
        try:
            self.runtime.stop(name, constants.STOP_TIMEOUT)
        except DeployError:
            raise
        except Exception as e:
            raise DeployError(f"Unexpected runtime failure stopping slot {slot.id}: {e}") from e

        logger.info(f"Slot {slot.id} stopped")
        return slot.with_status(SlotStatus.STOPPED, workload_id=None)
