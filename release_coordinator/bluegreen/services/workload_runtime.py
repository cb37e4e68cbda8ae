import logging
import time
from typing import Optional

import docker
from docker.errors import APIError, DockerException, ImageNotFound, NotFound

from bluegreen.exceptions import DeployError
from bluegreen.models.artifact_ref import ArtifactRef

logger = logging.getLogger(__name__)

PORT_CONFLICT_MARKERS = ("port is already allocated", "address already in use")
LABEL_ARTIFACT = "bluegreen.artifact"
LABEL_PORT = "bluegreen.port"


class WorkloadRuntime:
    """Starts and stops one workload per host port. Image pulls are left to the runtime itself."""

    def start(self, name: str, artifact: ArtifactRef, port: int, timeout: float) -> str:
        raise NotImplementedError

    def stop(self, name: str, timeout: float):
        raise NotImplementedError

    def occupant(self, port: int) -> Optional[str]:
        raise NotImplementedError


class DockerRuntime(WorkloadRuntime):
    def __init__(self, container_port: int, client=None, poll_interval: float = 0.5):
        self.container_port = container_port
        self.poll_interval = poll_interval
        self._client = client

    @property
    def client(self):
        if self._client is None:
            try:
                self._client = docker.from_env()
            except DockerException as e:
                raise DeployError(f"Docker runtime unavailable: {e}") from e
        return self._client

    def start(self, name, artifact, port, timeout):
        logger.info(f"Starting container '{name}' from {artifact.image} on host port {port}")
        try:
            container = self.client.containers.run(
                artifact.image,
                name=name,
                ports={f"{self.container_port}/tcp": port},
                detach=True,
                labels={LABEL_ARTIFACT: str(artifact), LABEL_PORT: str(port)},
                restart_policy={"Name": "unless-stopped"},
            )
        except ImageNotFound as e:
            raise DeployError(f"Image not found for {artifact}: {e}") from e
        except APIError as e:
            if any(marker in str(e).lower() for marker in PORT_CONFLICT_MARKERS):
                raise DeployError(f"Port {port} is already bound, cannot start '{name}': {e}") from e
            raise DeployError(f"Docker refused to start '{name}': {e}") from e
        except DockerException as e:
            raise DeployError(f"Docker runtime unavailable while starting '{name}': {e}") from e

        deadline = time.monotonic() + timeout
        while True:
            try:
                container.reload()
            except DockerException as e:
                raise DeployError(f"Lost track of container '{name}' while waiting for it to start: {e}") from e

            if container.status == "running":
                logger.info(f"Container '{name}' is running ({container.short_id})")
                return container.id
            if container.status in ("exited", "dead"):
                raise DeployError(f"Container '{name}' {container.status} right after start")
            if time.monotonic() >= deadline:
                raise DeployError(f"Container '{name}' not running after {timeout}s (status={container.status})")
            time.sleep(self.poll_interval)

    def stop(self, name, timeout):
        try:
            container = self.client.containers.get(name)
        except NotFound:
            logger.debug(f"Container '{name}' not present, nothing to stop")
            return
        except DockerException as e:
            raise DeployError(f"Docker runtime unavailable while stopping '{name}': {e}") from e

        try:
            container.stop(timeout=int(timeout))
            container.remove()
        except NotFound:
            logger.debug(f"Container '{name}' disappeared while stopping")
        except DockerException as e:
            raise DeployError(f"Failed to stop container '{name}': {e}") from e
        logger.info(f"Container '{name}' stopped and removed")

    def occupant(self, port):
        try:
            containers = self.client.containers.list(filters={"publish": str(port)})
        except DockerException as e:
            raise DeployError(f"Docker runtime unavailable while inspecting port {port}: {e}") from e
        return containers[0].name if containers else None
