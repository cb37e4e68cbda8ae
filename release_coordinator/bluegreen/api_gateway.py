import logging

from bluegreen import constants
from bluegreen.config_loader import AppConfig
from bluegreen.models.artifact_ref import ArtifactRef
from bluegreen.models.environment import Environment
from bluegreen.services.deployer import Deployer
from bluegreen.services.deployment_tracker import DeploymentTracker
from bluegreen.services.environment_config_service import EnvironmentConfigService
from bluegreen.services.health_prober import HealthProber
from bluegreen.services.release_coordinator import ReleaseCoordinator
from bluegreen.services.slot_registry import SlotRegistry
from bluegreen.services.traffic_router import TrafficRouter
from bluegreen.services.workload_runtime import DockerRuntime

logger = logging.getLogger(__name__)

class ApiGateway:
    """Acts as the backend API gateway, callable directly,
    later exposable via Flask/FastAPI with the same method signatures."""

    def __init__(self, config_path=None):
        self.config = AppConfig(config_path)
        self.environment_config_service = None
        self.active_coordinator = None

    def _environments_file(self):
        return str(self.config.path(constants.ENVIRONMENTS_FILE, constants.DEFAULT_ENVIRONMENTS_FILE))

    def _state_dir(self):
        return self.config.path(constants.STATE_DIR, constants.DEFAULT_STATE_DIR)

    def _history_dir(self):
        return self.config.path(constants.HISTORY_DIR, constants.DEFAULT_HISTORY_DIR)

    # =========================
    # System startup
    # =========================
    def load_required_configuration(self) -> EnvironmentConfigService:
        logger.debug("/load_required_configuration")
        self.environment_config_service = EnvironmentConfigService(self._environments_file())
        return self.environment_config_service

    def reload_required_configuration(self):
        logger.debug("/reload_required_configuration")
        self.environment_config_service = EnvironmentConfigService(self._environments_file())
        self.environment_config_service.reload(self._environments_file())

    def get_all_environments(self):
        logger.debug("/get_all_environments")
        return self.load_required_configuration().get_all_environments()

    def get_environment(self, name) -> Environment:
        logger.debug(f"/get_environment : name: {name}")
        return self.load_required_configuration().get_environment(name)

    def _require_environment(self, name) -> Environment:
        env = self.get_environment(name)
        if env is None:
            raise ValueError(f"Environment '{name}' not found or not enabled.")
        return env

    # =========================
    # Release
    # =========================
    def build_coordinator(self, env: Environment, runtime=None) -> ReleaseCoordinator:
        runtime = runtime or DockerRuntime(container_port=env.container_port)
        prober = HealthProber(host=env.host, path=env.health.path,
                              max_bad_responses=env.health.max_bad_responses, expect=env.health.expect)
        return ReleaseCoordinator(
            env=env,
            registry=SlotRegistry(self._state_dir()),
            deployer=Deployer(runtime, env),
            prober=prober,
            router=TrafficRouter(env.router),
            tracker=DeploymentTracker(self._history_dir()),
        )

    def release(self, payload, runtime=None):
        logger.debug(f"/release : {payload}")
        env = self._require_environment(payload["env_name"])
        artifact = payload["artifact"]
        if not isinstance(artifact, ArtifactRef):
            artifact = ArtifactRef.parse(artifact)
        self.active_coordinator = self.build_coordinator(env, runtime)
        try:
            return self.active_coordinator.release(artifact, gate_status=int(payload.get("gate_status", 0)))
        finally:
            self.active_coordinator = None

    def cancel(self):
        if self.active_coordinator is not None:
            self.active_coordinator.cancel()

    # =========================
    # Read-only views
    # =========================
    def get_status(self, env_name):
        logger.debug(f"/get_status : env_name: {env_name}")
        env = self._require_environment(env_name)
        registry = SlotRegistry(self._state_dir())
        routing = registry.load_routing(env)
        slots = registry.load_slots(env)
        return {
            "environment": env.name,
            "routing": routing.to_dict(),
            "router_slot": TrafficRouter(env.router).current_slot(),
            "slots": {slot_id: slot.to_dict() for slot_id, slot in slots.items()},
        }

    def get_history(self, env_name, limit=None):
        logger.debug(f"/get_history : env_name: {env_name}")
        env = self._require_environment(env_name)
        return DeploymentTracker(self._history_dir()).get_attempts_by_environment(env.name, limit)

    def get_attempt_by_id(self, attempt_id: str):
        logger.debug(f"/get_attempt_by_id : attempt_id: {attempt_id}")
        return DeploymentTracker(self._history_dir()).get_attempt_by_id(attempt_id)

    def get_transitions_by_id(self, attempt_id: str):
        logger.debug(f"/get_transitions_by_id : attempt_id: {attempt_id}")
        return DeploymentTracker(self._history_dir()).get_transitions_by_id(attempt_id)

    def get_errors_by_id(self, attempt_id: str):
        logger.debug(f"/get_errors_by_id : attempt_id: {attempt_id}")
        return DeploymentTracker(self._history_dir()).get_errors_by_id(attempt_id)
