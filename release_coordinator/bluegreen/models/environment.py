from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from bluegreen import constants


class HealthCheckConfig(BaseModel):
    path: str = constants.DEFAULT_HEALTH_PATH
    timeout: float = Field(default=constants.DEFAULT_PROBE_TIMEOUT, gt=0)
    interval: float = Field(default=constants.DEFAULT_PROBE_INTERVAL, gt=0)
    max_bad_responses: int = Field(default=constants.DEFAULT_MAX_BAD_RESPONSES, ge=0)
    # Optional body expectation, e.g. {"status": "ready"}
    expect: Optional[Dict[str, str]] = None


class RouterConfig(BaseModel):
    active_link: str
    slot_configs: Dict[str, str]
    verify_command: List[str] = Field(default_factory=lambda: list(constants.DEFAULT_VERIFY_COMMAND))
    reload_command: List[str] = Field(default_factory=lambda: list(constants.DEFAULT_RELOAD_COMMAND))
    timeout: float = Field(default=constants.DEFAULT_ROUTER_TIMEOUT, gt=0)

    @field_validator("slot_configs")
    @classmethod
    def _both_slots(cls, value):
        if set(value) != set(constants.SLOT_IDS):
            raise ValueError(f"slot_configs must name exactly the slots {constants.SLOT_IDS}")
        return value


class Environment(BaseModel):
    """Represents one environment: its two slots, health check, router and timeouts."""
    name: str
    enabled: bool = True
    app_name: str
    host: str = "127.0.0.1"
    container_port: int
    slots: Dict[str, int]
    health: HealthCheckConfig = Field(default_factory=HealthCheckConfig)
    router: RouterConfig
    deploy_timeout: float = Field(default=constants.DEFAULT_DEPLOY_TIMEOUT, gt=0)
    drain_seconds: float = Field(default=constants.DEFAULT_DRAIN_SECONDS, ge=0)

    @field_validator("name")
    @classmethod
    def _normalise_name(cls, value):
        return value.strip().lower()

    @field_validator("slots")
    @classmethod
    def _two_distinct_ports(cls, value):
        if set(value) != set(constants.SLOT_IDS):
            raise ValueError(f"slots must name exactly the slots {constants.SLOT_IDS}")
        if len(set(value.values())) != len(value):
            raise ValueError("slots must be bound to distinct ports")
        return value

    def workload_name(self, slot_id: str) -> str:
        return f"{self.app_name}-{self.name}-{slot_id.lower()}"
