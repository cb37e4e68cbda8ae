class ReleaseError(Exception):
    """Base class for every failure the release coordinator reports."""


class StateCorrupt(ReleaseError):
    """RoutingState is unreadable or inconsistent. Needs manual intervention."""


class DeployError(ReleaseError):
    """The workload could not be started or stopped in its slot."""


class UnhealthyError(ReleaseError):
    """The new slot answered, but with too many bad responses."""


class ProbeTimeout(ReleaseError):
    """The new slot did not report healthy before the probe timeout."""


class DeploymentCancelled(ReleaseError):
    """The caller aborted the release while it was in flight."""


class RouterError(ReleaseError):
    """The routing switch failed verification or reload.

    restored is False when the previous routing target could not be brought back
    and the proxy may still be serving the new slot.
    """

    def __init__(self, message, restored=True):
        super().__init__(message)
        self.restored = restored


class ConcurrentDeployment(ReleaseError):
    """Another release holds the lock for this environment."""
