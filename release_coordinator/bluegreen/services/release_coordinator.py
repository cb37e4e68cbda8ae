import logging
from datetime import datetime, timezone

from bluegreen.exceptions import (DeployError, DeploymentCancelled, ProbeTimeout, RouterError,
                                  StateCorrupt, UnhealthyError)
from bluegreen.models.artifact_ref import ArtifactRef
from bluegreen.models.deployment_attempt import DeploymentAttempt, DeploymentOutcome, ReleaseState
from bluegreen.models.environment import Environment
from bluegreen.models.routing_state import RoutingState
from bluegreen.models.slot import Slot, SlotStatus
from bluegreen.services.deployer import Deployer
from bluegreen.services.deployment_tracker import DeploymentTracker
from bluegreen.services.health_prober import HealthProber, ProbeReason, ProbeResult
from bluegreen.services.slot_registry import SlotRegistry
from bluegreen.services.traffic_router import TrafficRouter

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    ReleaseState.IDLE: {ReleaseState.SLOT_SELECTED},
    ReleaseState.SLOT_SELECTED: {ReleaseState.DEPLOYING},
    ReleaseState.DEPLOYING: {ReleaseState.PROBING, ReleaseState.ROLLING_BACK},
    ReleaseState.PROBING: {ReleaseState.CUTTING_OVER, ReleaseState.ROLLING_BACK},
    ReleaseState.CUTTING_OVER: {ReleaseState.DECOMMISSIONING, ReleaseState.ROLLING_BACK},
    ReleaseState.DECOMMISSIONING: {ReleaseState.DONE},
    ReleaseState.ROLLING_BACK: {ReleaseState.IDLE},
    ReleaseState.DONE: set(),
}

# Failures that leave traffic untouched and are undone by stopping the new slot
ROLLBACK_ERRORS = (DeployError, UnhealthyError, ProbeTimeout, DeploymentCancelled, RouterError)


class ReleaseCoordinator:
    """Promotes an artifact into the inactive slot of one environment and cuts traffic over to it.

    Idle -> SlotSelected -> Deploying -> Probing -> CuttingOver -> Decommissioning -> Done,
    with RollingBack -> Idle reachable from Deploying, Probing and CuttingOver. A rollback stops the
    new slot's workload unless the proxy could not be moved off it, and never touches the serving slot.
    """

    def __init__(self, env: Environment, registry: SlotRegistry, deployer: Deployer,
                 prober: HealthProber, router: TrafficRouter, tracker: DeploymentTracker = None):
        self.env = env
        self.registry = registry
        self.deployer = deployer
        self.prober = prober
        self.router = router
        self.tracker = tracker
        self.cancel_event = prober.cancel_event
        # Cleared here and after each run only, so a cancel() that lands before the lock is taken still counts
        self.cancel_event.clear()
        self.state = ReleaseState.IDLE

    # =========================
    # State machine plumbing
    # =========================
    def _transition(self, attempt: DeploymentAttempt, new_state: ReleaseState, detail: str = None):
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal transition {self.state.value} -> {new_state.value}")
        logger.info(f"[{self.env.name}] {self.state.value} -> {new_state.value}" + (f": {detail}" if detail else ""))
        self.state = new_state
        attempt.record_transition(new_state, detail)

    def _check_cancelled(self):
        if self.cancel_event.is_set():
            raise DeploymentCancelled(f"Release for '{self.env.name}' was cancelled")

    def cancel(self):
        """Abort an in-flight release; a running probe returns at once and the attempt rolls back."""
        logger.warning(f"Cancellation requested for release in '{self.env.name}' (state={self.state.value})")
        self.cancel_event.set()

    def _save(self, attempt: DeploymentAttempt):
        if self.tracker is None:
            return
        try:
            self.tracker.save_attempt(attempt)
        except OSError as e:
            logger.error(f"Could not write history for attempt {attempt.attempt_id}: {e}")
            attempt.add_warning(f"History not recorded: {e}")

    # =========================
    # Entry point
    # =========================
    def release(self, artifact: ArtifactRef, gate_status: int = 0) -> DeploymentAttempt:
        """Run one release. Returns the finalized attempt; raises only ConcurrentDeployment,
        StateCorrupt and unexpected errors."""
        if gate_status != 0:
            attempt = DeploymentAttempt(environment=self.env.name, artifact=artifact)
            attempt.record_transition(ReleaseState.IDLE, f"verification gate returned {gate_status}")
            attempt.finalize(DeploymentOutcome.FAILED,
                             error=f"Verification stages did not pass (exit status {gate_status}), release not started")
            logger.error(attempt.error)
            self._save(attempt)
            return attempt

        with self.registry.lock(self.env):
            self.state = ReleaseState.IDLE
            attempt = DeploymentAttempt(environment=self.env.name, artifact=artifact)
            attempt.record_transition(ReleaseState.IDLE, f"release of {artifact} requested")
            try:
                self._run(attempt, artifact)
            finally:
                self._save(attempt)
                self.print_attempt_summary(attempt)
                self.cancel_event.clear()
            return attempt

    def _run(self, attempt: DeploymentAttempt, artifact: ArtifactRef):
        try:
            routing = self.registry.load_routing(self.env)
            self._check_router_agrees(routing)
            target = self.registry.get_inactive_slot(self.env)
        except StateCorrupt as e:
            logger.error(f"[{self.env.name}] {e}")
            attempt.finalize(DeploymentOutcome.FAILED, error=f"StateCorrupt: {e}")
            raise

        attempt.previous_slot = routing.active_slot_id
        attempt.target_slot = target.id
        self._transition(attempt, ReleaseState.SLOT_SELECTED,
                         f"slot {target.id} on port {target.port}, active slot: {routing.active_slot_id or 'none'}")

        new_slot = target
        try:
            self._transition(attempt, ReleaseState.DEPLOYING, f"{artifact} -> slot {target.id}")
            self._check_cancelled()
            new_slot = self.deployer.deploy(target, artifact)
            self.registry.save_slot(self.env, new_slot)

            self._transition(attempt, ReleaseState.PROBING, self.prober.url_for(new_slot))
            result = self.prober.probe(new_slot, self.env.health.timeout, self.env.health.interval)
            if not result.healthy:
                new_slot = new_slot.with_status(SlotStatus.UNHEALTHY)
                self.registry.save_slot(self.env, new_slot)
                raise self._probe_error(new_slot, result)
            new_slot = new_slot.with_status(SlotStatus.HEALTHY)
            self.registry.save_slot(self.env, new_slot)

            self._check_cancelled()
            self._transition(attempt, ReleaseState.CUTTING_OVER,
                             f"{routing.active_slot_id or 'none'} -> {new_slot.id}")
            self._cut_over(new_slot, routing)
        except ROLLBACK_ERRORS as e:
            self._roll_back(attempt, new_slot, e)
            attempt.finalize(DeploymentOutcome.ROLLED_BACK, error=f"{type(e).__name__}: {e}")
            return
        except Exception as e:
            logger.exception(f"[{self.env.name}] Unexpected failure in state {self.state.value}")
            if self.state in (ReleaseState.DEPLOYING, ReleaseState.PROBING, ReleaseState.CUTTING_OVER):
                self._roll_back(attempt, new_slot, e)
            attempt.finalize(DeploymentOutcome.FAILED, error=f"{type(e).__name__}: {e}")
            raise

        self._decommission(attempt, routing.active_slot_id)
        self._transition(attempt, ReleaseState.DONE, f"slot {new_slot.id} serving {artifact}")
        attempt.finalize(DeploymentOutcome.SUCCEEDED)

    # =========================
    # Steps
    # =========================
    def _check_router_agrees(self, routing: RoutingState):
        try:
            routed = self.router.current_slot()
        except RouterError as e:
            raise StateCorrupt(f"Cannot tell which slot the router serves: {e}") from e
        if routed != routing.active_slot_id:
            raise StateCorrupt(f"Router serves slot {routed} but routing state says {routing.active_slot_id}")

    def _probe_error(self, slot: Slot, result: ProbeResult):
        message = f"Slot {slot.id} not healthy after {result.attempts} polls in {result.elapsed}s: {result.detail}"
        if result.reason == ProbeReason.CANCELLED:
            return DeploymentCancelled(message)
        if result.reason == ProbeReason.BAD_RESPONSES:
            return UnhealthyError(message)
        return ProbeTimeout(message)

    def _cut_over(self, new_slot: Slot, routing: RoutingState):
        previous_target = self.router.current_target()
        self.router.switch_to(new_slot.id)
        try:
            self.registry.commit_active(self.env, new_slot.id)
        except (StateCorrupt, OSError) as e:
            logger.error(f"Committing slot {new_slot.id} failed after the router switched, switching back: {e}")
            try:
                self.router.restore(previous_target)
            except RouterError as restore_error:
                raise RouterError(f"Routing state could not be committed: {e}; switching back failed: {restore_error}",
                                  restored=False) from e
            raise RouterError(f"Routing state could not be committed, traffic switched back: {e}") from e

    def _decommission(self, attempt: DeploymentAttempt, old_slot_id):
        self._transition(attempt, ReleaseState.DECOMMISSIONING,
                         f"old slot {old_slot_id}" if old_slot_id else "no previous slot to stop")
        if old_slot_id is None:
            return

        try:
            old_slot = self.registry.get_slot(self.env, old_slot_id).with_status(SlotStatus.DRAINING)
            self.registry.save_slot(self.env, old_slot)
            if self.env.drain_seconds:
                logger.info(f"Draining slot {old_slot_id} for {self.env.drain_seconds}s")
                self.cancel_event.wait(self.env.drain_seconds)
            old_slot = self.deployer.stop(old_slot)
            self.registry.save_slot(self.env, old_slot)
        except (DeployError, StateCorrupt, OSError) as e:
            # Traffic already moved; a leftover old workload is a cleanup task, not a failed release
            message = f"Old slot {old_slot_id} was not stopped, manual cleanup required: {e}"
            logger.warning(message)
            attempt.add_warning(message)

    def _roll_back(self, attempt: DeploymentAttempt, new_slot: Slot, error: Exception):
        self._transition(attempt, ReleaseState.ROLLING_BACK, f"{type(error).__name__}: {error}")
        if isinstance(error, RouterError) and not error.restored:
            # The proxy may still route to the new slot, so it stays up
            message = (f"Proxy may still serve slot {new_slot.id}, manual check required; "
                       f"its workload was left running")
            logger.error(message)
            attempt.add_warning(message)
            self._transition(attempt, ReleaseState.IDLE, "routing state unchanged, proxy not restored")
            return
        try:
            stopped = self.deployer.stop(new_slot)
            self.registry.save_slot(self.env, stopped)
        except (DeployError, StateCorrupt, OSError) as e:
            message = f"Rollback could not clean up slot {new_slot.id}, manual cleanup required: {e}"
            logger.error(message)
            attempt.add_warning(message)
        self._transition(attempt, ReleaseState.IDLE, "routing state unchanged")

    # =========================
    # Reporting
    # =========================
    def print_attempt_summary(self, attempt: DeploymentAttempt):
        logger.info("-" * 60)
        logger.info("Release Summary:")
        logger.info(f"Environment: {attempt.environment}, Artifact: {attempt.artifact}, Attempt: {attempt.attempt_id}")
        logger.info(f"Slot: {attempt.previous_slot or 'none'} -> {attempt.target_slot or 'none'}, "
                    f"Outcome: {attempt.outcome.value}")
        logger.info("-" * 60)
        logger.info(f"{'Sr.No':<6} | {'State':<16} | {'At':<8} | Detail")
        for idx, t in enumerate(attempt.transitions, start=1):
            logger.info(f"{idx:<6} | {t.state.value:<16} | {t.at.strftime('%H:%M:%S'):<8} | {t.detail or ''}")
        logger.info("-" * 60)
        if attempt.error:
            logger.info(f"Error: {attempt.error}")
        for warning in attempt.warnings:
            logger.warning(f"Degraded: {warning}")
        logger.info(f"Total release duration: {round(attempt.duration_seconds(), 2)} seconds")
        logger.info(f"Completed at: {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')}")
