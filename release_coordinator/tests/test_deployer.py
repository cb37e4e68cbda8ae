import tempfile
import unittest
from unittest.mock import MagicMock

from docker.errors import APIError, ImageNotFound, NotFound

from bluegreen.exceptions import DeployError
from bluegreen.models.artifact_ref import ArtifactRef
from bluegreen.models.slot import Slot, SlotStatus
from bluegreen.services.deployer import Deployer
from bluegreen.services.workload_runtime import DockerRuntime
from tests.constants import *
from tests.helper import FakeRuntime, make_environment


class TestDeployer(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.env = make_environment(self.tmp.name)
        self.artifact = ArtifactRef.parse(ARTIFACT_Y)
        self.slot_b = Slot(id="B", port=PORT_B)

    def tearDown(self):
        self.tmp.cleanup()

    def test_deploy_marks_slot_starting(self):
        runtime = FakeRuntime()
        slot = Deployer(runtime, self.env).deploy(self.slot_b, self.artifact)
        self.assertEqual(slot.status, SlotStatus.STARTING)
        self.assertEqual(slot.current_artifact, self.artifact)
        self.assertEqual(slot.workload_id, f"id-{WORKLOAD_B}")
        self.assertIn(WORKLOAD_B, runtime.running)

    def test_deploy_replaces_stale_occupant(self):
        runtime = FakeRuntime()
        runtime.running["leftover"] = (ArtifactRef.parse(ARTIFACT_X), PORT_B)
        with self.assertLogs(level="WARNING"):
            Deployer(runtime, self.env).deploy(self.slot_b, self.artifact)
        self.assertNotIn("leftover", runtime.running)
        self.assertLess(runtime.calls.index(("stop", "leftover")), runtime.calls.index(("start", WORKLOAD_B)))

    def test_deploy_leaves_other_slot_running(self):
        runtime = FakeRuntime()
        runtime.running[WORKLOAD_A] = (ArtifactRef.parse(ARTIFACT_X), PORT_A)
        Deployer(runtime, self.env).deploy(self.slot_b, self.artifact)
        self.assertIn(WORKLOAD_A, runtime.running)
        self.assertNotIn(("stop", WORKLOAD_A), runtime.calls)

    def test_deploy_error_propagates(self):
        runtime = FakeRuntime(fail_start=PORT_CONFLICT_MSG)
        with self.assertRaises(DeployError) as cm:
            Deployer(runtime, self.env).deploy(self.slot_b, self.artifact)
        self.assertIn("port is already allocated", str(cm.exception))

    def test_unexpected_runtime_failure_wrapped(self):
        runtime = MagicMock()
        runtime.occupant.side_effect = RuntimeError("socket closed")
        with self.assertRaises(DeployError):
            Deployer(runtime, self.env).deploy(self.slot_b, self.artifact)

    def test_stop_clears_workload(self):
        runtime = FakeRuntime()
        deployer = Deployer(runtime, self.env)
        slot = deployer.deploy(self.slot_b, self.artifact)
        stopped = deployer.stop(slot)
        self.assertEqual(stopped.status, SlotStatus.STOPPED)
        self.assertIsNone(stopped.workload_id)
        self.assertEqual(runtime.running, {})


class TestDockerRuntime(unittest.TestCase):

    def setUp(self):
        self.client = MagicMock()
        self.runtime = DockerRuntime(container_port=CONTAINER_PORT, client=self.client, poll_interval=0.01)
        self.artifact = ArtifactRef.parse(ARTIFACT_Y)

    def container(self, *statuses):
        container = MagicMock()
        container.id = "c0ffee"
        container.short_id = "c0ffee"
        states = list(statuses)

        def reload():
            container.status = states.pop(0) if len(states) > 1 else states[0]

        container.reload.side_effect = reload
        return container

    def test_start_waits_until_running(self):
        self.client.containers.run.return_value = self.container("created", "running")
        workload_id = self.runtime.start(WORKLOAD_B, self.artifact, PORT_B, timeout=5)
        self.assertEqual(workload_id, "c0ffee")
        args, kwargs = self.client.containers.run.call_args
        self.assertEqual(args[0], ARTIFACT_Y)
        self.assertEqual(kwargs["name"], WORKLOAD_B)
        self.assertEqual(kwargs["ports"], {f"{CONTAINER_PORT}/tcp": PORT_B})
        self.assertTrue(kwargs["detach"])

    def test_start_uses_digest_when_pinned(self):
        self.client.containers.run.return_value = self.container("running")
        self.runtime.start(WORKLOAD_B, ArtifactRef.parse(f"{ARTIFACT_Y}@{DIGEST}"), PORT_B, timeout=5)
        args, _ = self.client.containers.run.call_args
        self.assertEqual(args[0], f"registry.local:5000/employee-directory@{DIGEST}")

    def test_port_conflict(self):
        self.client.containers.run.side_effect = APIError("500 Server Error", explanation=PORT_CONFLICT_MSG)
        with self.assertRaises(DeployError) as cm:
            self.runtime.start(WORKLOAD_B, self.artifact, PORT_B, timeout=5)
        self.assertIn(f"Port {PORT_B} is already bound", str(cm.exception))

    def test_image_not_found(self):
        self.client.containers.run.side_effect = ImageNotFound("no such image")
        with self.assertRaises(DeployError):
            self.runtime.start(WORKLOAD_B, self.artifact, PORT_B, timeout=5)

    def test_container_exits_right_away(self):
        self.client.containers.run.return_value = self.container("created", "exited")
        with self.assertRaises(DeployError) as cm:
            self.runtime.start(WORKLOAD_B, self.artifact, PORT_B, timeout=5)
        self.assertIn("exited", str(cm.exception))

    def test_container_never_runs(self):
        self.client.containers.run.return_value = self.container("created")
        with self.assertRaises(DeployError) as cm:
            self.runtime.start(WORKLOAD_B, self.artifact, PORT_B, timeout=0.05)
        self.assertIn("not running", str(cm.exception))

    def test_stop_missing_container_is_noop(self):
        self.client.containers.get.side_effect = NotFound("gone")
        self.runtime.stop(WORKLOAD_B, timeout=1)

    def test_stop_and_remove(self):
        container = MagicMock()
        self.client.containers.get.return_value = container
        self.runtime.stop(WORKLOAD_B, timeout=10)
        container.stop.assert_called_once_with(timeout=10)
        container.remove.assert_called_once()

    def test_stop_failure(self):
        container = MagicMock()
        container.stop.side_effect = APIError("500 Server Error")
        self.client.containers.get.return_value = container
        with self.assertRaises(DeployError):
            self.runtime.stop(WORKLOAD_B, timeout=1)

    def test_occupant(self):
        holder = MagicMock()
        holder.name = WORKLOAD_A
        self.client.containers.list.side_effect = [[holder], []]
        self.assertEqual(self.runtime.occupant(PORT_A), WORKLOAD_A)
        self.assertIsNone(self.runtime.occupant(PORT_B))
        self.client.containers.list.assert_called_with(filters={"publish": str(PORT_B)})


if __name__ == "__main__":
    unittest.main()
