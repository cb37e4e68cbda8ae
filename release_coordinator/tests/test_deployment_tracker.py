import os
import tempfile
import unittest

from bluegreen import constants
from bluegreen.models.artifact_ref import ArtifactRef
from bluegreen.models.deployment_attempt import DeploymentAttempt, DeploymentOutcome, ReleaseState
from bluegreen.services.deployment_tracker import DeploymentTracker
from tests.constants import *


def make_attempt(environment=ENV, outcome=DeploymentOutcome.SUCCEEDED, error=None):
    attempt = DeploymentAttempt(environment=environment, artifact=ArtifactRef.parse(ARTIFACT_X))
    attempt.record_transition(ReleaseState.IDLE, "release requested")
    attempt.record_transition(ReleaseState.SLOT_SELECTED, "slot A")
    attempt.target_slot = "A"
    attempt.finalize(outcome, error=error)
    return attempt


class TestDeploymentTracker(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.tracker = DeploymentTracker(os.path.join(self.tmp.name, "history"))

    def tearDown(self):
        self.tmp.cleanup()

    def test_empty_history(self):
        self.assertTrue(self.tracker.get_all_attempts().empty)
        self.assertTrue(self.tracker.get_attempts_by_environment(ENV).empty)
        self.assertTrue(self.tracker.get_transitions_by_id("missing").empty)

    def test_save_attempt_writes_rows(self):
        attempt = make_attempt()
        self.tracker.save_attempt(attempt)

        row = self.tracker.get_attempt_by_id(attempt.attempt_id).iloc[0]
        self.assertEqual(row["environment"], ENV)
        self.assertEqual(row["target_slot"], "A")
        self.assertEqual(row["outcome"], "Succeeded")
        transitions = self.tracker.get_transitions_by_id(attempt.attempt_id)
        self.assertEqual(transitions["state"].tolist(), ["Idle", "SlotSelected"])
        self.assertEqual(transitions["seq"].tolist(), [1, 2])
        self.assertFalse(os.path.exists(os.path.join(self.tracker.base_dir, constants.ERRORS_FILE)))

    def test_failed_attempt_writes_error_row(self):
        attempt = make_attempt(outcome=DeploymentOutcome.ROLLED_BACK, error="ProbeTimeout: slot B not healthy")
        self.tracker.save_attempt(attempt)
        errors = self.tracker.get_errors_by_id(attempt.attempt_id)
        self.assertEqual(errors.iloc[0]["error_message"], "ProbeTimeout: slot B not healthy")
        self.assertEqual(errors.iloc[0]["outcome"], "RolledBack")

    def test_history_appends_and_filters(self):
        for _ in range(3):
            self.tracker.save_attempt(make_attempt())
        self.tracker.save_attempt(make_attempt(environment="production"))

        self.assertEqual(len(self.tracker.get_all_attempts()), 4)
        self.assertEqual(len(self.tracker.get_attempts_by_environment(ENV)), 3)
        self.assertEqual(len(self.tracker.get_attempts_by_environment(ENV, limit=2)), 2)
        self.assertEqual(len(self.tracker.get_all_transitions()), 8)


class TestDeploymentAttempt(unittest.TestCase):

    def test_finalize_once(self):
        attempt = make_attempt()
        with self.assertRaises(RuntimeError):
            attempt.finalize(DeploymentOutcome.FAILED)
        with self.assertRaises(RuntimeError):
            attempt.record_transition(ReleaseState.DEPLOYING)

    def test_cannot_finalize_pending(self):
        attempt = DeploymentAttempt(environment=ENV, artifact=ArtifactRef.parse(ARTIFACT_X))
        with self.assertRaises(ValueError):
            attempt.finalize(DeploymentOutcome.PENDING)
        self.assertFalse(attempt.is_final)
        self.assertEqual(attempt.state, ReleaseState.IDLE)

    def test_row_is_flat(self):
        attempt = make_attempt()
        attempt.add_warning("first")
        attempt.add_warning("second")
        row = attempt.to_dict()
        self.assertEqual(row["artifact"], ARTIFACT_X)
        self.assertEqual(row["warnings"], "first | second")
        self.assertGreaterEqual(row["duration_seconds"], 0)


if __name__ == "__main__":
    unittest.main()
