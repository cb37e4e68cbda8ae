import logging
import os

import pandas as pd

from bluegreen import constants
from bluegreen.config_loader import AppConfig
from bluegreen.models.deployment_attempt import DeploymentAttempt

logger = logging.getLogger(__name__)

class DeploymentTracker:
    """Append-only audit history of release attempts, kept as CSV files."""

    def __init__(self, base_dir=None):
        if base_dir is None:
            base_dir = AppConfig().path(constants.HISTORY_DIR, constants.DEFAULT_HISTORY_DIR)
        self.base_dir = str(base_dir)
        os.makedirs(self.base_dir, exist_ok=True)
        self.attempts_file = os.path.join(self.base_dir, constants.ATTEMPTS_FILE)
        self.transitions_file = os.path.join(self.base_dir, constants.TRANSITIONS_FILE)
        self.errors_file = os.path.join(self.base_dir, constants.ERRORS_FILE)

    def _append(self, rows, path):
        df = pd.DataFrame(rows)
        df.to_csv(path, mode="a", index=False, header=not os.path.exists(path))

    def save_attempt(self, attempt: DeploymentAttempt):
        self._append([attempt.to_dict()], self.attempts_file)

        transitions = [
            {
                "attempt_id": attempt.attempt_id,
                "seq": seq,
                "state": t.state.value,
                "at": t.at.isoformat(),
                "detail": t.detail,
            }
            for seq, t in enumerate(attempt.transitions, start=1)
        ]
        if transitions:
            self._append(transitions, self.transitions_file)

        if attempt.error:
            self._append([{
                "attempt_id": attempt.attempt_id,
                "environment": attempt.environment,
                "outcome": attempt.outcome.value,
                "error_message": attempt.error,
            }], self.errors_file)
        logger.debug(f"Recorded attempt {attempt.attempt_id} ({attempt.outcome.value})")

    def get_all_attempts(self):
        return pd.read_csv(self.attempts_file) if os.path.exists(self.attempts_file) else pd.DataFrame()

    def get_all_transitions(self):
        return pd.read_csv(self.transitions_file) if os.path.exists(self.transitions_file) else pd.DataFrame()

    def get_all_errors(self):
        return pd.read_csv(self.errors_file) if os.path.exists(self.errors_file) else pd.DataFrame()

    def get_attempts_by_environment(self, env_name: str, limit: int = None):
        df = self.get_all_attempts()
        if df.empty:
            return pd.DataFrame()
        result = df[df["environment"] == env_name]
        return result.tail(limit) if limit else result

    def get_attempt_by_id(self, attempt_id: str):
        df = self.get_all_attempts()
        if df.empty:
            return pd.DataFrame()
        return df[df["attempt_id"] == attempt_id]

    def get_transitions_by_id(self, attempt_id: str):
        df = self.get_all_transitions()
        if df.empty:
            return pd.DataFrame()
        return df[df["attempt_id"] == attempt_id].sort_values("seq")

    def get_errors_by_id(self, attempt_id: str):
        df = self.get_all_errors()
        if df.empty:
            return pd.DataFrame()
        return df[df["attempt_id"] == attempt_id]
