import json
import os
from unittest.mock import MagicMock

import requests

from bluegreen.exceptions import DeployError
from bluegreen.models.environment import Environment
from bluegreen.services.workload_runtime import WorkloadRuntime
from tests.constants import *


def read_test_data(data_type=None):
    if data_type:
        with open(os.path.join(os.path.dirname(__file__)+TEST_DATA_PATH, data_type+".json")) as f:
            data_list = f.read()
    else:
        data_list = "{}"
    return json.loads(data_list)


def make_environment(base_dir, **overrides):
    """Staging environment whose proxy configs and active link live under base_dir."""
    nginx_dir = os.path.join(base_dir, "nginx")
    os.makedirs(nginx_dir, exist_ok=True)
    slot_configs = {}
    for slot_id, port in (("A", PORT_A), ("B", PORT_B)):
        path = os.path.join(nginx_dir, f"upstream-{slot_id.lower()}.conf")
        with open(path, "w") as f:
            f.write(f"upstream app {{ server 127.0.0.1:{port}; }}\n")
        slot_configs[slot_id] = path

    config = {
        "name": ENV,
        "enabled": True,
        "app_name": APP_NAME,
        "container_port": CONTAINER_PORT,
        "slots": {"A": PORT_A, "B": PORT_B},
        "health": {"path": "/", "timeout": 2, "interval": 0.01, "max_bad_responses": 2},
        "router": {
            "active_link": os.path.join(base_dir, "conf.d", "active.conf"),
            "slot_configs": slot_configs,
            "verify_command": ["true"],
            "reload_command": ["true"],
            "timeout": 5,
        },
        "deploy_timeout": 5,
        "drain_seconds": 0,
    }
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(config.get(key), dict):
            config[key] = {**config[key], **value}
        else:
            config[key] = value
    return Environment(**config)


class FakeRuntime(WorkloadRuntime):
    """In-memory runtime: one workload per port, like the real one."""

    def __init__(self, fail_start=None, fail_stop=()):
        self.running = {}
        self.calls = []
        self.fail_start = fail_start
        self.fail_stop = set(fail_stop)

    def start(self, name, artifact, port, timeout):
        self.calls.append(("start", name))
        if self.fail_start:
            raise DeployError(self.fail_start)
        if self.occupant(port):
            raise DeployError(f"port {port} is already allocated")
        self.running[name] = (artifact, port)
        return f"id-{name}"

    def stop(self, name, timeout):
        self.calls.append(("stop", name))
        if name in self.fail_stop and name in self.running:
            raise DeployError(f"cannot stop {name}")
        self.running.pop(name, None)

    def occupant(self, port):
        for name, (_, bound_port) in self.running.items():
            if bound_port == port:
                return name
        return None


def mock_response(status_code=200, body=None, json_error=False):
    fake_resp = MagicMock()
    fake_resp.status_code = status_code
    if json_error:
        fake_resp.json.side_effect = ValueError("No JSON object could be decoded")
    else:
        fake_resp.json.return_value = body if body is not None else {}
    fake_resp.text = str(body)
    return fake_resp


def mock_session(*responses):
    """Session whose get() yields the given responses/exceptions in turn, repeating the last one."""
    session = MagicMock()
    sequence = list(responses)

    def get(*args, **kwargs):
        item = sequence.pop(0) if len(sequence) > 1 else sequence[0]
        if isinstance(item, Exception):
            raise item
        return item

    session.get.side_effect = get
    return session


def connection_refused():
    return requests.exceptions.ConnectionError("[Errno 111] Connection refused")


def read_bytes(path):
    with open(path, "rb") as f:
        return f.read()
