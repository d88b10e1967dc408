"""
Pytest configuration and fixtures
"""

import pytest
import sys
from concurrent.futures import Future
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from swarm_formation.config import Config
from swarm_formation.swarm.actions import ActionClient, GoalHandle


class FakeActionClient(ActionClient):
    """
    Scriptable action client

    available: wait_for_server() answer
    reject: goals resolve to None
    respond: if False, goal futures stay pending until resolve_pending()
    on_send: optional callable run with each goal before it is answered
    """

    def __init__(self, name: str = "fake", available: bool = True,
                 reject: bool = False, respond: bool = True):
        self.name = name
        self.available = available
        self.reject = reject
        self.respond = respond
        self.on_send = None

        self.goals = []
        self.handles = []
        self.feedback_callbacks = []
        self.cancel_count = 0
        self._pending = []

    def wait_for_server(self, timeout: float) -> bool:
        return self.available

    def send_goal_async(self, goal, feedback_callback=None) -> Future:
        if self.on_send is not None:
            self.on_send(goal)
        self.goals.append(goal)
        self.feedback_callbacks.append(feedback_callback)
        future = Future()
        if not self.respond:
            self._pending.append((goal, future))
            return future
        future.set_result(self._answer(goal))
        return future

    def resolve_pending(self):
        """Answer goals held back by respond=False"""
        pending, self._pending = self._pending, []
        for goal, future in pending:
            future.set_result(self._answer(goal))

    @property
    def last_handle(self) -> GoalHandle:
        return self.handles[-1]

    def send_feedback(self, feedback):
        self.feedback_callbacks[-1](feedback)

    def _answer(self, goal):
        if self.reject:
            return None
        handle = GoalHandle(goal, cancel_fn=self._on_cancel)
        self.handles.append(handle)
        return handle

    def _on_cancel(self, handle):
        self.cancel_count += 1


@pytest.fixture
def config():
    """Two-agent config with short endpoint timeout"""
    cfg = Config()
    cfg.swarm.drone_ids = ["drone0", "drone1"]
    cfg.control.endpoint_timeout_s = 0.2
    cfg.simulation.enabled = True
    return cfg


@pytest.fixture
def agent_clients(config):
    """One fake follow-reference client per agent"""
    return {agent_id: FakeActionClient(f"{agent_id}/follow_reference")
            for agent_id in config.swarm.drone_ids}


@pytest.fixture
def path_client():
    """Fake follow-path client"""
    return FakeActionClient("follow_path")


@pytest.fixture
def coordinator(config, agent_clients, path_client):
    """Coordinator wired to fake action clients"""
    from swarm_formation.swarm.coordinator import FormationCoordinator
    return FormationCoordinator(config, agent_clients, path_client)


@pytest.fixture
def sample_goal():
    """Two-waypoint goal in the reference frame"""
    return {
        "frame_id": "earth",
        "path": [
            {"id": "wp1", "pose": [1.0, 0.0, 1.0]},
            {"id": "wp2", "pose": [2.0, 0.0, 1.0]},
        ],
        "yaw_swarm": {"angle": 0.0},
        "max_speed": 1.0,
    }
