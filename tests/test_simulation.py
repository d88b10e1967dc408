"""
Integration tests against the simulated action servers
"""

import pytest

from swarm_formation.errors import EndpointUnavailable
from swarm_formation.sim import SimulatedSwarm
from swarm_formation.swarm.coordinator import FormationCoordinator
from swarm_formation.swarm.frames import FrameTree
from swarm_formation.swarm.state_machine import CoordinatorState
from swarm_formation.swarm.status import AgentStatus, CompositeStatus
from swarm_formation.utils.geometry import mean_position

SIM_DT = 0.05
MAX_STEPS = 400


@pytest.fixture
def sim_setup(config):
    """Coordinator wired to a manually stepped simulated swarm"""
    tree = FrameTree()
    sim = SimulatedSwarm(config, tree)
    coordinator = FormationCoordinator(config, sim.agent_clients(), sim.path_client(), frame_tree=tree)
    sim.connect_pose_feed(coordinator.record_agent_pose)
    return sim, coordinator


def _run_until_done(sim, coordinator, on_tick=None):
    for _ in range(MAX_STEPS):
        sim.step(SIM_DT)
        composite = coordinator.tick()
        if on_tick is not None:
            on_tick()
        if composite != CompositeStatus.RUNNING:
            return composite
    return CompositeStatus.RUNNING


class TestTwoAgentScenario:
    """Two agents following a two-waypoint path"""

    def test_mission_completes(self, sim_setup, sample_goal):
        """Test formation stays centred on the centroid and the goal succeeds"""
        sim, coordinator = sim_setup
        coordinator.submit_goal(sample_goal)

        # Slots symmetric about the first waypoint before any tick
        slots = coordinator.slot_poses()
        mean = mean_position(slots.values())
        assert (mean.x, mean.y, mean.z) == pytest.approx((1.0, 0.0, 1.0))
        assert slots["drone0"].position.y == pytest.approx(-slots["drone1"].position.y)

        agent_history = []

        def check_tick():
            centroid = coordinator.centroid.position
            m = mean_position(coordinator.slot_poses().values())
            assert (m.x, m.y, m.z) == pytest.approx((centroid.x, centroid.y, centroid.z))
            agent_history.append({a: s.status for a, s in coordinator.snapshot_agents().items()})

        composite = _run_until_done(sim, coordinator, check_tick)

        assert composite == CompositeStatus.SUCCEEDED
        assert coordinator.result.swarm_success is True
        assert coordinator.state == CoordinatorState.SUCCEEDED
        assert agent_history
        for statuses in agent_history:
            assert all(s == AgentStatus.RUNNING for s in statuses.values())

    def test_agents_stopped_after_success(self, sim_setup, sample_goal):
        """Test no reference-following action survives the goal"""
        sim, coordinator = sim_setup
        coordinator.submit_goal(sample_goal)
        _run_until_done(sim, coordinator)

        sim.step(SIM_DT)
        for server in sim.agent_servers.values():
            assert server.active_handle is None

    def test_agents_move_toward_slots(self, sim_setup, sample_goal):
        """Test simulated agents converge toward their slots"""
        sim, coordinator = sim_setup
        coordinator.submit_goal(sample_goal)
        start = {a: s.position for a, s in sim.agent_servers.items()}

        for _ in range(10):
            sim.step(SIM_DT)
            coordinator.tick()

        slots = coordinator.slot_poses()
        for agent_id, server in sim.agent_servers.items():
            before = (slots[agent_id].position - start[agent_id]).norm()
            after = (slots[agent_id].position - server.position).norm()
            assert after < before
            assert coordinator.snapshot_agents()[agent_id].pose is not None

    def test_agent_abort_cancels_path(self, sim_setup, sample_goal):
        """Test simulated agent abort fails the goal and cancels the path server"""
        sim, coordinator = sim_setup
        coordinator.submit_goal(sample_goal)
        sim.step(SIM_DT)
        coordinator.tick()

        sim.agent_servers["drone1"].abort()
        assert coordinator.tick() == CompositeStatus.FAILED
        assert sim.path_server.cancels_received == 1

        sim.step(SIM_DT)
        assert sim.path_server.active_handle is None
        assert coordinator.tick() == CompositeStatus.FAILED

    def test_unavailable_server(self, config, sample_goal):
        """Test unavailable simulated agent server aborts initialization"""
        config.control.endpoint_timeout_s = 0.05
        tree = FrameTree()
        sim = SimulatedSwarm(config, tree)
        sim.agent_servers["drone1"].available = False
        coordinator = FormationCoordinator(config, sim.agent_clients(), sim.path_client(), frame_tree=tree)

        with pytest.raises(EndpointUnavailable):
            coordinator.submit_goal(sample_goal)
        assert sim.agent_servers["drone0"].cancels_received == 1
