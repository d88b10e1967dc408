"""
Tests for the formation coordinator

Goal validation, initialization failures, tracking and aggregation,
pause/resume and cancellation, driven through fake action clients.
"""

import math
import pytest

from swarm_formation.errors import (
    EndpointUnavailable,
    GenerationFailure,
    GoalRejected,
    RemoteAborted,
    RemoteRejected,
    ValidationError,
)
from swarm_formation.mission import MissionGoal, Waypoint
from swarm_formation.swarm.actions import (
    FollowPathFeedback,
    FollowPathGoal,
    FollowPathResult,
    GoalStatus,
)
from swarm_formation.swarm.coordinator import FormationCoordinator
from swarm_formation.swarm.state_machine import CoordinatorState
from swarm_formation.swarm.status import AgentStatus, CompositeStatus, PathStatus
from swarm_formation.utils.geometry import Point, Pose, mean_position
from swarm_formation.utils.logger import MissionDataLogger

from conftest import FakeActionClient


def _start(coordinator, goal):
    """Submit goal and run the first tick"""
    coordinator.submit_goal(goal)
    coordinator.tick()


class TestConstruction:
    """Test startup frames"""

    def test_static_frames_around_initial_centroid(self, coordinator):
        """Test agent slots are centred on the configured initial centroid"""
        slots = coordinator.slot_poses()
        assert set(slots) == {"drone0", "drone1"}

        mean = mean_position(slots.values())
        assert mean.x == pytest.approx(6.0)
        assert mean.y == pytest.approx(0.0)
        assert mean.z == pytest.approx(1.5)
        assert coordinator.state == CoordinatorState.IDLE

    def test_missing_client(self, config, path_client):
        """Test every agent needs an action client"""
        with pytest.raises(ValueError):
            FormationCoordinator(config, {"drone0": FakeActionClient()}, path_client)


class TestGoalValidation:
    """Test goal rejection before any side effect"""

    def test_empty_path_starts_nothing(self, coordinator, agent_clients, path_client, sample_goal):
        """Test empty path is rejected without invoking any action"""
        sample_goal["path"] = []
        with pytest.raises(ValidationError):
            coordinator.submit_goal(sample_goal)

        assert all(c.goals == [] for c in agent_clients.values())
        assert path_client.goals == []
        assert coordinator.state == CoordinatorState.FAILED
        assert coordinator.result.swarm_success is False
        assert "Path is empty" in coordinator.result.reason

    def test_duplicate_ids(self, coordinator, sample_goal):
        """Test duplicate waypoint ids are rejected"""
        sample_goal["path"][1]["id"] = "wp1"
        with pytest.raises(ValidationError):
            coordinator.submit_goal(sample_goal)

    def test_negative_speed(self, coordinator, sample_goal):
        """Test negative max speed is rejected"""
        sample_goal["max_speed"] = -1.0
        with pytest.raises(ValidationError):
            coordinator.submit_goal(sample_goal)

    def test_goal_object_validated(self, coordinator, agent_clients):
        """Test MissionGoal instances are validated too"""
        with pytest.raises(ValidationError):
            coordinator.submit_goal(MissionGoal("earth", []))
        assert all(c.goals == [] for c in agent_clients.values())

    def test_unknown_frame_rejected(self, coordinator, agent_clients, sample_goal):
        """Test non-convertible frame is a validation error"""
        sample_goal["frame_id"] = "map"
        with pytest.raises(ValidationError) as exc_info:
            coordinator.submit_goal(sample_goal)

        assert "map" in str(exc_info.value)
        assert all(c.goals == [] for c in agent_clients.values())

    def test_non_object_goal_rejected(self, coordinator, agent_clients, sample_goal):
        """Test a goal that is not an object is rejected and does not block the next one"""
        with pytest.raises(ValidationError):
            coordinator.submit_goal([1, 2])
        assert coordinator.state == CoordinatorState.FAILED
        assert coordinator.result.swarm_success is False
        assert all(c.goals == [] for c in agent_clients.values())

        coordinator.submit_goal(sample_goal)
        assert coordinator.state == CoordinatorState.TRACKING

    def test_broken_goal_object_rejected(self, coordinator, sample_goal):
        """Test unexpected errors while checking a goal are recorded as a rejection"""
        with pytest.raises(ValidationError) as exc_info:
            coordinator.submit_goal(MissionGoal("earth", [None]))
        assert "malformed goal" in str(exc_info.value)
        assert coordinator.state == CoordinatorState.FAILED
        assert "malformed goal" in coordinator.result.reason

        coordinator.submit_goal(sample_goal)
        assert coordinator.is_active

    def test_other_types_rejected(self, coordinator):
        with pytest.raises(ValidationError) as exc_info:
            coordinator.submit_goal("goal")
        assert "Goal must be an object" in str(exc_info.value)
        assert not coordinator.is_active

    def test_nan_waypoint_rejected(self, coordinator, agent_clients, path_client, sample_goal):
        """Test NaN coordinates never reach the formation frame"""
        sample_goal["path"][1]["pose"] = [float("nan"), 0, 1]
        with pytest.raises(ValidationError):
            coordinator.submit_goal(sample_goal)

        assert all(c.goals == [] for c in agent_clients.values())
        assert path_client.goals == []
        centroid = coordinator.centroid.position
        assert (centroid.x, centroid.y, centroid.z) == (6.0, 0.0, 1.5)

    def test_huge_yaw_in_other_frame(self, coordinator, path_client, sample_goal):
        """Test a very large yaw converted between frames is wrapped without hanging"""
        sample_goal["frame_id"] = "Swarm"
        sample_goal["yaw_swarm"] = {"angle": 1e300}
        goal = coordinator.submit_goal(sample_goal)
        assert -math.pi <= goal.yaw_angle <= math.pi

    def test_infinite_yaw_in_other_frame(self, coordinator, sample_goal):
        sample_goal["frame_id"] = "Swarm"
        sample_goal["yaw_swarm"] = {"angle": float("inf")}
        with pytest.raises(ValidationError):
            coordinator.submit_goal(sample_goal)
        assert coordinator.state == CoordinatorState.FAILED

    def test_frame_conversion(self, coordinator, path_client, sample_goal):
        """Test path in the formation frame is converted to the reference frame"""
        sample_goal["frame_id"] = "Swarm"
        goal = coordinator.submit_goal(sample_goal)

        # Formation frame sits at (6, 0, 1.5) before the goal
        assert goal.frame_id == "earth"
        assert goal.path[0].pose.position.x == pytest.approx(7.0)
        assert goal.path[0].pose.position.z == pytest.approx(2.5)
        assert path_client.goals[0].frame_id == "earth"

    def test_generation_failure_starts_no_agent(self, config, agent_clients, path_client, sample_goal):
        """Test trajectory failure rejects before any agent is started"""
        class BrokenGenerator:
            def generate(self, points, max_speed):
                raise GenerationFailure("solver diverged")

        from swarm_formation.trajectory import TrajectorySampler
        coordinator = FormationCoordinator(
            config, agent_clients, path_client,
            sampler=TrajectorySampler(generator=BrokenGenerator()),
        )
        with pytest.raises(GenerationFailure):
            coordinator.submit_goal(sample_goal)

        assert all(c.goals == [] for c in agent_clients.values())
        assert coordinator.state == CoordinatorState.FAILED


class TestInitialization:
    """Test agent and path action start-up"""

    def test_accepted_goal(self, coordinator, agent_clients, path_client, sample_goal):
        """Test accepted goal starts every agent and the path action"""
        goal = coordinator.submit_goal(sample_goal)

        assert coordinator.state == CoordinatorState.TRACKING
        assert goal.waypoint_ids == ["wp1", "wp2"]
        for agent_id, client in agent_clients.items():
            assert client.goals[0].frame_id == f"Swarm/{agent_id}_ref"

        path_goal = path_client.goals[0]
        assert isinstance(path_goal, FollowPathGoal)
        assert path_goal.max_speed == 1.0
        assert [wp.id for wp in path_goal.path] == ["wp1", "wp2"]

    def test_zero_speed_uses_default(self, config, coordinator, path_client, sample_goal):
        """Test max_speed 0 falls back to the configured cruise speed"""
        sample_goal["max_speed"] = 0.0
        coordinator.submit_goal(sample_goal)
        assert path_client.goals[0].max_speed == config.trajectory.default_speed_ms

    def test_agent_unavailable_stops_started_agents(self, coordinator, agent_clients, path_client, sample_goal):
        """Test endpoint failure aborts and stops already-started agents"""
        agent_clients["drone1"].available = False
        with pytest.raises(EndpointUnavailable):
            coordinator.submit_goal(sample_goal)

        assert agent_clients["drone0"].last_handle.cancel_requested
        assert path_client.goals == []
        assert coordinator.state == CoordinatorState.FAILED
        assert coordinator.result.swarm_success is False

    def test_agent_rejected(self, coordinator, agent_clients, sample_goal):
        """Test agent rejection aborts the goal"""
        agent_clients["drone1"].reject = True
        with pytest.raises(RemoteRejected):
            coordinator.submit_goal(sample_goal)

        assert agent_clients["drone0"].last_handle.cancel_requested
        snapshots = coordinator.snapshot_agents()
        assert snapshots["drone1"].status == AgentStatus.REJECTED

    def test_path_server_unavailable(self, coordinator, agent_clients, path_client, sample_goal):
        """Test path endpoint failure stops every agent"""
        path_client.available = False
        with pytest.raises(EndpointUnavailable):
            coordinator.submit_goal(sample_goal)

        for client in agent_clients.values():
            assert client.last_handle.cancel_requested
        assert not coordinator.sampler.has_trajectory

    def test_parallel_agent_init(self, config, agent_clients, path_client, sample_goal):
        """Test agents started from a thread pool"""
        config.control.parallel_agent_init = True
        coordinator = FormationCoordinator(config, agent_clients, path_client)
        coordinator.submit_goal(sample_goal)

        assert coordinator.state == CoordinatorState.TRACKING
        assert all(len(c.goals) == 1 for c in agent_clients.values())

    def test_parallel_init_failure(self, config, agent_clients, path_client, sample_goal):
        """Test a pool failure still stops the agents that started"""
        config.control.parallel_agent_init = True
        agent_clients["drone0"].reject = True
        coordinator = FormationCoordinator(config, agent_clients, path_client)

        with pytest.raises(RemoteRejected):
            coordinator.submit_goal(sample_goal)
        assert agent_clients["drone1"].last_handle.cancel_requested

    def test_goal_while_active(self, coordinator, sample_goal):
        """Test second goal is refused while one is tracking"""
        coordinator.submit_goal(sample_goal)
        with pytest.raises(GoalRejected):
            coordinator.submit_goal(sample_goal)
        assert coordinator.state == CoordinatorState.TRACKING


class TestTracking:
    """Test per-tick aggregation"""

    def test_path_response_applied_on_tick(self, coordinator, sample_goal):
        """Test path goal response is queued until the tick"""
        coordinator.submit_goal(sample_goal)
        assert coordinator.get_status()['path_status'] == PathStatus.PENDING.name

        assert coordinator.tick() == CompositeStatus.RUNNING
        assert coordinator.get_status()['path_status'] == PathStatus.RUNNING.name

    def test_centroid_follows_trajectory(self, coordinator, sample_goal):
        """Test formation frame moves with the sampled centroid"""
        _start(coordinator, sample_goal)

        centroid = coordinator.centroid
        assert 1.0 <= centroid.position.x <= 2.0
        mean = mean_position(coordinator.slot_poses().values())
        assert mean.x == pytest.approx(centroid.position.x)
        assert mean.y == pytest.approx(centroid.position.y)
        assert mean.z == pytest.approx(centroid.position.z)

    def test_setpoints_observer(self, coordinator, sample_goal):
        """Test every tick emits the lookahead buffer"""
        commands = []
        coordinator.on_setpoints(commands.append)
        _start(coordinator, sample_goal)

        assert len(commands) == 1
        assert len(commands[0].setpoints) == coordinator.sampler.lookahead_points

    def test_feedback(self, coordinator, path_client, sample_goal):
        """Test feedback is emitted once path feedback arrived"""
        feedback = []
        coordinator.on_feedback(feedback.append)
        _start(coordinator, sample_goal)
        assert feedback == []

        path_client.send_feedback(FollowPathFeedback(0.75, "wp2", 1))
        coordinator.tick()

        assert feedback[-1].actual_distance_to_next_waypoint == 0.75
        assert coordinator.get_status()['feedback'] == {"actual_distance_to_next_waypoint": 0.75}

    def test_success(self, coordinator, agent_clients, path_client, sample_goal):
        """Test path success with running agents completes the goal"""
        results = []
        coordinator.on_result(results.append)
        _start(coordinator, sample_goal)

        path_client.last_handle.set_result(GoalStatus.SUCCEEDED, FollowPathResult(True))
        assert coordinator.tick() == CompositeStatus.SUCCEEDED

        assert coordinator.state == CoordinatorState.SUCCEEDED
        assert results[-1].swarm_success is True
        # Per-goal agent actions are not left running
        for client in agent_clients.values():
            assert client.last_handle.cancel_requested

    def test_agent_abort_is_sticky(self, coordinator, agent_clients, path_client, sample_goal):
        """Test agent abort fails the goal and cancels the path action within the tick"""
        results = []
        coordinator.on_result(results.append)
        _start(coordinator, sample_goal)

        agent_clients["drone1"].last_handle.set_result(GoalStatus.ABORTED)
        assert coordinator.tick() == CompositeStatus.FAILED

        assert path_client.last_handle.cancel_requested
        assert agent_clients["drone0"].last_handle.cancel_requested
        assert "drone1 aborted" in results[-1].reason

        # A later path success does not overwrite the failure
        path_client.last_handle.set_result(GoalStatus.SUCCEEDED)
        assert coordinator.tick() == CompositeStatus.FAILED
        assert coordinator.state == CoordinatorState.FAILED
        assert len(results) == 1

    def test_path_abort(self, coordinator, agent_clients, path_client, sample_goal):
        """Test path abort fails the goal and stops the agents"""
        _start(coordinator, sample_goal)

        path_client.last_handle.set_result(GoalStatus.ABORTED)
        assert coordinator.tick() == CompositeStatus.FAILED
        assert "follow path aborted" in coordinator.result.reason
        for client in agent_clients.values():
            assert client.last_handle.cancel_requested

    def test_path_goal_rejected(self, coordinator, agent_clients, path_client, sample_goal):
        """Test asynchronous path rejection fails the goal on the next tick"""
        path_client.reject = True
        coordinator.submit_goal(sample_goal)

        assert coordinator.tick() == CompositeStatus.FAILED
        for client in agent_clients.values():
            assert client.last_handle.cancel_requested

    def test_suppressed_after_failure(self, coordinator, agent_clients, path_client, sample_goal):
        """Test agents refuse new invocations once the goal failed"""
        _start(coordinator, sample_goal)
        path_client.last_handle.set_result(GoalStatus.ABORTED)
        coordinator.tick()

        agent = coordinator.agents["drone0"]
        with pytest.raises(RemoteAborted):
            agent.initialize("Swarm/drone0_ref")
        assert len(agent_clients["drone0"].goals) == 1

    def test_new_goal_after_failure(self, coordinator, agent_clients, path_client, sample_goal):
        """Test a new goal is accepted after a failed one"""
        _start(coordinator, sample_goal)
        path_client.last_handle.set_result(GoalStatus.ABORTED)
        coordinator.tick()

        coordinator.submit_goal(sample_goal)
        assert coordinator.state == CoordinatorState.TRACKING
        assert coordinator.composite_status == CompositeStatus.RUNNING
        assert len(agent_clients["drone0"].goals) == 2

    def test_observer_errors_contained(self, coordinator, sample_goal):
        """Test failing observers do not break the tick"""
        def broken(value):
            raise RuntimeError("observer bug")

        coordinator.on_setpoints(broken)
        _start(coordinator, sample_goal)
        assert coordinator.state == CoordinatorState.TRACKING


class TestControl:
    """Test pause, resume and cancel"""

    def test_pause_gates_polling(self, coordinator, path_client, sample_goal):
        """Test events queue while paused and apply after resume"""
        _start(coordinator, sample_goal)
        assert coordinator.pause()
        assert not coordinator.pause()

        path_client.last_handle.set_result(GoalStatus.SUCCEEDED)
        assert coordinator.tick() == CompositeStatus.RUNNING
        assert coordinator.state == CoordinatorState.TRACKING
        # Remote action untouched
        assert not path_client.last_handle.cancel_requested

        assert coordinator.resume()
        assert coordinator.tick() == CompositeStatus.SUCCEEDED

    def test_pause_requires_tracking(self, coordinator):
        assert not coordinator.pause()
        assert not coordinator.resume()

    def test_cancel(self, coordinator, agent_clients, path_client, sample_goal):
        """Test cancel sends cancels without waiting and fails the goal"""
        _start(coordinator, sample_goal)

        assert coordinator.cancel("operator stop")
        assert path_client.last_handle.cancel_requested
        for client in agent_clients.values():
            assert client.last_handle.cancel_requested

        assert coordinator.state == CoordinatorState.FAILED
        assert coordinator.result.to_dict() == {"swarm_success": False, "reason": "operator stop"}
        assert not coordinator.cancel()

    def test_cancel_before_path_response(self, coordinator, path_client, sample_goal):
        """Test a path goal answered after cancel is canceled on arrival"""
        path_client.respond = False
        coordinator.submit_goal(sample_goal)
        coordinator.cancel()

        path_client.resolve_pending()
        coordinator.tick()
        assert path_client.last_handle.cancel_requested

    def test_cancel_during_agent_init(self, coordinator, agent_clients, path_client, sample_goal):
        """Test cancel while starting agents skips the remaining agents and the path action"""
        agent_clients["drone0"].on_send = lambda goal: coordinator.cancel("operator abort")

        coordinator.submit_goal(sample_goal)

        assert agent_clients["drone1"].goals == []
        assert path_client.goals == []
        assert agent_clients["drone0"].last_handle.cancel_requested
        assert coordinator.state == CoordinatorState.FAILED
        assert coordinator.result.swarm_success is False
        assert coordinator.result.reason == "operator abort"

    def test_cancel_while_sending_path(self, coordinator, agent_clients, path_client, sample_goal):
        """Test cancel after the agents started fails the goal and cancels the late path goal"""
        path_client.on_send = lambda goal: coordinator.cancel("operator abort")

        coordinator.submit_goal(sample_goal)
        assert coordinator.state == CoordinatorState.FAILED
        assert all(c.last_handle.cancel_requested for c in agent_clients.values())

        coordinator.tick()
        assert path_client.last_handle.cancel_requested

    def test_deactivate(self, coordinator, sample_goal):
        """Test deactivate cancels and returns to IDLE"""
        _start(coordinator, sample_goal)
        coordinator.deactivate()
        assert coordinator.state == CoordinatorState.IDLE
        assert coordinator.result.swarm_success is False


class TestStatus:
    """Test status reporting"""

    def test_get_status(self, coordinator, sample_goal):
        _start(coordinator, sample_goal)
        status = coordinator.get_status()

        assert status['state'] == 'TRACKING'
        assert status['composite'] == 'RUNNING'
        assert status['paused'] is False
        assert status['tick_count'] == 1
        assert status['agents']['drone0']['status'] == 'RUNNING'
        assert status['agents']['drone0']['frame_id'] == 'Swarm/drone0_ref'
        assert status['goal']['path'][0]['id'] == 'wp1'
        assert status['result'] is None

    def test_record_agent_pose(self, coordinator):
        """Test pose feed reaches the agent snapshot"""
        assert coordinator.record_agent_pose("drone0", Pose.from_xyz(1.0, 1.0, 1.0))
        assert not coordinator.record_agent_pose("ghost", Pose())
        assert coordinator.snapshot_agents()["drone0"].pose.position == Point(1.0, 1.0, 1.0)

    def test_data_logger(self, config, agent_clients, path_client, sample_goal, tmp_path):
        """Test one CSV row per tracking tick"""
        data_logger = MissionDataLogger(str(tmp_path))
        coordinator = FormationCoordinator(config, agent_clients, path_client,
                                           data_logger=data_logger)
        _start(coordinator, sample_goal)
        coordinator.tick()
        path_client.last_handle.set_result(GoalStatus.SUCCEEDED)
        coordinator.tick()

        assert not data_logger.is_logging
        rows = [line for line in data_logger.log_file.read_text().splitlines()
                if line and not line.startswith("#")]
        assert rows[0].startswith("time_s,tick")
        assert len(rows) == 1 + 3
        assert "drone0=RUNNING" in rows[1]

    def test_waypoint_goal_object(self, coordinator):
        """Test MissionGoal objects are accepted directly"""
        goal = MissionGoal("earth", [Waypoint("a", Pose.from_xyz(0.0, 0.0, 1.0)),
                                     Waypoint("b", Pose.from_xyz(0.0, 1.0, 1.0))],
                           max_speed=0.5)
        normalized = coordinator.submit_goal(goal)
        assert normalized.waypoint_ids == ["a", "b"]
