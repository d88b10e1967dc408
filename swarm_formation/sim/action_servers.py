"""
Simulated Action Servers

In-process stand-ins for the follow-reference and follow-path action
servers, used when running without real vehicles.

Each server is stepped with a fixed dt (by SimulatedSwarm's thread or
directly from tests) and drives its goal handles from that thread, the
same way a middleware backend would.
"""

import logging
import threading
import time
from concurrent.futures import Future
from typing import Any, Callable, Dict, List, Optional

from ..config import Config
from ..errors import FrameLookupError
from ..swarm.actions import (
    ActionClient,
    FollowPathFeedback,
    FollowPathGoal,
    FollowPathResult,
    FollowReferenceGoal,
    GoalHandle,
    GoalStatus,
)
from ..swarm.frames import FrameTree
from ..utils.geometry import Point, Pose, distance

logger = logging.getLogger(__name__)


class SimulatedActionServer:
    """
    Base class for simulated action servers

    Fault injection knobs:
        available: server answers wait_for_server()
        reject_goals: every new goal is refused
    """

    def __init__(self, name: str):
        self.name = name
        self.available = True
        self.reject_goals = False

        self._lock = threading.Lock()
        self._handle: Optional[GoalHandle] = None
        self._feedback_callback: Optional[Callable[[Any], None]] = None
        self.goals_received = 0
        self.cancels_received = 0

    @property
    def active_handle(self) -> Optional[GoalHandle]:
        with self._lock:
            return self._handle

    def accept(self, goal: Any,
               feedback_callback: Optional[Callable[[Any], None]] = None) -> Optional[GoalHandle]:
        """Goal request; returns None when the goal is refused"""
        with self._lock:
            self.goals_received += 1
            if self.reject_goals:
                logger.info(f"[{self.name}] goal rejected")
                return None
            previous = self._handle
            handle = GoalHandle(goal, cancel_fn=self._on_cancel)
            self._handle = handle
            self._feedback_callback = feedback_callback

        if previous is not None and previous.is_active:
            # A new goal preempts the old one
            previous.set_result(GoalStatus.ABORTED)

        self.on_goal(goal)
        logger.debug(f"[{self.name}] goal accepted")
        return handle

    def abort(self):
        """Abort the active goal (fault injection)"""
        with self._lock:
            handle = self._handle
            self._handle = None
        if handle is not None and handle.is_active:
            logger.info(f"[{self.name}] aborting goal")
            handle.set_result(GoalStatus.ABORTED, self.make_result(False))

    def step(self, dt: float):
        """Advance the simulation by dt seconds"""
        with self._lock:
            handle = self._handle
            feedback_callback = self._feedback_callback
        if handle is None:
            return

        if handle.cancel_requested:
            with self._lock:
                if self._handle is handle:
                    self._handle = None
            handle.set_result(GoalStatus.CANCELED, self.make_result(False))
            return

        if handle.status == GoalStatus.ACCEPTED:
            handle.update_status(GoalStatus.EXECUTING)

        done, feedback = self.advance(handle.goal, dt)
        if feedback is not None and feedback_callback is not None:
            try:
                feedback_callback(feedback)
            except Exception as e:
                logger.error(f"[{self.name}] feedback callback error: {e}")

        if done:
            with self._lock:
                if self._handle is handle:
                    self._handle = None
            handle.set_result(GoalStatus.SUCCEEDED, self.make_result(True))

    def _on_cancel(self, handle: GoalHandle):
        with self._lock:
            self.cancels_received += 1
        logger.debug(f"[{self.name}] cancel requested")

    # Subclass hooks

    def on_goal(self, goal: Any):
        pass

    def advance(self, goal: Any, dt: float):
        """Returns (done, feedback or None)"""
        return False, None

    def make_result(self, success: bool) -> Any:
        return None


class FollowReferenceServer(SimulatedActionServer):
    """
    Simulated agent tracking a target in a (possibly moving) frame

    The agent moves toward the target at the goal's per-axis max speed and
    never finishes on its own; it tracks until canceled.
    """

    def __init__(self, agent_id: str, frame_tree: FrameTree,
                 world_frame: str = "earth", start: Optional[Point] = None,
                 max_speed: float = 1.0):
        super().__init__(f"{agent_id}/follow_reference")
        self.agent_id = agent_id
        self.frame_tree = frame_tree
        self.world_frame = world_frame
        self.max_speed = max_speed
        self.position = start or Point()
        self._pose_callbacks: List[Callable[[str, Pose], None]] = []

    def add_pose_callback(self, callback: Callable[[str, Pose], None]):
        """Localization feed: callback(agent_id, pose) after every step"""
        self._pose_callbacks.append(callback)

    def advance(self, goal: FollowReferenceGoal, dt: float):
        try:
            target = self.frame_tree.transform_pose(
                Pose(goal.target), goal.frame_id, self.world_frame
            ).position
        except FrameLookupError as e:
            logger.warning(f"[{self.name}] target frame unavailable: {e}")
            return False, None

        limits = (goal.max_speed_x, goal.max_speed_y, goal.max_speed_z)
        delta = target - self.position
        moved = []
        for d, lim in zip(delta.as_tuple(), limits):
            max_step = min(lim, self.max_speed) * dt
            moved.append(max(-max_step, min(max_step, d)))
        self.position = self.position + Point(*moved)
        return False, None

    def step(self, dt: float):
        super().step(dt)
        pose = Pose(self.position)
        for callback in self._pose_callbacks:
            try:
                callback(self.agent_id, pose)
            except Exception as e:
                logger.error(f"[{self.name}] pose callback error: {e}")


class FollowPathServer(SimulatedActionServer):
    """Simulated centroid moving through the path waypoints at constant speed"""

    def __init__(self, speed: float = 1.0, tolerance: float = 0.05):
        super().__init__("follow_path")
        self.speed = speed
        self.tolerance = tolerance
        self.position = Point()
        self._next_index = 0

    def on_goal(self, goal: FollowPathGoal):
        # The path starts at its first waypoint
        self.position = goal.path[0].pose.position if goal.path else Point()
        self._next_index = 0

    def advance(self, goal: FollowPathGoal, dt: float):
        speed = goal.max_speed if goal.max_speed > 0 else self.speed
        budget = speed * dt

        while self._next_index < len(goal.path):
            target = goal.path[self._next_index].pose.position
            remaining = distance(self.position, target)
            if remaining <= self.tolerance or remaining <= budget:
                budget = max(0.0, budget - remaining)
                self.position = target
                self._next_index += 1
                continue
            self.position = self.position + (target - self.position).scale(budget / remaining)
            break

        if self._next_index >= len(goal.path):
            return True, FollowPathFeedback(0.0, "", 0)

        next_wp = goal.path[self._next_index]
        feedback = FollowPathFeedback(
            actual_distance_to_next_waypoint=distance(self.position, next_wp.pose.position),
            next_waypoint_id=next_wp.id,
            remaining_waypoints=len(goal.path) - self._next_index,
        )
        return False, feedback

    def make_result(self, success: bool) -> FollowPathResult:
        return FollowPathResult(follow_path_success=success)


class SimActionClient(ActionClient):
    """ActionClient bound to an in-process simulated server"""

    POLL_INTERVAL = 0.01

    def __init__(self, server: SimulatedActionServer):
        self.server = server
        self.name = server.name

    def wait_for_server(self, timeout: float) -> bool:
        deadline = time.monotonic() + timeout
        while not self.server.available:
            if time.monotonic() >= deadline:
                return False
            time.sleep(self.POLL_INTERVAL)
        return True

    def send_goal_async(self, goal: Any,
                        feedback_callback: Optional[Callable[[Any], None]] = None) -> Future:
        future: Future = Future()
        future.set_result(self.server.accept(goal, feedback_callback))
        return future


class SimulatedSwarm:
    """
    Simulated agents and path server stepped from one background thread
    """

    def __init__(self, config: Config, frame_tree: FrameTree):
        sim = config.simulation
        self.rate_hz = 1.0 / config.control.tick_period_s if config.control.tick_period_s > 0 else 50.0
        self.frame_tree = frame_tree

        self.agent_servers: Dict[str, FollowReferenceServer] = {}
        for i, agent_id in enumerate(config.swarm.drone_ids):
            self.agent_servers[agent_id] = FollowReferenceServer(
                agent_id,
                frame_tree,
                world_frame=config.swarm.reference_frame,
                start=Point(0.0, float(i) * config.swarm.spacing_m, 0.0),
                max_speed=sim.agent_speed_ms,
            )
        self.path_server = FollowPathServer(sim.path_speed_ms, sim.goal_tolerance_m)

        self._running = False
        self._thread: Optional[threading.Thread] = None

    def agent_clients(self) -> Dict[str, ActionClient]:
        return {agent_id: SimActionClient(server)
                for agent_id, server in self.agent_servers.items()}

    def path_client(self) -> ActionClient:
        return SimActionClient(self.path_server)

    def connect_pose_feed(self, callback: Callable[[str, Pose], None]):
        """Route simulated agent poses to callback(agent_id, pose)"""
        for server in self.agent_servers.values():
            server.add_pose_callback(callback)

    def step(self, dt: float):
        for server in self.agent_servers.values():
            server.step(dt)
        self.path_server.step(dt)

    def start(self):
        if self._running:
            return
        self._running = True
        self._thread = threading.Thread(target=self._loop, daemon=True, name="sim-swarm")
        self._thread.start()
        logger.info(f"Simulated swarm started: {len(self.agent_servers)} agents at {self.rate_hz:.0f}Hz")

    def stop(self):
        self._running = False
        if self._thread:
            self._thread.join(timeout=1.0)
            self._thread = None
        logger.info("Simulated swarm stopped")

    def _loop(self):
        dt = 1.0 / self.rate_hz
        last_time = time.monotonic()
        while self._running:
            now = time.monotonic()
            self.step(now - last_time)
            last_time = now
            sleep_time = dt - (time.monotonic() - now)
            if sleep_time > 0:
                time.sleep(sleep_time)
