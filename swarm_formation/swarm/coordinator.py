"""
Formation Coordinator

Top-level swarm behavior. Accepts a path goal for the formation centroid,
starts one reference-following action per agent and a path-following
action for the centroid, then on every tick moves the formation frame along
the sampled trajectory and folds agent and path status into one verdict.
"""

import logging
import queue
import threading
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

from ..config import Config
from ..errors import (
    EndpointUnavailable,
    FrameLookupError,
    GoalRejected,
    SwarmError,
    ValidationError,
)
from ..formation.planner import FormationPlanner
from ..mission.models import MissionFeedback, MissionGoal, MissionResult, Waypoint
from ..trajectory.sampler import TrajectoryCommand, TrajectorySampler
from ..utils.geometry import Pose, quaternion_to_yaw, wrap_angle, yaw_to_quaternion
from ..utils.logger import MissionDataLogger
from .actions import ActionClient, FollowPathFeedback, FollowPathGoal, GoalHandle, YawMode
from .agent import AgentController, AgentSnapshot
from .frames import FrameBroadcaster, FrameTree
from .state_machine import CoordinatorState, CoordinatorStateMachine
from .status import (
    AGENT_FAILED,
    PATH_IN_FLIGHT,
    CompositeStatus,
    PathStatus,
    aggregate_status,
    path_status_from_result,
)

logger = logging.getLogger(__name__)


class SwarmBehavior(ABC):
    """Lifecycle contract of a swarm behavior"""

    @abstractmethod
    def activate(self, goal: Any) -> MissionGoal:
        """Validate and start a goal; raises a SwarmError on rejection"""

    @abstractmethod
    def run(self) -> CompositeStatus:
        """One control tick"""

    @abstractmethod
    def pause(self) -> bool:
        pass

    @abstractmethod
    def resume(self) -> bool:
        pass

    @abstractmethod
    def deactivate(self):
        """Abandon the current goal and return to idle"""


@dataclass
class FormationState:
    """Mutable per-goal state owned by the coordinator"""
    goal: Optional[MissionGoal] = None
    centroid: Pose = field(default_factory=Pose)
    command: Optional[TrajectoryCommand] = None
    path_handle: Optional[GoalHandle] = None
    path_status: PathStatus = PathStatus.PENDING
    path_feedback: Optional[FollowPathFeedback] = None
    composite: CompositeStatus = CompositeStatus.RUNNING
    feedback: Optional[MissionFeedback] = None
    result: Optional[MissionResult] = None
    paused: bool = False
    paused_at: float = 0.0
    start_time: float = 0.0
    tick_count: int = 0
    reason: str = ""
    cancel_reason: Optional[str] = None


@dataclass(frozen=True)
class _PathEvent:
    """Completion of the path action, queued until the next tick"""
    kind: str           # "response", "feedback" or "result"
    seq: int            # Goal sequence number
    payload: Any


class FormationCoordinator(SwarmBehavior):
    """
    Swarm formation coordinator

    Goal lifecycle:
        IDLE -> VALIDATING -> INITIALIZING -> TRACKING -> SUCCEEDED | FAILED

    Validation and initialization run synchronously in the caller of
    submit_goal(); tracking runs in tick(), driven by FormationRunner.
    Remote path-action completions are queued and applied by tick(); agent
    statuses are written by each agent's own status callback.
    """

    def __init__(self, config: Config,
                 agent_clients: Dict[str, ActionClient],
                 path_client: ActionClient,
                 frame_tree: Optional[FrameTree] = None,
                 sampler: Optional[TrajectorySampler] = None,
                 planner: Optional[FormationPlanner] = None,
                 data_logger: Optional[MissionDataLogger] = None):
        """
        Args:
            config: Full configuration
            agent_clients: agent id -> follow-reference action client
            path_client: Follow-path action client for the centroid
            frame_tree: Shared transform store (created if omitted)
            sampler: Trajectory sampler (built from config if omitted)
            planner: Formation planner (built from config if omitted)
            data_logger: Optional per-tick CSV logger
        """
        missing = [a for a in config.swarm.drone_ids if a not in agent_clients]
        if missing:
            raise ValueError(f"no action client for agents: {', '.join(missing)}")

        self.config = config
        self.path_client = path_client
        self.reference_frame = config.swarm.reference_frame
        self.frame_tree = frame_tree or FrameTree()
        self.broadcaster = FrameBroadcaster(
            self.frame_tree,
            world_frame=config.swarm.reference_frame,
            formation_frame=config.swarm.formation_frame,
        )
        self.sampler = sampler or TrajectorySampler(
            lookahead_points=config.trajectory.lookahead_points,
            dt=config.trajectory.sample_dt_s,
        )
        self.planner = planner or FormationPlanner(config.swarm.layout, config.swarm.spacing_m)
        self.data_logger = data_logger

        self._lock = threading.RLock()
        self._events: "queue.Queue[_PathEvent]" = queue.Queue()
        self._sm = CoordinatorStateMachine()
        self._sm.on_enter(CoordinatorState.TRACKING, self._start_data_log)
        self._sm.on_exit(CoordinatorState.TRACKING, self._stop_data_log)
        self._goal_seq = 0

        # Static agent frames placed around the startup centroid
        x, y, z = config.swarm.initial_centroid
        initial_centroid = Pose.from_xyz(x, y, z)
        self._state = FormationState(centroid=initial_centroid)

        drone_ids = list(config.swarm.drone_ids)
        offsets = self.planner.formation_offsets(initial_centroid, len(drone_ids))
        agent_cfg = config.agent
        self.agents: Dict[str, AgentController] = {}
        for agent_id, offset in zip(drone_ids, offsets):
            self.agents[agent_id] = AgentController(
                agent_id,
                offset,
                agent_clients[agent_id],
                max_speed=(agent_cfg.max_speed_x, agent_cfg.max_speed_y, agent_cfg.max_speed_z),
                yaw_mode=YawMode(agent_cfg.yaw_mode),
                endpoint_timeout=config.control.endpoint_timeout_s,
            )
            self.broadcaster.publish_static(agent_id, offset)
        self.broadcaster.publish_dynamic(initial_centroid)

        # Observers
        self._on_feedback: List[Callable[[MissionFeedback], None]] = []
        self._on_result: List[Callable[[MissionResult], None]] = []
        self._on_setpoints: List[Callable[[TrajectoryCommand], None]] = []

        logger.info(
            f"Formation coordinator ready: {len(self.agents)} agents, "
            f"layout={self.planner.layout}, frame={self.broadcaster.formation_frame}"
        )

    # ==================== Properties ====================

    @property
    def state(self) -> CoordinatorState:
        return self._sm.state

    @property
    def state_machine(self) -> CoordinatorStateMachine:
        return self._sm

    @property
    def composite_status(self) -> CompositeStatus:
        with self._lock:
            return self._state.composite

    @property
    def centroid(self) -> Pose:
        with self._lock:
            return self._state.centroid

    @property
    def result(self) -> Optional[MissionResult]:
        with self._lock:
            return self._state.result

    @property
    def is_active(self) -> bool:
        return self._sm.is_active

    @property
    def is_paused(self) -> bool:
        with self._lock:
            return self._state.paused

    # ==================== Goal handling ====================

    def activate(self, goal: Union[MissionGoal, Dict[str, Any]]) -> MissionGoal:
        return self.submit_goal(goal)

    def submit_goal(self, goal: Union[MissionGoal, Dict[str, Any]]) -> MissionGoal:
        """
        Validate and start a goal

        Args:
            goal: MissionGoal or its dictionary form

        Returns:
            The goal normalised into the reference frame

        Raises:
            GoalRejected: If another goal is active
            ValidationError: If the goal is malformed or not convertible
            GenerationFailure: If no trajectory can be built for the path
            EndpointUnavailable: If an action server does not respond in time
            RemoteRejected: If an agent refuses its goal
        """
        with self._lock:
            if self._sm.is_active:
                raise GoalRejected(f"goal refused: coordinator is {self._sm.state.name}")
            self._goal_seq += 1
            seq = self._goal_seq
            self._state = FormationState(centroid=self._state.centroid)
            self._sm.transition_to(CoordinatorState.VALIDATING)

        try:
            normalized = self._validate(goal)
        except SwarmError as e:
            self._finish_rejected(str(e))
            raise
        except Exception as e:
            self._finish_rejected(f"malformed goal: {e}")
            raise ValidationError(f"malformed goal: {e}") from e

        with self._lock:
            self._state.goal = normalized
            self._sm.transition_to(CoordinatorState.INITIALIZING)

        try:
            self._initialize(normalized, seq)
        except SwarmError as e:
            cancel_reason = self._state.cancel_reason
            if cancel_reason is not None:
                self._abort_initialization(cancel_reason)
                return normalized
            self._abort_initialization(str(e))
            raise
        except Exception as e:
            self._abort_initialization(f"initialization error: {e}")
            raise

        with self._lock:
            if self._state.cancel_reason is not None:
                self._sm.transition_to(CoordinatorState.TRACKING)
                self._fail(self._state.cancel_reason)
                return normalized

            self._state.start_time = time.monotonic()
            self._sm.transition_to(CoordinatorState.TRACKING)

        logger.info(
            f"Goal {seq} accepted: {len(normalized.path)} waypoints in "
            f"'{normalized.frame_id}', yaw={normalized.yaw_angle:.2f}rad"
        )
        return normalized

    def _validate(self, goal: Union[MissionGoal, Dict[str, Any]]) -> MissionGoal:
        """Check the goal and express it in the reference frame; no side effects"""
        if not isinstance(goal, MissionGoal):
            goal = MissionGoal.from_dict(goal)
        else:
            errors = goal.validate()
            if errors:
                raise ValidationError(f"Goal validation failed: {'; '.join(errors)}")

        if goal.frame_id == self.reference_frame:
            return MissionGoal(self.reference_frame, list(goal.path),
                               goal.yaw_angle, goal.max_speed)

        try:
            transform = self.frame_tree.lookup(self.reference_frame, goal.frame_id)
        except FrameLookupError as e:
            raise ValidationError(
                f"cannot convert path from '{goal.frame_id}' to '{self.reference_frame}': {e}"
            ) from e

        path = [Waypoint(wp.id, transform.apply(wp.pose)) for wp in goal.path]
        yaw = wrap_angle(goal.yaw_angle + quaternion_to_yaw(transform.rotation))
        logger.debug(f"Converted goal from '{goal.frame_id}' to '{self.reference_frame}'")
        return MissionGoal(self.reference_frame, path, yaw, goal.max_speed)

    def _initialize(self, goal: MissionGoal, seq: int):
        speed = goal.max_speed if goal.max_speed > 0 else self.config.trajectory.default_speed_ms

        # Trajectory first: a generation failure must not start any agent
        self.sampler.set_waypoints([wp.pose.position for wp in goal.path], speed)
        command = self.sampler.build_command(0.0)
        centroid = Pose(command.first.position, yaw_to_quaternion(goal.yaw_angle))
        with self._lock:
            self._state.command = command
            self._state.centroid = centroid
        self.broadcaster.publish_dynamic(centroid)

        with self._lock:
            for agent in self.agents.values():
                agent.begin_goal()
            if self._state.cancel_reason is not None:
                self._suppress_agents()

        if self.config.control.parallel_agent_init:
            self._initialize_agents_parallel()
        else:
            for agent_id, agent in self.agents.items():
                agent.initialize(self.broadcaster.agent_frame_id(agent_id))

        if self._state.cancel_reason is not None:
            # Applied by submit_goal() without starting the path action
            return

        timeout = self.config.control.endpoint_timeout_s
        if not self.path_client.wait_for_server(timeout):
            raise EndpointUnavailable(f"follow path server not available after {timeout:.1f}s")

        path_goal = FollowPathGoal(
            frame_id=goal.frame_id,
            path=list(goal.path),
            yaw_angle=goal.yaw_angle,
            max_speed=speed,
        )
        future = self.path_client.send_goal_async(
            path_goal,
            feedback_callback=lambda fb, s=seq: self._events.put(_PathEvent("feedback", s, fb)),
        )
        future.add_done_callback(
            lambda f, s=seq: self._events.put(_PathEvent("response", s, f))
        )
        logger.info(f"FollowPath sent: {len(goal.path)} waypoints at {speed:.2f}m/s")

    def _initialize_agents_parallel(self):
        """Start every agent from a thread pool; raise the first failure"""
        with ThreadPoolExecutor(max_workers=len(self.agents) or 1,
                                thread_name_prefix="agent-init") as pool:
            futures = {
                agent_id: pool.submit(agent.initialize, self.broadcaster.agent_frame_id(agent_id))
                for agent_id, agent in self.agents.items()
            }
        for f in futures.values():
            error = f.exception()
            if error is not None:
                raise error

    def _finish_rejected(self, reason: str):
        logger.warning(f"Goal rejected: {reason}")
        with self._lock:
            self._state.composite = CompositeStatus.FAILED
            self._state.reason = reason
            self._state.result = MissionResult(False, reason)
            self._sm.transition_to(CoordinatorState.FAILED)
            result = self._state.result
        self._emit(self._on_result, result)

    def _abort_initialization(self, reason: str):
        logger.error(f"Goal aborted during initialization: {reason}")
        self._stop_agents()
        self.sampler.clear()
        self._finish_rejected(reason)

    # ==================== Tracking ====================

    def run(self) -> CompositeStatus:
        return self.tick()

    def tick(self) -> CompositeStatus:
        """
        One control tick

        Returns:
            Composite status after this tick
        """
        with self._lock:
            state = self._sm.state
            if state in (CoordinatorState.SUCCEEDED, CoordinatorState.FAILED):
                # Late path responses of a finished goal still need canceling
                self._drain_events()
                return self._state.composite
            if state != CoordinatorState.TRACKING or self._state.paused:
                return self._state.composite

            self._state.tick_count += 1
            self._drain_events()

            elapsed = time.monotonic() - self._state.start_time
            try:
                self._advance_centroid(elapsed)
            except SwarmError as e:
                self._fail(f"trajectory sampling failed: {e}")
                return self._state.composite

            snapshots = self.snapshot_agents()
            composite = aggregate_status(
                [s.status for s in snapshots.values()],
                self._state.path_status,
            )
            self._state.composite = composite
            self._log_tick(snapshots)

            if composite == CompositeStatus.FAILED:
                self._fail(self._failure_reason(snapshots))
            elif composite == CompositeStatus.SUCCEEDED:
                self._succeed()
            elif self._state.path_feedback is not None:
                feedback = MissionFeedback(
                    self._state.path_feedback.actual_distance_to_next_waypoint
                )
                self._state.feedback = feedback
                self._emit(self._on_feedback, feedback)

            return self._state.composite

    def _advance_centroid(self, elapsed: float):
        command = self.sampler.build_command(elapsed)
        centroid = self._state.centroid.with_position(command.first.position)
        self._state.command = command
        self._state.centroid = centroid
        self.broadcaster.publish_dynamic(centroid)
        self._emit(self._on_setpoints, command)

    def _drain_events(self):
        while True:
            try:
                event = self._events.get_nowait()
            except queue.Empty:
                return
            self._apply_event(event)

    def _apply_event(self, event: _PathEvent):
        current = (event.seq == self._goal_seq and
                   self._sm.state == CoordinatorState.TRACKING)

        if event.kind == "response":
            handle = None
            error = event.payload.exception()
            if error is None:
                handle = event.payload.result()

            if not current:
                if handle is not None and handle.is_active:
                    logger.info("Canceling FollowPath goal of a finished goal")
                    handle.cancel_goal_async()
                return

            if handle is None:
                logger.error(f"FollowPath goal rejected{f': {error}' if error else ''}")
                self._state.path_status = PathStatus.REJECTED
                return

            self._state.path_handle = handle
            self._state.path_status = PathStatus.RUNNING
            handle.get_result_async().add_done_callback(
                lambda f, s=event.seq: self._events.put(_PathEvent("result", s, f))
            )

        elif not current:
            return

        elif event.kind == "feedback":
            self._state.path_feedback = event.payload

        elif event.kind == "result":
            error = event.payload.exception()
            if error is not None:
                logger.error(f"FollowPath result error: {error}")
                self._state.path_status = PathStatus.UNKNOWN
                return
            wrapped = event.payload.result()
            self._state.path_status = path_status_from_result(wrapped.code)
            logger.info(f"FollowPath finished: {wrapped.code.name}")

    def _failure_reason(self, snapshots: Dict[str, AgentSnapshot]) -> str:
        failed = [f"{s.agent_id} {s.status.name.lower()}"
                  for s in snapshots.values() if s.status in AGENT_FAILED]
        if failed:
            return f"agent failure: {', '.join(failed)}"
        return f"follow path {self._state.path_status.name.lower()}"

    def _fail(self, reason: str):
        """Sticky failure: cancel in-flight actions and publish the result"""
        logger.error(f"Swarm goal failed: {reason}")
        self._state.composite = CompositeStatus.FAILED
        self._state.reason = reason

        handle = self._state.path_handle
        if handle is not None and self._state.path_status in PATH_IN_FLIGHT:
            logger.info("Canceling FollowPath")
            handle.cancel_goal_async()

        self._stop_agents()
        self._finish(MissionResult(False, reason), CoordinatorState.FAILED)

    def _succeed(self):
        logger.info("Swarm goal succeeded")
        self._state.reason = "path completed"
        self._stop_agents()
        self._finish(MissionResult(True, "path completed"), CoordinatorState.SUCCEEDED)

    def _finish(self, result: MissionResult, final_state: CoordinatorState):
        self._state.result = result
        self._sm.transition_to(final_state)
        self._emit(self._on_result, result)

    def _suppress_agents(self):
        for agent in self.agents.values():
            agent.suppress()

    def _stop_agents(self):
        self._suppress_agents()
        for agent in self.agents.values():
            agent.stop()

    def _start_data_log(self):
        if self.data_logger is not None:
            self.data_logger.start(f"goal{self._goal_seq}")

    def _stop_data_log(self):
        if self.data_logger is not None and self.data_logger.is_logging:
            self.data_logger.stop()

    def _log_tick(self, snapshots: Dict[str, AgentSnapshot]):
        if self.data_logger is None or not self.data_logger.is_logging:
            return
        p = self._state.centroid.position
        fb = self._state.path_feedback
        self.data_logger.log(
            state=self._sm.state.name,
            composite=self._state.composite.name,
            centroid_x=p.x, centroid_y=p.y, centroid_z=p.z,
            distance_to_next_wp=fb.actual_distance_to_next_waypoint if fb else None,
            agents={a: s.status.name for a, s in snapshots.items()},
        )

    # ==================== Control ====================

    def pause(self) -> bool:
        """Stop polling; remote actions keep running and events keep queuing"""
        with self._lock:
            if self._sm.state != CoordinatorState.TRACKING or self._state.paused:
                return False
            self._state.paused = True
            self._state.paused_at = time.monotonic()
        logger.info("Coordinator paused")
        return True

    def resume(self) -> bool:
        with self._lock:
            if not self._state.paused:
                return False
            self._state.paused = False
            # Trajectory time does not advance while paused
            self._state.start_time += time.monotonic() - self._state.paused_at
        logger.info("Coordinator resumed")
        return True

    def cancel(self, reason: str = "canceled") -> bool:
        """
        Cancel the active goal

        Cancel requests are sent without waiting for acknowledgement.

        Returns:
            True if a goal was active
        """
        with self._lock:
            state = self._sm.state
            if state == CoordinatorState.TRACKING:
                self._state.paused = False
                self._fail(reason)
                return True
            if state in (CoordinatorState.VALIDATING, CoordinatorState.INITIALIZING):
                # Agents not yet started refuse to start; submit_goal() applies the rest
                self._state.cancel_reason = reason
                self._suppress_agents()
                return True
        return False

    def deactivate(self):
        """Cancel any active goal and return to IDLE"""
        if self.cancel("deactivated"):
            logger.info("Coordinator deactivated")
        with self._lock:
            if self._sm.state in (CoordinatorState.SUCCEEDED, CoordinatorState.FAILED):
                self._sm.transition_to(CoordinatorState.IDLE)

    # ==================== Agents ====================

    def record_agent_pose(self, agent_id: str, pose: Pose) -> bool:
        """Forward a localization pose to an agent"""
        agent = self.agents.get(agent_id)
        if agent is None:
            logger.warning(f"Pose for unknown agent '{agent_id}'")
            return False
        agent.record_pose(pose)
        return True

    def snapshot_agents(self) -> Dict[str, AgentSnapshot]:
        """Snapshot of every agent, each taken under its own lock"""
        return {agent_id: agent.snapshot() for agent_id, agent in self.agents.items()}

    def slot_poses(self) -> Dict[str, Pose]:
        """Current formation slot of every agent in the reference frame"""
        return {
            agent_id: self.frame_tree.transform_pose(
                Pose(), self.broadcaster.agent_frame_id(agent_id), self.reference_frame
            )
            for agent_id in self.agents
        }

    # ==================== Observers ====================

    def on_feedback(self, callback: Callable[[MissionFeedback], None]):
        """Register callback for per-tick feedback"""
        self._on_feedback.append(callback)

    def on_result(self, callback: Callable[[MissionResult], None]):
        """Register callback for the final result"""
        self._on_result.append(callback)

    def on_setpoints(self, callback: Callable[[TrajectoryCommand], None]):
        """Register callback for the sampled lookahead buffer"""
        self._on_setpoints.append(callback)

    @staticmethod
    def _emit(callbacks: List[Callable], value: Any):
        for callback in callbacks:
            try:
                callback(value)
            except Exception as e:
                logger.error(f"Error in observer callback: {e}")

    # ==================== Status ====================

    def get_status(self) -> Dict[str, Any]:
        """Coordinator status for API"""
        with self._lock:
            s = self._state
            snapshots = self.snapshot_agents()
            return {
                'state': self._sm.state.name,
                'composite': s.composite.name,
                'paused': s.paused,
                'tick_count': s.tick_count,
                'centroid': s.centroid.to_dict(),
                'path_status': s.path_status.name,
                'agents': {
                    agent_id: {
                        'status': snap.status.name,
                        'pose': snap.pose.to_dict() if snap.pose else None,
                        'frame_id': self.broadcaster.agent_frame_id(agent_id),
                    }
                    for agent_id, snap in snapshots.items()
                },
                'goal': s.goal.to_dict() if s.goal else None,
                'feedback': s.feedback.to_dict() if s.feedback else None,
                'result': s.result.to_dict() if s.result else None,
                'reason': s.reason,
                'trajectory': self.sampler.get_debug_info(),
            }
