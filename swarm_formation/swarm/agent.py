"""
Agent Controller

One controller per swarm agent. Owns the agent's reference-following
action: the agent tracks the origin of its own static offset frame, so it
converges onto its formation slot and follows the formation as that frame
moves.
"""

import logging
import threading
import time
from concurrent.futures import Future, TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Optional, Tuple

from ..errors import EndpointUnavailable, RemoteAborted, RemoteRejected
from ..utils.geometry import Point, Pose
from .actions import ActionClient, FollowReferenceGoal, GoalHandle, GoalStatus, YawMode
from .status import AgentStatus, agent_status_from_remote

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AgentSnapshot:
    """Consistent view of one agent"""
    agent_id: str
    status: AgentStatus
    pose: Optional[Pose]
    goal_id: Optional[str]


class AgentController:
    """
    Reference-following action owner for one agent

    Status is written only by the current handle's status callback (and by
    initialize() before a handle exists); every read goes through the agent
    lock, so observers never see a half-applied update.
    """

    def __init__(self, agent_id: str, offset_pose: Pose, client: ActionClient,
                 max_speed: Tuple[float, float, float] = (0.5, 0.5, 0.5),
                 yaw_mode: YawMode = YawMode.KEEP_YAW,
                 endpoint_timeout: float = 5.0):
        """
        Args:
            agent_id: Unique agent id
            offset_pose: Slot offset relative to the formation frame (fixed)
            client: Follow-reference action client of this agent
            max_speed: Per-axis max speed (x, y, z) in m/s
            yaw_mode: Yaw behaviour while tracking
            endpoint_timeout: Bounded wait for the action server (seconds)
        """
        self.agent_id = agent_id
        self.client = client
        self.max_speed = max_speed
        self.yaw_mode = yaw_mode
        self.endpoint_timeout = endpoint_timeout

        self._offset_pose = offset_pose
        self._lock = threading.Lock()
        self._status = AgentStatus.UNSTARTED
        self._pose: Optional[Pose] = None
        self._pose_time = 0.0
        self._handle: Optional[GoalHandle] = None
        self._suppressed = False

    @property
    def offset_pose(self) -> Pose:
        """Slot offset relative to the formation frame"""
        return self._offset_pose

    @property
    def handle(self) -> Optional[GoalHandle]:
        with self._lock:
            return self._handle

    @property
    def pose(self) -> Optional[Pose]:
        with self._lock:
            return self._pose

    def begin_goal(self):
        """Reset per-goal state before a new mission"""
        with self._lock:
            self._status = AgentStatus.UNSTARTED
            self._handle = None
            self._suppressed = False

    def suppress(self):
        """Refuse further action invocations for the current goal"""
        with self._lock:
            self._suppressed = True

    def initialize(self, offset_frame_id: str) -> GoalHandle:
        """
        Start tracking the agent's offset frame

        Blocks for at most endpoint_timeout seconds in total.

        Args:
            offset_frame_id: Static frame of this agent's formation slot

        Returns:
            Goal handle of the accepted reference-following goal

        Raises:
            EndpointUnavailable: If the server or the goal response times out
            RemoteRejected: If the server refuses the goal
            RemoteAborted: If invocations are suppressed for this goal
        """
        with self._lock:
            if self._suppressed:
                raise RemoteAborted(f"{self.agent_id}: action invocations suppressed")
            previous = self._handle
            self._handle = None

        if previous is not None and previous.is_active:
            previous.cancel_goal_async()

        logger.info(f"Init {self.agent_id} FollowReference -> {offset_frame_id}")
        deadline = time.monotonic() + self.endpoint_timeout

        if not self.client.wait_for_server(self.endpoint_timeout):
            logger.error(f"{self.agent_id}: follow reference server not available after waiting")
            raise EndpointUnavailable(
                f"{self.agent_id}: follow reference server not available "
                f"after {self.endpoint_timeout:.1f}s"
            )

        goal = FollowReferenceGoal(
            frame_id=offset_frame_id,
            target=Point(0.0, 0.0, 0.0),
            max_speed_x=self.max_speed[0],
            max_speed_y=self.max_speed[1],
            max_speed_z=self.max_speed[2],
            yaw_mode=self.yaw_mode,
        )

        with self._lock:
            self._status = AgentStatus.PENDING

        try:
            future = self.client.send_goal_async(goal)
            handle = future.result(timeout=max(0.0, deadline - time.monotonic()))
        except FutureTimeout:
            self._cancel_when_answered(future)
            with self._lock:
                self._status = AgentStatus.UNSTARTED
            raise EndpointUnavailable(f"{self.agent_id}: no goal response before timeout")
        except Exception as e:
            with self._lock:
                self._status = AgentStatus.UNSTARTED
            raise EndpointUnavailable(f"{self.agent_id}: send goal failed: {e}") from e

        if handle is None:
            with self._lock:
                self._status = AgentStatus.REJECTED
            logger.error(f"{self.agent_id}: follow reference goal rejected")
            raise RemoteRejected(f"{self.agent_id}: follow reference goal rejected")

        with self._lock:
            self._handle = handle
        handle.add_status_callback(lambda status, h=handle: self._on_remote_status(h, status))
        return handle

    def observe_status(self, handle: Optional[GoalHandle] = None) -> AgentStatus:
        """
        Non-blocking read of the cached lifecycle state

        Args:
            handle: Handle to report on; defaults to the current one
        """
        with self._lock:
            if handle is None or handle is self._handle:
                return self._status
        return agent_status_from_remote(handle.status)

    def record_pose(self, pose: Pose):
        """Cache the latest localization pose (called at sensor rate)"""
        with self._lock:
            self._pose = pose
            self._pose_time = time.monotonic()

    def stop(self):
        """Best-effort cancel of the current action; idempotent"""
        with self._lock:
            handle = self._handle
            self._handle = None
        if handle is not None and handle.is_active:
            logger.info(f"Stopping {self.agent_id} FollowReference")
            handle.cancel_goal_async()

    def snapshot(self) -> AgentSnapshot:
        with self._lock:
            return AgentSnapshot(
                agent_id=self.agent_id,
                status=self._status,
                pose=self._pose,
                goal_id=self._handle.goal_id if self._handle is not None else None,
            )

    def _on_remote_status(self, handle: GoalHandle, status: GoalStatus):
        with self._lock:
            if handle is not self._handle:
                return
            new_status = agent_status_from_remote(status)
            changed = new_status != self._status
            self._status = new_status

        if changed and new_status == AgentStatus.ABORTED:
            logger.error(f"{self.agent_id}: follow reference ended with {status.name}")

    def _cancel_when_answered(self, future: Future):
        """A goal answered after the timeout must not stay running"""
        def cancel_late(f: Future):
            if f.cancelled() or f.exception() is not None:
                return
            late_handle = f.result()
            if late_handle is not None:
                logger.warning(f"{self.agent_id}: canceling goal accepted after timeout")
                late_handle.cancel_goal_async()

        future.add_done_callback(cancel_late)
