"""
Action contract

Asynchronous remote actions consumed by the coordinator: goal handles,
goal status codes, and the goal/feedback/result messages of the
follow-reference and follow-path actions.

A backend (simulation, middleware bridge, test fake) implements
ActionClient and drives GoalHandle.update_status()/set_result() from its
own threads.
"""

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from concurrent.futures import Future
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional

from ..mission.models import Waypoint
from ..utils.geometry import Point

logger = logging.getLogger(__name__)


class GoalStatus(Enum):
    """Remote goal status codes"""
    UNKNOWN = 0
    ACCEPTED = 1
    EXECUTING = 2
    CANCELING = 3
    SUCCEEDED = 4
    CANCELED = 5
    ABORTED = 6


ACTIVE_STATUSES = {GoalStatus.ACCEPTED, GoalStatus.EXECUTING, GoalStatus.CANCELING}
TERMINAL_STATUSES = {GoalStatus.SUCCEEDED, GoalStatus.CANCELED, GoalStatus.ABORTED}


class YawMode(Enum):
    """Yaw behaviour requested from a reference follower"""
    KEEP_YAW = "keep_yaw"
    PATH_FACING = "path_facing"
    FIXED_YAW = "fixed_yaw"


@dataclass(frozen=True)
class WrappedResult:
    """Terminal status plus action-specific result payload"""
    code: GoalStatus
    result: Any = None


@dataclass(frozen=True)
class FollowReferenceGoal:
    """Track a fixed target expressed in frame_id"""
    frame_id: str
    target: Point = field(default_factory=Point)
    max_speed_x: float = 0.5
    max_speed_y: float = 0.5
    max_speed_z: float = 0.5
    yaw_mode: YawMode = YawMode.KEEP_YAW


@dataclass(frozen=True)
class FollowPathGoal:
    """Move along a path expressed in frame_id"""
    frame_id: str
    path: List[Waypoint]
    yaw_angle: float = 0.0
    max_speed: float = 0.0


@dataclass(frozen=True)
class FollowPathFeedback:
    actual_distance_to_next_waypoint: float
    next_waypoint_id: str = ""
    remaining_waypoints: int = 0


@dataclass(frozen=True)
class FollowPathResult:
    follow_path_success: bool


class GoalHandle:
    """
    Client-side handle of one accepted goal

    Status is cached and updated asynchronously by the backend; readers
    never block. Status callbacks run on the backend thread that changed
    the status.
    """

    def __init__(self, goal: Any,
                 cancel_fn: Optional[Callable[['GoalHandle'], None]] = None):
        self.goal_id = uuid.uuid4().hex
        self.goal = goal
        self.cancel_requested = False

        self._status = GoalStatus.ACCEPTED
        self._lock = threading.Lock()
        self._status_callbacks: List[Callable[[GoalStatus], None]] = []
        self._result_future: Future = Future()
        self._cancel_fn = cancel_fn

    @property
    def status(self) -> GoalStatus:
        """Last known remote status"""
        with self._lock:
            return self._status

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def add_status_callback(self, callback: Callable[[GoalStatus], None]):
        """Register callback; it is invoked immediately with the current status"""
        with self._lock:
            self._status_callbacks.append(callback)
            status = self._status
        self._notify(callback, status)

    def update_status(self, status: GoalStatus):
        """Backend side: record a new remote status"""
        with self._lock:
            if self._status in TERMINAL_STATUSES or self._status == status:
                return
            self._status = status
            callbacks = list(self._status_callbacks)

        for callback in callbacks:
            self._notify(callback, status)

    def set_result(self, code: GoalStatus, result: Any = None):
        """Backend side: finish the goal with a terminal code"""
        self.update_status(code)
        if not self._result_future.done():
            self._result_future.set_result(WrappedResult(code, result))

    def get_result_async(self) -> Future:
        """Future resolving to a WrappedResult"""
        return self._result_future

    def cancel_goal_async(self) -> Future:
        """Request cancellation; the future resolves to whether it was sent"""
        future: Future = Future()
        if self.cancel_requested or not self.is_active:
            future.set_result(False)
            return future

        self.cancel_requested = True
        self.update_status(GoalStatus.CANCELING)
        if self._cancel_fn is not None:
            self._cancel_fn(self)
        future.set_result(True)
        return future

    @staticmethod
    def _notify(callback: Callable[[GoalStatus], None], status: GoalStatus):
        try:
            callback(status)
        except Exception as e:
            logger.error(f"Error in goal status callback: {e}")


class ActionClient(ABC):
    """Client side of one remote action endpoint"""

    name: str = ""

    @abstractmethod
    def wait_for_server(self, timeout: float) -> bool:
        """Block up to timeout seconds; True once the server is reachable"""
        pass

    @abstractmethod
    def send_goal_async(self, goal: Any,
                        feedback_callback: Optional[Callable[[Any], None]] = None) -> Future:
        """
        Send a goal

        Returns:
            Future resolving to a GoalHandle, or None if the goal was rejected
        """
        pass
