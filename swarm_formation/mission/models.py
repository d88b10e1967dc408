"""
Mission models

Swarm mission goal, feedback and result records.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, List

from ..errors import ValidationError
from ..utils.geometry import Pose


def _pose_is_finite(pose: Pose) -> bool:
    p, q = pose.position, pose.orientation
    return all(math.isfinite(v) for v in (p.x, p.y, p.z, q.x, q.y, q.z, q.w))


@dataclass(frozen=True)
class Waypoint:
    """Path waypoint with a unique id"""
    id: str
    pose: Pose

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "pose": self.pose.to_dict()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Waypoint':
        return cls(id=str(data.get("id", "")), pose=Pose.from_value(data["pose"]))


@dataclass
class MissionGoal:
    """
    High-level path request for the formation

    The path is followed by the formation centroid; yaw_angle is the swarm
    heading in radians, expressed in frame_id.
    """
    frame_id: str
    path: List[Waypoint]
    yaw_angle: float = 0.0
    max_speed: float = 0.0  # 0 = configured default

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MissionGoal':
        """
        Create goal from dictionary (JSON data)

        Expected format:
            {frame_id, path: [{id, pose}], yaw_swarm: {angle}, max_speed}

        Raises:
            ValidationError: If goal data is invalid
        """
        if not isinstance(data, dict):
            raise ValidationError("Goal must be an object")

        path_data = data.get("path") or []
        if not isinstance(path_data, list):
            raise ValidationError("Goal path must be a list")

        path: List[Waypoint] = []
        for i, wp_data in enumerate(path_data):
            try:
                path.append(Waypoint.from_dict(wp_data))
            except KeyError as e:
                raise ValidationError(f"Waypoint {i}: missing required field {e}")
            except (TypeError, ValueError, AttributeError) as e:
                raise ValidationError(f"Waypoint {i}: {e}")

        yaw_data = data.get("yaw_swarm") or {}
        try:
            if isinstance(yaw_data, dict):
                yaw_angle = float(yaw_data.get("angle", 0.0))
            else:
                yaw_angle = float(yaw_data)
            max_speed = float(data.get("max_speed", 0.0))
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Goal: {e}")

        goal = cls(
            frame_id=str(data.get("frame_id", "")),
            path=path,
            yaw_angle=yaw_angle,
            max_speed=max_speed,
        )

        errors = goal.validate()
        if errors:
            raise ValidationError(f"Goal validation failed: {'; '.join(errors)}")

        return goal

    def to_dict(self) -> Dict[str, Any]:
        """Convert goal to dictionary (for JSON serialization)"""
        return {
            "frame_id": self.frame_id,
            "path": [wp.to_dict() for wp in self.path],
            "yaw_swarm": {"angle": self.yaw_angle},
            "max_speed": self.max_speed,
        }

    def validate(self) -> List[str]:
        """
        Validate goal

        Returns:
            List of validation error messages (empty if valid)
        """
        errors = []

        if not self.frame_id:
            errors.append("Path frame_id is empty")

        if not self.path:
            errors.append("Path is empty")

        seen = set()
        for i, wp in enumerate(self.path):
            if not wp.id:
                errors.append(f"Waypoint {i}: id is empty")
            elif wp.id in seen:
                errors.append(f"Waypoint {i}: duplicate id '{wp.id}'")
            seen.add(wp.id)
            if not _pose_is_finite(wp.pose):
                errors.append(f"Waypoint {i}: pose has non-finite values")

        if not math.isfinite(self.yaw_angle):
            errors.append(f"yaw angle must be finite, got {self.yaw_angle}")

        if not math.isfinite(self.max_speed):
            errors.append(f"max_speed must be finite, got {self.max_speed}")
        elif self.max_speed < 0:
            errors.append(f"max_speed cannot be negative, got {self.max_speed}")

        return errors

    @property
    def waypoint_ids(self) -> List[str]:
        return [wp.id for wp in self.path]


@dataclass(frozen=True)
class MissionFeedback:
    """Feedback emitted every tracking tick"""
    actual_distance_to_next_waypoint: float

    def to_dict(self) -> Dict[str, Any]:
        return {"actual_distance_to_next_waypoint": self.actual_distance_to_next_waypoint}


@dataclass(frozen=True)
class MissionResult:
    """Final mission verdict"""
    swarm_success: bool
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"swarm_success": self.swarm_success, "reason": self.reason}
