"""
Trajectory Generator

Default generator used by the trajectory sampler: a constant-speed,
piecewise-linear trajectory through the waypoints. The first waypoint is
the start of the trajectory.
"""

import bisect
import math
from dataclasses import dataclass, field
from typing import List, Sequence

from ..errors import GenerationFailure
from ..utils.geometry import Point, lerp


@dataclass(frozen=True)
class Setpoint:
    """Trajectory sample"""
    time: float
    position: Point
    velocity: Point = field(default_factory=Point)
    acceleration: Point = field(default_factory=Point)

    def to_dict(self) -> dict:
        return {
            "time": self.time,
            "position": self.position.to_dict(),
            "velocity": self.velocity.to_dict(),
            "acceleration": self.acceleration.to_dict(),
        }


class SegmentTrajectory:
    """
    Piecewise-linear trajectory travelled at constant speed

    Samples beyond the end hold the final waypoint with zero velocity.
    """

    def __init__(self, points: Sequence[Point], speed: float):
        self.points: List[Point] = list(points)
        self.speed = speed

        # Cumulative arrival time at each waypoint
        self._times: List[float] = [0.0]
        for a, b in zip(self.points, self.points[1:]):
            self._times.append(self._times[-1] + (b - a).norm() / speed)

    @property
    def duration(self) -> float:
        return self._times[-1]

    def sample(self, times: Sequence[float]) -> List[Setpoint]:
        return [self._sample_one(t) for t in times]

    def _sample_one(self, t: float) -> Setpoint:
        if len(self.points) == 1 or t >= self.duration:
            return Setpoint(time=t, position=self.points[-1])

        t = max(0.0, t)
        index = bisect.bisect_right(self._times, t) - 1
        index = min(index, len(self.points) - 2)

        start, end = self.points[index], self.points[index + 1]
        seg_duration = self._times[index + 1] - self._times[index]
        if seg_duration <= 0.0:
            return Setpoint(time=t, position=end)

        fraction = (t - self._times[index]) / seg_duration
        direction = (end - start).scale(1.0 / (end - start).norm())
        return Setpoint(
            time=t,
            position=lerp(start, end, fraction),
            velocity=direction.scale(self.speed),
        )


class SegmentTrajectoryGenerator:
    """Builds SegmentTrajectory instances from waypoint lists"""

    def generate(self, points: Sequence[Point], max_speed: float) -> SegmentTrajectory:
        """
        Generate a trajectory through points

        Args:
            points: Waypoint positions, first one is the start
            max_speed: Cruise speed in m/s

        Raises:
            GenerationFailure: If there is nothing to fly or the speed is unusable
        """
        if not points:
            raise GenerationFailure("no waypoints to generate a trajectory from")
        if not (max_speed > 0.0) or math.isinf(max_speed):
            raise GenerationFailure(f"invalid trajectory speed {max_speed}")
        return SegmentTrajectory(points, max_speed)
