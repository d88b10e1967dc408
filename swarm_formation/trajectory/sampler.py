"""
Trajectory Sampler

Wraps a trajectory generator and turns a waypoint list into a replayable,
time-indexed source of lookahead setpoint buffers.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from ..errors import GenerationFailure
from ..utils.geometry import Point
from .generator import SegmentTrajectoryGenerator, Setpoint

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrajectoryCommand:
    """Immutable lookahead buffer produced for one tick"""
    generation: int
    setpoints: Tuple[Setpoint, ...]

    @property
    def first(self) -> Setpoint:
        return self.setpoints[0]


class TrajectorySampler:
    """
    Samples the active trajectory into fixed-dt lookahead windows

    set_waypoints() replaces the trajectory wholesale; nothing from a previous
    path survives a replacement, even a failed one.
    """

    def __init__(self, generator=None, lookahead_points: int = 10, dt: float = 0.1):
        """
        Args:
            generator: Object with generate(points, max_speed) -> trajectory
            lookahead_points: Setpoints per evaluate() window
            dt: Time step between setpoints in a window (seconds)
        """
        if lookahead_points < 1:
            raise ValueError("lookahead_points must be at least 1")
        if dt <= 0:
            raise ValueError("dt must be positive")

        self.generator = generator or SegmentTrajectoryGenerator()
        self.lookahead_points = lookahead_points
        self.dt = dt

        self._trajectory = None
        self._generation = 0

    @property
    def generation(self) -> int:
        """Incremented on every set_waypoints() call"""
        return self._generation

    @property
    def has_trajectory(self) -> bool:
        return self._trajectory is not None

    @property
    def duration(self) -> float:
        return self._trajectory.duration if self._trajectory is not None else 0.0

    def set_waypoints(self, points: Sequence[Point], max_speed: float):
        """
        Replace the trajectory with one through points

        Raises:
            GenerationFailure: If generation fails or yields fewer points
                than a lookahead window needs
        """
        self._trajectory = None
        self._generation += 1

        try:
            trajectory = self.generator.generate(list(points), max_speed)
        except GenerationFailure:
            raise
        except (ValueError, ArithmeticError) as e:
            raise GenerationFailure(f"trajectory generation failed: {e}") from e

        window = self._window(trajectory, 0.0)
        if len(window) < self.lookahead_points:
            raise GenerationFailure(
                f"trajectory generator produced {len(window)} points, "
                f"{self.lookahead_points} requested"
            )

        self._trajectory = trajectory
        logger.info(
            f"Trajectory generation {self._generation}: {len(points)} waypoints, "
            f"{trajectory.duration:.1f}s at {max_speed:.2f}m/s"
        )

    def evaluate(self, t: float) -> List[Setpoint]:
        """
        Lookahead window starting at t

        Returns:
            lookahead_points setpoints at t, t+dt, ...

        Raises:
            GenerationFailure: If no trajectory is set or sampling comes up short
        """
        if self._trajectory is None:
            raise GenerationFailure("no trajectory to evaluate")

        window = self._window(self._trajectory, t)
        if len(window) < self.lookahead_points:
            raise GenerationFailure(
                f"trajectory sampling produced {len(window)} points at t={t:.2f}s"
            )
        return window

    def build_command(self, t: float) -> TrajectoryCommand:
        """evaluate(t) packaged as an immutable command"""
        return TrajectoryCommand(self._generation, tuple(self.evaluate(t)))

    def clear(self):
        """Drop the active trajectory"""
        self._trajectory = None

    def _window(self, trajectory, t: float) -> List[Setpoint]:
        times = [t + i * self.dt for i in range(self.lookahead_points)]
        try:
            return list(trajectory.sample(times))
        except (ValueError, ArithmeticError) as e:
            raise GenerationFailure(f"trajectory sampling failed: {e}") from e

    def get_debug_info(self) -> dict:
        return {
            'generation': self._generation,
            'has_trajectory': self.has_trajectory,
            'duration_s': self.duration,
            'lookahead_points': self.lookahead_points,
            'dt': self.dt,
        }
