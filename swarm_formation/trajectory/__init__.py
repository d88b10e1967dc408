"""
Trajectory generation and sampling
"""

from .generator import Setpoint, SegmentTrajectory, SegmentTrajectoryGenerator
from .sampler import TrajectorySampler, TrajectoryCommand

__all__ = [
    'Setpoint',
    'SegmentTrajectory',
    'SegmentTrajectoryGenerator',
    'TrajectorySampler',
    'TrajectoryCommand',
]
