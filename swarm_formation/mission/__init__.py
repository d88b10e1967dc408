"""
Mission module

Goal, feedback and result records for swarm formation missions.
"""

from .models import (
    Waypoint,
    MissionGoal,
    MissionFeedback,
    MissionResult,
)
from ..errors import ValidationError

__all__ = [
    'Waypoint',
    'MissionGoal',
    'MissionFeedback',
    'MissionResult',
    'ValidationError',
]
