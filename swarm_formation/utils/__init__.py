"""
Utility modules
"""

from .geometry import Point, Quaternion, Pose, Transform, yaw_to_quaternion, quaternion_to_yaw
from .logger import setup_logging, MissionDataLogger

__all__ = [
    'Point', 'Quaternion', 'Pose', 'Transform',
    'yaw_to_quaternion', 'quaternion_to_yaw',
    'setup_logging', 'MissionDataLogger',
]
