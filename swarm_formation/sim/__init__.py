"""
In-process simulation of the swarm's remote action servers
"""

from .action_servers import (
    FollowPathServer,
    FollowReferenceServer,
    SimActionClient,
    SimulatedActionServer,
    SimulatedSwarm,
)

__all__ = [
    'SimulatedActionServer',
    'FollowReferenceServer',
    'FollowPathServer',
    'SimActionClient',
    'SimulatedSwarm',
]
