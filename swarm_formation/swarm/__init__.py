"""
Swarm coordination module

Agent controllers, frame broadcasting, status aggregation and the
formation coordinator state machine.
"""

from .actions import (
    ActionClient,
    FollowPathFeedback,
    FollowPathGoal,
    FollowPathResult,
    FollowReferenceGoal,
    GoalHandle,
    GoalStatus,
    WrappedResult,
    YawMode,
)
from .agent import AgentController, AgentSnapshot
from .coordinator import FormationCoordinator, FormationState, SwarmBehavior
from .frames import FrameBroadcaster, FrameTree, StampedTransform
from .state_machine import CoordinatorState, CoordinatorStateMachine
from .status import AgentStatus, CompositeStatus, PathStatus, aggregate_status

__all__ = [
    # Actions
    'ActionClient',
    'GoalHandle',
    'GoalStatus',
    'WrappedResult',
    'YawMode',
    'FollowReferenceGoal',
    'FollowPathGoal',
    'FollowPathFeedback',
    'FollowPathResult',
    # Agents
    'AgentController',
    'AgentSnapshot',
    # Frames
    'FrameTree',
    'FrameBroadcaster',
    'StampedTransform',
    # Status
    'AgentStatus',
    'PathStatus',
    'CompositeStatus',
    'aggregate_status',
    # Coordinator
    'CoordinatorState',
    'CoordinatorStateMachine',
    'FormationCoordinator',
    'FormationState',
    'SwarmBehavior',
]
