"""
Swarm status

Agent and path lifecycle states, the remote status mapping, and the
composite status precedence rule.
"""

from enum import Enum, auto
from typing import Iterable

from .actions import GoalStatus


class AgentStatus(Enum):
    """Lifecycle of one agent's reference-following action"""
    UNSTARTED = auto()  # No action sent for this goal
    PENDING = auto()    # Goal sent, no answer yet
    RUNNING = auto()    # Tracking its formation slot
    SUCCEEDED = auto()
    ABORTED = auto()    # Aborted, canceled or lost
    REJECTED = auto()   # Refused by the remote side


class PathStatus(Enum):
    """Lifecycle of the top-level path-following action"""
    PENDING = auto()    # Goal sent, no answer yet
    RUNNING = auto()
    SUCCEEDED = auto()
    ABORTED = auto()
    CANCELED = auto()
    REJECTED = auto()
    UNKNOWN = auto()    # Result with an unrecognised code


class CompositeStatus(Enum):
    """Aggregated mission verdict"""
    RUNNING = auto()
    SUCCEEDED = auto()
    FAILED = auto()


AGENT_FAILED = {AgentStatus.ABORTED, AgentStatus.REJECTED}
AGENT_NOT_STARTED = {AgentStatus.UNSTARTED, AgentStatus.PENDING}
PATH_FAILED = {PathStatus.ABORTED, PathStatus.CANCELED, PathStatus.REJECTED, PathStatus.UNKNOWN}
PATH_IN_FLIGHT = {PathStatus.PENDING, PathStatus.RUNNING}


def agent_status_from_remote(status: GoalStatus) -> AgentStatus:
    """
    Map a remote goal status onto the agent lifecycle

    Tracking a formation slot never "finishes", so a remote success still
    means the agent is running.
    """
    if status in (GoalStatus.ACCEPTED, GoalStatus.EXECUTING, GoalStatus.SUCCEEDED):
        return AgentStatus.RUNNING
    return AgentStatus.ABORTED


def path_status_from_result(code: GoalStatus) -> PathStatus:
    """Map a path action result code onto the path lifecycle"""
    if code == GoalStatus.SUCCEEDED:
        return PathStatus.SUCCEEDED
    if code == GoalStatus.ABORTED:
        return PathStatus.ABORTED
    if code == GoalStatus.CANCELED:
        return PathStatus.CANCELED
    return PathStatus.UNKNOWN


def aggregate_status(agent_statuses: Iterable[AgentStatus],
                     path_status: PathStatus) -> CompositeStatus:
    """
    Composite verdict by precedence:

    1. any agent Aborted/Rejected           -> FAILED
    2. path Aborted/Canceled/Rejected/unknown -> FAILED
    3. path Succeeded, no agent Unstarted/Pending -> SUCCEEDED
    4. otherwise                            -> RUNNING
    """
    agent_statuses = list(agent_statuses)

    if any(s in AGENT_FAILED for s in agent_statuses):
        return CompositeStatus.FAILED

    if path_status in PATH_FAILED:
        return CompositeStatus.FAILED

    if (path_status == PathStatus.SUCCEEDED and
            not any(s in AGENT_NOT_STARTED for s in agent_statuses)):
        return CompositeStatus.SUCCEEDED

    return CompositeStatus.RUNNING
