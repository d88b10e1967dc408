"""
Swarm errors

Every failure a mission can report is one of these. The coordinator turns
them into a failed mission result carrying the message as reason.
"""


class SwarmError(Exception):
    """Base class for swarm coordination errors"""
    pass


class ValidationError(SwarmError):
    """Raised when a mission goal is malformed or cannot be normalised"""
    pass


class GenerationFailure(SwarmError):
    """Raised when the trajectory sampler cannot produce the requested points"""
    pass


class EndpointUnavailable(SwarmError):
    """Raised when a remote action server does not answer within the timeout"""
    pass


class RemoteRejected(SwarmError):
    """Raised when a remote action server refuses a goal"""
    pass


class RemoteAborted(SwarmError):
    """Raised when a remote action aborts or is canceled during execution"""
    pass


class GoalRejected(SwarmError):
    """Raised when a goal arrives while another goal is still active"""
    pass


class FrameLookupError(SwarmError):
    """Raised when no transform chain connects two frames"""
    pass
