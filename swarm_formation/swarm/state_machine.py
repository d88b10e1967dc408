"""
Coordinator State Machine

Manages coordinator states and enforces the valid transitions.
"""

from enum import Enum, auto
from typing import Callable, Dict, Set
import time
import logging

logger = logging.getLogger(__name__)


class CoordinatorState(Enum):
    """Coordinator states"""
    IDLE = auto()           # No goal
    VALIDATING = auto()     # Checking and normalising a goal
    INITIALIZING = auto()   # Starting agents and the path action
    TRACKING = auto()       # Polling and aggregating every tick
    SUCCEEDED = auto()      # Goal finished, swarm_success = true
    FAILED = auto()         # Goal rejected, aborted or canceled


# Valid state transitions
VALID_TRANSITIONS: Dict[CoordinatorState, Set[CoordinatorState]] = {
    CoordinatorState.IDLE: {CoordinatorState.VALIDATING},
    CoordinatorState.VALIDATING: {CoordinatorState.INITIALIZING, CoordinatorState.FAILED},
    CoordinatorState.INITIALIZING: {CoordinatorState.TRACKING, CoordinatorState.FAILED},
    CoordinatorState.TRACKING: {CoordinatorState.SUCCEEDED, CoordinatorState.FAILED},
    CoordinatorState.SUCCEEDED: {CoordinatorState.IDLE, CoordinatorState.VALIDATING},
    CoordinatorState.FAILED: {CoordinatorState.IDLE, CoordinatorState.VALIDATING},
}

ACTIVE_STATES = {
    CoordinatorState.VALIDATING,
    CoordinatorState.INITIALIZING,
    CoordinatorState.TRACKING,
}


class CoordinatorStateMachine:
    """
    Coordinator state machine

    Only transitions listed in VALID_TRANSITIONS are allowed; everything
    else is refused and logged.
    """

    def __init__(self):
        """Initialize state machine"""
        self._state = CoordinatorState.IDLE
        self._previous_state = CoordinatorState.IDLE
        self._state_enter_time = time.monotonic()

        # State callbacks
        self._on_enter: Dict[CoordinatorState, Callable[[], None]] = {}
        self._on_exit: Dict[CoordinatorState, Callable[[], None]] = {}

    @property
    def state(self) -> CoordinatorState:
        """Current state"""
        return self._state

    @property
    def previous_state(self) -> CoordinatorState:
        """Previous state"""
        return self._previous_state

    @property
    def time_in_state(self) -> float:
        """Time in current state (seconds)"""
        return time.monotonic() - self._state_enter_time

    @property
    def is_active(self) -> bool:
        """Check if a goal is being processed"""
        return self._state in ACTIVE_STATES

    def can_transition_to(self, new_state: CoordinatorState) -> bool:
        """Check if transition to new state is valid"""
        return new_state in VALID_TRANSITIONS.get(self._state, set())

    def transition_to(self, new_state: CoordinatorState) -> bool:
        """
        Attempt to transition to a new state

        Args:
            new_state: Target state

        Returns:
            True if transition successful
        """
        if not self.can_transition_to(new_state):
            logger.warning(f"Invalid transition: {self._state.name} -> {new_state.name}")
            return False

        old_state = self._state

        # Call exit callback
        if old_state in self._on_exit:
            try:
                self._on_exit[old_state]()
            except Exception as e:
                logger.error(f"Error in exit callback for {old_state.name}: {e}")

        # Update state
        self._previous_state = old_state
        self._state = new_state
        self._state_enter_time = time.monotonic()

        logger.info(f"State transition: {old_state.name} -> {new_state.name}")

        # Call enter callback
        if new_state in self._on_enter:
            try:
                self._on_enter[new_state]()
            except Exception as e:
                logger.error(f"Error in enter callback for {new_state.name}: {e}")

        return True

    def on_enter(self, state: CoordinatorState, callback: Callable[[], None]):
        """Run callback after entering state"""
        self._on_enter[state] = callback

    def on_exit(self, state: CoordinatorState, callback: Callable[[], None]):
        """Run callback before leaving state"""
        self._on_exit[state] = callback

    def get_status(self) -> dict:
        """Get state machine status"""
        return {
            'state': self._state.name,
            'previous_state': self._previous_state.name,
            'time_in_state': self.time_in_state,
            'is_active': self.is_active,
            'valid_transitions': [s.name for s in VALID_TRANSITIONS.get(self._state, set())]
        }
