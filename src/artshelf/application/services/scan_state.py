"""Lifecycle state machine of a scanner session."""

import logging

from artshelf.domain.entities import ScanState
from artshelf.domain.exceptions import InvalidStateException

logger = logging.getLogger(__name__)

# Hey future me - COUNTING only happens for force rescans (it's the truncate step). A normal scan
# goes IDLE -> DISCOVERING directly. DISCOVERING -> FINALIZING is the "nothing to do" shortcut.
# Every non-terminal state can fail. COMPLETE/FAILED only go back to IDLE (next scan).
TRANSITIONS: dict[ScanState, frozenset[ScanState]] = {
    ScanState.IDLE: frozenset({ScanState.COUNTING, ScanState.DISCOVERING, ScanState.FAILED}),
    ScanState.COUNTING: frozenset({ScanState.DISCOVERING, ScanState.FAILED}),
    ScanState.DISCOVERING: frozenset(
        {ScanState.BATCHING, ScanState.FINALIZING, ScanState.FAILED}
    ),
    ScanState.BATCHING: frozenset({ScanState.FINALIZING, ScanState.FAILED}),
    ScanState.FINALIZING: frozenset({ScanState.COMPLETE, ScanState.FAILED}),
    ScanState.COMPLETE: frozenset({ScanState.IDLE}),
    ScanState.FAILED: frozenset({ScanState.IDLE}),
}

# States in which a new scan may begin
STARTABLE_STATES: frozenset[ScanState] = frozenset(
    {ScanState.IDLE, ScanState.COMPLETE, ScanState.FAILED}
)


class ScanStateMachine:
    """Tracks and validates the state of one scanner session."""

    def __init__(self, initial: ScanState = ScanState.IDLE) -> None:
        self._state = initial

    @property
    def state(self) -> ScanState:
        """Current state."""
        return self._state

    @property
    def is_running(self) -> bool:
        """True between start and COMPLETE/FAILED."""
        return self._state not in STARTABLE_STATES

    def can_transition(self, target: ScanState) -> bool:
        """Whether ``target`` is reachable from the current state."""
        return target in TRANSITIONS[self._state]

    def transition(self, target: ScanState) -> None:
        """Move to ``target``.

        Raises:
            InvalidStateException: If the move is not in the transition table
        """
        if not self.can_transition(target):
            raise InvalidStateException(
                f"Illegal scan state transition: {self._state.value} -> {target.value}"
            )
        logger.debug("Scan state %s -> %s", self._state.value, target.value)
        self._state = target

    def begin(self) -> None:
        """Reset a finished machine to IDLE before a new run.

        Raises:
            InvalidStateException: If a run is still in progress
        """
        if self.is_running:
            raise InvalidStateException(
                f"Scan already in progress (state: {self._state.value})"
            )
        if self._state != ScanState.IDLE:
            self.transition(ScanState.IDLE)

    def fail(self) -> None:
        """Move to FAILED from wherever we are (no-op if already FAILED)."""
        if self._state == ScanState.FAILED:
            return
        if not self.can_transition(ScanState.FAILED):
            # COMPLETE -> FAILED isn't a thing, a crash after completion is just logged
            return
        self.transition(ScanState.FAILED)
