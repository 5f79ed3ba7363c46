"""Progress model for the three visible phases of an assistant turn."""

import logging
from collections.abc import Callable
from enum import Enum

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    """Phases of a turn, in the order they happen."""

    SEARCHING = "searching"
    RESPONDING = "responding"
    CHARTING = "charting"


class StageState(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETE = "complete"


STAGE_ORDER: tuple[Stage, ...] = (Stage.SEARCHING, Stage.RESPONDING, Stage.CHARTING)

StageListener = Callable[[dict[Stage, StageState]], None]


class StageTransitionError(Exception):
    """Raised when a transition would move progress backwards."""

    pass


class StageTracker:
    """Finite-state progress tracker for one turn at a time.

    Invariants:
        - at most one stage is ``active``;
        - activating or completing a stage completes every earlier stage;
        - a ``complete`` stage never goes back, except through :meth:`reset`.

    Listeners receive a snapshot after every change.
    """

    def __init__(self) -> None:
        self._states: dict[Stage, StageState] = {s: StageState.PENDING for s in STAGE_ORDER}
        self._listeners: list[StageListener] = []

    def state(self, stage: Stage) -> StageState:
        return self._states[stage]

    def snapshot(self) -> dict[Stage, StageState]:
        return dict(self._states)

    @property
    def active_stage(self) -> Stage | None:
        for stage in STAGE_ORDER:
            if self._states[stage] is StageState.ACTIVE:
                return stage
        return None

    @property
    def is_busy(self) -> bool:
        """True while any stage is active."""
        return self.active_stage is not None

    def subscribe(self, listener: StageListener) -> Callable[[], None]:
        """Register a listener. Returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def reset(self) -> None:
        """Put every stage back to ``pending``."""
        self._states = {s: StageState.PENDING for s in STAGE_ORDER}
        self._notify()

    def activate(self, stage: Stage) -> None:
        """Make ``stage`` the active stage, completing every earlier one."""
        if self._states[stage] is StageState.ACTIVE:
            return
        self._check_forward(stage)
        self._complete_before(stage)
        self._states[stage] = StageState.ACTIVE
        self._notify()

    def complete(self, stage: Stage) -> None:
        """Mark ``stage`` complete, possibly skipping ``active``."""
        if self._states[stage] is StageState.COMPLETE:
            return
        self._check_forward(stage)
        self._complete_before(stage)
        self._states[stage] = StageState.COMPLETE
        self._notify()

    def revert(self, stage: Stage) -> None:
        """Send an active stage back to ``pending``.

        Used when a phase could not finish and should be shown as not yet
        available rather than failed.
        """
        state = self._states[stage]
        if state is StageState.COMPLETE:
            raise StageTransitionError(f"{stage.value} is complete and cannot revert")
        if state is StageState.PENDING:
            return
        self._states[stage] = StageState.PENDING
        self._notify()

    def _check_forward(self, stage: Stage) -> None:
        later = STAGE_ORDER[STAGE_ORDER.index(stage) + 1 :]
        for other in later:
            if self._states[other] is not StageState.PENDING:
                current = self._states[other].value
                raise StageTransitionError(
                    f"cannot move to {stage.value} while {other.value} is {current}"
                )

    def _complete_before(self, stage: Stage) -> None:
        for earlier in STAGE_ORDER[: STAGE_ORDER.index(stage)]:
            self._states[earlier] = StageState.COMPLETE

    def _notify(self) -> None:
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            listener(snapshot)
