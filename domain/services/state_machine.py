"""Transition table for application tasks.

Only the edges listed in ``TRANSITIONS`` are legal. Anything else raises
``InvalidTransitionError`` before the task is touched.
"""

from __future__ import annotations

from typing import Iterable, Mapping

from domain.errors import InvalidTransitionError
from domain.models import ApplicationState, ApplicationTask, TransitionRecord
from domain.ports import ClockPort, LoggerPort

S = ApplicationState

_ABORT = frozenset({S.ERROR_RECOVERY, S.FAILED, S.CANCELLED})

TRANSITIONS: Mapping[ApplicationState, frozenset[ApplicationState]] = {
    S.INITIALIZED: frozenset({S.DETECTING_STEPS}) | _ABORT,
    S.DETECTING_STEPS: frozenset({S.FILLING_STEP, S.SUBMITTING}) | _ABORT,
    S.FILLING_STEP: frozenset({S.VALIDATING_STEP}) | _ABORT,
    S.VALIDATING_STEP: frozenset({S.DETECTING_STEPS}) | _ABORT,
    S.SUBMITTING: frozenset({S.AWAITING_CONFIRMATION}) | _ABORT,
    S.AWAITING_CONFIRMATION: frozenset({S.COMPLETED}) | _ABORT,
    S.ERROR_RECOVERY: frozenset({
        S.DETECTING_STEPS,
        S.FILLING_STEP,
        S.VALIDATING_STEP,
        S.SUBMITTING,
        S.AWAITING_CONFIRMATION,
        S.FAILED,
        S.CANCELLED,
    }),
    S.COMPLETED: frozenset(),
    S.FAILED: frozenset(),
    S.CANCELLED: frozenset(),
}


def can_transition(from_state: ApplicationState, to_state: ApplicationState) -> bool:
    return to_state in TRANSITIONS[from_state]


def is_valid_walk(history: Iterable[TransitionRecord]) -> bool:
    """True when ``history`` starts at INITIALIZED and only uses legal edges."""
    expected = S.INITIALIZED
    for record in history:
        if record.from_state is not expected or not can_transition(record.from_state, record.to_state):
            return False
        expected = record.to_state
    return True


class ApplicationStateMachine:
    """Applies transitions to tasks and keeps their history append-only."""

    def __init__(self, *, clock: ClockPort, logger: LoggerPort) -> None:
        self._clock = clock
        self._logger = logger

    def transition(
        self,
        task: ApplicationTask,
        to_state: ApplicationState,
        *,
        outcome: str | None = None,
        reason: str | None = None,
    ) -> TransitionRecord:
        with task.lock:
            from_state = task.state
            if not can_transition(from_state, to_state):
                raise InvalidTransitionError(from_state, to_state)
            now = self._clock.now()
            record = TransitionRecord(
                from_state=from_state,
                to_state=to_state,
                timestamp=now,
                outcome=outcome,
            )
            task.history.append(record)
            task.state = to_state
            if to_state.is_terminal:
                task.finished_at = now
                task.reason = reason or outcome or to_state.value.lower()
        self._logger.info(
            "task_transition",
            task_id=task.task_id,
            from_state=from_state.value,
            to_state=to_state.value,
            step=task.step_index,
            outcome=outcome,
        )
        return record

    def advance_step(self, task: ApplicationTask) -> int:
        with task.lock:
            task.step_index += 1
            return task.step_index

    def rollback_step(self, task: ApplicationTask) -> int:
        """Step back one page; only legal while recovering from an error."""
        with task.lock:
            if task.state is not S.ERROR_RECOVERY:
                raise InvalidTransitionError(task.state, S.ERROR_RECOVERY)
            if task.step_index > 0:
                task.step_index -= 1
            return task.step_index
