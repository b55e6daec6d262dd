from __future__ import annotations

from datetime import datetime

from domain.models import ApplicationState, ApplicationTask, ProgressSnapshot
from domain.ports import ClockPort

PHASES: dict[ApplicationState, str] = {
    ApplicationState.INITIALIZED: "initialized",
    ApplicationState.DETECTING_STEPS: "detection",
    ApplicationState.FILLING_STEP: "filling",
    ApplicationState.VALIDATING_STEP: "validation",
    ApplicationState.SUBMITTING: "submission",
    ApplicationState.AWAITING_CONFIRMATION: "confirmation",
    ApplicationState.ERROR_RECOVERY: "recovery",
    ApplicationState.COMPLETED: "completed",
    ApplicationState.FAILED: "failed",
    ApplicationState.CANCELLED: "cancelled",
}


class ProgressTracker:
    """Projects a task's history into a ``ProgressSnapshot``.

    Snapshots are recomputed on every call and never mutate the task, so
    they are safe to poll while the task is running.
    """

    def __init__(self, clock: ClockPort) -> None:
        self._clock = clock

    def snapshot(self, task: ApplicationTask) -> ProgressSnapshot:
        with task.lock:
            state = task.state
            step_index = task.step_index
            total_steps = task.total_steps
            history = list(task.history)
            started = task.started_at or task.created_at
            finished = task.finished_at

        phase_timestamps: dict[str, datetime] = {PHASES[ApplicationState.INITIALIZED]: task.created_at}
        for record in history:
            phase_timestamps.setdefault(PHASES[record.to_state], record.timestamp)

        end = finished or self._clock.now()
        return ProgressSnapshot(
            task_id=task.task_id,
            state=state,
            phase=PHASES[state],
            step_index=step_index,
            total_steps=total_steps,
            percentage=self._percentage(state, step_index, total_steps),
            phase_timestamps=phase_timestamps,
            elapsed_seconds=max(0.0, (end - started).total_seconds()),
        )

    @staticmethod
    def _percentage(state: ApplicationState, step_index: int, total_steps: int) -> int:
        if state is ApplicationState.COMPLETED:
            return 100
        if total_steps <= 0:
            return 0
        return min(100, round(step_index / total_steps * 100))
