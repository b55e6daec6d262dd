from __future__ import annotations

import pytest

from domain.errors import InvalidTransitionError
from domain.models import ApplicationState, ApplicationTask, TransitionRecord, UserProfile
from domain.services import (
    TRANSITIONS,
    ApplicationStateMachine,
    ProgressTracker,
    can_transition,
    is_valid_walk,
)
from test.mocks import FakeClock, InMemoryLogger

S = ApplicationState


def _task(clock: FakeClock, total_steps: int = 2) -> ApplicationTask:
    return ApplicationTask(
        task_id="task-1",
        platform="t1",
        profile=UserProfile(full_name="Ada", email="ada@example.com"),
        created_at=clock.now(),
        total_steps=total_steps,
    )


def test_table_covers_every_state_and_terminals_are_dead_ends() -> None:
    assert set(TRANSITIONS) == set(ApplicationState)
    for state in ApplicationState:
        if state.is_terminal:
            assert TRANSITIONS[state] == frozenset()
        else:
            assert {S.FAILED, S.CANCELLED} <= TRANSITIONS[state]


@pytest.mark.parametrize(
    ("source", "target"),
    [
        (S.INITIALIZED, S.FILLING_STEP),
        (S.FILLING_STEP, S.SUBMITTING),
        (S.SUBMITTING, S.COMPLETED),
        (S.ERROR_RECOVERY, S.COMPLETED),
        (S.COMPLETED, S.DETECTING_STEPS),
        (S.FAILED, S.ERROR_RECOVERY),
    ],
)
def test_illegal_edges(source: ApplicationState, target: ApplicationState) -> None:
    assert not can_transition(source, target)


def test_transition_appends_history_and_rejects_illegal_moves() -> None:
    clock = FakeClock()
    machine = ApplicationStateMachine(clock=clock, logger=InMemoryLogger())
    task = _task(clock)

    machine.transition(task, S.DETECTING_STEPS, outcome="started")
    with pytest.raises(InvalidTransitionError):
        machine.transition(task, S.COMPLETED)

    assert task.state is S.DETECTING_STEPS
    assert [(r.from_state, r.to_state) for r in task.history] == [(S.INITIALIZED, S.DETECTING_STEPS)]


def test_terminal_transition_records_reason_and_freezes_task() -> None:
    clock = FakeClock()
    machine = ApplicationStateMachine(clock=clock, logger=InMemoryLogger())
    task = _task(clock)

    clock.advance(3.0)
    machine.transition(task, S.CANCELLED, outcome="cancelled", reason="cancelled by caller")

    assert task.finished_at == clock.now()
    assert task.reason == "cancelled by caller"
    with pytest.raises(InvalidTransitionError):
        machine.transition(task, S.DETECTING_STEPS)


def test_rollback_only_during_recovery() -> None:
    clock = FakeClock()
    machine = ApplicationStateMachine(clock=clock, logger=InMemoryLogger())
    task = _task(clock)
    machine.advance_step(task)

    with pytest.raises(InvalidTransitionError):
        machine.rollback_step(task)

    machine.transition(task, S.ERROR_RECOVERY)
    assert machine.rollback_step(task) == 0
    assert machine.rollback_step(task) == 0


def test_is_valid_walk() -> None:
    clock = FakeClock()
    now = clock.now()
    good = [
        TransitionRecord(S.INITIALIZED, S.DETECTING_STEPS, now),
        TransitionRecord(S.DETECTING_STEPS, S.SUBMITTING, now),
        TransitionRecord(S.SUBMITTING, S.ERROR_RECOVERY, now),
        TransitionRecord(S.ERROR_RECOVERY, S.SUBMITTING, now),
    ]
    assert is_valid_walk(good)
    assert not is_valid_walk(good[1:])
    assert not is_valid_walk([TransitionRecord(S.INITIALIZED, S.SUBMITTING, now)])


def test_progress_snapshot_tracks_phases_and_percentage() -> None:
    clock = FakeClock()
    machine = ApplicationStateMachine(clock=clock, logger=InMemoryLogger())
    tracker = ProgressTracker(clock)
    task = _task(clock, total_steps=4)

    snap = tracker.snapshot(task)
    assert snap.phase == "initialized"
    assert snap.percentage == 0

    clock.advance(1.0)
    machine.transition(task, S.DETECTING_STEPS)
    clock.advance(1.0)
    machine.transition(task, S.FILLING_STEP)
    machine.advance_step(task)
    clock.advance(1.0)
    machine.transition(task, S.VALIDATING_STEP)
    machine.transition(task, S.DETECTING_STEPS)

    snap = tracker.snapshot(task)
    assert snap.phase == "detection"
    assert snap.step_index == 1
    assert snap.percentage == 25
    assert snap.elapsed_seconds == pytest.approx(3.0)
    assert snap.phase_timestamps["detection"] == task.history[0].timestamp
    assert set(snap.phase_timestamps) == {"initialized", "detection", "filling", "validation"}


def test_progress_is_full_on_completion_and_zero_without_steps() -> None:
    clock = FakeClock()
    machine = ApplicationStateMachine(clock=clock, logger=InMemoryLogger())
    tracker = ProgressTracker(clock)
    task = _task(clock, total_steps=0)

    assert tracker.snapshot(task).percentage == 0

    for state in (S.DETECTING_STEPS, S.SUBMITTING, S.AWAITING_CONFIRMATION, S.COMPLETED):
        machine.transition(task, state)
    clock.advance(60.0)

    snap = tracker.snapshot(task)
    assert snap.percentage == 100
    assert snap.phase == "completed"
    assert snap.elapsed_seconds == 0.0
