"""Drives application tasks through the state machine.

Every outbound action passes through the same gate: cancellation check,
minimum spacing, rate-limiter admission, breaker check, then the executor.
Executor outcomes and distress signals are fed back to the limiter and the
breaker. Step failures are retried locally per the retry policy; breaker and
limiter refusals end the task so callers can reschedule.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field, replace

from domain.errors import (
    CircuitOpenError,
    ConfirmationTimeoutError,
    ErrorKind,
    InvalidTransitionError,
    RateLimitedError,
    StepExecutionError,
    StepTimeoutError,
)
from domain.models import (
    Action,
    ActionKind,
    ActionResult,
    ActionSignal,
    Admission,
    AdmissionReason,
    ApplicationState,
    ApplicationTask,
    AutomationConfig,
    ErrorEntry,
    FieldMapping,
    JobPostingRef,
    ProgressSnapshot,
    TargetConfig,
    TaskResult,
    UserProfile,
)
from domain.ports import ActionExecutorPort, ClockPort, IdGeneratorPort, LoggerPort
from domain.services.circuit_breaker import CircuitBreaker
from domain.services.progress import ProgressTracker
from domain.services.rate_limiter import RateLimiter
from domain.services.retry_policy import RetryPolicy
from domain.services.state_machine import ApplicationStateMachine
from domain.services.target_registry import TargetRegistry, normalize_target

S = ApplicationState


class _TaskCancelled(Exception):
    """Raised at a suspension point once cancellation has been requested."""


@dataclass
class _TaskRun:
    task: ApplicationTask
    target: TargetConfig
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    failures: dict[tuple[ApplicationState, int], int] = field(default_factory=dict)
    field_failures: list[tuple[FieldMapping, StepExecutionError]] = field(default_factory=list)
    pending_error: StepExecutionError | None = None
    resume_state: ApplicationState = S.DETECTING_STEPS
    rollback: bool = False
    # Monotonic time; fixed on first entry to AWAITING_CONFIRMATION.
    confirm_deadline: float | None = None


class JobApplicationAgent:
    """Orchestrates application tasks against rate-limited targets."""

    def __init__(
        self,
        *,
        executor: ActionExecutorPort,
        registry: TargetRegistry,
        clock: ClockPort,
        id_generator: IdGeneratorPort,
        logger: LoggerPort,
        config: AutomationConfig | None = None,
        rng: random.Random | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._executor = executor
        self._registry = registry
        self._clock = clock
        self._id_generator = id_generator
        self._logger = logger
        self._config = config or AutomationConfig()
        rng = rng or random.Random()
        self.breaker = CircuitBreaker(registry, clock=clock, logger=logger)
        self.rate_limiter = RateLimiter(
            registry,
            clock=clock,
            logger=logger,
            breaker=self.breaker,
            rng=rng,
        )
        self.retry_policy = retry_policy or RetryPolicy(
            max_retries=self._config.max_retries,
            submission_max_retries=self._config.submission_max_retries,
            backoff=self._config.backoff,
            rng=rng,
        )
        self.progress = ProgressTracker(clock)
        self.state_machine = ApplicationStateMachine(clock=clock, logger=logger)
        self._tasks: dict[str, ApplicationTask] = {}
        self._runs: dict[str, _TaskRun] = {}

    # -- public API ---------------------------------------------------------

    def create_task(
        self,
        profile: UserProfile,
        target: TargetConfig,
        job: JobPostingRef | None = None,
    ) -> ApplicationTask:
        task = ApplicationTask(
            task_id=self._id_generator.new_task_id(),
            platform=normalize_target(target.platform),
            profile=profile,
            job=job,
            created_at=self._clock.now(),
            total_steps=len(target.steps),
        )
        self._tasks[task.task_id] = task
        return task

    async def start_task(
        self,
        profile: UserProfile,
        target: TargetConfig,
        job: JobPostingRef | None = None,
    ) -> TaskResult:
        task = self.create_task(profile, target, job)
        return await self.run_task(task, target)

    async def run_task(self, task: ApplicationTask, target: TargetConfig) -> TaskResult:
        run = _TaskRun(task=task, target=target)
        if task.cancel_requested:
            run.cancel_event.set()
        self._runs[task.task_id] = run
        self._logger.info(
            "task_started",
            task_id=task.task_id,
            platform=task.platform,
            steps=len(target.steps),
        )
        try:
            async with self._registry.drive_lock(task.platform):
                task.started_at = self._clock.now()
                while not task.is_terminal:
                    await self._step(run)
        finally:
            self._runs.pop(task.task_id, None)
        result = self.result(task)
        log = self._logger.info if result.succeeded else self._logger.warning
        log(
            "task_finished",
            task_id=task.task_id,
            state=result.state.value,
            reason=result.reason,
            duration_seconds=round(result.duration_seconds, 3),
        )
        return result

    def cancel(self, task_id: str) -> bool:
        """Request cancellation. False when the task is unknown or already terminal."""
        task = self._tasks.get(task_id)
        if task is None or task.is_terminal:
            return False
        task.cancel_requested = True
        run = self._runs.get(task_id)
        if run is not None:
            run.cancel_event.set()
        self._logger.info("task_cancel_requested", task_id=task_id)
        return True

    def forget(self, task_id: str) -> bool:
        """Drop a finished task from the agent. Running tasks are kept."""
        task = self._tasks.get(task_id)
        if task is None or not task.is_terminal:
            return False
        del self._tasks[task_id]
        return True

    def get_task(self, task_id: str) -> ApplicationTask | None:
        return self._tasks.get(task_id)

    def snapshot(self, task_id: str) -> ProgressSnapshot | None:
        task = self._tasks.get(task_id)
        if task is None:
            return None
        return self.progress.snapshot(task)

    def result(self, task: ApplicationTask) -> TaskResult:
        with task.lock:
            history = tuple(task.history)
            errors = tuple(task.errors)
            started = task.started_at or task.created_at
            finished = task.finished_at or self._clock.now()
            reason = task.reason or task.state.value.lower()
        return TaskResult(
            task_id=task.task_id,
            platform=task.platform,
            state=task.state,
            reason=reason,
            duration_seconds=max(0.0, (finished - started).total_seconds()),
            history=history,
            errors=errors,
            progress=self.progress.snapshot(task),
            last_error=errors[-1].message if errors else None,
        )

    # -- state dispatch -----------------------------------------------------

    async def _step(self, run: _TaskRun) -> None:
        task = run.task
        state = task.state
        if state is not S.ERROR_RECOVERY:
            run.resume_state = state
            run.rollback = False
        handler = {
            S.INITIALIZED: self._on_initialized,
            S.DETECTING_STEPS: self._on_detecting_steps,
            S.FILLING_STEP: self._on_filling_step,
            S.VALIDATING_STEP: self._on_validating_step,
            S.SUBMITTING: self._on_submitting,
            S.AWAITING_CONFIRMATION: self._on_awaiting_confirmation,
            S.ERROR_RECOVERY: self._on_error_recovery,
        }[state]
        try:
            self._checkpoint(run)
            await handler(run)
        except _TaskCancelled:
            self.state_machine.transition(task, S.CANCELLED, outcome="cancelled", reason="cancelled by caller")
        except StepExecutionError as exc:
            self._handle_step_failure(run, exc)
        except (CircuitOpenError, RateLimitedError) as exc:
            self._log_error(task, str(exc), kind=type(exc).__name__)
            self.state_machine.transition(task, S.FAILED, outcome="target_unhealthy", reason=str(exc))
        except ConfirmationTimeoutError as exc:
            self._log_error(task, str(exc), kind=ErrorKind.TIMEOUT.value)
            self.state_machine.transition(task, S.FAILED, outcome=exc.reason, reason=exc.reason)
        except InvalidTransitionError:
            raise
        except Exception as exc:
            if task.is_terminal:
                raise
            self._logger.error(
                "task_unexpected_error",
                task_id=task.task_id,
                state=state.value,
                error=str(exc),
            )
            self._log_error(task, str(exc), kind=type(exc).__name__)
            self.state_machine.transition(
                task, S.FAILED, outcome="unexpected_error", reason=f"unexpected error: {exc}",
            )
            raise

    async def _on_initialized(self, run: _TaskRun) -> None:
        self.state_machine.transition(run.task, S.DETECTING_STEPS, outcome="started")

    async def _on_detecting_steps(self, run: _TaskRun) -> None:
        task, target = run.task, run.target
        step_cfg = target.steps[task.step_index] if task.step_index < len(target.steps) else None
        hint = step_cfg.detect_hint if step_cfg else None
        result = await self._perform(
            run,
            Action(ActionKind.INSPECT, selector_hint=hint or target.url),
            timeout=self._step_timeout(run),
        )
        if not result.success:
            raise self._error_from(result, task.step_index)

        total = result.data.get("total_steps")
        if isinstance(total, int) and total > 0:
            with task.lock:
                task.total_steps = total
        has_more = result.data.get("has_more_steps")
        if has_more is None:
            has_more = task.step_index < len(target.steps)

        if not has_more:
            self.state_machine.transition(task, S.SUBMITTING, outcome="no_more_steps")
            return
        if task.step_index >= len(target.steps):
            raise StepExecutionError(
                f"No field mapping configured for step {task.step_index + 1}",
                step=task.step_index,
                kind=ErrorKind.STRUCTURAL,
            )
        self.state_machine.transition(task, S.FILLING_STEP, outcome=f"step_{task.step_index + 1}")

    async def _on_filling_step(self, run: _TaskRun) -> None:
        task = run.task
        step_cfg = run.target.steps[task.step_index]
        run.field_failures = []
        for mapping in step_cfg.fields:
            action = Action(mapping.kind, selector_hint=mapping.selector_hint, value=mapping.value)
            try:
                result = await self._perform(run, action, timeout=self._step_timeout(run))
            except StepTimeoutError as exc:
                self._record_field_failure(run, mapping, exc)
                continue
            if not result.success:
                self._record_field_failure(run, mapping, self._error_from(result, task.step_index))
        failed = len(run.field_failures)
        outcome = "filled" if failed == 0 else f"filled_with_{failed}_failures"
        self.state_machine.transition(task, S.VALIDATING_STEP, outcome=outcome)

    async def _on_validating_step(self, run: _TaskRun) -> None:
        task = run.task
        required = [(m, err) for m, err in run.field_failures if m.required]
        if required:
            mapping, cause = required[-1]
            names = ", ".join(m.name for m, _ in required)
            run.resume_state = S.FILLING_STEP
            raise StepExecutionError(
                f"Required field(s) failed on step {task.step_index + 1}: {names} ({cause})",
                step=task.step_index,
                kind=self.retry_policy.classify(cause),
                signal=cause.signal,
            )
        self._mark_optional_failures_recovered(run)

        step_cfg = run.target.steps[task.step_index]
        if step_cfg.next_hint:
            result = await self._perform(
                run,
                Action(ActionKind.NAVIGATE, selector_hint=step_cfg.next_hint),
                timeout=self._step_timeout(run),
            )
            if not result.success:
                if result.signal is ActionSignal.STEP_RESET:
                    run.resume_state = S.DETECTING_STEPS
                    run.rollback = True
                raise self._error_from(result, task.step_index)

        run.field_failures = []
        self.state_machine.advance_step(task)
        self.state_machine.transition(task, S.DETECTING_STEPS, outcome="step_validated")

    async def _on_submitting(self, run: _TaskRun) -> None:
        task = run.task
        try:
            result = await self._perform(
                run,
                Action(ActionKind.SUBMIT, selector_hint=run.target.submit_hint),
                timeout=self._step_timeout(run),
            )
        except StepTimeoutError as exc:
            raise StepTimeoutError(str(exc), step=task.step_index, retryable=False) from exc
        if not result.success:
            raise self._error_from(result, task.step_index)
        self.state_machine.transition(task, S.AWAITING_CONFIRMATION, outcome="submitted")

    async def _on_awaiting_confirmation(self, run: _TaskRun) -> None:
        task = run.task
        strategy = run.target.confirmation
        timeout = strategy.timeout_seconds or self._config.confirmation_timeout_seconds
        interval = max(strategy.poll_interval_seconds, 0.01)
        if run.confirm_deadline is None:
            run.confirm_deadline = self._clock.monotonic() + timeout
        while True:
            remaining = run.confirm_deadline - self._clock.monotonic()
            if remaining <= 0:
                raise ConfirmationTimeoutError(timeout)
            try:
                result = await self._perform(
                    run,
                    Action(ActionKind.CONFIRM, selector_hint=strategy.selector_hint),
                    timeout=min(self._step_timeout(run), remaining),
                    admit=False,
                )
            except StepTimeoutError as exc:
                self._logger.info("confirmation_poll_timed_out", task_id=task.task_id, error=str(exc))
                result = None
            if result is not None and result.success and result.data.get("confirmed"):
                self.state_machine.transition(task, S.COMPLETED, outcome="confirmed", reason="confirmed")
                return
            remaining = run.confirm_deadline - self._clock.monotonic()
            await self._pause(run, min(interval, remaining))

    async def _on_error_recovery(self, run: _TaskRun) -> None:
        task = run.task
        error = run.pending_error
        if error is None:
            raise RuntimeError("ERROR_RECOVERY entered without a pending error")

        resume = run.resume_state
        failures = run.failures.get((resume, task.step_index), 0)
        submission = resume is S.SUBMITTING

        if not self.breaker.allows(task.platform):
            reason = f"circuit open for {task.platform}: {error}"
            self.state_machine.transition(task, S.FAILED, outcome="circuit_open", reason=reason)
            return
        if not self.retry_policy.should_retry(error, failures, submission=submission):
            self.breaker.record_failure(task.platform)
            self.state_machine.transition(
                task,
                S.FAILED,
                outcome="max_retries_exceeded",
                reason=f"max retries exceeded after {failures} attempt(s): {error}",
            )
            return

        delay = self.retry_policy.compute_delay(failures - 1)
        self._logger.info(
            "task_retry_scheduled",
            task_id=task.task_id,
            resume_state=resume.value,
            attempt=failures + 1,
            delay_seconds=round(delay, 3),
        )
        await self._pause(run, delay)
        self._mark_step_errors_recovered(task)
        if run.rollback:
            self.state_machine.rollback_step(task)
        run.pending_error = None
        self.state_machine.transition(task, resume, outcome=f"retry_{failures}")

    # -- outbound gate ------------------------------------------------------

    async def _perform(
        self,
        run: _TaskRun,
        action: Action,
        *,
        timeout: float,
        admit: bool = True,
    ) -> ActionResult:
        task = run.task
        target = task.platform
        self._checkpoint(run)

        admission: Admission | None = None
        if admit:
            if self._config.enforce_spacing:
                await self._pause(run, self.rate_limiter.seconds_until_next_action(target))
            admission = await self._admit(run, action.kind.value)
            if task.cancel_requested:
                self.rate_limiter.release(target, admission)
                raise _TaskCancelled()

        try:
            self.breaker.check(target)
        except CircuitOpenError:
            if admission is not None:
                self.rate_limiter.release(target, admission)
            raise

        self.rate_limiter.mark_action(target)
        try:
            result = await asyncio.wait_for(self._executor.execute(action), timeout=timeout)
        except asyncio.TimeoutError as exc:
            self.breaker.record_failure(target)
            raise StepTimeoutError(
                f"{action.kind.value} on '{action.selector_hint}' timed out after {timeout:.2f}s",
                step=task.step_index,
            ) from exc
        except asyncio.CancelledError:
            self.breaker.release_probe(target)
            raise
        except BaseException:
            self.breaker.record_failure(target)
            raise

        self._absorb(task, result, admitted=admission is not None)
        return result

    async def _admit(self, run: _TaskRun, operation: str) -> Admission:
        target = run.task.platform
        waited = 0.0
        while True:
            admission = self.rate_limiter.is_request_allowed(target, operation)
            if admission.allowed:
                return admission
            if admission.reason is AdmissionReason.CIRCUIT_OPEN:
                raise CircuitOpenError(target, admission.retry_after_seconds)
            wait = admission.retry_after_seconds
            if waited + wait > self._config.max_admission_wait_seconds:
                raise RateLimitedError(target, admission.reason.value, wait)
            self._logger.info(
                "admission_denied",
                task_id=run.task.task_id,
                target=target,
                reason=admission.reason.value,
                retry_after_seconds=round(wait, 3),
            )
            await self._pause(run, wait)
            waited += wait

    def _absorb(self, task: ApplicationTask, result: ActionResult, *, admitted: bool) -> None:
        """Feed an executor outcome to the breaker and limiter.

        Only admitted actions may widen the limit; confirmation polls bypass
        admission and so never count as rate-limit successes.
        """
        target = task.platform
        if result.signal is ActionSignal.THROTTLED:
            retry_after = result.data.get("retry_after")
            self.rate_limiter.record_throttle(
                target, float(retry_after) if retry_after is not None else None,
            )
        elif result.signal is ActionSignal.DETECTED_AUTOMATION:
            self._logger.warning("automation_detected", task_id=task.task_id, target=target)
            self.rate_limiter.record_distress(target)

        if result.success and result.signal is None:
            self.breaker.record_success(target)
            if admitted:
                self.rate_limiter.record_success(target)
        elif result.success and result.signal is not ActionSignal.DETECTED_AUTOMATION:
            self.breaker.record_success(target)
        else:
            self.breaker.record_failure(target)

    # -- suspension ---------------------------------------------------------

    async def _pause(self, run: _TaskRun, seconds: float) -> None:
        self._checkpoint(run)
        if seconds <= 0:
            return
        sleeper = asyncio.ensure_future(self._clock.sleep(seconds))
        watcher = asyncio.ensure_future(run.cancel_event.wait())
        _, pending = await asyncio.wait({sleeper, watcher}, return_when=asyncio.FIRST_COMPLETED)
        for future in pending:
            future.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._checkpoint(run)

    @staticmethod
    def _checkpoint(run: _TaskRun) -> None:
        if run.task.cancel_requested:
            raise _TaskCancelled()

    # -- failure bookkeeping -----------------------------------------------

    def _handle_step_failure(self, run: _TaskRun, error: StepExecutionError) -> None:
        task = run.task
        key = (run.resume_state, task.step_index)
        run.failures[key] = run.failures.get(key, 0) + 1
        kind = self.retry_policy.classify(error)
        self._log_error(task, str(error), kind=kind.value)
        self._logger.warning(
            "step_failed",
            task_id=task.task_id,
            state=task.state.value,
            step=task.step_index,
            kind=kind.value,
            attempt=run.failures[key],
            error=str(error),
        )
        if not self.retry_policy.is_retryable(error):
            self.state_machine.transition(
                task, S.FAILED, outcome="non_retryable", reason=f"non-retryable {kind.value} error: {error}",
            )
            return
        run.pending_error = error
        self.state_machine.transition(task, S.ERROR_RECOVERY, outcome=kind.value)

    def _record_field_failure(
        self,
        run: _TaskRun,
        mapping: FieldMapping,
        error: StepExecutionError,
    ) -> None:
        run.field_failures.append((mapping, error))
        self._log_error(run.task, f"{mapping.name}: {error}", kind=self.retry_policy.classify(error).value)

    def _log_error(self, task: ApplicationTask, message: str, *, kind: str | None = None) -> None:
        with task.lock:
            task.errors.append(ErrorEntry(
                step=task.step_index,
                state=task.state,
                message=message,
                timestamp=self._clock.now(),
                kind=kind,
            ))

    @staticmethod
    def _mark_step_errors_recovered(task: ApplicationTask) -> None:
        with task.lock:
            for index, entry in enumerate(task.errors):
                if entry.step == task.step_index and not entry.recovered:
                    task.errors[index] = replace(entry, recovered=True)

    @staticmethod
    def _mark_optional_failures_recovered(run: _TaskRun) -> None:
        task = run.task
        names = {f"{m.name}: " for m, _ in run.field_failures}
        if not names:
            return
        with task.lock:
            for index, entry in enumerate(task.errors):
                if entry.step == task.step_index and not entry.recovered and any(
                    entry.message.startswith(prefix) for prefix in names
                ):
                    task.errors[index] = replace(entry, recovered=True)

    def _error_from(self, result: ActionResult, step: int) -> StepExecutionError:
        kind = ErrorKind.THROTTLED if result.signal is ActionSignal.THROTTLED else None
        return StepExecutionError(
            result.error or "action failed",
            step=step,
            kind=kind,
            signal=result.signal,
        )

    def _step_timeout(self, run: _TaskRun) -> float:
        task, target = run.task, run.target
        if task.step_index < len(target.steps):
            step_timeout = target.steps[task.step_index].timeout_seconds
            if step_timeout is not None:
                return step_timeout
        return target.step_timeout_seconds or self._config.step_timeout_seconds
