"""Shared fixtures, context and steps for BDD step definitions."""
from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field, replace

import pytest
from pytest_bdd import given, parsers, then, when

from domain.models import (
    ActionKind,
    ApplicationState,
    AutomationConfig,
    BackoffSettings,
    ConfirmationStrategy,
    FieldMapping,
    RateLimitSettings,
    StepConfig,
    TargetConfig,
    TaskResult,
    UserProfile,
)
from domain.services import JobApplicationAgent, TargetRegistry, is_valid_walk
from test.mocks import FakeClock, InMemoryLogger, ScriptedActionExecutor, SequentialIdGenerator, fail


@dataclass
class FlowContext:
    """Holds mutable state shared across BDD steps."""

    config: AutomationConfig = field(default_factory=lambda: AutomationConfig(
        rate_limit=RateLimitSettings(base=50, burst=50),
        backoff=BackoffSettings(base_seconds=1.0, max_seconds=30.0),
        enforce_spacing=False,
    ))
    profile: UserProfile = field(
        default_factory=lambda: UserProfile(full_name="Jane Doe", email="jane@example.com"),
    )
    platform: str = "https://careers.example.com/apply"
    steps: list[StepConfig] = field(default_factory=list)
    confirmation: ConfirmationStrategy = field(default_factory=ConfirmationStrategy)
    executor: ScriptedActionExecutor = field(default_factory=ScriptedActionExecutor)
    clock: FakeClock = field(default_factory=FakeClock)
    logger: InMemoryLogger = field(default_factory=InMemoryLogger)
    registry: TargetRegistry | None = None
    agent: JobApplicationAgent | None = None
    results: list[TaskResult] = field(default_factory=list)

    @property
    def last(self) -> TaskResult:
        assert self.results, "no task has run yet"
        return self.results[-1]


@pytest.fixture()
def flow() -> FlowContext:
    return FlowContext()


def target_of(ctx: FlowContext) -> TargetConfig:
    return TargetConfig(
        platform=ctx.platform,
        steps=tuple(ctx.steps),
        submit_hint="Submit application",
        confirmation=ctx.confirmation,
    )


def agent_of(ctx: FlowContext) -> JobApplicationAgent:
    """Build the agent on first use so every task in a scenario shares target health."""
    if ctx.agent is None:
        ctx.registry = TargetRegistry(
            rate_limit=ctx.config.rate_limit, breaker=ctx.config.breaker, presets={},
        )
        ctx.agent = JobApplicationAgent(
            executor=ctx.executor,
            registry=ctx.registry,
            clock=ctx.clock,
            id_generator=SequentialIdGenerator(),
            logger=ctx.logger,
            config=ctx.config,
            rng=random.Random(11),
        )
    return ctx.agent


# -- Given ------------------------------------------------------------------


@given(parsers.re(r"a target with (?P<count>\d+) form steps?"), converters={"count": int})
def given_target(flow: FlowContext, count: int) -> None:
    flow.steps = [
        StepConfig(
            fields=(FieldMapping(name=f"field_{n}", selector_hint=f"Field {n}", value=f"value {n}"),),
            next_hint="Next" if n < count else None,
        )
        for n in range(1, count + 1)
    ]


@given(parsers.parse("retries are limited to {count:d}"))
def given_max_retries(flow: FlowContext, count: int) -> None:
    flow.config = replace(flow.config, max_retries=count)


@given(parsers.parse('the next {count:d} "{kind}" actions fail with "{error}"'))
def given_failures(flow: FlowContext, count: int, kind: str, error: str) -> None:
    flow.executor.script(ActionKind(kind), *[fail(error) for _ in range(count)])


# -- When -------------------------------------------------------------------


@when("the application task runs")
@when("the application task runs again")
def when_task_runs(flow: FlowContext) -> None:
    agent = agent_of(flow)
    flow.results.append(asyncio.run(agent.start_task(flow.profile, target_of(flow))))


@when(parsers.parse("{seconds:d} seconds pass"))
def when_time_passes(flow: FlowContext, seconds: int) -> None:
    flow.clock.advance(float(seconds))


# -- Then -------------------------------------------------------------------


@then(parsers.parse('the task ends in state "{state}"'))
def then_state(flow: FlowContext, state: str) -> None:
    assert flow.last.state is ApplicationState(state), flow.last.reason


@then(parsers.parse('the reason is "{reason}"'))
def then_reason(flow: FlowContext, reason: str) -> None:
    assert flow.last.reason == reason


@then(parsers.parse('the reason mentions "{text}"'))
def then_reason_mentions(flow: FlowContext, text: str) -> None:
    assert text in flow.last.reason


@then(parsers.parse('the executor performed {count:d} "{kind}" actions'))
def then_action_count(flow: FlowContext, count: int, kind: str) -> None:
    assert flow.executor.count(ActionKind(kind)) == count


@then("the executor performed no actions")
def then_no_actions(flow: FlowContext) -> None:
    assert flow.executor.count() == 0


@then("the transition history is a valid walk")
def then_valid_walk(flow: FlowContext) -> None:
    assert is_valid_walk(flow.last.history)


@then(parsers.parse('the task entered "{state}" {count:d} times'))
def then_entered(flow: FlowContext, state: str, count: int) -> None:
    entered = [r for r in flow.last.history if r.to_state is ApplicationState(state)]
    assert len(entered) == count
