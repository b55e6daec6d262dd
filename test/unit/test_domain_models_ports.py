from __future__ import annotations

import pytest

from domain import (
    ActionExecutorPort,
    ActionResult,
    ApplicationState,
    AutomationConfig,
    ClockPort,
    ConfigurationError,
    IdGeneratorPort,
    LoggerPort,
    TargetConfig,
    UserProfile,
)
from domain.models import ActionKind, ActionSignal, FieldMapping
from test.mocks import FakeClock, InMemoryLogger, ScriptedActionExecutor, SequentialIdGenerator


def test_user_profile_basics() -> None:
    profile = UserProfile(full_name="Ada Lovelace", email="ada@example.com")
    assert profile.full_name == "Ada Lovelace"
    assert profile.phone is None


def test_terminal_states() -> None:
    terminal = {state for state in ApplicationState if state.is_terminal}
    assert terminal == {
        ApplicationState.COMPLETED,
        ApplicationState.FAILED,
        ApplicationState.CANCELLED,
    }


def test_action_result_data_is_read_only() -> None:
    source = {"confirmed": True}
    result = ActionResult(success=True, data=source)
    source["confirmed"] = False

    assert result.data["confirmed"] is True
    with pytest.raises(TypeError):
        result.data["confirmed"] = False  # type: ignore[index]


def test_config_defaults() -> None:
    cfg = AutomationConfig()
    assert cfg.max_retries == 3
    assert cfg.submission_max_retries == 1
    assert cfg.rate_limit.base == 10
    assert cfg.rate_limit.burst == 3
    assert cfg.rate_limit.window_seconds == 60.0
    assert cfg.breaker.threshold == 5
    assert cfg.breaker.reset_timeout_seconds == 300.0
    assert cfg.backoff.base_seconds == 1.0
    assert cfg.backoff.max_seconds == 30.0


def test_config_from_camel_case_mapping_converts_milliseconds() -> None:
    cfg = AutomationConfig.from_mapping({
        "maxRetries": 2,
        "stepTimeoutMs": 1500,
        "rateLimit": {"base": 5, "burst": 2, "window": 30000},
        "breaker": {"threshold": 3, "resetTimeoutMs": 1000},
        "backoff": {"baseMs": 200, "maxMs": 800, "strategy": "linear"},
        "confirmationTimeoutMs": 5000,
        "adaptive": False,
    })

    assert cfg.max_retries == 2
    assert cfg.step_timeout_seconds == 1.5
    assert cfg.rate_limit.base == 5
    assert cfg.rate_limit.window_seconds == 30.0
    assert cfg.rate_limit.adaptive is False
    assert cfg.breaker.threshold == 3
    assert cfg.breaker.reset_timeout_seconds == 1.0
    assert cfg.backoff.strategy == "linear"
    assert cfg.confirmation_timeout_seconds == 5.0


def test_config_accepts_snake_case_aliases() -> None:
    cfg = AutomationConfig.from_mapping({
        "max_retries": 1,
        "step_timeout_ms": 2000,
        "rate_limit": {"base": 4, "burst": 1},
    })
    assert cfg.max_retries == 1
    assert cfg.step_timeout_seconds == 2.0
    assert cfg.rate_limit.base == 4


def test_config_unknown_keys_are_reported_not_rejected() -> None:
    data = {"maxRetries": 1, "turbo": True, "breaker": {"threshold": 2, "colour": "red"}}
    cfg = AutomationConfig.from_mapping(data)

    assert cfg.max_retries == 1
    assert AutomationConfig.unknown_keys(data) == ["breaker.colour", "turbo"]


@pytest.mark.parametrize(
    "data",
    [
        {"maxRetries": "three"},
        {"rateLimit": "fast"},
        {"adaptive": "yes"},
        {"backoff": {"strategy": "random"}},
        {"breaker": {"threshold": 0}},
    ],
)
def test_config_rejects_bad_values(data: dict) -> None:
    with pytest.raises(ConfigurationError):
        AutomationConfig.from_mapping(data)


def test_config_to_mapping_reads_back() -> None:
    cfg = AutomationConfig.from_mapping({"maxRetries": 4, "backoff": {"baseMs": 250}})
    assert AutomationConfig.from_mapping(cfg.to_mapping()) == cfg


def test_target_config_from_mapping() -> None:
    target = TargetConfig.from_mapping({
        "url": "https://jobs.example.com/apply",
        "steps": [
            {
                "fields": [
                    {"name": "email", "selector": "Email", "value": "a@b.c"},
                    {"name": "cv", "kind": "upload", "value": "/tmp/cv.pdf", "required": False},
                ],
                "timeoutMs": 4000,
                "next": "Continue",
            },
        ],
        "submit": "Send",
        "confirmation": {"selector": ".thanks", "timeoutMs": 5000},
    })

    assert target.platform == "https://jobs.example.com/apply"
    step = target.steps[0]
    assert step.timeout_seconds == 4.0
    assert step.next_hint == "Continue"
    assert step.fields[1] == FieldMapping(
        name="cv", selector_hint="cv", value="/tmp/cv.pdf", kind=ActionKind.UPLOAD, required=False,
    )
    assert target.confirmation.timeout_seconds == 5.0
    assert target.confirmation.poll_interval_seconds == 0.5


def test_target_config_requires_platform_or_url() -> None:
    with pytest.raises(ConfigurationError):
        TargetConfig.from_mapping({"steps": []})


def test_field_mapping_rejects_unknown_kind() -> None:
    with pytest.raises(ConfigurationError):
        FieldMapping.from_mapping({"name": "x", "kind": "teleport"})


def test_signals_are_string_enums() -> None:
    assert ActionSignal("throttled") is ActionSignal.THROTTLED
    assert ActionKind.CONFIRM.value == "confirm"


def test_fakes_satisfy_ports() -> None:
    assert isinstance(FakeClock(), ClockPort)
    assert isinstance(SequentialIdGenerator(), IdGeneratorPort)
    assert isinstance(InMemoryLogger(), LoggerPort)
    assert isinstance(ScriptedActionExecutor(), ActionExecutorPort)
