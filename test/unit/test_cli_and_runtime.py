from __future__ import annotations

import asyncio
import io
import json
from pathlib import Path

import pytest

from cli.main import build_parser, main
from infra.runtime import StructuredLogger, SystemClock, UuidIdGenerator
from test.fixtures import sample_config_dir


def test_structured_logger_emits_json_lines() -> None:
    stream = io.StringIO()
    logger = StructuredLogger(stream=stream)

    logger.info("task_started", task_id="task-1", target="example.com")
    logger.debug("hidden")

    lines = stream.getvalue().strip().splitlines()
    assert len(lines) == 1
    payload = json.loads(lines[0])
    assert payload["level"] == "info"
    assert payload["message"] == "task_started"
    assert payload["fields"] == {"task_id": "task-1", "target": "example.com"}


def test_structured_logger_min_level() -> None:
    stream = io.StringIO()
    logger = StructuredLogger(min_level="warning", stream=stream)
    logger.info("skipped")
    logger.error("kept")
    assert [json.loads(line)["message"] for line in stream.getvalue().splitlines()] == ["kept"]

    with pytest.raises(ValueError):
        StructuredLogger(min_level="loud")


def test_system_clock_and_id_generator() -> None:
    clock = SystemClock()
    before = clock.monotonic()
    asyncio.run(clock.sleep(0))
    assert clock.monotonic() >= before
    assert clock.now().tzinfo is not None

    ids = UuidIdGenerator()
    first, second = ids.new_task_id(), ids.new_task_id()
    assert first.startswith("task-")
    assert first != second


def test_parser_requires_a_command() -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_validate_ok(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["validate", "--config-dir", sample_config_dir()]) == 0
    assert "Config OK" in capsys.readouterr().out


def test_validate_reports_errors(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["validate", "--config-dir", str(tmp_path)]) == 1
    out = capsys.readouterr().out
    assert "Config validation failed" in out
    assert "profile.json" in out


def test_defaults_prints_effective_config(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["defaults"]) == 0
    defaults = json.loads(capsys.readouterr().out)
    assert defaults["maxRetries"] == 3
    assert defaults["rateLimit"]["base"] == 10

    assert main(["defaults", "--config-dir", sample_config_dir()]) == 0
    loaded = json.loads(capsys.readouterr().out)
    assert loaded["maxRetries"] == 2


def test_list_targets(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["list-targets", "--config-dir", sample_config_dir()]) == 0
    assert capsys.readouterr().out.strip() == "demo"


def test_run_with_mock_executor_completes(capsys: pytest.CaptureFixture[str]) -> None:
    code = main([
        "--log-level", "error",
        "run", "--config-dir", sample_config_dir(), "--target", "demo", "--mock",
    ])

    out = capsys.readouterr().out
    assert code == 0
    assert "result=COMPLETED" in out
    assert "reason=confirmed" in out


def test_run_unknown_target(capsys: pytest.CaptureFixture[str]) -> None:
    code = main(["run", "--config-dir", sample_config_dir(), "--target", "nope", "--mock"])
    assert code == 1
    assert "Config error" in capsys.readouterr().out
