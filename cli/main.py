from __future__ import annotations

import argparse
import asyncio
import json
import random
from typing import Sequence

from domain.errors import ConfigurationError
from domain.models import AutomationConfig, JobPostingRef, TaskResult
from domain.ports import ActionExecutorPort
from domain.services import JobApplicationAgent, TargetRegistry
from infra.browser import MockActionExecutor, PlaywrightActionExecutor
from infra.config import FileSystemConfigProvider
from infra.runtime import StructuredLogger, SystemClock, UuidIdGenerator


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="apply-orchestrator")
    parser.add_argument("--log-level", choices=["debug", "info", "warning", "error"], default="info")
    sub = parser.add_subparsers(dest="command", required=True)

    run_p = sub.add_parser("run", help="Drive one target flow to completion")
    run_p.add_argument("--config-dir", default="./config", help="Path to config folder")
    run_p.add_argument("--target", required=True, help="Name of a targets/<name>.json file")
    run_p.add_argument("--company", default="")
    run_p.add_argument("--title", default="")
    run_p.add_argument("--job-url", default="")
    run_p.add_argument("--mock", action="store_true", help="Use the scripted mock executor")
    run_p.add_argument("--headless", action="store_true", default=True)
    run_p.add_argument("--no-headless", dest="headless", action="store_false")

    validate_p = sub.add_parser("validate", help="Report configuration errors")
    validate_p.add_argument("--config-dir", default="./config")

    defaults_p = sub.add_parser("defaults", help="Print the effective automation config")
    defaults_p.add_argument("--config-dir", default=None)

    targets_p = sub.add_parser("list-targets")
    targets_p.add_argument("--config-dir", default="./config")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logger = StructuredLogger(min_level=args.log_level)

    if args.command == "validate":
        errors = FileSystemConfigProvider(args.config_dir, logger=logger).validate()
        if errors:
            print("Config validation failed:")
            for err in errors:
                print(f"  - {err}")
            return 1
        print("Config OK")
        return 0

    if args.command == "defaults":
        cfg = AutomationConfig()
        if args.config_dir is not None:
            try:
                cfg = FileSystemConfigProvider(args.config_dir, logger=logger).get_config()
            except ConfigurationError as exc:
                print(f"Invalid automation.json: {exc}")
                return 1
        print(json.dumps(cfg.to_mapping(), indent=2, sort_keys=True))
        return 0

    if args.command == "list-targets":
        for name in FileSystemConfigProvider(args.config_dir, logger=logger).list_targets():
            print(name)
        return 0

    if args.command == "run":
        return _handle_run(args, logger)

    raise SystemExit(f"Unsupported command: {args.command}")


def _handle_run(args: argparse.Namespace, logger: StructuredLogger) -> int:
    config_provider = FileSystemConfigProvider(args.config_dir, logger=logger)
    errors = config_provider.validate()
    if errors:
        print("Config validation failed:")
        for err in errors:
            print(f"  - {err}")
        return 1

    try:
        cfg = config_provider.get_config()
        target = config_provider.get_target(args.target)
    except ConfigurationError as exc:
        print(f"Config error: {exc}")
        return 1
    profile = config_provider.get_profile()
    job = None
    if args.job_url:
        job = JobPostingRef(company_name=args.company, job_title=args.title, job_url=args.job_url)

    registry = TargetRegistry(rate_limit=cfg.rate_limit, breaker=cfg.breaker)

    def _make_agent(executor: ActionExecutorPort) -> JobApplicationAgent:
        return JobApplicationAgent(
            executor=executor,
            registry=registry,
            clock=SystemClock(),
            id_generator=UuidIdGenerator(),
            logger=logger,
            config=cfg,
            rng=random.Random(),
        )

    async def _run() -> TaskResult:
        if args.mock:
            return await _make_agent(MockActionExecutor()).start_task(profile, target, job)
        executor = PlaywrightActionExecutor(headless=args.headless)
        await executor.launch()
        try:
            return await _make_agent(executor).start_task(profile, target, job)
        finally:
            await executor.close()

    result = asyncio.run(_run())
    print(
        f"task={result.task_id} result={result.state.value} "
        f"reason={result.reason} duration={result.duration_seconds:.1f}s",
    )
    for entry in result.errors:
        marker = "recovered" if entry.recovered else "open"
        print(f"  step {entry.step + 1} | {entry.state.value} | {marker} | {entry.message}")
    return 0 if result.succeeded else 2


if __name__ == "__main__":
    raise SystemExit(main())
