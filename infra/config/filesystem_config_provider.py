from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Iterable

from domain.errors import ConfigurationError
from domain.models import AutomationConfig, TargetConfig, UserProfile
from domain.ports import LoggerPort

_AUTOMATION_FILE = "automation.json"
_PROFILE_FILE = "profile.json"
_TARGETS_DIR = "targets"

_PROFILE_KEYS = ("name", "email")
_PLACEHOLDER_NAMES = {"", "your full name"}
_PLACEHOLDER_EMAILS = {"your@email.com"}
_TEMPLATE_VALUE = re.compile(r"^YOUR_", re.IGNORECASE)
_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_PHONE = re.compile(r"^\+?[\d\s\-()]{7,}$")


class FileSystemConfigProvider:
    """Reads automation.json, profile.json and targets/*.json from a config directory.

    Nothing is cached: each call goes back to disk, so edits apply to the
    next task without a restart. ``automation.json`` is optional and
    defaults apply when it is absent.
    """

    def __init__(self, config_dir: str, *, logger: LoggerPort | None = None) -> None:
        self._root = Path(config_dir)
        self._logger = logger

    def validate(self) -> list[str]:
        errors: list[str] = []

        automation = self._root / _AUTOMATION_FILE
        if automation.exists():
            data = _load_object(automation, errors)
            if data is not None:
                try:
                    AutomationConfig.from_mapping(data)
                except ConfigurationError as exc:
                    errors.append(f"{_AUTOMATION_FILE}: {exc}")

        profile = _load_object(self._root / _PROFILE_FILE, errors, required=_PROFILE_KEYS)
        if profile is not None:
            errors.extend(_profile_problems(profile))

        target_files = self._target_files()
        if not target_files:
            errors.append(
                f"No target configs found in {self._root / _TARGETS_DIR}. "
                "Add at least one targets/<name>.json.",
            )
        for path in target_files:
            errors.extend(self._target_problems(path))

        return errors

    def get_config(self) -> AutomationConfig:
        if not (self._root / _AUTOMATION_FILE).exists():
            return AutomationConfig()
        data = self._read(_AUTOMATION_FILE)
        unknown = AutomationConfig.unknown_keys(data)
        if unknown and self._logger is not None:
            self._logger.warning("config_unknown_keys", file=_AUTOMATION_FILE, keys=unknown)
        return AutomationConfig.from_mapping(data)

    def get_profile(self) -> UserProfile:
        data = self._read(_PROFILE_FILE)
        return UserProfile(
            full_name=data["name"],
            email=data["email"],
            phone=data.get("phone"),
            address=data.get("address"),
        )

    def get_target(self, name: str) -> TargetConfig:
        relative = f"{_TARGETS_DIR}/{name}.json"
        if not (self._root / relative).is_file():
            raise ConfigurationError(f"Unknown target '{name}': {self._root / relative} does not exist")
        return TargetConfig.from_mapping(self._read(relative))

    def list_targets(self) -> list[str]:
        return [path.stem for path in self._target_files()]

    # -- internal helpers ---------------------------------------------------

    def _read(self, relative: str) -> dict[str, Any]:
        return json.loads((self._root / relative).read_text(encoding="utf-8"))

    def _target_files(self) -> list[Path]:
        folder = self._root / _TARGETS_DIR
        return sorted(folder.glob("*.json")) if folder.is_dir() else []

    @staticmethod
    def _target_problems(path: Path) -> list[str]:
        label = f"{_TARGETS_DIR}/{path.name}"
        errors: list[str] = []
        data = _load_object(path, errors)
        if data is None:
            return errors
        try:
            target = TargetConfig.from_mapping(data)
        except (ConfigurationError, TypeError, ValueError) as exc:
            return [f"{label}: {exc}"]
        if not target.steps:
            return [f"{label}: no steps configured."]
        return []


def _load_object(
    path: Path,
    errors: list[str],
    *,
    required: Iterable[str] = (),
) -> dict[str, Any] | None:
    """Parse ``path`` as a JSON object, appending any problem to ``errors``.

    Returns None when the file is missing, unreadable, not an object, or
    lacks one of the ``required`` keys.
    """
    if not path.is_file():
        errors.append(f"Missing file: {path}")
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as exc:
        errors.append(f"Cannot read {path}: {exc}")
        return None
    if not isinstance(data, dict):
        errors.append(f"{path.name} must contain a JSON object")
        return None
    missing = sorted(set(required) - data.keys())
    if missing:
        errors.append(f"{path.name} missing keys: {', '.join(missing)}")
        return None
    return data


def _profile_problems(data: dict[str, Any]) -> list[str]:
    problems: list[str] = []

    name = str(data.get("name") or "")
    if name.strip().lower() in _PLACEHOLDER_NAMES or _TEMPLATE_VALUE.search(name):
        problems.append(f"{_PROFILE_FILE}: name is a placeholder. Enter your real name.")

    email = str(data.get("email") or "")
    if not _EMAIL.match(email):
        problems.append(f"{_PROFILE_FILE}: email '{email}' is not a valid email address.")
    elif email.lower() in _PLACEHOLDER_EMAILS:
        problems.append(f"{_PROFILE_FILE}: email is a placeholder. Enter your real email.")

    phone = data.get("phone")
    if phone is not None and not _PHONE.match(str(phone)):
        problems.append(f"{_PROFILE_FILE}: phone '{phone}' is not a valid phone number.")

    return problems
