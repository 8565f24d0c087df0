from __future__ import annotations

import copy
import os
from collections.abc import Collection, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from guardrails_runtime.exclusion import (
    Context,
    ExclusionPolicy,
    ExclusionRules,
    parse_file_size,
)
from guardrails_runtime.patterns import PatternError

CONFIG_ENV = "GUARDRAILS_CONFIG"
LOCK_DIR_ENV = "GUARDRAILS_LOCK_DIR"
CONFIG_FILENAMES = (".guardrails.yaml", ".guardrails.yml", "guardrails.yaml")
AUTOMATION_CONTEXTS = (Context.LINT, Context.TEST)

DEFAULT_CONFIG: dict[str, Any] = {
    "global_patterns": [
        "*.pyc",
        "__pycache__/",
        ".venv/**",
        "venv/**",
        ".git/",
        "*.egg-info/",
        ".pytest_cache/",
        ".mypy_cache/",
        ".ruff_cache/",
        "target/**",
        "node_modules/**",
        "dist/**",
        "build/**",
    ],
    "context_patterns": {
        "lint": [
            "migrations/**",
            "*/migrations/**",
            "*_pb2.py",
            "*_pb2_grpc.py",
            "*.generated.py",
            "*_generated.py",
        ],
        "test": [
            "conftest.py",
            "**/conftest.py",
            "tests/fixtures/**",
            "tests/data/**",
        ],
    },
    "rules": {
        "max_file_size": "10MB",
        "skip_binary_files": True,
        "skip_generated_files": True,
    },
    "automation": {
        "lint": {
            "enabled": True,
            "cooldown_seconds": 2,
            "timeout_seconds": 20,
            "preferred_tool": None,
            "format": True,
            "autofix": True,
        },
        "test": {
            "enabled": True,
            "cooldown_seconds": 2,
            "timeout_seconds": 20,
            "preferred_tool": None,
        },
    },
    "lock_dir": None,
}

AUTOMATION_KEYS = frozenset(DEFAULT_CONFIG["automation"]["lint"])


class ConfigError(ValueError):
    """Configuration is unreadable or invalid."""


@dataclass(frozen=True)
class AutomationSettings:
    enabled: bool = True
    cooldown_seconds: float = 2
    timeout_seconds: float = 20
    preferred_tool: str | None = None
    format: bool = False
    autofix: bool = False


@dataclass(frozen=True)
class GuardrailsConfig:
    global_patterns: tuple[str, ...]
    context_patterns: Mapping[Context, tuple[str, ...]]
    rules: ExclusionRules
    automation: Mapping[Context, AutomationSettings]
    lock_dir: Path | None = None
    source: Path | None = None

    def settings_for(self, context: Context | str) -> AutomationSettings:
        context = Context.parse(context)
        settings = self.automation.get(context)
        if settings is None:
            raise ConfigError(f"no automation settings for context '{context.value}'")
        return settings

    def build_policy(self) -> ExclusionPolicy:
        try:
            return ExclusionPolicy.from_patterns(
                self.global_patterns,
                self.context_patterns,
                self.rules,
            )
        except PatternError as exc:
            raise ConfigError(str(exc)) from exc


def default_config() -> GuardrailsConfig:
    return config_from_mapping({})


def config_from_mapping(data: Mapping[str, Any], *, source: Path | None = None) -> GuardrailsConfig:
    if not isinstance(data, Mapping):
        raise ConfigError("configuration root must be a mapping")
    prefix = f"{source}: " if source else ""
    try:
        _reject_unknown_keys(data)
        merged = deep_merge(copy.deepcopy(DEFAULT_CONFIG), dict(data))
        return GuardrailsConfig(
            global_patterns=_string_list(merged.get("global_patterns"), "global_patterns"),
            context_patterns=_context_patterns(merged.get("context_patterns")),
            rules=_rules(merged.get("rules")),
            automation=_automation(merged.get("automation")),
            lock_dir=_optional_path(merged.get("lock_dir"), "lock_dir"),
            source=source,
        )
    except ConfigError as exc:
        raise ConfigError(f"{prefix}{exc}") from None


def load_config_file(path: Path) -> GuardrailsConfig:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"cannot read config {path}: {exc.strerror or exc}") from exc
    except UnicodeDecodeError as exc:
        raise ConfigError(f"cannot read config {path}: not valid UTF-8 ({exc.reason})") from exc
    try:
        payload = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"cannot parse config {path}: {exc}") from exc
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ConfigError(f"{path}: configuration root must be a mapping")
    return config_from_mapping(payload, source=path)


def find_config_file(
    project_root: Path | None,
    *,
    env: Mapping[str, str] | None = None,
) -> Path | None:
    environ = os.environ if env is None else env
    raw = (environ.get(CONFIG_ENV) or "").strip()
    if raw:
        return Path(raw).expanduser()
    if project_root is None:
        return None
    for name in CONFIG_FILENAMES:
        candidate = project_root / name
        if candidate.is_file():
            return candidate
    return None


def load_config(
    path: Path | None = None,
    *,
    project_root: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> GuardrailsConfig:
    config_path = path or find_config_file(project_root, env=env)
    if config_path is None:
        return default_config()
    return load_config_file(config_path)


def resolve_lock_dir(config: GuardrailsConfig, *, env: Mapping[str, str] | None = None) -> Path | None:
    environ = os.environ if env is None else env
    raw = (environ.get(LOCK_DIR_ENV) or "").strip()
    if raw:
        return Path(raw).expanduser()
    return config.lock_dir


def deep_merge(dst: dict[str, Any], src: Mapping[str, Any]) -> dict[str, Any]:
    for key, value in src.items():
        if isinstance(value, Mapping) and isinstance(dst.get(key), dict):
            dst[key] = deep_merge(dict(dst[key]), value)
        else:
            dst[key] = value
    return dst


def _reject_unknown_keys(data: Mapping[str, Any]) -> None:
    _check_keys(data, DEFAULT_CONFIG, "")
    rules = data.get("rules")
    if isinstance(rules, Mapping):
        _check_keys(rules, DEFAULT_CONFIG["rules"], "rules.")
    automation = data.get("automation")
    if isinstance(automation, Mapping):
        for context, raw in automation.items():
            if isinstance(raw, Mapping):
                _check_keys(raw, AUTOMATION_KEYS, f"automation.{context}.")


def _check_keys(data: Mapping[str, Any], allowed: Collection[str], prefix: str) -> None:
    unknown = sorted(str(key) for key in data if key not in allowed)
    if unknown:
        names = ", ".join(prefix + key for key in unknown)
        raise ConfigError(f"unknown config key(s): {names}")


def _string_list(value: Any, field: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, list):
        raise ConfigError(f"{field} must be a list of glob patterns")
    for item in value:
        if not isinstance(item, str):
            raise ConfigError(f"{field} entries must be strings, got {item!r}")
    return tuple(value)


def _context_patterns(value: Any) -> dict[Context, tuple[str, ...]]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError("context_patterns must map 'lint'/'test' to pattern lists")
    patterns: dict[Context, tuple[str, ...]] = {}
    for key, items in value.items():
        context = _automation_context(key, "context_patterns")
        patterns[context] = _string_list(items, f"context_patterns.{context.value}")
    return patterns


def _rules(value: Any) -> ExclusionRules:
    if not isinstance(value, Mapping):
        raise ConfigError("rules must be a mapping")
    try:
        max_size = parse_file_size(value.get("max_file_size"))
    except ValueError as exc:
        raise ConfigError(f"rules.max_file_size: {exc}") from None
    return ExclusionRules(
        max_file_size=max_size,
        skip_binary_files=_bool(value.get("skip_binary_files"), "rules.skip_binary_files"),
        skip_generated_files=_bool(value.get("skip_generated_files"), "rules.skip_generated_files"),
    )


def _automation(value: Any) -> dict[Context, AutomationSettings]:
    if not isinstance(value, Mapping):
        raise ConfigError("automation must be a mapping")
    settings: dict[Context, AutomationSettings] = {}
    for key, raw in value.items():
        context = _automation_context(key, "automation")
        field = f"automation.{context.value}"
        if not isinstance(raw, Mapping):
            raise ConfigError(f"{field} must be a mapping")
        preferred = raw.get("preferred_tool")
        if preferred is not None and (not isinstance(preferred, str) or not preferred.strip()):
            raise ConfigError(f"{field}.preferred_tool must be a non-empty string")
        settings[context] = AutomationSettings(
            enabled=_bool(raw.get("enabled", True), f"{field}.enabled"),
            cooldown_seconds=_seconds(raw.get("cooldown_seconds"), f"{field}.cooldown_seconds"),
            timeout_seconds=_seconds(
                raw.get("timeout_seconds"), f"{field}.timeout_seconds", positive=True
            ),
            preferred_tool=preferred.strip() if preferred else None,
            format=_bool(raw.get("format", False), f"{field}.format"),
            autofix=_bool(raw.get("autofix", False), f"{field}.autofix"),
        )
    return settings


def _automation_context(key: Any, field: str) -> Context:
    try:
        context = Context.parse(key)
    except ValueError:
        context = None
    if context not in AUTOMATION_CONTEXTS:
        raise ConfigError(f"{field}: unknown context '{key}' (expected 'lint' or 'test')")
    return context


def _bool(value: Any, field: str) -> bool:
    if isinstance(value, bool):
        return value
    raise ConfigError(f"{field} must be true or false")


def _seconds(value: Any, field: str, *, positive: bool = False) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{field} must be a number of seconds")
    if value < 0 or (positive and value == 0):
        qualifier = "positive" if positive else "non-negative"
        raise ConfigError(f"{field} must be {qualifier}")
    return float(value)


def _optional_path(value: Any, field: str) -> Path | None:
    if value is None:
        return None
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"{field} must be a path string")
    return Path(value).expanduser()
