from __future__ import annotations

from pathlib import Path

import pytest

from guardrails_runtime.config import (
    CONFIG_ENV,
    LOCK_DIR_ENV,
    ConfigError,
    config_from_mapping,
    deep_merge,
    default_config,
    find_config_file,
    load_config,
    load_config_file,
    resolve_lock_dir,
)
from guardrails_runtime.exclusion import Context


def _write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def test_default_config_matches_documented_defaults() -> None:
    config = default_config()
    lint = config.settings_for(Context.LINT)
    test = config.settings_for("test")

    assert config.rules.max_file_size == 10 * 1024 * 1024
    assert config.rules.skip_binary_files and config.rules.skip_generated_files
    assert "*.pyc" in config.global_patterns
    assert "migrations/**" in config.context_patterns[Context.LINT]
    assert lint.enabled and lint.format and lint.autofix
    assert lint.cooldown_seconds == 2 and lint.timeout_seconds == 20
    assert test.preferred_tool is None and not test.format
    assert config.lock_dir is None and config.source is None


def test_user_values_are_deep_merged_over_defaults(tmp_path: Path) -> None:
    path = _write(
        tmp_path / ".guardrails.yaml",
        """
rules:
  max_file_size: 1MB
automation:
  test:
    preferred_tool: pytest
    timeout_seconds: 90
""",
    )
    config = load_config_file(path)

    assert config.source == path
    assert config.rules.max_file_size == 1024 * 1024
    assert config.rules.skip_binary_files is True
    assert config.settings_for(Context.TEST).preferred_tool == "pytest"
    assert config.settings_for(Context.TEST).timeout_seconds == 90
    assert config.settings_for(Context.TEST).cooldown_seconds == 2
    assert config.settings_for(Context.LINT).autofix is True


def test_lists_replace_defaults_instead_of_extending() -> None:
    config = config_from_mapping({"global_patterns": ["*.tmp"]})
    assert config.global_patterns == ("*.tmp",)


def test_empty_file_yields_defaults(tmp_path: Path) -> None:
    path = _write(tmp_path / "guardrails.yaml", "")
    assert load_config_file(path).global_patterns == default_config().global_patterns


@pytest.mark.parametrize(
    "text, fragment",
    [
        ("rules: [1, 2]\n", "rules must be a mapping"),
        ("global_patterns: '*.pyc'\n", "global_patterns must be a list"),
        ("rules:\n  max_file_size: huge\n", "rules.max_file_size"),
        ("rules:\n  skip_binary_files: maybe\n", "rules.skip_binary_files"),
        ("automation:\n  lint:\n    timeout_seconds: 0\n", "must be positive"),
        ("automation:\n  test:\n    cooldown_seconds: -1\n", "must be non-negative"),
        ("automation:\n  deploy: {}\n", "unknown context 'deploy'"),
        ("global_pattern: ['*.tmp']\n", "unknown config key(s): global_pattern"),
        ("rules:\n  max_size: 1MB\n", "unknown config key(s): rules.max_size"),
        ("automation:\n  lint:\n    timeout: 5\n", "unknown config key(s): automation.lint.timeout"),
        ("automation:\n  test:\n    preferred: pytest\n", "automation.test.preferred"),
        ("context_patterns:\n  general: ['*.py']\n", "unknown context 'general'"),
        ("automation:\n  lint:\n    preferred_tool: ''\n", "preferred_tool"),
        ("- just\n- a list\n", "configuration root must be a mapping"),
        ("global_patterns: [unclosed\n", "cannot parse config"),
    ],
)
def test_invalid_config_raises_config_error(tmp_path: Path, text: str, fragment: str) -> None:
    path = _write(tmp_path / ".guardrails.yaml", text)
    with pytest.raises(ConfigError) as exc:
        load_config_file(path)
    assert fragment in str(exc.value)


def test_malformed_pattern_surfaces_when_building_policy() -> None:
    config = config_from_mapping({"context_patterns": {"lint": ["!keep.py"]}})
    with pytest.raises(ConfigError) as exc:
        config.build_policy()
    assert "negated pattern" in str(exc.value)


def test_unreadable_config_is_config_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigError) as exc:
        load_config_file(tmp_path / "missing.yaml")
    assert "cannot read config" in str(exc.value)


def test_find_config_file_prefers_env_then_project_files(tmp_path: Path) -> None:
    root = tmp_path / "proj"
    _write(root / "guardrails.yaml", "{}\n")
    _write(root / ".guardrails.yml", "{}\n")

    assert find_config_file(root, env={}) == root / ".guardrails.yml"

    explicit = _write(tmp_path / "custom.yaml", "{}\n")
    assert find_config_file(root, env={CONFIG_ENV: str(explicit)}) == explicit
    assert find_config_file(None, env={}) is None


def test_load_config_prefers_explicit_path(tmp_path: Path) -> None:
    root = tmp_path / "proj"
    _write(root / ".guardrails.yaml", "automation:\n  lint:\n    enabled: false\n")
    explicit = _write(tmp_path / "other.yaml", "automation:\n  lint:\n    cooldown_seconds: 9\n")

    from_root = load_config(project_root=root, env={})
    assert from_root.settings_for(Context.LINT).enabled is False

    overridden = load_config(explicit, project_root=root, env={})
    assert overridden.settings_for(Context.LINT).enabled is True
    assert overridden.settings_for(Context.LINT).cooldown_seconds == 9


def test_load_config_without_any_file_uses_defaults(tmp_path: Path) -> None:
    config = load_config(project_root=tmp_path, env={})
    assert config.source is None
    assert config.global_patterns == default_config().global_patterns


def test_resolve_lock_dir_env_overrides_config(tmp_path: Path) -> None:
    config = config_from_mapping({"lock_dir": str(tmp_path / "from-config")})
    assert resolve_lock_dir(config, env={}) == tmp_path / "from-config"
    assert resolve_lock_dir(config, env={LOCK_DIR_ENV: str(tmp_path / "env")}) == tmp_path / "env"
    assert resolve_lock_dir(default_config(), env={}) is None


def test_deep_merge_keeps_sibling_keys() -> None:
    merged = deep_merge({"a": {"b": 1, "c": 2}, "d": [1]}, {"a": {"c": 3}, "d": [2]})
    assert merged == {"a": {"b": 1, "c": 3}, "d": [2]}


def test_test_context_accepts_lint_prep_keys() -> None:
    config = config_from_mapping({"automation": {"test": {"format": True}}})
    assert config.settings_for(Context.TEST).format is True


def test_non_utf8_config_is_config_error(tmp_path: Path) -> None:
    path = tmp_path / ".guardrails.yaml"
    path.write_bytes(b"global_patterns: ['\xff.py']\n")
    with pytest.raises(ConfigError) as exc:
        load_config_file(path)
    assert "not valid UTF-8" in str(exc.value)
