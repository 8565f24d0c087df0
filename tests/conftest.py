"""Pytest configuration helpers for guardrails tests."""
from __future__ import annotations

import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]

if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

_ISOLATED_ENV = (
    "GUARDRAILS_CONFIG",
    "GUARDRAILS_DEBUG",
    "GUARDRAILS_ROOT",
    "HOOK_PAYLOAD",
    "GUARDRAILS_HOOK_PAYLOAD",
)


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ISOLATED_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("GUARDRAILS_LOCK_DIR", str(tmp_path / "locks"))


@pytest.fixture()
def project(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    (root / "src" / "app").mkdir(parents=True)
    (root / "tests").mkdir()
    (root / "pyproject.toml").write_text("[project]\nname = 'demo'\n", encoding="utf-8")
    (root / "src" / "app" / "core.py").write_text("def answer():\n    return 42\n", encoding="utf-8")
    (root / "tests" / "test_core.py").write_text(
        "def test_answer():\n    assert 40 + 2 == 42\n",
        encoding="utf-8",
    )
    return root
