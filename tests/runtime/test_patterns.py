from __future__ import annotations

from pathlib import Path

import pytest

from guardrails_runtime.patterns import EMPTY_SET, PatternError, compile_patterns, matches, relative_path


def test_extension_pattern_matches_at_any_depth() -> None:
    compiled = compile_patterns(["*.pyc"])
    assert compiled.matches("mod.pyc")
    assert compiled.matches("pkg/sub/mod.pyc")
    assert not compiled.matches("pkg/mod.py")


def test_directory_pattern_covers_contents() -> None:
    compiled = compile_patterns(["__pycache__/"])
    assert compiled.matches("pkg/__pycache__/mod.cpython-311.pyc")
    assert not compiled.matches("pkg/pycache.py")


def test_anchored_double_star_stays_at_root() -> None:
    compiled = compile_patterns(["migrations/**"])
    assert compiled.matches("migrations/0001_init.py")
    assert not compiled.matches("app/migrations/0001_init.py")

    nested = compile_patterns(["*/migrations/**"])
    assert nested.matches("app/migrations/0001_init.py")


def test_single_star_does_not_cross_directories() -> None:
    compiled = compile_patterns(["docs/*.py"])
    assert compiled.matches("docs/conf.py")
    assert not compiled.matches("docs/api/conf.py")


def test_matching_pattern_names_the_rule() -> None:
    compiled = compile_patterns(["*.pyc", "**/conftest.py"])
    assert compiled.matching_pattern("tests/unit/conftest.py") == "**/conftest.py"
    assert compiled.matching_pattern("tests/unit/test_a.py") is None


def test_empty_set_matches_nothing() -> None:
    assert not EMPTY_SET
    assert compile_patterns([]) is EMPTY_SET
    assert not matches(EMPTY_SET, "anything.py")
    assert EMPTY_SET.matching_pattern("anything.py") is None


def test_patterns_are_stripped() -> None:
    compiled = compile_patterns(["  *.log  "])
    assert compiled.patterns == ("*.log",)
    assert compiled.matches("logs/run.log")


@pytest.mark.parametrize(
    "pattern, fragment",
    [
        ("", "empty pattern"),
        ("   ", "empty pattern"),
        ("!keep.py", "negated pattern"),
        ("# comment", "comment"),
        ("src/[abc.py", "unclosed character class"),
        (42, "expected a string"),
    ],
)
def test_invalid_patterns_raise(pattern: object, fragment: str) -> None:
    with pytest.raises(PatternError) as exc:
        compile_patterns(["*.py", pattern], label="lint patterns")  # type: ignore[list-item]
    assert fragment in str(exc.value)
    assert "lint patterns" in str(exc.value)


def test_pattern_error_is_value_error() -> None:
    assert issubclass(PatternError, ValueError)


def test_relative_path_strips_project_root(tmp_path: Path) -> None:
    root = tmp_path / "proj"
    assert relative_path(root / "src" / "a.py", root) == "src/a.py"
    assert relative_path(root, root) == ""


def test_relative_path_outside_root_drops_anchor(tmp_path: Path) -> None:
    root = tmp_path / "proj"
    outside = tmp_path / "elsewhere" / "b.py"
    rel = relative_path(outside, root)
    assert not rel.startswith("/")
    assert rel.endswith("elsewhere/b.py")


def test_relative_path_normalizes_separators() -> None:
    assert relative_path("./src/a.py") == "src/a.py"
    assert relative_path("src\\pkg\\a.py") == "src/pkg/a.py"
