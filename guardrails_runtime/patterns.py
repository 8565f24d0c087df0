"""Compiled glob sets for root-relative path matching."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path, PurePath

from pathspec import PathSpec


class PatternError(ValueError):
    """A glob pattern could not be compiled."""


@dataclass(frozen=True)
class CompiledSet:
    patterns: tuple[str, ...]
    spec: PathSpec

    def __bool__(self) -> bool:
        return bool(self.patterns)

    def matches(self, relative_path: str) -> bool:
        if not self.patterns:
            return False
        return self.spec.match_file(relative_path)

    def matching_pattern(self, relative_path: str) -> str | None:
        if not self.patterns:
            return None
        result = self.spec.check_file(relative_path)
        if result.include is not True or result.index is None:
            return None
        return self.patterns[result.index]


EMPTY_SET = CompiledSet(patterns=(), spec=PathSpec.from_lines("gitwildmatch", []))


def compile_patterns(patterns: Iterable[str], *, label: str = "patterns") -> CompiledSet:
    lines: list[str] = []
    for raw in patterns:
        lines.append(_validate_pattern(raw, label=label))
    if not lines:
        return EMPTY_SET
    try:
        spec = PathSpec.from_lines("gitwildmatch", lines)
    except (ValueError, TypeError) as exc:
        raise PatternError(f"invalid {label}: {exc}") from exc
    return CompiledSet(patterns=tuple(lines), spec=spec)


def matches(compiled: CompiledSet, relative_path: str) -> bool:
    return compiled.matches(relative_path)


def relative_path(path: str | PurePath, root: Path | None = None) -> str:
    text = str(path).replace("\\", "/")
    candidate = PurePath(text)
    if root is not None and candidate.is_absolute():
        try:
            candidate = candidate.relative_to(PurePath(str(root).replace("\\", "/")))
        except ValueError:
            pass
    if candidate.is_absolute():
        candidate = PurePath(*candidate.parts[1:])
    normalized = candidate.as_posix()
    while normalized.startswith("./"):
        normalized = normalized[2:]
    return "" if normalized == "." else normalized


def _validate_pattern(raw: object, *, label: str) -> str:
    if not isinstance(raw, str):
        raise PatternError(f"invalid {label}: expected a string, got {type(raw).__name__}")
    pattern = raw.strip()
    if not pattern:
        raise PatternError(f"invalid {label}: empty pattern")
    if pattern.startswith("!"):
        raise PatternError(f"invalid {label}: negated pattern not supported: {pattern!r}")
    if pattern.startswith("#"):
        raise PatternError(f"invalid {label}: comment is not a pattern: {pattern!r}")
    if _has_unclosed_bracket(pattern):
        raise PatternError(f"invalid {label}: unclosed character class in {pattern!r}")
    return pattern


def _has_unclosed_bracket(pattern: str) -> bool:
    escaped = False
    depth = 0
    for char in pattern:
        if escaped:
            escaped = False
            continue
        if char == "\\":
            escaped = True
        elif char == "[" and depth == 0:
            depth = 1
        elif char == "]" and depth:
            depth = 0
    return depth != 0

