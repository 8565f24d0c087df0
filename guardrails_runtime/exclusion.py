"""Context-aware exclusion decisions.

Rules are evaluated in a fixed order and the first match wins:

1. global patterns
2. binary content (null byte in the leading bytes)
3. generated-file heuristic
4. file size
5. context patterns (``lint`` / ``test`` only)

Steps 1-4 ignore the context, so a globally excluded file reports the same
reason no matter which context asked.
"""

from __future__ import annotations

import os
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePosixPath
from types import MappingProxyType
from typing import Protocol

from guardrails_runtime.patterns import EMPTY_SET, CompiledSet, compile_patterns

BINARY_PROBE_BYTES = 1024
DEFAULT_MAX_FILE_SIZE = 10 * 1024 * 1024

GENERATED_SUFFIXES = (
    "_pb2.py",
    "_pb2_grpc.py",
    ".generated.py",
    "_generated.py",
    ".pb.go",
    ".g.dart",
)
_SIZE_RE = re.compile(r"^(?P<num>\d+(?:\.\d+)?)\s*(?P<unit>B|KB|MB|GB)?$")
_SIZE_UNITS = {
    None: 1,
    "B": 1,
    "KB": 1024,
    "MB": 1024**2,
    "GB": 1024**3,
}


class Context(str, Enum):
    GENERAL = "general"
    LINT = "lint"
    TEST = "test"

    @classmethod
    def parse(cls, value: str | Context) -> Context:
        if isinstance(value, Context):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            supported = ", ".join(item.value for item in cls)
            raise ValueError(f"unsupported context '{value}'. Supported: {supported}") from None


class ExclusionReason(str, Enum):
    GLOBAL_PATTERN = "global-pattern"
    BINARY = "binary"
    GENERATED = "generated"
    SIZE = "size"
    CONTEXT_PATTERN = "context-pattern"


@dataclass(frozen=True)
class ExclusionRules:
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    skip_binary_files: bool = True
    skip_generated_files: bool = True


@dataclass(frozen=True)
class FileProbe:
    size: int | None = None
    is_binary: bool = False
    is_generated: bool = False


@dataclass(frozen=True)
class Verdict:
    excluded: bool
    reason: ExclusionReason | None = None
    detail: str = ""

    @property
    def included(self) -> bool:
        return not self.excluded


INCLUDED = Verdict(excluded=False)


@dataclass(frozen=True)
class ExclusionPolicy:
    global_patterns: CompiledSet = EMPTY_SET
    context_patterns: Mapping[Context, CompiledSet] = field(
        default_factory=lambda: MappingProxyType({})
    )
    rules: ExclusionRules = ExclusionRules()

    @classmethod
    def from_patterns(
        cls,
        global_patterns: Iterable[str] = (),
        context_patterns: Mapping[str | Context, Iterable[str]] | None = None,
        rules: ExclusionRules | None = None,
    ) -> ExclusionPolicy:
        compiled: dict[Context, CompiledSet] = {}
        for raw_context, items in (context_patterns or {}).items():
            context = Context.parse(raw_context)
            if context is Context.GENERAL:
                raise ValueError("context patterns apply to 'lint' or 'test' only")
            compiled[context] = compile_patterns(items, label=f"{context.value} patterns")
        return cls(
            global_patterns=compile_patterns(global_patterns, label="global patterns"),
            context_patterns=MappingProxyType(compiled),
            rules=rules or ExclusionRules(),
        )

    def patterns_for(self, context: Context) -> CompiledSet:
        return self.context_patterns.get(context, EMPTY_SET)


class FileSystem(Protocol):
    def exists(self, path: Path) -> bool: ...

    def size(self, path: Path) -> int: ...

    def read_prefix(self, path: Path, limit: int) -> bytes: ...


class LocalFileSystem:
    def exists(self, path: Path) -> bool:
        return path.is_file()

    def size(self, path: Path) -> int:
        return path.stat().st_size

    def read_prefix(self, path: Path, limit: int) -> bytes:
        with path.open("rb") as handle:
            return handle.read(limit)


def decide(
    policy: ExclusionPolicy,
    path: str,
    context: Context | str,
    probe: FileProbe,
) -> Verdict:
    context = Context.parse(context)
    rules = policy.rules

    pattern = policy.global_patterns.matching_pattern(path)
    if pattern is not None:
        return Verdict(True, ExclusionReason.GLOBAL_PATTERN, f"matches global pattern '{pattern}'")

    if rules.skip_binary_files and probe.is_binary:
        return Verdict(True, ExclusionReason.BINARY, "binary content detected")

    if rules.skip_generated_files and probe.is_generated:
        return Verdict(True, ExclusionReason.GENERATED, "looks like a generated file")

    if probe.size is not None and probe.size > rules.max_file_size:
        return Verdict(
            True,
            ExclusionReason.SIZE,
            f"size {probe.size} bytes exceeds limit of {rules.max_file_size} bytes",
        )

    if context is not Context.GENERAL:
        pattern = policy.patterns_for(context).matching_pattern(path)
        if pattern is not None:
            return Verdict(
                True,
                ExclusionReason.CONTEXT_PATTERN,
                f"matches {context.value} pattern '{pattern}'",
            )

    return INCLUDED


def probe_file(
    path: Path,
    *,
    fs: FileSystem | None = None,
    relative: str | None = None,
) -> FileProbe:
    fs = fs or LocalFileSystem()
    generated = is_generated_path(relative if relative is not None else path.as_posix())
    try:
        if not fs.exists(path):
            return FileProbe(is_generated=generated)
        size = fs.size(path)
        head = fs.read_prefix(path, BINARY_PROBE_BYTES)
    except OSError:
        return FileProbe(is_generated=generated)
    return FileProbe(size=size, is_binary=is_binary_prefix(head), is_generated=generated)


def is_binary_prefix(data: bytes) -> bool:
    return b"\x00" in data[:BINARY_PROBE_BYTES]


def is_generated_path(path: str | os.PathLike[str]) -> bool:
    posix = PurePosixPath(str(path).replace("\\", "/").lower())
    name = posix.name
    if name.endswith(GENERATED_SUFFIXES):
        return True
    if ".gen." in name:
        return True
    return "generated" in posix.parts[:-1]


def parse_file_size(value: str | int) -> int:
    if isinstance(value, bool):
        raise ValueError(f"invalid file size: {value!r}")
    if isinstance(value, int):
        if value < 0:
            raise ValueError(f"invalid file size: {value!r}")
        return value
    text = str(value).strip().upper()
    match = _SIZE_RE.match(text)
    if not match:
        raise ValueError(f"invalid file size: {value!r}")
    return int(float(match.group("num")) * _SIZE_UNITS[match.group("unit")])
