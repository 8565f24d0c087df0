from __future__ import annotations

import logging
import os
import shutil
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from guardrails_runtime.exclusion import Context

logger = logging.getLogger(__name__)

Resolver = Callable[[str], str | None]

PRIMARY_MARKERS = ("pyproject.toml", "setup.py", "setup.cfg")
SECONDARY_MARKERS = ("requirements.txt", "Pipfile", "poetry.lock")
MARKER_DIRS = ("requirements",)
PYTHON_SCAN_DEPTH = 3
_SKIP_DIRS = frozenset({"__pycache__", "node_modules", "venv", "site-packages"})


class ProjectType(str, Enum):
    MODERN = "modern"
    CLASSICAL = "classical"
    SIMPLE = "simple"
    GIT = "git"


@dataclass(frozen=True)
class ToolDescriptor:
    name: str
    command: tuple[str, ...]
    priority: int
    fix_command: tuple[str, ...] | None = None

    @property
    def executable(self) -> str:
        return self.command[0]

    @property
    def supports_autofix(self) -> bool:
        return self.fix_command is not None

    def render(self, file_path: str | os.PathLike[str]) -> list[str]:
        return _render(self.command, file_path)

    def render_fix(self, file_path: str | os.PathLike[str]) -> list[str]:
        if self.fix_command is None:
            raise ValueError(f"{self.name} has no fix command")
        return _render(self.fix_command, file_path)


LINT_TOOLS: tuple[ToolDescriptor, ...] = (
    ToolDescriptor(
        name="ruff",
        command=("ruff", "check", "{file}"),
        priority=0,
        fix_command=("ruff", "check", "--fix", "{file}"),
    ),
    ToolDescriptor(name="flake8", command=("flake8", "{file}"), priority=1),
    ToolDescriptor(name="pylint", command=("pylint", "{file}"), priority=2),
)

TEST_TOOLS: tuple[ToolDescriptor, ...] = (
    ToolDescriptor(name="pytest", command=("pytest", "{file}"), priority=0),
    ToolDescriptor(name="python -m pytest", command=("python", "-m", "pytest", "{file}"), priority=1),
    ToolDescriptor(name="python3 -m pytest", command=("python3", "-m", "pytest", "{file}"), priority=2),
    ToolDescriptor(
        name="python -m unittest", command=("python", "-m", "unittest", "{file}"), priority=3
    ),
    ToolDescriptor(
        name="python3 -m unittest", command=("python3", "-m", "unittest", "{file}"), priority=4
    ),
)

FORMATTERS: tuple[ToolDescriptor, ...] = (
    ToolDescriptor(name="ruff format", command=("ruff", "format", "{file}"), priority=0),
    ToolDescriptor(name="black", command=("black", "--quiet", "{file}"), priority=1),
)

TOOLS_BY_CONTEXT: dict[Context, tuple[ToolDescriptor, ...]] = {
    Context.LINT: LINT_TOOLS,
    Context.TEST: TEST_TOOLS,
}


def _render(template: Sequence[str], file_path: str | os.PathLike[str]) -> list[str]:
    value = os.fspath(file_path)
    return [part.replace("{file}", value) for part in template]


def find_project_root(start: Path) -> Path | None:
    current = start if start.is_absolute() else Path.cwd() / start
    if current.is_file():
        current = current.parent
    for candidate in (current, *current.parents):
        if is_project_root(candidate):
            return candidate
    return None


def is_project_root(directory: Path) -> bool:
    if any((directory / marker).is_file() for marker in PRIMARY_MARKERS):
        return True
    if any((directory / marker).is_file() for marker in SECONDARY_MARKERS):
        return True
    if any((directory / marker).is_dir() for marker in MARKER_DIRS):
        return True
    if (directory / ".git").exists():
        return has_python_files(directory, PYTHON_SCAN_DEPTH)
    return False


def has_python_files(directory: Path, max_depth: int) -> bool:
    if max_depth <= 0:
        return False
    try:
        entries = list(directory.iterdir())
    except OSError:
        return False
    for entry in entries:
        if entry.is_file() and entry.suffix == ".py":
            return True
    for entry in entries:
        if entry.is_dir() and not entry.name.startswith(".") and entry.name not in _SKIP_DIRS:
            if has_python_files(entry, max_depth - 1):
                return True
    return False


def detect_project_type(root: Path) -> ProjectType:
    if (root / "pyproject.toml").is_file():
        return ProjectType.MODERN
    if (root / "setup.py").is_file():
        return ProjectType.CLASSICAL
    if any((root / marker).is_file() for marker in SECONDARY_MARKERS) or (
        root / "requirements"
    ).is_dir():
        return ProjectType.SIMPLE
    if (root / ".git").exists():
        return ProjectType.GIT
    return ProjectType.SIMPLE


def candidate_tools(
    context: Context | str,
    *,
    preferred_tool: str | None = None,
) -> list[ToolDescriptor]:
    context = Context.parse(context)
    builtin = TOOLS_BY_CONTEXT.get(context)
    if builtin is None:
        raise ValueError(f"no tools are defined for context '{context.value}'")
    ordered = list(builtin)
    if preferred_tool:
        preferred = _preferred_descriptor(preferred_tool, builtin)
        ordered = [preferred, *(tool for tool in builtin if tool.name != preferred.name)]
    return ordered


def discover(
    context: Context | str,
    *,
    preferred_tool: str | None = None,
    resolver: Resolver = shutil.which,
) -> ToolDescriptor | None:
    return first_available(candidate_tools(context, preferred_tool=preferred_tool), resolver=resolver)


def discover_formatter(*, resolver: Resolver = shutil.which) -> ToolDescriptor | None:
    return first_available(FORMATTERS, resolver=resolver)


def first_available(
    tools: Iterable[ToolDescriptor],
    *,
    resolver: Resolver = shutil.which,
) -> ToolDescriptor | None:
    for tool in tools:
        if resolver(tool.executable):
            logger.debug("resolved %s via %s", tool.name, tool.executable)
            return tool
    return None


def _preferred_descriptor(name: str, builtin: Sequence[ToolDescriptor]) -> ToolDescriptor:
    normalized = name.strip()
    for tool in builtin:
        if tool.name == normalized:
            return tool
    return ToolDescriptor(name=normalized, command=(normalized, "{file}"), priority=-1)


TEST_DIR_NAMES = ("tests", "test")


def is_test_module(path: Path) -> bool:
    name = path.name
    return path.suffix == ".py" and (name.startswith("test_") or name.endswith("_test.py"))


def find_test_file(source: Path, project_root: Path) -> Path | None:
    if is_test_module(source):
        return source
    stem = source.stem
    names = (f"test_{stem}.py", f"{stem}_test.py", f"test{stem}.py")
    bases = [project_root / name for name in TEST_DIR_NAMES]
    bases.extend([project_root, source.parent])
    for base in bases:
        found = _search_tree(base, names)
        if found is not None:
            logger.debug("found test module %s for %s", found, source)
            return found
    return None


def _search_tree(directory: Path, names: Sequence[str]) -> Path | None:
    if not directory.is_dir():
        return None
    for name in names:
        candidate = directory / name
        if candidate.is_file():
            return candidate
    try:
        children = sorted(entry for entry in directory.iterdir() if entry.is_dir())
    except OSError:
        return None
    for child in children:
        if child.name.startswith(".") or child.name in _SKIP_DIRS:
            continue
        found = _search_tree(child, names)
        if found is not None:
            return found
    return None
