from __future__ import annotations

import logging
import os
import shutil
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from guardrails_runtime import command_runner, discovery, locking
from guardrails_runtime.command_runner import CommandResult
from guardrails_runtime.config import AutomationSettings, GuardrailsConfig
from guardrails_runtime.discovery import Resolver, ToolDescriptor
from guardrails_runtime.exclusion import (
    Context,
    ExclusionPolicy,
    FileSystem,
    LocalFileSystem,
    decide,
    probe_file,
)
from guardrails_runtime.patterns import relative_path

logger = logging.getLogger(__name__)

CommandRunner = Callable[..., CommandResult]
PYTHON_SUFFIXES = (".py",)


class OutcomeKind(str, Enum):
    EXCLUDED = "excluded"
    SKIPPED = "skipped"
    NO_TOOL_FOUND = "no-tool-found"
    LOCK_CONTENDED = "lock-contended"
    SUCCESS = "success"
    FAILURE = "failure"
    TIMED_OUT = "timed-out"


@dataclass(frozen=True)
class RunOutcome:
    kind: OutcomeKind
    context: Context
    reason: str = ""
    file_path: Path | None = None
    project_root: Path | None = None
    tool: ToolDescriptor | None = None
    command: tuple[str, ...] = ()
    result: CommandResult | None = None
    remaining_seconds: float | None = None
    timeout_seconds: float | None = None
    steps: tuple[str, ...] = field(default_factory=tuple)

    @property
    def actionable(self) -> bool:
        return self.kind in (OutcomeKind.SUCCESS, OutcomeKind.FAILURE, OutcomeKind.TIMED_OUT)


class AutomationRunner:
    def __init__(
        self,
        config: GuardrailsConfig,
        *,
        policy: ExclusionPolicy | None = None,
        resolver: Resolver = shutil.which,
        fs: FileSystem | None = None,
        lock_dir: Path | None = None,
        is_alive: locking.LivenessProbe = locking.pid_alive,
        runner: CommandRunner = command_runner.run_command,
        pid: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.policy = policy or config.build_policy()
        self.resolver = resolver
        self.fs = fs or LocalFileSystem()
        self.lock_dir = lock_dir if lock_dir is not None else config.lock_dir
        self.is_alive = is_alive
        self.runner = runner
        self.pid = os.getpid() if pid is None else pid
        self.clock = clock

    def run(
        self,
        context: Context | str,
        file_path: Path,
        *,
        project_root: Path | None = None,
    ) -> RunOutcome:
        context = Context.parse(context)
        if context is Context.GENERAL:
            raise ValueError("automation runs for 'lint' or 'test' only")
        settings = self.config.settings_for(context)

        def skipped(reason: str, **extra) -> RunOutcome:
            logger.debug("%s skipped for %s: %s", context.value, file_path, reason)
            return RunOutcome(OutcomeKind.SKIPPED, context, reason, file_path=file_path, **extra)

        if not settings.enabled:
            return skipped(f"{context.value} automation is disabled")
        if not self.fs.exists(file_path):
            return skipped("file does not exist")

        root = project_root or discovery.find_project_root(file_path.parent)
        if root is None:
            return skipped("no project root found")

        rel = relative_path(file_path, root)
        probe = probe_file(file_path, fs=self.fs, relative=rel)
        verdict = decide(self.policy, rel, context, probe)
        if verdict.excluded:
            logger.debug("%s excluded from %s: %s", rel, context.value, verdict.detail)
            return RunOutcome(
                OutcomeKind.EXCLUDED,
                context,
                verdict.detail,
                file_path=file_path,
                project_root=root,
            )
        if file_path.suffix not in PYTHON_SUFFIXES:
            return skipped("not a Python source file", project_root=root)

        state = locking.try_acquire(
            root,
            context,
            self_pid=self.pid,
            cooldown_seconds=settings.cooldown_seconds,
            lock_dir=self.lock_dir,
            is_alive=self.is_alive,
        )
        if isinstance(state, locking.Busy):
            return RunOutcome(
                OutcomeKind.LOCK_CONTENDED,
                context,
                "another run is in progress",
                file_path=file_path,
                project_root=root,
            )
        if isinstance(state, locking.Cooling):
            return RunOutcome(
                OutcomeKind.LOCK_CONTENDED,
                context,
                "cooling down after a recent run",
                file_path=file_path,
                project_root=root,
                remaining_seconds=state.remaining_seconds,
            )

        with state.guard:
            if context is Context.LINT:
                return self._run_lint(file_path, root, settings)
            return self._run_test(file_path, root, settings)

    def _run_lint(self, file_path: Path, root: Path, settings: AutomationSettings) -> RunOutcome:
        tool = discovery.discover(
            Context.LINT,
            preferred_tool=settings.preferred_tool,
            resolver=self.resolver,
        )
        if tool is None:
            return self._no_tool(Context.LINT, file_path, root)

        deadline = self.clock() + settings.timeout_seconds
        target = _display_path(file_path, root)
        steps: list[str] = []

        if settings.format:
            formatter = discovery.discover_formatter(resolver=self.resolver)
            if formatter is not None:
                prep = self._prepare(formatter.render(target), root, deadline)
                if prep is not None and prep.timed_out:
                    return self._timed_out(Context.LINT, file_path, root, formatter, prep, settings)
                if prep is not None and prep.ok:
                    steps.append("formatted")

        if settings.autofix and tool.supports_autofix:
            prep = self._prepare(tool.render_fix(target), root, deadline)
            if prep is not None and prep.timed_out:
                return self._timed_out(Context.LINT, file_path, root, tool, prep, settings)
            if prep is not None and prep.ok:
                steps.append("auto-fixed")

        return self._execute(Context.LINT, tool, target, file_path, root, deadline, settings, steps)

    def _run_test(self, file_path: Path, root: Path, settings: AutomationSettings) -> RunOutcome:
        tool = discovery.discover(
            Context.TEST,
            preferred_tool=settings.preferred_tool,
            resolver=self.resolver,
        )
        if tool is None:
            return self._no_tool(Context.TEST, file_path, root)
        test_file = discovery.find_test_file(file_path, root)
        if test_file is None:
            logger.debug("no test module found for %s", file_path)
            return RunOutcome(
                OutcomeKind.SKIPPED,
                Context.TEST,
                "no test module found",
                file_path=file_path,
                project_root=root,
                tool=tool,
            )
        deadline = self.clock() + settings.timeout_seconds
        target = _display_path(test_file, root)
        return self._execute(Context.TEST, tool, target, file_path, root, deadline, settings, [])

    def _execute(
        self,
        context: Context,
        tool: ToolDescriptor,
        target: str,
        file_path: Path,
        root: Path,
        deadline: float,
        settings: AutomationSettings,
        steps: list[str],
    ) -> RunOutcome:
        command = tool.render(target)
        remaining = deadline - self.clock()
        if remaining <= 0:
            return self._timed_out(context, file_path, root, tool, None, settings, command)
        logger.debug("running %s in %s", " ".join(command), root)
        result = self.runner(command, cwd=root, timeout_sec=remaining)
        if result.missing:
            return self._no_tool(context, file_path, root)
        if result.timed_out:
            return self._timed_out(context, file_path, root, tool, result, settings, command)
        kind = OutcomeKind.SUCCESS if result.returncode == 0 else OutcomeKind.FAILURE
        return RunOutcome(
            kind,
            context,
            f"{tool.name} exited with {result.returncode}",
            file_path=file_path,
            project_root=root,
            tool=tool,
            command=tuple(command),
            result=result,
            timeout_seconds=settings.timeout_seconds,
            steps=tuple(steps),
        )

    def _prepare(self, command: list[str], root: Path, deadline: float) -> CommandResult | None:
        remaining = deadline - self.clock()
        if remaining <= 0:
            return None
        logger.debug("running %s in %s", " ".join(command), root)
        result = self.runner(command, cwd=root, timeout_sec=remaining)
        if not result.ok and not result.timed_out:
            logger.debug("%s exited with %s, continuing", command[0], result.returncode)
        return result

    def _no_tool(self, context: Context, file_path: Path, root: Path) -> RunOutcome:
        logger.debug("no %s tool available", context.value)
        return RunOutcome(
            OutcomeKind.NO_TOOL_FOUND,
            context,
            f"no {context.value} tool found",
            file_path=file_path,
            project_root=root,
        )

    def _timed_out(
        self,
        context: Context,
        file_path: Path,
        root: Path,
        tool: ToolDescriptor,
        result: CommandResult | None,
        settings: AutomationSettings,
        command: list[str] | None = None,
    ) -> RunOutcome:
        rendered = tuple(command) if command is not None else (result.command if result else ())
        return RunOutcome(
            OutcomeKind.TIMED_OUT,
            context,
            f"{tool.name} exceeded {settings.timeout_seconds:g}s",
            file_path=file_path,
            project_root=root,
            tool=tool,
            command=rendered,
            result=result,
            timeout_seconds=settings.timeout_seconds,
        )


def _display_path(path: Path, root: Path) -> str:
    rel = relative_path(path, root)
    return rel or str(path)
