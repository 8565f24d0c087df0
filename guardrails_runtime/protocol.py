from __future__ import annotations

import shlex
from dataclasses import dataclass

from guardrails_runtime.automation import OutcomeKind, RunOutcome
from guardrails_runtime.exclusion import Context

EXIT_CONTINUE = 0
EXIT_ERROR = 1
EXIT_SHOW = 2
EXCERPT_MAX_LINES = 40

_SILENT_KINDS = frozenset(
    {
        OutcomeKind.EXCLUDED,
        OutcomeKind.SKIPPED,
        OutcomeKind.NO_TOOL_FOUND,
        OutcomeKind.LOCK_CONTENDED,
    }
)
_LABELS = {Context.LINT: "LINT", Context.TEST: "TESTS"}


@dataclass(frozen=True)
class HookResponse:
    exit_code: int
    message: str | None = None

    @property
    def silent(self) -> bool:
        return self.message is None


SILENT = HookResponse(EXIT_CONTINUE)


def respond(outcome: RunOutcome) -> HookResponse:
    if outcome.kind in _SILENT_KINDS:
        return SILENT
    if outcome.kind is OutcomeKind.SUCCESS:
        return HookResponse(EXIT_SHOW, success_message(outcome))
    if outcome.kind is OutcomeKind.FAILURE:
        return HookResponse(EXIT_SHOW, failure_message(outcome))
    if outcome.kind is OutcomeKind.TIMED_OUT:
        return HookResponse(EXIT_SHOW, timeout_message(outcome))
    raise ValueError(f"unhandled outcome kind: {outcome.kind!r}")


def success_message(outcome: RunOutcome) -> str:
    if outcome.context is Context.TEST:
        return "👉 Tests pass. Continue with your task."
    steps = set(outcome.steps)
    if "formatted" in steps and "auto-fixed" in steps:
        return "✨ Formatted, auto-fixed and verified lints. Continue with your task."
    if "formatted" in steps:
        return "✨ Formatted and lints verified. Continue with your task."
    if "auto-fixed" in steps:
        return "✨ Auto-fixed lint issues and verified. Continue with your task."
    return "👉 Lints pass. Continue with your task."


def failure_message(outcome: RunOutcome) -> str:
    label = _LABELS.get(outcome.context, outcome.context.value.upper())
    excerpt = output_excerpt(outcome)
    lines = [f"⛔ {label} FAILED" + (":" if excerpt else "")]
    if excerpt:
        lines.extend(["", excerpt])
    lines.extend(["", *_remediation(outcome)])
    return "\n".join(lines)


def timeout_message(outcome: RunOutcome) -> str:
    label = _LABELS.get(outcome.context, outcome.context.value.upper())
    tool = outcome.tool.name if outcome.tool else outcome.context.value
    limit = f" after {outcome.timeout_seconds:g}s" if outcome.timeout_seconds else ""
    lines = [f"⛔ {label} TIMED OUT: {tool} did not finish{limit}."]
    excerpt = output_excerpt(outcome)
    if excerpt:
        lines.extend(["", excerpt])
    lines.extend(["", *_remediation(outcome)])
    return "\n".join(lines)


def output_excerpt(outcome: RunOutcome, *, max_lines: int = EXCERPT_MAX_LINES) -> str:
    if outcome.result is None:
        return ""
    text = outcome.result.combined_output
    if not text:
        return ""
    lines = text.splitlines()
    if len(lines) <= max_lines:
        return text
    hidden = len(lines) - max_lines
    return "\n".join([f"... ({hidden} earlier lines omitted)", *lines[-max_lines:]])


def remediation_command(outcome: RunOutcome) -> str | None:
    if not outcome.command:
        return None
    command = shlex.join(outcome.command)
    if outcome.project_root is not None:
        return f"cd {shlex.quote(str(outcome.project_root))} && {command}"
    return command


def _remediation(outcome: RunOutcome) -> list[str]:
    command = remediation_command(outcome)
    lines = []
    if command:
        lines.append(f"Run manually: {command}")
    lines.append(f"⛔ Must fix all {outcome.context.value} failures before continuing")
    return lines
