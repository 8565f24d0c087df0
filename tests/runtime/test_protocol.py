from __future__ import annotations

from pathlib import Path

import pytest

from guardrails_runtime import protocol
from guardrails_runtime.automation import OutcomeKind, RunOutcome
from guardrails_runtime.command_runner import CommandResult
from guardrails_runtime.discovery import LINT_TOOLS, TEST_TOOLS
from guardrails_runtime.exclusion import Context

ROOT = Path("/work/my project")


def _result(stdout: str = "", stderr: str = "", returncode: int = 1, timed_out: bool = False) -> CommandResult:
    return CommandResult(
        command=("ruff", "check", "src/app.py"),
        cwd=ROOT,
        returncode=returncode,
        stdout=stdout,
        stderr=stderr,
        timed_out=timed_out,
    )


@pytest.mark.parametrize(
    "kind",
    [
        OutcomeKind.EXCLUDED,
        OutcomeKind.SKIPPED,
        OutcomeKind.NO_TOOL_FOUND,
        OutcomeKind.LOCK_CONTENDED,
    ],
)
def test_routine_outcomes_are_silent(kind: OutcomeKind) -> None:
    response = protocol.respond(RunOutcome(kind, Context.LINT, "routine"))
    assert response.exit_code == protocol.EXIT_CONTINUE
    assert response.message is None
    assert response.silent


def test_lint_success_message_reflects_prep_steps() -> None:
    plain = protocol.respond(RunOutcome(OutcomeKind.SUCCESS, Context.LINT))
    assert plain.exit_code == protocol.EXIT_SHOW
    assert plain.message == "👉 Lints pass. Continue with your task."

    formatted = protocol.respond(
        RunOutcome(OutcomeKind.SUCCESS, Context.LINT, steps=("formatted",))
    )
    assert "Formatted and lints verified" in formatted.message

    fixed = protocol.respond(RunOutcome(OutcomeKind.SUCCESS, Context.LINT, steps=("auto-fixed",)))
    assert "Auto-fixed lint issues" in fixed.message


def test_test_success_message() -> None:
    response = protocol.respond(RunOutcome(OutcomeKind.SUCCESS, Context.TEST))
    assert response.exit_code == protocol.EXIT_SHOW
    assert response.message == "👉 Tests pass. Continue with your task."


def test_failure_includes_output_and_remediation() -> None:
    outcome = RunOutcome(
        OutcomeKind.FAILURE,
        Context.LINT,
        project_root=ROOT,
        tool=LINT_TOOLS[0],
        command=("ruff", "check", "src/app.py"),
        result=_result(stdout="src/app.py:1:1: F401 `os` imported but unused"),
    )
    response = protocol.respond(outcome)

    assert response.exit_code == protocol.EXIT_SHOW
    assert response.message.startswith("⛔ LINT FAILED:")
    assert "F401" in response.message
    assert "Run manually: cd '/work/my project' && ruff check src/app.py" in response.message


def test_failure_without_output_still_blocks() -> None:
    outcome = RunOutcome(
        OutcomeKind.FAILURE,
        Context.TEST,
        tool=TEST_TOOLS[0],
        command=("pytest", "tests/test_app.py"),
        result=_result(),
    )
    message = protocol.respond(outcome).message
    assert message.splitlines()[0] == "⛔ TESTS FAILED"
    assert "Run manually: pytest tests/test_app.py" in message


def test_timeout_message_names_limit() -> None:
    outcome = RunOutcome(
        OutcomeKind.TIMED_OUT,
        Context.TEST,
        project_root=ROOT,
        tool=TEST_TOOLS[0],
        command=("pytest", "tests/test_app.py"),
        timeout_seconds=20,
    )
    response = protocol.respond(outcome)
    assert response.exit_code == protocol.EXIT_SHOW
    assert "TESTS TIMED OUT: pytest did not finish after 20s" in response.message
    assert "pytest tests/test_app.py" in response.message


def test_output_excerpt_keeps_tail() -> None:
    lines = [f"line {index}" for index in range(100)]
    outcome = RunOutcome(OutcomeKind.FAILURE, Context.LINT, result=_result(stdout="\n".join(lines)))
    excerpt = protocol.output_excerpt(outcome, max_lines=5)
    assert excerpt.splitlines() == [
        "... (95 earlier lines omitted)",
        "line 95",
        "line 96",
        "line 97",
        "line 98",
        "line 99",
    ]


def test_remediation_without_command() -> None:
    assert protocol.remediation_command(RunOutcome(OutcomeKind.FAILURE, Context.LINT)) is None
