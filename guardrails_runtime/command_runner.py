from __future__ import annotations

import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

DEFAULT_TIMEOUT_SEC = 20.0
MAX_STDOUT_BYTES = 50_000
MAX_STDERR_BYTES = 20_000
TIMEOUT_RETURNCODE = 124
MISSING_RETURNCODE = 127


@dataclass(frozen=True)
class CommandResult:
    command: tuple[str, ...]
    cwd: Path
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False
    missing: bool = False
    stdout_truncated: bool = False
    stderr_truncated: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    @property
    def combined_output(self) -> str:
        parts = [text.strip() for text in (self.stdout, self.stderr) if text and text.strip()]
        return "\n".join(parts)


def run_command(
    command: Sequence[str],
    *,
    cwd: Path,
    env: Mapping[str, str] | None = None,
    timeout_sec: float | None = None,
    max_stdout_bytes: int = MAX_STDOUT_BYTES,
    max_stderr_bytes: int = MAX_STDERR_BYTES,
) -> CommandResult:
    effective_timeout = timeout_sec if timeout_sec is not None else DEFAULT_TIMEOUT_SEC

    timed_out = False
    missing = False
    stdout_text = ""
    stderr_text = ""
    returncode = 0
    try:
        proc = subprocess.run(
            list(command),
            cwd=cwd,
            env=dict(env) if env is not None else None,
            encoding="utf-8",
            errors="replace",
            capture_output=True,
            check=False,
            timeout=effective_timeout,
        )
        returncode = proc.returncode
        stdout_text = proc.stdout or ""
        stderr_text = proc.stderr or ""
    except subprocess.TimeoutExpired as exc:
        timed_out = True
        returncode = TIMEOUT_RETURNCODE
        stdout_text = _normalize_timeout_output(exc.stdout)
        base_stderr = _normalize_timeout_output(exc.stderr)
        timeout_msg = f"[guardrails] ERROR: command timed out after {effective_timeout:.3f}s"
        stderr_text = f"{base_stderr}\n{timeout_msg}".strip()
    except FileNotFoundError as exc:
        missing = True
        returncode = MISSING_RETURNCODE
        stderr_text = f"[guardrails] ERROR: executable not found: {exc.filename or command[0]}"

    stdout_text, stdout_truncated = _truncate_output(stdout_text, max_stdout_bytes)
    stderr_text, stderr_truncated = _truncate_output(stderr_text, max_stderr_bytes)
    return CommandResult(
        command=tuple(str(part) for part in command),
        cwd=cwd,
        returncode=returncode,
        stdout=stdout_text,
        stderr=stderr_text,
        timed_out=timed_out,
        missing=missing,
        stdout_truncated=stdout_truncated,
        stderr_truncated=stderr_truncated,
    )


def _normalize_timeout_output(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


def _truncate_output(text: str, max_bytes: int) -> tuple[str, bool]:
    if max_bytes <= 0:
        return "", bool(text)
    encoded = text.encode("utf-8", errors="replace")
    if len(encoded) <= max_bytes:
        return text, False
    truncated = encoded[:max_bytes].decode("utf-8", errors="ignore")
    suffix = f"\n[guardrails] output truncated to {max_bytes} bytes."
    return f"{truncated.rstrip()}{suffix}", True
