from __future__ import annotations

import os
import sys

__version__ = "0.1.0"

DEBUG_ENV = "GUARDRAILS_DEBUG"
_DEBUG_FLAGS = {"1", "true", "yes", "on", "debug"}


def debug_enabled() -> bool:
    return os.getenv(DEBUG_ENV, "").strip().lower() in _DEBUG_FLAGS


def _format_exception_message(exc: BaseException) -> str:
    text = str(exc).strip()
    if not text:
        return exc.__class__.__name__
    return " ".join(chunk.strip() for chunk in text.splitlines() if chunk.strip())


def _guardrails_excepthook(exc_type: type[BaseException], exc: BaseException, tb) -> None:
    if debug_enabled():
        sys.__excepthook__(exc_type, exc, tb)
        return
    message = _format_exception_message(exc)
    sys.stderr.write(f"[guardrails] ERROR: {message}\n")


sys.excepthook = _guardrails_excepthook
