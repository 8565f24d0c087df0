from __future__ import annotations

import json
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, TextIO

PAYLOAD_ENV_VARS = ("HOOK_PAYLOAD", "GUARDRAILS_HOOK_PAYLOAD")
POST_TOOL_USE = "PostToolUse"
EDIT_TOOLS = frozenset({"Edit", "MultiEdit", "Write", "NotebookEdit"})
_PATH_KEYS = ("file_path", "path", "filename", "file")


class HookPayloadError(ValueError):
    """Hook payload is missing or malformed."""


@dataclass(frozen=True)
class HookInput:
    hook_event_name: str
    tool_name: str
    tool_input: Dict[str, Any] = field(default_factory=dict)
    cwd: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Any) -> HookInput:
        if not isinstance(payload, dict):
            raise HookPayloadError("hook payload must be a JSON object")
        tool_input = payload.get("tool_input")
        if not isinstance(tool_input, dict):
            tool_input = {}
        cwd = payload.get("cwd")
        return cls(
            hook_event_name=str(payload.get("hook_event_name") or ""),
            tool_name=str(payload.get("tool_name") or ""),
            tool_input=tool_input,
            cwd=cwd if isinstance(cwd, str) and cwd else None,
            raw=payload,
        )

    @property
    def is_edit_tool(self) -> bool:
        return self.tool_name in EDIT_TOOLS

    def should_process(self) -> bool:
        return self.hook_event_name == POST_TOOL_USE and self.is_edit_tool

    def file_path(self) -> Optional[Path]:
        raw = self._raw_file_path()
        if raw is None:
            return None
        path = Path(raw).expanduser()
        if not path.is_absolute():
            base = Path(self.cwd).expanduser() if self.cwd else Path.cwd()
            path = base / path
        return path

    def _raw_file_path(self) -> Optional[str]:
        if self.tool_name == "NotebookEdit":
            value = self.tool_input.get("notebook_path")
            if isinstance(value, str) and value:
                return value
        return payload_file_path(self.raw)


def payload_file_path(payload: Dict[str, Any]) -> Optional[str]:
    tool_input = payload.get("tool_input") if isinstance(payload, dict) else None
    if not isinstance(tool_input, dict):
        tool_input = {}
    for key in _PATH_KEYS:
        value = tool_input.get(key)
        if isinstance(value, str) and value:
            return value
    for key in _PATH_KEYS:
        value = payload.get(key) if isinstance(payload, dict) else None
        if isinstance(value, str) and value:
            return value
    return None


def read_payload_text(stream: Optional[TextIO] = None) -> str:
    for name in PAYLOAD_ENV_VARS:
        raw = os.environ.get(name, "")
        if raw.strip():
            return raw
    source = sys.stdin if stream is None else stream
    try:
        if source is not None and not getattr(source, "closed", False) and not source.isatty():
            return source.read()
    except (OSError, ValueError):
        return ""
    return ""


def read_hook_input(stream: Optional[TextIO] = None) -> HookInput:
    raw = read_payload_text(stream)
    if not raw.strip():
        raise HookPayloadError("no hook payload on stdin")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise HookPayloadError(f"invalid JSON hook payload: {exc.msg}") from exc
    return HookInput.from_payload(payload)
