from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, TextIO

from guardrails_runtime import __version__, debug_enabled, discovery, hooklib
from guardrails_runtime.automation import AutomationRunner
from guardrails_runtime.config import ConfigError, GuardrailsConfig, load_config, resolve_lock_dir
from guardrails_runtime.exclusion import Context, ExclusionPolicy, Verdict, decide, probe_file
from guardrails_runtime.patterns import relative_path
from guardrails_runtime.protocol import EXIT_CONTINUE, EXIT_ERROR, respond

logger = logging.getLogger(__name__)

LOG_FORMAT = "[guardrails] %(levelname)s: %(message)s"
_CONTEXT_LABELS = (
    (Context.GENERAL, "General Processing"),
    (Context.LINT, "Linting"),
    (Context.TEST, "Testing"),
)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="python-guardrails",
        description="Lint and test Python files after edits, skipping excluded files.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    parser.add_argument("--config", help="Path to a guardrails YAML config.")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("lint", help="Lint the edited file from the hook payload on stdin.")
    sub.add_parser("test", help="Run tests for the edited file from the hook payload on stdin.")
    analyze = sub.add_parser("analyze", help="Show per-context exclusion verdicts for a file.")
    analyze.add_argument("--file", help="File to analyze (defaults to the hook payload path).")
    analyze.add_argument("--format", choices=("text", "json"), default="text")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None, *, stream: Optional[TextIO] = None) -> int:
    args = parse_args(argv)
    _configure_logging(args.verbose)
    if args.command == "analyze":
        return _analyze(args, stream)
    return _automate(Context.parse(args.command), args, stream)


def _automate(context: Context, args: argparse.Namespace, stream: Optional[TextIO]) -> int:
    try:
        hook_input = hooklib.read_hook_input(stream)
    except hooklib.HookPayloadError as exc:
        logger.debug("%s", exc)
        return EXIT_CONTINUE
    if not hook_input.should_process():
        logger.debug(
            "ignoring %s event for tool %r", hook_input.hook_event_name, hook_input.tool_name
        )
        return EXIT_CONTINUE
    file_path = hook_input.file_path()
    if file_path is None:
        logger.debug("no file path in hook payload")
        return EXIT_CONTINUE

    project_root = discovery.find_project_root(file_path.parent)
    try:
        config, policy = _load(args.config, project_root)
    except ConfigError as exc:
        _error(str(exc))
        return EXIT_ERROR

    runner = AutomationRunner(config, policy=policy, lock_dir=resolve_lock_dir(config))
    outcome = runner.run(context, file_path, project_root=project_root)
    logger.debug("%s outcome for %s: %s (%s)", context.value, file_path, outcome.kind.value, outcome.reason)
    response = respond(outcome)
    if response.message:
        sys.stderr.write(response.message.rstrip() + "\n")
    return response.exit_code


def _analyze(args: argparse.Namespace, stream: Optional[TextIO]) -> int:
    if args.file:
        file_path = Path(args.file).expanduser().absolute()
    else:
        try:
            file_path = hooklib.read_hook_input(stream).file_path()
        except hooklib.HookPayloadError as exc:
            _error(f"no file to analyze: {exc}")
            return EXIT_ERROR
        if file_path is None:
            _error("no file to analyze: hook payload has no file path")
            return EXIT_ERROR
    if not file_path.is_file():
        _error(f"file not found: {file_path}")
        return EXIT_ERROR

    project_root = discovery.find_project_root(file_path.parent)
    try:
        _, policy = _load(args.config, project_root)
    except ConfigError as exc:
        _error(str(exc))
        return EXIT_ERROR

    report = analyze_file(policy, file_path, project_root)
    if args.format == "json":
        print(json.dumps(report, ensure_ascii=False, indent=2))
    else:
        print(render_text(report))
    return EXIT_CONTINUE


def analyze_file(
    policy: ExclusionPolicy,
    file_path: Path,
    project_root: Optional[Path],
) -> Dict[str, Any]:
    rel = relative_path(file_path, project_root)
    probe = probe_file(file_path, relative=rel)
    contexts: Dict[str, Any] = {}
    for context, _ in _CONTEXT_LABELS:
        verdict = decide(policy, rel, context, probe)
        contexts[context.value] = _verdict_payload(verdict)
    return {
        "file": str(file_path),
        "relative_path": rel,
        "project_root": str(project_root) if project_root else None,
        "project_type": discovery.detect_project_type(project_root).value if project_root else None,
        "file_type": _describe(file_path, probe.is_binary, probe.is_generated),
        "size": probe.size,
        "contexts": contexts,
    }


def render_text(report: Dict[str, Any]) -> str:
    lines = [
        f"📁 File Analysis: {report['file']}",
        "═" * 60,
        f"📋 File Type: {report['file_type']}",
    ]
    if report["project_root"]:
        lines.append(f"📦 Project: {report['project_root']} ({report['project_type']})")
    lines.extend(["", "🚫 Exclusion Recommendations:"])
    for context, label in _CONTEXT_LABELS:
        verdict = report["contexts"][context.value]
        state = "❌ EXCLUDE" if verdict["excluded"] else "✅ INCLUDE"
        suffix = f" ({verdict['detail']})" if verdict["excluded"] else ""
        lines.append(f"  • {label}: {state}{suffix}")
    return "\n".join(lines)


def _verdict_payload(verdict: Verdict) -> Dict[str, Any]:
    return {
        "excluded": verdict.excluded,
        "reason": verdict.reason.value if verdict.reason else None,
        "detail": verdict.detail,
    }


def _describe(file_path: Path, is_binary: bool, is_generated: bool) -> str:
    if is_binary:
        return "binary file"
    if is_generated:
        return "generated file"
    if file_path.suffix == ".py":
        return "Python test module" if discovery.is_test_module(file_path) else "Python source"
    return f"{file_path.suffix.lstrip('.') or 'extensionless'} file"


def _load(
    config_path: Optional[str],
    project_root: Optional[Path],
) -> tuple[GuardrailsConfig, ExclusionPolicy]:
    path = Path(config_path).expanduser() if config_path else None
    config = load_config(path, project_root=project_root)
    if config.source is not None:
        logger.debug("loaded config from %s", config.source)
    return config, config.build_policy()


def _error(message: str) -> None:
    sys.stderr.write(f"[guardrails] ERROR: {message}\n")


def _configure_logging(verbose: bool) -> None:
    package_logger = logging.getLogger("guardrails_runtime")
    for handler in list(package_logger.handlers):
        if getattr(handler, "_guardrails_cli", False):
            package_logger.removeHandler(handler)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._guardrails_cli = True  # type: ignore[attr-defined]
    package_logger.addHandler(handler)
    package_logger.setLevel(logging.DEBUG if verbose or debug_enabled() else logging.WARNING)


if __name__ == "__main__":
    raise SystemExit(main())
