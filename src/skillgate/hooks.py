"""Hook adapters for hosts that run one process per event.

Each adapter takes the hook's JSON payload, gathers what the resolver
needs (the target file's content is read here, before matching starts),
evaluates against the session's file-backed state and returns a
HookResponse. run_hook() wraps the adapters for the CLI: JSON in on stdin,
JSON out on stdout.

Payload fields used:
    session_id, cwd                       all events
    prompt                                UserPromptSubmit
    tool_name, tool_input.file_path,
    tool_input.content / new_string /
    tool_input.edits[].new_string         PreToolUse
"""

import json
import logging
import os
import sys
import time
from pathlib import Path
from typing import Mapping, Optional, TextIO

from .config import Settings, load_settings
from .emitter import HookResponse, emit, generate_hook_response
from .errors import ConfigurationError, HOST_CONTRACT_VIOLATION, INTERNAL_ERROR
from .models import ActivationEvent, Decision, Diagnostic, Evaluation
from .path_utils import project_relative
from .resolver import resolve
from .rules import RuleStore, load_rules
from .session import FileSessionStore

logger = logging.getLogger(__name__)


class Tools:
    """Canonical tool names the hooks look at."""
    EDIT = "Edit"
    WRITE = "Write"
    MULTI_EDIT = "MultiEdit"
    NOTEBOOK_EDIT = "NotebookEdit"


# Tools whose target file is evaluated against file signals
FILE_MODIFY_TOOLS = {Tools.EDIT, Tools.WRITE, Tools.MULTI_EDIT, Tools.NOTEBOOK_EDIT}

HOOK_EVENTS = {
    "user-prompt-submit": "UserPromptSubmit",
    "pre-tool-use": "PreToolUse",
    "session-start": "SessionStart",
    "session-end": "SessionEnd",
}


def read_file_content(path: Path, limit: Optional[int]) -> Optional[str]:
    """Read a file as text, at most limit + 1 bytes.

    Reading one byte past the limit lets the content matcher see that the
    file is over it. Returns None if the file can't be read.
    """
    try:
        with open(path, "rb") as f:
            data = f.read() if limit is None else f.read(limit + 1)
    except OSError:
        return None
    return data.decode("utf-8", errors="replace")


def proposed_text(tool_name: str, tool_input: dict) -> list[str]:
    """New text the tool would write."""
    if tool_name == Tools.WRITE:
        return [str(tool_input.get("content") or "")]
    if tool_name == Tools.EDIT:
        return [str(tool_input.get("new_string") or "")]
    if tool_name == Tools.MULTI_EDIT:
        return [str(e.get("new_string") or "") for e in tool_input.get("edits") or [] if isinstance(e, dict)]
    if tool_name == Tools.NOTEBOOK_EDIT:
        return [str(tool_input.get("new_source") or "")]
    return []


def gather_content(
    tool_name: str,
    tool_input: dict,
    file_path: Path,
    limit: Optional[int],
) -> Optional[str]:
    """Existing file content plus the text the tool proposes to add."""
    parts = []
    if tool_name != Tools.WRITE and file_path.is_file():
        existing = read_file_content(file_path, limit)
        if existing:
            parts.append(existing)
    parts.extend(p for p in proposed_text(tool_name, tool_input) if p)
    if not parts:
        return None
    return "\n".join(parts)


def _deadline(timeout_ms: int) -> Optional[float]:
    return time.monotonic() + timeout_ms / 1000.0 if timeout_ms else None


def _session_id(payload: dict) -> Optional[str]:
    session_id = payload.get("session_id")
    return session_id if isinstance(session_id, str) and session_id else None


def _violation(message: str) -> Evaluation:
    logger.warning("Host contract violation: %s", message)
    return Evaluation(
        decision=Decision.no_action(),
        diagnostics=[Diagnostic(code=HOST_CONTRACT_VIOLATION, message=message)],
    )


def evaluate_prompt(
    payload: dict,
    store: RuleStore,
    settings: Settings,
    sessions: FileSessionStore,
    environ: Optional[Mapping[str, str]] = None,
) -> Evaluation:
    """UserPromptSubmit: match prompt signals."""
    session_id = _session_id(payload)
    if session_id is None:
        return _violation("UserPromptSubmit payload has no session_id")

    event = ActivationEvent.prompt(payload.get("prompt"), session_id=session_id)
    with sessions.open(session_id, environ) as state:
        return resolve(
            event, store, state,
            case_sensitive_paths=settings.case_sensitive_paths,
            content_scan_limit=settings.content_scan_limit,
            deadline=_deadline(settings.prompt_timeout_ms),
        )


def evaluate_tool_use(
    payload: dict,
    store: RuleStore,
    settings: Settings,
    sessions: FileSessionStore,
    environ: Optional[Mapping[str, str]] = None,
) -> Evaluation:
    """PreToolUse: match file signals for file-modifying tools."""
    tool_name = payload.get("tool_name")
    if tool_name not in FILE_MODIFY_TOOLS:
        return Evaluation(decision=Decision.no_action())

    session_id = _session_id(payload)
    if session_id is None:
        return _violation("PreToolUse payload has no session_id")

    tool_input = payload.get("tool_input")
    if not isinstance(tool_input, dict):
        return _violation("PreToolUse payload has no tool_input object")

    raw_path = tool_input.get("file_path") or tool_input.get("notebook_path")
    if not isinstance(raw_path, str) or not raw_path:
        return _violation(f"{tool_name} tool_input has no file_path")

    cwd = Path(payload["cwd"]) if isinstance(payload.get("cwd"), str) else Path.cwd()
    abs_path = Path(raw_path) if Path(raw_path).is_absolute() else cwd / raw_path
    content = gather_content(tool_name, tool_input, abs_path, settings.content_scan_limit)

    event = ActivationEvent.tool(
        project_relative(str(abs_path), cwd),
        content=content,
        session_id=session_id,
        tool_name=tool_name,
    )
    with sessions.open(session_id, environ) as state:
        return resolve(
            event, store, state,
            case_sensitive_paths=settings.case_sensitive_paths,
            content_scan_limit=settings.content_scan_limit,
            deadline=_deadline(settings.tool_timeout_ms),
        )


def handle_session_start(
    payload: dict,
    settings: Settings,
    sessions: FileSessionStore,
    environ: Optional[Mapping[str, str]] = None,
) -> dict:
    """SessionStart: reset state for the session and prune stale files."""
    removed = sessions.cleanup_stale(settings.stale_hours)
    if removed:
        logger.info("Removed %d stale session file(s)", removed)
    session_id = _session_id(payload)
    if session_id is None:
        return {}
    state = sessions.start(session_id, environ)
    return {"session_id": state.session_id, "env_overrides": sorted(state.active_env_overrides)}


def handle_session_end(payload: dict, sessions: FileSessionStore) -> dict:
    session_id = _session_id(payload)
    if session_id is None:
        return {}
    return {"session_id": session_id, "ended": sessions.end(session_id)}


def run_hook(
    hook: str,
    stdin: Optional[TextIO] = None,
    stdout: Optional[TextIO] = None,
    stderr: Optional[TextIO] = None,
    environ: Optional[Mapping[str, str]] = None,
    settings: Optional[Settings] = None,
) -> int:
    """Run one hook end to end. Returns the process exit code.

    0 = allow (with optional context), 2 = block (message on stderr),
    1 = configuration error (reported on stderr, nothing evaluated).
    """
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout
    stderr = stderr or sys.stderr
    environ = os.environ if environ is None else environ
    if hook not in HOOK_EVENTS:
        print(f"skillgate: unknown hook {hook!r}", file=stderr)
        return 1

    try:
        payload = json.loads(stdin.read() or "{}")
    except json.JSONDecodeError as e:
        logger.warning("Unreadable hook payload: %s", e)
        payload = None
    if not isinstance(payload, dict):
        print(json.dumps({}), file=stdout)
        return 0

    try:
        settings = settings or load_settings()
        if hook == "session-end":
            sessions = FileSessionStore(RuleStore([]), settings.state_dir)
            print(json.dumps(handle_session_end(payload, sessions)), file=stdout)
            return 0

        project_dir = Path(payload["cwd"]) if isinstance(payload.get("cwd"), str) else None
        store = load_rules(settings.rules_file(project_dir))
        sessions = FileSessionStore(store, settings.state_dir)
    except ConfigurationError as e:
        print(f"skillgate: configuration error: {e}", file=stderr)
        return 1

    if hook == "session-start":
        print(json.dumps(handle_session_start(payload, settings, sessions, environ)), file=stdout)
        return 0

    try:
        if hook == "user-prompt-submit":
            evaluation = evaluate_prompt(payload, store, settings, sessions, environ)
        else:
            evaluation = evaluate_tool_use(payload, store, settings, sessions, environ)
    except Exception as e:
        logger.error("Hook evaluation failed, allowing: %s", e)
        evaluation = Evaluation(
            decision=Decision.no_action(),
            diagnostics=[Diagnostic(code=INTERNAL_ERROR, message=str(e))],
        )

    for diagnostic in evaluation.diagnostics:
        logger.warning("%s: %s", diagnostic.code, diagnostic.message)

    response: HookResponse = emit(evaluation)
    print(generate_hook_response(response, HOOK_EVENTS[hook]), file=stdout)
    if response.halt:
        print(response.reason, file=stderr)
        return 2
    return 0
