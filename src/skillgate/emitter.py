"""Decision rendering for the host.

Block decisions become a halt instruction plus a message built from the
module's template. Every block message ends with the bypass mechanisms the
module actually supports, so the user can always see how to proceed.
Suggest decisions become a non-halting annotation.
"""

import json
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Optional

from .models import Decision, Enforcement, Evaluation, Outcome, RuleRecord

DEFAULT_BLOCK_TEMPLATE = (
    "BLOCKED by {module_id}\n\n"
    "{file_path} requires the {module_id} skill before this change."
)


@dataclass
class HookResponse:
    """What the host receives for one event."""
    decision: str  # "allow" or "block"
    reason: Optional[str] = None  # rendered block message
    context: Optional[str] = None  # suggestion annotation
    visibility: str = "normal"  # "normal" or "elevated"
    module_id: Optional[str] = None

    @property
    def halt(self) -> bool:
        return self.decision == "block"


def bypass_instructions(record: RuleRecord) -> list[str]:
    """Human-readable ways to get past this module."""
    skip = record.skip_conditions
    lines = []
    if skip.session_skill_used:
        lines.append(
            f"Apply the {record.id} guidance and retry; "
            "it only blocks once per session."
        )
    for marker in skip.file_markers:
        lines.append(f'Add the marker "{marker}" to the file to skip this check for that file.')
    if skip.env_override:
        lines.append(
            f"Set {skip.env_override}=1 in the environment before starting "
            "the session to disable this check."
        )
    return lines


def render_block_message(record: RuleRecord, file_path: Optional[str]) -> str:
    """Fill the block template and append the available bypasses."""
    template = record.block_message or DEFAULT_BLOCK_TEMPLATE
    path = file_path or "(unknown file)"
    message = template.format_map({
        "file_path": path,
        "file_name": PurePosixPath(path.replace("\\", "/")).name,
        "module_id": record.id,
    }).rstrip()

    bypasses = bypass_instructions(record)
    if bypasses:
        message += "\n\nTo proceed:\n" + "\n".join(f"  - {line}" for line in bypasses)
    else:
        message += "\n\nNo bypass is configured for this check."
    return message


def render_suggestion(record: RuleRecord, decision: Decision) -> str:
    description = f": {record.description}" if record.description else ""
    if decision.enforcement in (Enforcement.WARN, Enforcement.BLOCK):
        return f"WARNING - use the {record.id} skill{description}"
    return f"Consider using the {record.id} skill{description}"


def emit(evaluation: Evaluation, record: Optional[RuleRecord] = None) -> HookResponse:
    """Translate an evaluation into the host-facing response.

    record is the winning module; it is looked up from the evaluation's
    candidates when not given.
    """
    decision = evaluation.decision
    if decision.outcome == Outcome.NO_ACTION:
        return HookResponse(decision="allow")

    if record is None:
        winner = evaluation.winner
        record = winner.record if winner else None

    if decision.outcome == Outcome.BLOCK:
        return HookResponse(
            decision="block",
            reason=decision.message,
            visibility="elevated",
            module_id=decision.module_id,
        )

    elevated = decision.enforcement in (Enforcement.WARN, Enforcement.BLOCK)
    if record is not None:
        context = render_suggestion(record, decision)
    else:
        context = f"Consider using the {decision.module_id} skill"
    return HookResponse(
        decision="allow",
        context=context,
        visibility="elevated" if elevated else "normal",
        module_id=decision.module_id,
    )


def generate_hook_response(response: HookResponse, event_name: Optional[str] = None) -> str:
    """JSON for a Claude-Code-style hook's stdout."""
    if response.decision == "block":
        return json.dumps({
            "decision": "block",
            "reason": response.reason or "Blocked by skillgate",
        })
    payload: dict = {}
    if response.context:
        payload["hookSpecificOutput"] = {
            "hookEventName": event_name or "UserPromptSubmit",
            "additionalContext": response.context,
        }
    return json.dumps(payload)
