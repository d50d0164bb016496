"""Activation resolver - turns one event into exactly one Decision.

Algorithm:
1. Match every record's signals for the event's kind (prompt signals for a
   submitted prompt, file signals for a proposed tool action).
2. Drop candidates the session considers bypassed.
3. No candidates left: NoAction.
4. Otherwise pick one winner, in order of preference:
   guardrail over domain, higher priority, more specific signal
   (content > path > intent > keyword), then smallest module id.
5. Block if the winner enforces Block on a tool action, Suggest otherwise.
   Prompt events never block; the host's submission callback cannot halt.
6. Mark the winner as fired.

Resolution never raises for a well-formed event. A malformed event is a
host contract violation and resolves to NoAction with a diagnostic.
"""

import logging
import time
from typing import Callable, Optional

from .emitter import render_block_message
from .errors import (
    CONTENT_SCAN_TRUNCATED,
    HOST_CONTRACT_VIOLATION,
    TIMEOUT,
    HostContractViolation,
)
from .matchers import (
    DEFAULT_CONTENT_SCAN_LIMIT,
    is_excluded,
    matches_content,
    matches_intent,
    matches_keyword,
    matches_path,
)
from .models import (
    ActivationEvent,
    Candidate,
    Decision,
    Diagnostic,
    Enforcement,
    EventKind,
    Evaluation,
    Outcome,
    RuleRecord,
)
from .rules import RuleStore
from .session import SessionState

logger = logging.getLogger(__name__)


def match_prompt(record: RuleRecord, text: str) -> Optional[Candidate]:
    """Strongest prompt signal of record found in text."""
    signals = record.prompt_signals
    intent = matches_intent(text, signals.compiled_intents)
    if intent:
        return Candidate(record=record, signal="intent", pattern=intent.pattern)
    keyword = matches_keyword(text, signals.keywords)
    if keyword:
        return Candidate(record=record, signal="keyword", pattern=keyword.pattern)
    return None


def match_file(
    record: RuleRecord,
    path: str,
    content: Optional[str],
    case_sensitive_paths: bool = True,
    content_scan_limit: Optional[int] = DEFAULT_CONTENT_SCAN_LIMIT,
    diagnostics: Optional[list] = None,
) -> Optional[Candidate]:
    """File-signal candidacy for one record.

    An excluded path is a hard veto. When a record declares both path and
    content patterns, both must match and the content match is reported.
    Unavailable content never matches. Content over the scan limit is not
    scanned, and the record falls back to its path match if it has one.
    """
    signals = record.file_signals
    if signals.is_empty:
        return None
    if is_excluded(path, signals.path_exclusions, case_sensitive_paths):
        return None

    path_hit = None
    if signals.path_patterns:
        path_hit = matches_path(path, signals.path_patterns, (), case_sensitive_paths)
        if not path_hit:
            return None

    if not signals.content_patterns:
        return Candidate(record=record, signal="path", pattern=path_hit.pattern)

    if content is None:
        return None
    content_hit = matches_content(content, signals.compiled_contents, content_scan_limit)
    if content_hit.truncated:
        if diagnostics is not None:
            diagnostics.append(Diagnostic(
                code=CONTENT_SCAN_TRUNCATED,
                message=f"{path} exceeds the {content_scan_limit}-byte content scan limit; "
                        "content patterns were not evaluated",
                module_id=record.id,
            ))
        # Only the content signals are lost; a matched path still stands
        if path_hit:
            return Candidate(record=record, signal="path", pattern=path_hit.pattern)
        return None
    if not content_hit:
        return None
    return Candidate(record=record, signal="content", pattern=content_hit.pattern)


def winner_key(candidate: Candidate) -> tuple:
    record = candidate.record
    return (
        0 if record.is_guardrail else 1,
        -record.priority.rank,
        -candidate.specificity,
        record.id,
    )


def select_winner(candidates: list[Candidate]) -> Candidate:
    return min(candidates, key=winner_key)


def build_decision(winner: Candidate, event: ActivationEvent) -> Decision:
    record = winner.record
    if record.enforcement == Enforcement.BLOCK and event.kind == EventKind.TOOL_INVOCATION_PROPOSED:
        return Decision(
            outcome=Outcome.BLOCK,
            module_id=record.id,
            enforcement=record.enforcement,
            message=render_block_message(record, event.target_file_path),
        )
    return Decision(
        outcome=Outcome.SUGGEST,
        module_id=record.id,
        enforcement=record.enforcement,
    )


def resolve(
    event: ActivationEvent,
    store: RuleStore,
    state: SessionState,
    case_sensitive_paths: bool = True,
    content_scan_limit: Optional[int] = DEFAULT_CONTENT_SCAN_LIMIT,
    deadline: Optional[float] = None,
    clock: Callable[[], float] = time.monotonic,
) -> Evaluation:
    """Evaluate one event against every record.

    Args:
        event: The host event
        store: Loaded rule store
        state: The event's session state; mutated only by marking the winner
        case_sensitive_paths: Glob case sensitivity
        content_scan_limit: Max content bytes scanned (None = unlimited)
        deadline: clock() value after which evaluation gives up with NoAction.
            Giving up always happens before any state is changed.
        clock: Monotonic time source for the deadline

    Returns:
        Evaluation with the decision, candidates, bypasses and diagnostics
    """
    try:
        event.validate()
    except HostContractViolation as e:
        logger.warning("Host contract violation: %s", e)
        return Evaluation(
            decision=Decision.no_action(),
            diagnostics=[Diagnostic(code=HOST_CONTRACT_VIOLATION, message=str(e))],
        )

    evaluation = Evaluation(decision=Decision.no_action())

    with state.lock:
        matched = []
        for record in store.all_records():
            if deadline is not None and clock() > deadline:
                return _timed_out(evaluation)

            if event.kind == EventKind.PROMPT_SUBMITTED:
                candidate = match_prompt(record, event.prompt_text)
            else:
                candidate = match_file(
                    record,
                    event.target_file_path,
                    event.target_file_content,
                    case_sensitive_paths=case_sensitive_paths,
                    content_scan_limit=content_scan_limit,
                    diagnostics=evaluation.diagnostics,
                )
            if candidate is not None:
                logger.debug("%s matched via %s %r", record.id, candidate.signal, candidate.pattern)
                matched.append(candidate)

        for candidate in matched:
            reason = state.bypass_reason(candidate.record, event)
            if reason:
                logger.debug("%s bypassed: %s", candidate.record.id, reason)
                evaluation.bypassed.append((candidate.record.id, reason))
            else:
                evaluation.candidates.append(candidate)

        if not evaluation.candidates:
            return evaluation

        if deadline is not None and clock() > deadline:
            return _timed_out(evaluation)

        winner = select_winner(evaluation.candidates)
        evaluation.decision = build_decision(winner, event)
        state.mark_fired(winner.record.id)
        logger.debug("Winner %s -> %s", winner.record.id, evaluation.decision.outcome.value)

    return evaluation


def _timed_out(evaluation: Evaluation) -> Evaluation:
    logger.warning("Evaluation exceeded its time ceiling; returning no action")
    evaluation.decision = Decision.no_action()
    evaluation.candidates = []
    evaluation.diagnostics.append(Diagnostic(code=TIMEOUT, message="evaluation exceeded time ceiling"))
    return evaluation
