"""Tests for the activation resolver."""

import copy
import itertools
import threading

import pytest

from skillgate.errors import CONTENT_SCAN_TRUNCATED, HOST_CONTRACT_VIOLATION, TIMEOUT
from skillgate.models import ActivationEvent, Enforcement, EventKind, Outcome
from skillgate.resolver import match_file, match_prompt, resolve, select_winner
from skillgate.session import SessionState

from conftest import BACKEND_GUIDE, DB_GUARD, make_store


PRISMA = "const user = await prisma.user.findMany()"


def _tool(path="src/api/user.ts", content=PRISMA):
    return ActivationEvent.tool(path, content=content, session_id="test-session")


def _prompt(text):
    return ActivationEvent.prompt(text, session_id="test-session")


def _domain(**overrides):
    rule = copy.deepcopy(BACKEND_GUIDE)
    rule.update(overrides)
    return rule


class TestScenarios:
    """End-to-end resolution of single events."""

    def test_prompt_keyword_match(self, store, state):
        result = resolve(_prompt("add a new database column"), store, state)
        assert result.decision.outcome == Outcome.SUGGEST
        assert result.decision.module_id == "db-guard"
        db = next(c for c in result.candidates if c.record.id == "db-guard")
        assert db.signal == "keyword"
        assert db.pattern == "database"

    def test_excluded_path_is_not_a_candidate(self, store, state):
        result = resolve(_tool("src/api/user.test.ts"), store, state)
        assert "db-guard" not in [c.record.id for c in result.candidates]

    def test_guardrail_block_beats_domain_suggest(self, store, state):
        result = resolve(_tool(), store, state)
        assert result.decision.outcome == Outcome.BLOCK
        assert result.decision.module_id == "db-guard"
        assert {c.record.id for c in result.candidates} == {"db-guard", "backend-guide"}

    def test_repeated_event_after_firing(self):
        store = make_store(db_guard=DB_GUARD)
        state = SessionState.start(store, environ={})
        assert resolve(_tool(), store, state).decision.is_block
        again = resolve(_tool(), store, state)
        assert again.decision.outcome == Outcome.NO_ACTION
        assert again.bypassed == [("db-guard", "already fired this session")]

    def test_no_match(self, store, state):
        result = resolve(_prompt("polish the button hover colour"), store, state)
        assert result.decision.outcome == Outcome.NO_ACTION
        assert not state.fired_modules

    def test_block_message_rendered(self, store, state):
        decision = resolve(_tool(), store, state).decision
        assert decision.message.startswith("BLOCKED: src/api/user.ts uses the database")
        assert "@skip-db-check" in decision.message
        assert "SKIP_DB_CHECK=1" in decision.message

    def test_intent_match(self, store, state):
        result = resolve(_prompt("Please add a new orders endpoint"), store, state)
        assert result.decision.module_id == "backend-guide"
        assert result.winner.signal == "intent"


class TestFileSignals:
    """Path and content signals for tool actions."""

    def test_path_only_record(self, store):
        candidate = match_file(store.get("backend-guide"), "src/api/user.ts", None)
        assert candidate.signal == "path"

    def test_path_and_content_both_required(self, store):
        record = store.get("db-guard")
        assert match_file(record, "src/api/user.ts", "no database here") is None
        assert match_file(record, "lib/user.ts", PRISMA) is None
        assert match_file(record, "src/api/user.ts", PRISMA).signal == "content"

    def test_missing_content_never_matches_content_patterns(self, store):
        assert match_file(store.get("db-guard"), "src/api/user.ts", None) is None

    def test_content_only_record(self):
        rule = _domain(fileTriggers={"contentPatterns": [r"^import React"]})
        store = make_store(react=rule)
        assert match_file(store.get("react"), "anything.js", "// x\nimport React from 'react'")

    def test_content_scan_truncated_keeps_path_match(self, store, state):
        content = PRISMA + " " * 200
        result = resolve(_tool(content=content), store, state, content_scan_limit=100)
        assert result.decision.is_block
        assert result.decision.module_id == "db-guard"
        assert result.winner.signal == "path"
        codes = [(d.code, d.module_id) for d in result.diagnostics]
        assert (CONTENT_SCAN_TRUNCATED, "db-guard") in codes

    def test_content_scan_truncated_without_path_patterns(self):
        rule = _domain(fileTriggers={"contentPatterns": [r"prisma\."]})
        store = make_store(react=rule)
        diagnostics = []
        candidate = match_file(store.get("react"), "src/a.ts", PRISMA + " " * 200,
                               content_scan_limit=100, diagnostics=diagnostics)
        assert candidate is None
        assert [d.code for d in diagnostics] == [CONTENT_SCAN_TRUNCATED]

    def test_case_insensitive_paths(self, store, state):
        result = resolve(_tool("SRC/api/user.ts"), store, state, case_sensitive_paths=False)
        assert result.decision.is_block

    def test_prompt_signals_ignored_for_tool_events(self):
        rule = _domain(fileTriggers={"pathPatterns": ["docs/**"]})
        store = make_store(guide=rule)
        state = SessionState.start(store, environ={})
        event = _tool("src/backend/database.ts", content="backend database")
        assert resolve(event, store, state).decision.outcome == Outcome.NO_ACTION


class TestPromptEvents:
    """Submitted-instruction events never halt the host."""

    def test_block_guardrail_suggests_on_prompt(self, store, state):
        decision = resolve(_prompt("change the schema"), store, state).decision
        assert decision.outcome == Outcome.SUGGEST
        assert decision.enforcement == Enforcement.BLOCK
        assert decision.message is None

    def test_intent_preferred_over_keyword_within_record(self, store):
        candidate = match_prompt(store.get("backend-guide"), "add a backend route")
        assert candidate.signal == "intent"

    def test_record_without_prompt_signals(self):
        rule = _domain()
        del rule["promptTriggers"]
        store = make_store(guide=rule)
        assert match_prompt(store.get("guide"), "backend database") is None


class TestWinnerSelection:
    """Ordering: kind, priority, specificity, then id."""

    def test_priority_among_domains(self):
        store = make_store(
            low_guide=_domain(priority="low"),
            high_guide=_domain(priority="critical"),
        )
        state = SessionState.start(store, environ={})
        assert resolve(_prompt("backend"), store, state).decision.module_id == "high-guide"

    def test_guardrail_wins_regardless_of_priority(self):
        guard = copy.deepcopy(DB_GUARD)
        guard["priority"] = "low"
        store = make_store(guard=guard, guide=_domain(priority="critical"))
        state = SessionState.start(store, environ={})
        decision = resolve(_tool(), store, state).decision
        assert decision.module_id == "guard"
        assert decision.is_block

    def test_specificity_breaks_priority_tie(self):
        path_rule = _domain(fileTriggers={"pathPatterns": ["src/**/*.ts"]})
        content_rule = _domain(fileTriggers={"contentPatterns": [r"prisma\."]})
        store = make_store(a_path=path_rule, z_content=content_rule)
        state = SessionState.start(store, environ={})
        assert resolve(_tool(), store, state).decision.module_id == "z-content"

    def test_lexicographic_tie_break(self):
        store = make_store(beta=_domain(), alpha=_domain())
        state = SessionState.start(store, environ={})
        assert resolve(_prompt("backend"), store, state).decision.module_id == "alpha"

    def test_select_winner_independent_of_order(self):
        store = make_store(b=_domain(), a=_domain(), c=_domain(priority="low"))
        candidates = [match_prompt(r, "backend") for r in store]
        winners = {
            select_winner(list(order)).record.id
            for order in itertools.permutations(candidates)
        }
        assert winners == {"a"}

    def test_only_winner_is_marked(self, store, state):
        resolve(_tool(), store, state)
        assert state.fired_modules == {"db-guard"}


class TestProperties:
    """Determinism, suppression and bypass behaviour."""

    def test_determinism(self, store):
        decisions = set()
        for _ in range(5):
            state = SessionState.start(store, environ={})
            decisions.add(resolve(_tool(), store, state).decision)
        assert len(decisions) == 1

    def test_fire_once_applies_to_suggestions(self):
        store = make_store(guide=BACKEND_GUIDE)
        state = SessionState.start(store, environ={})
        assert resolve(_prompt("backend"), store, state).decision.outcome == Outcome.SUGGEST
        assert resolve(_prompt("backend"), store, state).decision.outcome == Outcome.NO_ACTION

    def test_without_session_skill_used_fires_again(self):
        rule = _domain(skipConditions={"sessionSkillUsed": False})
        store = make_store(guide=rule)
        state = SessionState.start(store, environ={})
        for _ in range(3):
            assert resolve(_prompt("backend"), store, state).decision.outcome == Outcome.SUGGEST

    def test_bypass_marker_flips_candidacy(self, store, state):
        marked = "// @skip-db-check\n" + PRISMA
        result = resolve(_tool(content=marked), store, state)
        assert ("db-guard", "file marker '@skip-db-check'") in result.bypassed
        assert result.decision.outcome == Outcome.SUGGEST
        assert result.decision.module_id == "backend-guide"

    def test_env_override_bypass(self, store):
        state = SessionState.start(store, environ={"SKIP_DB_CHECK": "1"})
        result = resolve(_tool(), store, state)
        assert not result.decision.is_block
        assert not state.has_fired("db-guard")

    def test_block_dominance(self):
        for priority in ("low", "medium", "high", "critical"):
            guard = dict(DB_GUARD, priority=priority)
            store = make_store(guard=guard, guide=_domain(priority="critical"))
            state = SessionState.start(store, environ={})
            assert resolve(_tool(), store, state).decision.is_block


class TestFailureModes:
    """Per-event problems become NoAction plus a diagnostic."""

    def test_missing_path_is_contract_violation(self, store, state):
        event = ActivationEvent(kind=EventKind.TOOL_INVOCATION_PROPOSED, session_id="s")
        result = resolve(event, store, state)
        assert result.decision.outcome == Outcome.NO_ACTION
        assert result.diagnostics[0].code == HOST_CONTRACT_VIOLATION

    def test_missing_prompt_is_contract_violation(self, store, state):
        event = ActivationEvent(kind=EventKind.PROMPT_SUBMITTED, session_id="s")
        assert resolve(event, store, state).diagnostics[0].code == HOST_CONTRACT_VIOLATION

    def test_non_text_content_is_contract_violation(self, store, state):
        event = ActivationEvent.tool("src/a.ts", content=b"prisma.user")
        assert resolve(event, store, state).diagnostics[0].code == HOST_CONTRACT_VIOLATION

    def test_deadline_passed_returns_no_action(self, store, state):
        result = resolve(_tool(), store, state, deadline=10.0, clock=lambda: 11.0)
        assert result.decision.outcome == Outcome.NO_ACTION
        assert result.diagnostics[-1].code == TIMEOUT
        assert not state.fired_modules

    def test_deadline_reached_before_marking(self, store, state):
        ticks = iter([1.0, 2.0, 99.0])
        result = resolve(_tool(), store, state, deadline=5.0, clock=lambda: next(ticks))
        assert result.decision.outcome == Outcome.NO_ACTION
        assert result.candidates == []
        assert not state.fired_modules

    def test_deadline_not_reached(self, store, state):
        result = resolve(_tool(), store, state, deadline=5.0, clock=lambda: 1.0)
        assert result.decision.is_block

    @pytest.mark.parametrize("text", ["", "   "])
    def test_empty_prompt_is_valid(self, store, state, text):
        result = resolve(_prompt(text), store, state)
        assert result.decision.outcome == Outcome.NO_ACTION
        assert result.diagnostics == []


class TestConcurrency:
    """Events for one session evaluated from several threads."""

    def test_fire_once_under_concurrent_events(self):
        store = make_store(guide=BACKEND_GUIDE)
        state = SessionState.start(store, environ={})
        barrier = threading.Barrier(8)
        outcomes = []

        def worker():
            barrier.wait()
            outcomes.append(resolve(_prompt("backend"), store, state).decision.outcome)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert outcomes.count(Outcome.SUGGEST) == 1
        assert outcomes.count(Outcome.NO_ACTION) == 7
        assert state.fired_modules == {"guide"}
