"""Pytest fixtures for skillgate tests."""

import json

import pytest

from skillgate.rules import parse_rules
from skillgate.session import SessionState


DB_GUARD = {
    "type": "guardrail",
    "enforcement": "block",
    "priority": "critical",
    "description": "Check the schema first",
    "promptTriggers": {"keywords": ["database", "schema"]},
    "fileTriggers": {
        "pathPatterns": ["src/**/*.ts"],
        "pathExclusions": ["**/*.test.ts"],
        "contentPatterns": [r"\bprisma\."],
    },
    "blockMessage": "BLOCKED: {file_path} uses the database",
    "skipConditions": {
        "sessionSkillUsed": True,
        "fileMarkers": ["@skip-db-check"],
        "envOverride": "SKIP_DB_CHECK",
    },
}

BACKEND_GUIDE = {
    "type": "domain",
    "enforcement": "suggest",
    "priority": "high",
    "description": "Backend conventions",
    "promptTriggers": {
        "keywords": ["backend", "database"],
        "intentPatterns": [r"(create|add).*?(route|endpoint)"],
    },
    "fileTriggers": {"pathPatterns": ["src/**/*.ts"]},
    "skipConditions": {"sessionSkillUsed": True},
}


def make_store(**skills):
    """Build a RuleStore from rules-file entries keyed by module id.

    Underscores in keyword names become dashes: db_guard -> "db-guard".
    """
    document = {
        "version": "1.0",
        "skills": {name.replace("_", "-"): rule for name, rule in skills.items()},
    }
    return parse_rules(json.dumps(document))


@pytest.fixture
def store():
    return make_store(db_guard=DB_GUARD, backend_guide=BACKEND_GUIDE)


@pytest.fixture
def state(store):
    return SessionState.start(store, "test-session", environ={})


@pytest.fixture
def rules_file(tmp_path):
    """Write a rules file and return its path."""
    path = tmp_path / "skill-rules.json"
    path.write_text(json.dumps({
        "version": "1.0",
        "skills": {"db-guard": DB_GUARD, "backend-guide": BACKEND_GUIDE},
    }))
    return path
