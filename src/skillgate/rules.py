"""Rule store - the validated, read-only set of registered modules.

Rules are loaded once per session. Loading is the only place malformed
configuration is rejected; after that the store is trusted and never
changes. Picking up edits to the rules file requires a new session.
"""

import json
import logging
from pathlib import Path
from typing import Iterator, Optional

from .errors import ConfigurationError
from .models import RuleRecord, enforcement_problem
from .path_utils import atomic_write
from .schema import from_record, to_record, validate_document

logger = logging.getLogger(__name__)

RULES_VERSION = "1.0"

# Relative to the project directory
DEFAULT_RULES_FILE = Path(".claude") / "skills" / "skill-rules.json"

DEFAULT_RULES = {
    "version": RULES_VERSION,
    "skills": {
        "database-verification": {
            "type": "guardrail",
            "enforcement": "block",
            "priority": "critical",
            "description": "Verify table and column names against the schema before writing queries",
            "promptTriggers": {
                "keywords": ["database", "schema", "migration", "prisma"],
                "intentPatterns": [
                    r"(add|create|drop|rename)\s+.*?(column|table|index)",
                ],
            },
            "fileTriggers": {
                "pathPatterns": ["**/services/**/*.ts", "**/repositories/**/*.ts"],
                "pathExclusions": ["**/*.test.ts", "**/*.spec.ts"],
                "contentPatterns": [r"import\s+.*\bPrismaClient\b", r"\bprisma\.\w+\."],
            },
            "blockMessage": (
                "BLOCKED - Database Operation Detected\n\n"
                "{file_path} touches the database. Check the column names "
                "against the schema, then use the {module_id} skill before editing."
            ),
            "skipConditions": {
                "sessionSkillUsed": True,
                "fileMarkers": ["@skip-validation"],
                "envOverride": "SKIP_DB_VERIFICATION",
            },
        },
        "backend-dev-guidelines": {
            "type": "domain",
            "enforcement": "suggest",
            "priority": "high",
            "description": "Layered architecture, error handling and validation for backend services",
            "promptTriggers": {
                "keywords": ["backend", "controller", "endpoint", "route", "api"],
                "intentPatterns": [
                    r"(create|add|implement).*?(route|endpoint|controller|service)",
                ],
            },
            "fileTriggers": {
                "pathPatterns": ["backend/**/*.ts", "api/**/*.ts"],
                "pathExclusions": ["**/*.test.ts"],
            },
            "skipConditions": {"sessionSkillUsed": True},
        },
        "frontend-dev-guidelines": {
            "type": "domain",
            "enforcement": "suggest",
            "priority": "medium",
            "description": "Component patterns, styling and data fetching for the frontend",
            "promptTriggers": {
                "keywords": ["component", "react", "frontend", "ui"],
                "intentPatterns": [r"(create|add|build).*?(component|page|form|modal)"],
            },
            "fileTriggers": {
                "pathPatterns": ["frontend/src/**/*.tsx", "src/components/**/*.tsx"],
            },
            "skipConditions": {"sessionSkillUsed": True},
        },
    },
}


class RuleStore:
    """Read-only collection of RuleRecords, sorted by module id."""

    def __init__(self, records: list[RuleRecord], source: Optional[Path] = None):
        seen = set()
        for record in records:
            if record.id in seen:
                raise ConfigurationError("duplicate module id", module_id=record.id)
            seen.add(record.id)
            problem = enforcement_problem(record.kind, record.enforcement)
            if problem:
                raise ConfigurationError(problem, module_id=record.id, field="enforcement")
        self._records = tuple(sorted(records, key=lambda r: r.id))
        self._by_id = {r.id: r for r in self._records}
        self.source = source

    def all_records(self) -> tuple[RuleRecord, ...]:
        return self._records

    def get(self, module_id: str) -> Optional[RuleRecord]:
        return self._by_id.get(module_id)

    def __iter__(self) -> Iterator[RuleRecord]:
        return iter(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __eq__(self, other) -> bool:
        if not isinstance(other, RuleStore):
            return NotImplemented
        return self._records == other._records

    def __repr__(self) -> str:
        return f"RuleStore({len(self._records)} records, source={self.source})"


class _DuplicateKeys(dict):
    """A JSON object that repeated at least one key."""
    duplicates: tuple = ()


def _collect_duplicate_keys(pairs: list[tuple[str, object]]) -> dict:
    result = {}
    duplicates = []
    for key, value in pairs:
        if key in result:
            duplicates.append(key)
        result[key] = value
    if duplicates:
        result = _DuplicateKeys(result)
        result.duplicates = tuple(duplicates)
    return result


def _find_duplicate_key(node, path: tuple = ()) -> Optional[tuple]:
    """(enclosing path, key) of the first repeated key in the parsed document."""
    if isinstance(node, dict):
        if isinstance(node, _DuplicateKeys):
            return path, node.duplicates[0]
        children = node.items()
    elif isinstance(node, list):
        children = ((str(i), v) for i, v in enumerate(node))
    else:
        return None
    for key, value in children:
        found = _find_duplicate_key(value, path + (key,))
        if found:
            return found
    return None


def _reject_duplicate_keys(data) -> None:
    found = _find_duplicate_key(data)
    if found is None:
        return
    path, key = found
    if path == ("skills",):
        raise ConfigurationError("duplicate module id", module_id=key)
    if len(path) >= 2 and path[0] == "skills":
        field = ".".join(path[2:] + (key,))
        raise ConfigurationError("duplicate field", module_id=path[1], field=field)
    raise ConfigurationError("duplicate field", field=".".join(path + (key,)))


def parse_rules(text: str, source: Optional[Path] = None) -> RuleStore:
    """Parse and validate a rules document.

    Raises:
        ConfigurationError: for malformed JSON, schema violations, invalid
            regexes, invariant violations or duplicate module ids.
    """
    try:
        data = json.loads(text, object_pairs_hook=_collect_duplicate_keys)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"invalid JSON at line {e.lineno}: {e.msg}") from e

    _reject_duplicate_keys(data)
    document = validate_document(data)
    records = [to_record(module_id, rule) for module_id, rule in document.skills.items()]
    return RuleStore(records, source=source)


def load_rules(rules_file: Path) -> RuleStore:
    """Load the rules file. A missing file is a configuration error."""
    rules_file = Path(rules_file)
    try:
        text = rules_file.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"cannot read rules file {rules_file}: {e}") from e

    store = parse_rules(text, source=rules_file)
    logger.info("Loaded %d rule(s) from %s", len(store), rules_file)
    return store


def dump_rules(store: RuleStore) -> str:
    """Serialize a store to its rules-file JSON form."""
    document = {
        "version": RULES_VERSION,
        "skills": {record.id: from_record(record) for record in store},
    }
    return json.dumps(document, indent=2) + "\n"


def save_rules(store: RuleStore, rules_file: Path) -> None:
    with atomic_write(Path(rules_file)) as f:
        f.write(dump_rules(store))


def init_rules(rules_file: Path) -> Path:
    """Write the default rule set if the file doesn't exist yet."""
    rules_file = Path(rules_file)
    if not rules_file.exists():
        save_rules(default_store(), rules_file)
    return rules_file


def default_store() -> RuleStore:
    return parse_rules(json.dumps(DEFAULT_RULES))
