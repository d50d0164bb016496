"""schema.py — On-disk rule configuration, validated with pydantic.

The rules file is human-edited JSON keyed by module id:

    {
      "version": "1.0",
      "skills": {
        "database-verification": {
          "type": "guardrail",
          "enforcement": "block",
          "priority": "critical",
          "promptTriggers": {"keywords": [...], "intentPatterns": [...]},
          "fileTriggers": {"pathPatterns": [...], "pathExclusions": [...],
                           "contentPatterns": [...]},
          "blockMessage": "... {file_path} ...",
          "skipConditions": {"sessionSkillUsed": true,
                             "fileMarkers": ["@skip-validation"],
                             "envOverride": "SKIP_DB_VERIFICATION"}
        }
      }
    }

Every pydantic error is translated into a ConfigurationError that names the
module id and the offending field.
"""

import re
import string
from typing import Annotated, Optional

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
)

from .errors import ConfigurationError
from .models import (
    Enforcement,
    FileSignals,
    Priority,
    PromptSignals,
    RuleKind,
    RuleRecord,
    SkipConditions,
    enforcement_problem,
)

SUPPORTED_VERSIONS = {"1.0"}

# Placeholders a block message template may use
TEMPLATE_FIELDS = {"file_path", "file_name", "module_id"}

_ENV_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_MODULE_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


def _check_regexes(patterns: list[str]) -> list[str]:
    for pattern in patterns:
        try:
            re.compile(pattern)
        except re.error as e:
            raise ValueError(f"invalid regex {pattern!r}: {e}")
    return patterns


def _check_non_empty(values: list[str]) -> list[str]:
    if any(not v for v in values):
        raise ValueError("empty strings are not allowed")
    return values


def template_fields(template: str) -> set[str]:
    """Names of the {placeholders} used in a template."""
    try:
        return {name for _, name, _, _ in string.Formatter().parse(template) if name is not None}
    except ValueError as e:
        raise ValueError(f"malformed template: {e}")


class _Strict(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


NonEmptyStrings = Annotated[list[str], AfterValidator(_check_non_empty)]
RegexList = Annotated[list[str], AfterValidator(_check_regexes)]


class PromptTriggers(_Strict):
    keywords: NonEmptyStrings = Field(default_factory=list)
    intent_patterns: RegexList = Field(default_factory=list, alias="intentPatterns")


class FileTriggers(_Strict):
    path_patterns: NonEmptyStrings = Field(default_factory=list, alias="pathPatterns")
    path_exclusions: NonEmptyStrings = Field(default_factory=list, alias="pathExclusions")
    content_patterns: RegexList = Field(default_factory=list, alias="contentPatterns")


class SkipConditionsConfig(_Strict):
    session_skill_used: bool = Field(default=False, alias="sessionSkillUsed")
    file_markers: NonEmptyStrings = Field(default_factory=list, alias="fileMarkers")
    env_override: Optional[str] = Field(default=None, alias="envOverride")

    @field_validator("env_override")
    @classmethod
    def _env_name(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not _ENV_NAME_RE.match(value):
            raise ValueError(f"not a valid environment variable name: {value!r}")
        return value


class SkillRule(_Strict):
    """One module's configuration as written in the rules file."""
    type: RuleKind
    enforcement: Enforcement
    priority: Priority = Priority.MEDIUM
    description: str = ""
    prompt_triggers: Optional[PromptTriggers] = Field(default=None, alias="promptTriggers")
    file_triggers: Optional[FileTriggers] = Field(default=None, alias="fileTriggers")
    block_message: Optional[str] = Field(default=None, alias="blockMessage")
    skip_conditions: SkipConditionsConfig = Field(
        default_factory=SkipConditionsConfig, alias="skipConditions",
    )

    @field_validator("type", "enforcement", "priority", mode="before")
    @classmethod
    def _lowercase(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("block_message")
    @classmethod
    def _known_placeholders(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        unknown = template_fields(value) - TEMPLATE_FIELDS
        if unknown:
            raise ValueError(
                f"unknown placeholder(s) {sorted(unknown)}; "
                f"allowed: {sorted(TEMPLATE_FIELDS)}"
            )
        return value

    @field_validator("enforcement")
    @classmethod
    def _kind_matches_enforcement(cls, value: Enforcement, info: ValidationInfo) -> Enforcement:
        kind = info.data.get("type")
        problem = enforcement_problem(kind, value) if kind is not None else None
        if problem:
            raise ValueError(problem)
        return value

    @property
    def has_triggers(self) -> bool:
        prompt = self.prompt_triggers
        files = self.file_triggers
        return bool(
            (prompt and (prompt.keywords or prompt.intent_patterns))
            or (files and (files.path_patterns or files.content_patterns))
        )


class RulesFile(_Strict):
    version: str = "1.0"
    skills: dict[str, SkillRule] = Field(default_factory=dict)

    @field_validator("version")
    @classmethod
    def _supported_version(cls, value: str) -> str:
        if value not in SUPPORTED_VERSIONS:
            raise ValueError(f"unsupported rules version {value!r}")
        return value

    @field_validator("skills")
    @classmethod
    def _valid_ids(cls, value: dict) -> dict:
        for module_id in value:
            if not _MODULE_ID_RE.match(module_id):
                raise ValueError(f"invalid module id {module_id!r}")
        return value


def configuration_error(exc: ValidationError) -> ConfigurationError:
    """Translate the first pydantic error into a ConfigurationError."""
    err = exc.errors()[0]
    loc = [str(part) for part in err.get("loc", ())]
    msg = err.get("msg", "invalid value")
    if msg.startswith("Value error, "):
        msg = msg[len("Value error, "):]

    if len(loc) >= 2 and loc[0] == "skills":
        module_id = loc[1]
        field = ".".join(loc[2:]) or None
        return ConfigurationError(msg, module_id=module_id, field=field)
    return ConfigurationError(msg, field=".".join(loc) or None)


def validate_document(data: dict) -> RulesFile:
    """Validate a parsed rules document."""
    if not isinstance(data, dict):
        raise ConfigurationError("rules document must be a JSON object")
    try:
        document = RulesFile.model_validate(data)
    except ValidationError as e:
        raise configuration_error(e) from e

    for module_id, rule in document.skills.items():
        if not rule.has_triggers:
            raise ConfigurationError(
                "module declares no prompt or file triggers",
                module_id=module_id, field="promptTriggers",
            )
    return document


def to_record(module_id: str, rule: SkillRule) -> RuleRecord:
    prompt = rule.prompt_triggers or PromptTriggers()
    files = rule.file_triggers or FileTriggers()
    skip = rule.skip_conditions
    return RuleRecord(
        id=module_id,
        kind=rule.type,
        enforcement=rule.enforcement,
        priority=rule.priority,
        description=rule.description,
        prompt_signals=PromptSignals(
            keywords=tuple(prompt.keywords),
            intent_patterns=tuple(prompt.intent_patterns),
        ),
        file_signals=FileSignals(
            path_patterns=tuple(files.path_patterns),
            path_exclusions=tuple(files.path_exclusions),
            content_patterns=tuple(files.content_patterns),
        ),
        block_message=rule.block_message,
        skip_conditions=SkipConditions(
            session_skill_used=skip.session_skill_used,
            file_markers=tuple(skip.file_markers),
            env_override=skip.env_override,
        ),
    )


def from_record(record: RuleRecord) -> dict:
    """Serialize a record to its rules-file form (camelCase keys)."""
    entry: dict = {
        "type": record.kind.value,
        "enforcement": record.enforcement.value,
        "priority": record.priority.value,
    }
    if record.description:
        entry["description"] = record.description

    prompt = record.prompt_signals
    if not prompt.is_empty:
        entry["promptTriggers"] = {
            "keywords": list(prompt.keywords),
            "intentPatterns": list(prompt.intent_patterns),
        }

    files = record.file_signals
    if files.path_patterns or files.path_exclusions or files.content_patterns:
        entry["fileTriggers"] = {
            "pathPatterns": list(files.path_patterns),
            "pathExclusions": list(files.path_exclusions),
            "contentPatterns": list(files.content_patterns),
        }

    if record.block_message is not None:
        entry["blockMessage"] = record.block_message

    skip = record.skip_conditions
    entry["skipConditions"] = {
        "sessionSkillUsed": skip.session_skill_used,
        "fileMarkers": list(skip.file_markers),
        "envOverride": skip.env_override,
    }
    return entry
