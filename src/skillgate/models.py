"""Core types shared by the matchers, resolver, emitter and engine.

RuleRecord is the immutable, already-validated form of one module's
configuration. The on-disk form lives in schema.py; rules.py converts
between the two.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .errors import HostContractViolation


class RuleKind(str, Enum):
    """Domain modules only suggest. Guardrails may block."""
    DOMAIN = "domain"
    GUARDRAIL = "guardrail"


class Enforcement(str, Enum):
    SUGGEST = "suggest"
    WARN = "warn"
    BLOCK = "block"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return PRIORITY_ORDER.index(self)


PRIORITY_ORDER = [Priority.LOW, Priority.MEDIUM, Priority.HIGH, Priority.CRITICAL]


# Intent patterns are written for prose, content patterns for source code
INTENT_FLAGS = re.IGNORECASE
CONTENT_FLAGS = re.MULTILINE


@dataclass(frozen=True)
class PromptSignals:
    """Signals matched against user-instruction text."""
    keywords: tuple[str, ...] = ()
    intent_patterns: tuple[str, ...] = ()
    compiled_intents: tuple[re.Pattern, ...] = field(
        default=(), init=False, compare=False, repr=False,
    )

    def __post_init__(self):
        object.__setattr__(
            self, "compiled_intents",
            tuple(re.compile(p, INTENT_FLAGS) for p in self.intent_patterns),
        )

    @property
    def is_empty(self) -> bool:
        return not self.keywords and not self.intent_patterns


@dataclass(frozen=True)
class FileSignals:
    """Signals matched against the file a tool action targets."""
    path_patterns: tuple[str, ...] = ()
    path_exclusions: tuple[str, ...] = ()
    content_patterns: tuple[str, ...] = ()
    compiled_contents: tuple[re.Pattern, ...] = field(
        default=(), init=False, compare=False, repr=False,
    )

    def __post_init__(self):
        object.__setattr__(
            self, "compiled_contents",
            tuple(re.compile(p, CONTENT_FLAGS) for p in self.content_patterns),
        )

    @property
    def is_empty(self) -> bool:
        return not self.path_patterns and not self.content_patterns


@dataclass(frozen=True)
class SkipConditions:
    """Ways a module can be bypassed for a session, a file, or a process."""
    session_skill_used: bool = False
    file_markers: tuple[str, ...] = ()
    env_override: Optional[str] = None


@dataclass(frozen=True)
class RuleRecord:
    """One registered module."""
    id: str
    kind: RuleKind
    enforcement: Enforcement
    priority: Priority = Priority.MEDIUM
    description: str = ""
    prompt_signals: PromptSignals = field(default_factory=PromptSignals)
    file_signals: FileSignals = field(default_factory=FileSignals)
    block_message: Optional[str] = None
    skip_conditions: SkipConditions = field(default_factory=SkipConditions)

    @property
    def is_guardrail(self) -> bool:
        return self.kind == RuleKind.GUARDRAIL


def enforcement_problem(kind: RuleKind, enforcement: Enforcement) -> Optional[str]:
    """Why kind and enforcement can't be combined, or None if they can."""
    if kind == RuleKind.GUARDRAIL and enforcement == Enforcement.SUGGEST:
        return "guardrail modules must use 'warn' or 'block' enforcement"
    if kind == RuleKind.DOMAIN and enforcement != Enforcement.SUGGEST:
        return "domain modules must use 'suggest' enforcement"
    return None


class EventKind(str, Enum):
    PROMPT_SUBMITTED = "prompt_submitted"
    TOOL_INVOCATION_PROPOSED = "tool_invocation_proposed"


@dataclass
class ActivationEvent:
    """One evaluation request from the host. Never persisted."""
    kind: EventKind
    session_id: Optional[str] = None
    prompt_text: Optional[str] = None
    tool_name: Optional[str] = None
    target_file_path: Optional[str] = None
    target_file_content: Optional[str] = None

    @classmethod
    def prompt(cls, text: str, session_id: Optional[str] = None) -> "ActivationEvent":
        return cls(kind=EventKind.PROMPT_SUBMITTED, session_id=session_id, prompt_text=text)

    @classmethod
    def tool(
        cls,
        file_path: Optional[str],
        content: Optional[str] = None,
        session_id: Optional[str] = None,
        tool_name: Optional[str] = None,
    ) -> "ActivationEvent":
        return cls(
            kind=EventKind.TOOL_INVOCATION_PROPOSED,
            session_id=session_id,
            tool_name=tool_name,
            target_file_path=file_path,
            target_file_content=content,
        )

    def validate(self) -> None:
        """Raise HostContractViolation if a field required by kind is missing."""
        if not isinstance(self.kind, EventKind):
            raise HostContractViolation(f"Unknown event kind: {self.kind!r}")
        if self.kind == EventKind.PROMPT_SUBMITTED:
            if not isinstance(self.prompt_text, str):
                raise HostContractViolation("prompt_submitted event has no prompt text")
        else:
            if not isinstance(self.target_file_path, str) or not self.target_file_path:
                raise HostContractViolation(
                    "tool_invocation_proposed event has no target file path"
                )
            if self.target_file_content is not None and not isinstance(
                self.target_file_content, str
            ):
                raise HostContractViolation("target file content must be text")


class Outcome(str, Enum):
    NO_ACTION = "no_action"
    SUGGEST = "suggest"
    BLOCK = "block"


@dataclass(frozen=True)
class Decision:
    """Exactly one per event."""
    outcome: Outcome
    module_id: Optional[str] = None
    enforcement: Optional[Enforcement] = None
    message: Optional[str] = None

    @classmethod
    def no_action(cls) -> "Decision":
        return cls(outcome=Outcome.NO_ACTION)

    @property
    def is_block(self) -> bool:
        return self.outcome == Outcome.BLOCK


@dataclass(frozen=True)
class Diagnostic:
    """Non-fatal observation reported alongside a decision."""
    code: str
    message: str
    module_id: Optional[str] = None


@dataclass(frozen=True)
class Candidate:
    """A record whose signals matched, with the evidence."""
    record: RuleRecord
    signal: str  # "keyword", "intent", "path" or "content"
    pattern: str

    @property
    def specificity(self) -> int:
        return SIGNAL_SPECIFICITY[self.signal]


# Content and path matches are stronger evidence than prompt wording
SIGNAL_SPECIFICITY = {"keyword": 0, "intent": 1, "path": 2, "content": 3}


@dataclass
class Evaluation:
    """Decision plus everything needed to explain it."""
    decision: Decision
    candidates: list[Candidate] = field(default_factory=list)
    bypassed: list[tuple[str, str]] = field(default_factory=list)  # (module id, reason)
    diagnostics: list[Diagnostic] = field(default_factory=list)

    @property
    def winner(self) -> Optional[Candidate]:
        if self.decision.module_id is None:
            return None
        for candidate in self.candidates:
            if candidate.record.id == self.decision.module_id:
                return candidate
        return None

    def to_dict(self) -> dict:
        return {
            "outcome": self.decision.outcome.value,
            "module_id": self.decision.module_id,
            "enforcement": self.decision.enforcement.value if self.decision.enforcement else None,
            "message": self.decision.message,
            "candidates": [
                {"module_id": c.record.id, "signal": c.signal, "pattern": c.pattern}
                for c in self.candidates
            ],
            "bypassed": [
                {"module_id": module_id, "reason": reason}
                for module_id, reason in self.bypassed
            ],
            "diagnostics": [
                {"code": d.code, "message": d.message, "module_id": d.module_id}
                for d in self.diagnostics
            ],
        }
