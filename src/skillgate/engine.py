"""Engine - the two host callbacks over a loaded rule store.

The engine owns the rule store (shared, read-only) and an in-memory
registry of session states. Callbacks never raise into the host: anything
that goes wrong for a single event becomes NoAction plus a diagnostic.
"""

import logging
import time
from pathlib import Path
from typing import Callable, Mapping, Optional

from .config import Settings, default_settings
from .emitter import HookResponse, emit
from .errors import HOST_CONTRACT_VIOLATION, INTERNAL_ERROR
from .models import ActivationEvent, Decision, Diagnostic, Evaluation
from .resolver import resolve
from .rules import RuleStore, load_rules
from .session import SessionRegistry, SessionState

logger = logging.getLogger(__name__)


class Engine:
    """Activation and guardrail engine for one host process."""

    def __init__(
        self,
        store: RuleStore,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.settings = settings or default_settings()
        self.sessions = SessionRegistry(store)
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        project_dir: Optional[Path] = None,
    ) -> "Engine":
        """Load the rules file named by settings. Raises ConfigurationError."""
        settings = settings or default_settings()
        store = load_rules(settings.rules_file(project_dir))
        return cls(store, settings)

    # ── Session lifecycle ──

    def start_session(
        self,
        session_id: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> SessionState:
        return self.sessions.start(session_id, environ)

    def end_session(self, session_id: str) -> bool:
        return self.sessions.end(session_id)

    # ── Host callbacks ──

    def on_prompt_submitted(self, prompt_text: str, session_id: str) -> Evaluation:
        """Instruction-submitted callback. Returns NoAction or Suggest."""
        event = ActivationEvent.prompt(prompt_text, session_id=session_id)
        return self.evaluate(event, timeout_ms=self.settings.prompt_timeout_ms)

    def on_tool_invocation_proposed(
        self,
        file_path: Optional[str],
        session_id: str,
        content: Optional[str] = None,
        tool_name: Optional[str] = None,
    ) -> Evaluation:
        """Tool-invocation-proposed callback. Returns NoAction, Suggest or Block."""
        event = ActivationEvent.tool(
            file_path, content=content, session_id=session_id, tool_name=tool_name,
        )
        return self.evaluate(event, timeout_ms=self.settings.tool_timeout_ms)

    def evaluate(
        self,
        event: ActivationEvent,
        state: Optional[SessionState] = None,
        timeout_ms: int = 0,
    ) -> Evaluation:
        """Resolve one event. Never raises."""
        try:
            if state is None:
                if not event.session_id:
                    return _violation("event has no session id")
                state = self.sessions.get_or_start(event.session_id)

            deadline = None
            if timeout_ms:
                deadline = self._clock() + timeout_ms / 1000.0

            return resolve(
                event,
                self.store,
                state,
                case_sensitive_paths=self.settings.case_sensitive_paths,
                content_scan_limit=self.settings.content_scan_limit,
                deadline=deadline,
                clock=self._clock,
            )
        except Exception as e:
            logger.error("Evaluation failed, returning no action: %s", e)
            return Evaluation(
                decision=Decision.no_action(),
                diagnostics=[Diagnostic(code=INTERNAL_ERROR, message=str(e))],
            )

    def respond(self, evaluation: Evaluation) -> HookResponse:
        """Render an evaluation for the host."""
        record = self.store.get(evaluation.decision.module_id) if evaluation.decision.module_id else None
        return emit(evaluation, record)


def _violation(message: str) -> Evaluation:
    logger.warning("Host contract violation: %s", message)
    return Evaluation(
        decision=Decision.no_action(),
        diagnostics=[Diagnostic(code=HOST_CONTRACT_VIOLATION, message=message)],
    )
