"""Session state tracking.

A SessionState belongs to exactly one assistant session. It records which
modules have already fired and which environment overrides were set when
the session started. It is never shared between sessions and never
survives the session that created it.

In-process hosts keep states in a SessionRegistry. Hosts that run one hook
process per event use FileSessionStore, which keeps the state for a
session id in its own JSON file under an exclusive lock and deletes it
when the session ends.
"""

import hashlib
import json
import logging
import os
import re
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Mapping, Optional

from .models import ActivationEvent, RuleRecord
from .path_utils import atomic_write, file_lock
from .rules import RuleStore

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = Path.home() / ".skillgate" / "sessions"

# Environment values that do not count as "set"
_FALSY_ENV_VALUES = {"", "0", "false", "no", "off"}


def env_override_is_set(value: Optional[str]) -> bool:
    return value is not None and value.strip().lower() not in _FALSY_ENV_VALUES


def observe_env_overrides(store: RuleStore, environ: Optional[Mapping[str, str]] = None) -> frozenset:
    """Names of the override variables declared by the store that are set in environ."""
    environ = os.environ if environ is None else environ
    names = {
        r.skip_conditions.env_override
        for r in store
        if r.skip_conditions.env_override
    }
    return frozenset(n for n in names if env_override_is_set(environ.get(n)))


@dataclass
class SessionState:
    """Mutable, session-scoped activation state."""
    session_id: str
    active_env_overrides: frozenset = frozenset()
    fired_modules: set = field(default_factory=set)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @classmethod
    def start(
        cls,
        store: RuleStore,
        session_id: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "SessionState":
        """Create state for a new session, reading environment overrides once."""
        return cls(
            session_id=session_id or str(uuid.uuid4()),
            active_env_overrides=observe_env_overrides(store, environ),
        )

    def has_fired(self, module_id: str) -> bool:
        return module_id in self.fired_modules

    def mark_fired(self, module_id: str) -> None:
        self.fired_modules.add(module_id)

    def bypass_reason(self, record: RuleRecord, event: ActivationEvent) -> Optional[str]:
        """Why record is bypassed for this event, or None if it isn't."""
        skip = record.skip_conditions
        if skip.session_skill_used and self.has_fired(record.id):
            return "already fired this session"
        content = event.target_file_content
        if content and skip.file_markers:
            for marker in skip.file_markers:
                if marker in content:
                    return f"file marker {marker!r}"
        if skip.env_override and skip.env_override in self.active_env_overrides:
            return f"environment override {skip.env_override}"
        return None

    def is_bypassed(self, record: RuleRecord, event: ActivationEvent) -> bool:
        return self.bypass_reason(record, event) is not None

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "started_at": self.started_at.isoformat(),
            "env_overrides": sorted(self.active_env_overrides),
            "fired": sorted(self.fired_modules),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SessionState":
        try:
            started_at = datetime.fromisoformat(data["started_at"])
        except (KeyError, TypeError, ValueError):
            started_at = datetime.now(timezone.utc)
        return cls(
            session_id=data["session_id"],
            active_env_overrides=frozenset(data.get("env_overrides", [])),
            fired_modules=set(data.get("fired", [])),
            started_at=started_at,
        )


class SessionRegistry:
    """In-memory session states for a long-running host process."""

    def __init__(self, store: RuleStore):
        self.store = store
        self._sessions: dict[str, SessionState] = {}
        self._lock = threading.Lock()

    def start(
        self,
        session_id: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> SessionState:
        state = SessionState.start(self.store, session_id, environ)
        with self._lock:
            self._sessions[state.session_id] = state
        logger.info("Session %s started (%d override(s) active)",
                    state.session_id, len(state.active_env_overrides))
        return state

    def get(self, session_id: str) -> Optional[SessionState]:
        with self._lock:
            return self._sessions.get(session_id)

    def get_or_start(self, session_id: str) -> SessionState:
        with self._lock:
            state = self._sessions.get(session_id)
            if state is None:
                state = SessionState.start(self.store, session_id)
                self._sessions[session_id] = state
                logger.info("Session %s started on first event", session_id)
            return state

    def end(self, session_id: str) -> bool:
        with self._lock:
            removed = self._sessions.pop(session_id, None)
        if removed is not None:
            logger.info("Session %s ended", session_id)
        return removed is not None

    def __contains__(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


_SAFE_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


class FileSessionStore:
    """Per-session state files for hosts that spawn one process per event."""

    def __init__(self, store: RuleStore, state_dir: Optional[Path] = None):
        self.store = store
        self.state_dir = Path(state_dir) if state_dir else DEFAULT_STATE_DIR

    def path_for(self, session_id: str) -> Path:
        if _SAFE_ID_RE.match(session_id):
            name = session_id
        else:
            name = hashlib.sha256(session_id.encode("utf-8")).hexdigest()[:32]
        return self.state_dir / f"{name}.json"

    def start(
        self,
        session_id: str,
        environ: Optional[Mapping[str, str]] = None,
    ) -> SessionState:
        """Create (or reset) the state file for session_id."""
        path = self.path_for(session_id)
        state = SessionState.start(self.store, session_id, environ)
        with file_lock(path):
            self._write(path, state)
        logger.info("Session %s started (%d override(s) active)",
                    session_id, len(state.active_env_overrides))
        return state

    def load(self, session_id: str) -> Optional[SessionState]:
        path = self.path_for(session_id)
        with file_lock(path, shared=True):
            return self._read(path, session_id)

    @contextmanager
    def open(
        self,
        session_id: str,
        environ: Optional[Mapping[str, str]] = None,
    ) -> Iterator[SessionState]:
        """Load-modify-save a session's state under one exclusive lock.

        A session seen for the first time is started here, which is when its
        environment overrides are captured.
        """
        path = self.path_for(session_id)
        with file_lock(path):
            state = self._read(path, session_id)
            if state is None:
                state = SessionState.start(self.store, session_id, environ)
            before = state.to_dict()
            yield state
            if state.to_dict() != before or not path.exists():
                self._write(path, state)

    def end(self, session_id: str) -> bool:
        path = self.path_for(session_id)
        existed = path.exists()
        with file_lock(path):
            path.unlink(missing_ok=True)
        # Lock sidecars are removed only by cleanup_stale
        if existed:
            logger.info("Session %s ended", session_id)
        return existed

    def cleanup_stale(self, max_age_hours: float = 24) -> int:
        """Delete state files not touched for max_age_hours. Returns count removed.

        Lock sidecars left behind by ended sessions are removed once they are
        equally old.
        """
        if not self.state_dir.exists():
            return 0
        cutoff = time.time() - max_age_hours * 3600
        removed = 0
        for path in self.state_dir.glob("*.json"):
            try:
                if path.stat().st_mtime < cutoff:
                    path.unlink()
                    removed += 1
            except OSError as e:
                logger.warning("Could not remove stale session file %s: %s", path, e)
        for lock_path in self.state_dir.glob("*.json.lock"):
            state_path = lock_path.with_suffix("")
            try:
                if not state_path.exists() and lock_path.stat().st_mtime < cutoff:
                    lock_path.unlink()
            except OSError as e:
                logger.warning("Could not remove stale lock file %s: %s", lock_path, e)
        return removed

    def _read(self, path: Path, session_id: str) -> Optional[SessionState]:
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text())
            state = SessionState.from_dict(data)
        except (OSError, ValueError, KeyError) as e:
            logger.warning("Discarding unreadable session file %s: %s", path, e)
            return None
        if state.session_id != session_id:
            # Hash collision or a reused file name; never inherit another session's state
            return None
        return state

    def _write(self, path: Path, state: SessionState) -> None:
        with atomic_write(path, lock=False) as f:
            json.dump(state.to_dict(), f, indent=2)
