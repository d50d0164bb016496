"""config.py — Engine settings from skillgate.toml."""

import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .errors import ConfigurationError

SKILLGATE_ROOT = Path.home() / ".skillgate"
CONFIG_PATH = SKILLGATE_ROOT / "skillgate.toml"

_DEFAULTS = {
    "rules": {
        "path": ".claude/skills/skill-rules.json",
    },
    "matching": {
        "case_sensitive_paths": True,
        "content_scan_limit": 1024 * 1024,
    },
    "callbacks": {
        "prompt_timeout_ms": 250,
        "tool_timeout_ms": 0,
    },
    "session": {
        "state_dir": str(SKILLGATE_ROOT / "sessions"),
        "stale_hours": 24,
    },
    "server": {
        "host": "127.0.0.1",
        "port": 8765,
        "api_key_env": "SKILLGATE_API_KEY",
    },
}


@dataclass(frozen=True)
class Settings:
    """Resolved engine settings."""
    rules_path: Path
    case_sensitive_paths: bool
    content_scan_limit: Optional[int]  # None = scan everything
    prompt_timeout_ms: int  # 0 = no ceiling
    tool_timeout_ms: int
    state_dir: Path
    stale_hours: float
    server_host: str
    server_port: int
    api_key_env: str

    def rules_file(self, project_dir: Optional[Path] = None) -> Path:
        """Rules path, resolved against project_dir when relative."""
        if self.rules_path.is_absolute():
            return self.rules_path
        return (project_dir or Path.cwd()) / self.rules_path


def _deep_merge(base: dict, override: dict) -> dict:
    """Merge override into base, recursing into nested dicts."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def config_path() -> Path:
    env = os.environ.get("SKILLGATE_CONFIG")
    return Path(env) if env else CONFIG_PATH


def get_config(path: Optional[Path] = None) -> dict:
    """Load config from skillgate.toml, merged with defaults."""
    path = path or config_path()
    if path.exists():
        try:
            with open(path, "rb") as f:
                user_config = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigurationError(f"invalid TOML in {path}: {e}") from e
        return _deep_merge(_DEFAULTS, user_config)
    return _deep_merge(_DEFAULTS, {})


def _typed(section: dict, key: str, kind, section_name: str):
    value = section.get(key)
    # bool is an int subclass; keep them apart
    if kind is int and isinstance(value, bool):
        raise ConfigurationError(f"expected an integer, got {value!r}", field=f"{section_name}.{key}")
    if kind is float and isinstance(value, int) and not isinstance(value, bool):
        return float(value)
    if not isinstance(value, kind):
        raise ConfigurationError(
            f"expected {kind.__name__}, got {value!r}", field=f"{section_name}.{key}",
        )
    return value


def load_settings(path: Optional[Path] = None) -> Settings:
    """Read and validate settings. Raises ConfigurationError on bad values."""
    return settings_from_config(get_config(path))


def settings_from_config(cfg: dict) -> Settings:
    rules = cfg.get("rules", {})
    matching = cfg.get("matching", {})
    callbacks = cfg.get("callbacks", {})
    session = cfg.get("session", {})
    server = cfg.get("server", {})

    scan_limit = _typed(matching, "content_scan_limit", int, "matching")
    if scan_limit < 0:
        raise ConfigurationError("must be >= 0", field="matching.content_scan_limit")
    prompt_timeout = _typed(callbacks, "prompt_timeout_ms", int, "callbacks")
    tool_timeout = _typed(callbacks, "tool_timeout_ms", int, "callbacks")
    if prompt_timeout < 0 or tool_timeout < 0:
        raise ConfigurationError("timeouts must be >= 0", field="callbacks")

    return Settings(
        rules_path=Path(_typed(rules, "path", str, "rules")).expanduser(),
        case_sensitive_paths=_typed(matching, "case_sensitive_paths", bool, "matching"),
        content_scan_limit=scan_limit or None,
        prompt_timeout_ms=prompt_timeout,
        tool_timeout_ms=tool_timeout,
        state_dir=Path(_typed(session, "state_dir", str, "session")).expanduser(),
        stale_hours=_typed(session, "stale_hours", float, "session"),
        server_host=_typed(server, "host", str, "server"),
        server_port=_typed(server, "port", int, "server"),
        api_key_env=_typed(server, "api_key_env", str, "server"),
    )


def default_settings() -> Settings:
    return settings_from_config(_deep_merge(_DEFAULTS, {}))


def ensure_config() -> Path:
    """Create a default skillgate.toml if it doesn't exist."""
    path = config_path()
    if path.exists():
        return path

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        "[rules]\n"
        'path = ".claude/skills/skill-rules.json"\n\n'
        "[matching]\n"
        "case_sensitive_paths = true\n"
        "content_scan_limit = 1048576\n\n"
        "[callbacks]\n"
        "prompt_timeout_ms = 250\n"
        "tool_timeout_ms = 0\n\n"
        "[session]\n"
        f'state_dir = "{SKILLGATE_ROOT / "sessions"}"\n'
        "stale_hours = 24\n\n"
        "[server]\n"
        'host = "127.0.0.1"\n'
        "port = 8765\n"
        'api_key_env = "SKILLGATE_API_KEY"\n'
    )
    return path
