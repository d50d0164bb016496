"""skillgate - skill activation and guardrail rules for coding assistants."""

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Lazy-loading setup
# ---------------------------------------------------------------------------
# Public names are resolved on first access through module-level __getattr__
# so that `import skillgate` does not pull in pydantic or fastapi. A hook
# process only pays for the modules it actually touches.
# ---------------------------------------------------------------------------

_LAZY_SUBMODULES: dict[str, str] = {
    "api_server": "skillgate.api_server",
    "config": "skillgate.config",
    "emitter": "skillgate.emitter",
    "engine": "skillgate.engine",
    "errors": "skillgate.errors",
    "hooks": "skillgate.hooks",
    "matchers": "skillgate.matchers",
    "models": "skillgate.models",
    "resolver": "skillgate.resolver",
    "rules": "skillgate.rules",
    "schema": "skillgate.schema",
    "session": "skillgate.session",
}

# Maps public name -> (module_path, attribute_name_in_that_module)
_LAZY_ATTRS: dict[str, tuple[str, str]] = {
    # Types
    "ActivationEvent": ("skillgate.models", "ActivationEvent"),
    "Decision": ("skillgate.models", "Decision"),
    "Enforcement": ("skillgate.models", "Enforcement"),
    "Evaluation": ("skillgate.models", "Evaluation"),
    "Outcome": ("skillgate.models", "Outcome"),
    "Priority": ("skillgate.models", "Priority"),
    "RuleKind": ("skillgate.models", "RuleKind"),
    "RuleRecord": ("skillgate.models", "RuleRecord"),
    # Errors
    "ConfigurationError": ("skillgate.errors", "ConfigurationError"),
    "HostContractViolation": ("skillgate.errors", "HostContractViolation"),
    # Rules
    "RuleStore": ("skillgate.rules", "RuleStore"),
    "load_rules": ("skillgate.rules", "load_rules"),
    "parse_rules": ("skillgate.rules", "parse_rules"),
    "dump_rules": ("skillgate.rules", "dump_rules"),
    # Session
    "SessionState": ("skillgate.session", "SessionState"),
    "SessionRegistry": ("skillgate.session", "SessionRegistry"),
    # Resolution
    "resolve": ("skillgate.resolver", "resolve"),
    "emit": ("skillgate.emitter", "emit"),
    "Engine": ("skillgate.engine", "Engine"),
    # Settings
    "Settings": ("skillgate.config", "Settings"),
    "load_settings": ("skillgate.config", "load_settings"),
}


def __getattr__(name: str):
    import importlib

    # Submodule access: skillgate.rules, skillgate.resolver, etc.
    if name in _LAZY_SUBMODULES:
        module = importlib.import_module(_LAZY_SUBMODULES[name])
        globals()[name] = module
        return module

    # Individual attribute access: from skillgate import Engine, etc.
    if name in _LAZY_ATTRS:
        module_path, attr_name = _LAZY_ATTRS[name]
        module = importlib.import_module(module_path)
        attr = getattr(module, attr_name)
        globals()[name] = attr
        return attr

    raise AttributeError(f"module 'skillgate' has no attribute {name!r}")


def __dir__():
    """Include lazy attributes in dir() for discoverability."""
    normal = list(globals().keys())
    return normal + list(_LAZY_SUBMODULES.keys()) + list(_LAZY_ATTRS.keys())


__all__ = list(_LAZY_ATTRS.keys())
