"""Error taxonomy for rule loading and evaluation.

ConfigurationError is the only exception that escapes the engine. Everything
that goes wrong while evaluating a single event becomes a Diagnostic instead.
"""

from typing import Optional


class ConfigurationError(ValueError):
    """Rule or settings configuration is invalid. Fatal at session start."""

    def __init__(
        self,
        message: str,
        module_id: Optional[str] = None,
        field: Optional[str] = None,
    ):
        self.module_id = module_id
        self.field = field
        prefix = ""
        if module_id and field:
            prefix = f"{module_id}.{field}: "
        elif module_id:
            prefix = f"{module_id}: "
        elif field:
            prefix = f"{field}: "
        super().__init__(prefix + message)
        self.reason = message


class HostContractViolation(ValueError):
    """The host sent an event missing a field its kind requires."""


# Diagnostic codes attached to evaluations
CONTENT_SCAN_TRUNCATED = "content_scan_truncated"
HOST_CONTRACT_VIOLATION = "host_contract_violation"
TIMEOUT = "timeout"
INTERNAL_ERROR = "internal_error"
