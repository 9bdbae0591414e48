"""
Error taxonomy for iotledger.

Every failure aborts the triggering operation atomically. Errors carry a
stable ``code`` that the HTTP layer and the audit log report verbatim.
"""

from typing import Any, Dict, Optional


class LedgerError(Exception):
    """Base class for all ledger failures."""

    code = "LEDGER_ERROR"

    def __init__(self, message: Optional[str] = None, **details: Any):
        self.message = message or self.code
        self.details: Dict[str, Any] = details
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        d = {"code": self.code, "message": self.message}
        if self.details:
            d["details"] = self.details
        return d


class Unauthorized(LedgerError):
    """Caller lacks the required administrative or submitter privilege."""
    code = "UNAUTHORIZED"


class AlreadyRegistered(LedgerError):
    code = "ALREADY_REGISTERED"


class DeviceNotRegistered(LedgerError):
    code = "DEVICE_NOT_REGISTERED"


class InsufficientFee(LedgerError):
    code = "INSUFFICIENT_FEE"


class RegistryPaused(LedgerError):
    code = "REGISTRY_PAUSED"


class RecordNotFound(LedgerError):
    code = "RECORD_NOT_FOUND"


class InvalidPayload(LedgerError):
    """Raised when input validation fails."""

    code = "INVALID_PAYLOAD"

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"{field}: {message}", field=field)
