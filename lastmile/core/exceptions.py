"""
Engine error taxonomy.

Every engine operation either succeeds or raises one of these. Errors are
never retried inside the engine; the transaction boundary (``get_db`` /
``get_db_session``) rolls back and the API layer turns them into a
structured JSON body.
"""
from typing import Any, Dict, Optional


class EngineError(Exception):
    """Base exception for shipment lifecycle and ledger errors."""

    code = "ENGINE_ERROR"
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.code, "details": self.details}


class NotFoundError(EngineError):
    """Missing shipment, user or role."""
    code = "NOT_FOUND"
    status_code = 404


class InvalidStatusError(EngineError):
    """Unknown status value or a transition the state machine refuses."""
    code = "INVALID_STATUS"
    status_code = 422


class UnsupportedRevertError(EngineError):
    code = "UNSUPPORTED_REVERT"
    status_code = 422


class InvalidRevertError(EngineError):
    code = "INVALID_REVERT"
    status_code = 422


class CodeExpiredError(EngineError):
    code = "CODE_EXPIRED"
    status_code = 400


class CodeMismatchError(EngineError):
    code = "CODE_MISMATCH"
    status_code = 400


class MissingContactError(EngineError):
    code = "MISSING_CONTACT"
    status_code = 400


class DuplicateEmailError(EngineError):
    code = "DUPLICATE_EMAIL"
    status_code = 409


class ValidationFailedError(EngineError):
    code = "VALIDATION_FAILED"
    status_code = 400


class InvalidPayoutStateError(EngineError):
    """Payout entry is not pending, or is not a payout request at all."""
    code = "INVALID_PAYOUT_STATE"
    status_code = 409


class CourierRestrictedError(EngineError):
    """Courier is restricted and cannot take new shipments."""
    code = "COURIER_RESTRICTED"
    status_code = 409
