"""
Ledger Error Taxonomy

Errors raised by the token and subscription services. Each kind carries
the HTTP status the API layer answers with, so handlers never need to
inspect messages.

    NotFoundError            -> 404  (business / token / subscription absent)
    InvalidArgumentError     -> 400  (non-positive amounts, blank symbol)
    InsufficientSupplyError  -> 400  (burn or buy beyond the available pool)
    AlreadyExistsError       -> 500  (duplicate token creation)
    InternalError            -> 500  (storage or transaction failure)

Version: 1.0.0
"""

from typing import Optional


class LedgerError(Exception):
    """Base class for all engine errors."""

    status_code: int = 500
    error: str = "ledger_error"

    def __init__(self, message: str, detail: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    def to_dict(self) -> dict:
        """Convert to the API error envelope, context fields included."""
        body = {
            "success": False,
            "error": self.error,
            "detail": self.message,
        }
        body.update(self.detail)
        return body


class NotFoundError(LedgerError):
    status_code = 404
    error = "not_found"


class InvalidArgumentError(LedgerError):
    status_code = 400
    error = "invalid_argument"


class InsufficientSupplyError(LedgerError):
    status_code = 400
    error = "insufficient_supply"

    def __init__(self, available: int, requested: int):
        super().__init__(
            f"insufficient token supply: available {available}, requested {requested}",
            {"available": available, "requested": requested},
        )
        self.available = available
        self.requested = requested


class AlreadyExistsError(LedgerError):
    status_code = 500
    error = "already_exists"


class InternalError(LedgerError):
    status_code = 500
    error = "internal_error"
