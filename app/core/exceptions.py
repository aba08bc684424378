"""Ledger error taxonomy.

Every error carries a stable ``code`` (mapped to an HTTP status by the API
layer), an optional machine-readable ``reason`` and a freshly minted
``log_id`` that is also written to the service log, so a client report can
be matched with the server-side trace.
"""

from typing import Any

from bson import ObjectId


class LedgerError(Exception):
    """Base exception for all ledger errors."""

    code = "internal"
    status_code = 500

    def __init__(
        self,
        message: str,
        reason: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.reason = reason
        self.details = details or {}
        self.log_id = str(ObjectId())
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "reason": self.reason,
            "log_id": self.log_id,
            "details": self.details,
        }


class UnauthenticatedError(LedgerError):
    """No actor identity on the request."""

    code = "unauthenticated"
    status_code = 401


class PermissionDeniedError(LedgerError):
    """Actor is not a member of the apartment."""

    code = "permission-denied"
    status_code = 403


class InvalidArgumentError(LedgerError):
    """Malformed or missing required field."""

    code = "invalid-argument"
    status_code = 400


class NotFoundError(LedgerError):
    """Referenced debt or apartment does not exist."""

    code = "not-found"
    status_code = 404


class FailedPreconditionError(LedgerError):
    """Debt already closed, or stored debt data is malformed."""

    code = "failed-precondition"
    status_code = 409


class AlreadyExistsError(LedgerError):
    """Duplicate debt id or settlement attempt."""

    code = "already-exists"
    status_code = 409


class InternalLedgerError(LedgerError):
    """Unexpected failure inside a transaction."""

    code = "internal"
    status_code = 500
