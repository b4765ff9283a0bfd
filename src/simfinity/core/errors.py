"""
Custom exceptions for the Simfinity system.

Every error surfaced to a caller carries a stable payload:
``{message, code, status, timestamp, cause?}``.
"""

from __future__ import annotations

from email.utils import formatdate
from typing import Any, Callable, Optional


TRANSIENT_TRANSACTION_LABEL = "TransientTransactionError"


class SimfinityError(Exception):
    """Base exception for all simfinity errors."""

    code = "SIMFINITY_ERROR"
    status = 500

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status is not None:
            self.status = status
        self.cause = cause
        self.timestamp = formatdate(usegmt=True)

    def to_payload(self) -> dict[str, Any]:
        """Serialize the error into its public payload shape."""
        payload: dict[str, Any] = {
            "message": self.message,
            "code": self.code,
            "status": self.status,
            "timestamp": self.timestamp,
        }
        if self.cause is not None:
            payload["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return payload


class ValidationError(SimfinityError):
    """Raised by field/entity validators or when arguments are malformed."""

    code = "VALIDATION_ERROR"
    status = 400


class NotFoundError(SimfinityError):
    """Raised when an operation targets an identifier that does not exist."""

    code = "NOT_VALID_ID"
    status = 404


class IllegalTransitionError(SimfinityError):
    """Raised when a state-machine action is invoked from the wrong state."""

    code = "BAD_REQUEST"
    status = 400


class ConfigurationError(SimfinityError):
    """Raised when entity, relation or extension metadata is invalid."""

    code = "CONFIGURATION_ERROR"
    status = 500


class TransientTransactionError(SimfinityError):
    """Raised by a store when a transaction hit a retryable conflict."""

    code = "TRANSIENT_TRANSACTION"
    status = 503

    def has_error_label(self, label: str) -> bool:
        return label == TRANSIENT_TRANSACTION_LABEL


class UnsupportedOperationError(SimfinityError):
    """Raised for behavior that is deliberately not implemented."""

    code = "NOT_IMPLEMENTED"
    status = 501


class InternalError(SimfinityError):
    """Wraps any unexpected failure, keeping the original cause."""

    code = "INTERNAL_SERVER_ERROR"
    status = 500


def is_transient_error(error: BaseException) -> bool:
    """Check whether an error carries the transient-transaction signal."""
    if isinstance(error, TransientTransactionError):
        return True
    has_label = getattr(error, "has_error_label", None)
    if callable(has_label):
        return bool(has_label(TRANSIENT_TRANSACTION_LABEL))
    return False


def format_error(
    error: BaseException,
    callback: Optional[Callable[[SimfinityError], Optional[SimfinityError]]] = None,
) -> SimfinityError:
    """
    Normalize any exception into a SimfinityError.

    Unknown exceptions become InternalError with the original as cause.
    A callback may replace the result; returning None keeps it.
    """
    if isinstance(error, SimfinityError):
        result = error
    else:
        result = InternalError(str(error), cause=error)

    if callback:
        formatted = callback(result)
        return formatted or result
    return result
