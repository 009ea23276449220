"""
Envelope-specific exception hierarchy for SealVault.

Every precondition violation in the registry aborts the call with one of
these typed exceptions. The registry never downgrades them to warnings;
callers decide whether to retry (see ``recoverable``).
"""

from __future__ import annotations
from typing import Optional, Any, Dict


class EnvelopeError(Exception):
    """Base exception for all envelope registry errors.

    Attributes:
        message: Human-readable error description
        details: Additional context about the error
        recoverable: Whether the same call can succeed if retried later
    """

    recoverable = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        recoverable: Optional[bool] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if recoverable is not None:
            self.recoverable = recoverable


# ==================== Authorization Errors ====================


class AuthorizationError(EnvelopeError):
    """Raised when the caller cannot prove the required identity."""
    pass


class Unauthorized(AuthorizationError):
    """Raised when the caller is not the owner or beneficiary the operation requires."""
    pass


# ==================== Validation Errors ====================


class ValidationError(EnvelopeError):
    """Raised when operation inputs fail validation rules."""
    pass


class InvalidAmount(ValidationError):
    """Raised when an envelope amount is not strictly positive."""
    pass


class DuplicateEnvelope(ValidationError):
    """Raised when creating an envelope under an identifier that already exists."""
    pass


class InvalidSecret(ValidationError):
    """Raised when the presented secret does not match the stored commitment."""
    pass


class NoExpirySet(ValidationError):
    """Raised when refunding an envelope that has no expiry timestamp."""
    pass


# ==================== Lookup Errors ====================


class NotFound(EnvelopeError):
    """Raised when no envelope exists under the requested identifier."""
    pass


# ==================== State Errors ====================


class StateError(EnvelopeError):
    """Raised when the registry or envelope state forbids the operation."""
    pass


class AlreadyInitialized(StateError):
    """Raised when bootstrapping a registry that already has an owner."""
    pass


class NotInitialized(StateError):
    """Raised when an owner-gated operation runs before bootstrap."""
    pass


class Revoked(StateError):
    """Raised when claiming from a revoked envelope."""
    pass


class AlreadyRevoked(StateError):
    """Raised when revoking or refunding an envelope that is already closed."""
    pass


class FullyClaimed(StateError):
    """Raised when revoking an envelope with nothing left to revoke."""
    pass


# ==================== Timing Errors ====================


class TimingError(EnvelopeError):
    """Raised when an operation is attempted before its time window opens."""
    recoverable = True  # Succeeds once the clock passes the threshold


class Locked(TimingError):
    """Raised when claiming before the envelope's unlock timestamp."""
    pass


class NotYetExpired(TimingError):
    """Raised when refunding before the envelope's expiry timestamp."""
    pass


# ==================== Storage Errors ====================


class StorageError(EnvelopeError):
    """Raised when the backing key/value store cannot be read or written."""
    recoverable = True


# ==================== Utility Functions ====================


def is_recoverable_error(exc: Exception) -> bool:
    """Check if an exception represents a retryable failure.

    Args:
        exc: The exception to check

    Returns:
        True if retrying the same call later can succeed
    """
    if isinstance(exc, EnvelopeError):
        return exc.recoverable
    return isinstance(exc, (ConnectionError, TimeoutError, OSError))


def get_error_context(exc: Exception) -> Dict[str, Any]:
    """Extract error context from an exception for logging.

    Args:
        exc: The exception to extract context from

    Returns:
        Dictionary containing error type, message, and any additional details
    """
    context: Dict[str, Any] = {
        "error_type": type(exc).__name__,
        "error_message": str(exc),
    }

    if isinstance(exc, EnvelopeError):
        context["recoverable"] = exc.recoverable
        if exc.details:
            context["details"] = exc.details

    return context
