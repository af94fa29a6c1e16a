"""Custom exception classes and error response utilities."""

from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any, Dict, List, Optional


@dataclass
class FieldError:
    """Error details for a specific field."""

    field: str
    message: str
    code: str = "invalid"

    def to_dict(self) -> Dict[str, str]:
        """Convert to dictionary for JSON response."""
        return {
            "field": self.field,
            "message": self.message,
            "code": self.code,
        }


@dataclass
class ErrorResponse:
    """Structured error response for API endpoints."""

    message: str
    status_code: int
    error_code: str
    reason: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    field_errors: List[FieldError] = field(default_factory=list)
    headers: Optional[Dict[str, str]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON response."""
        result = {
            "error": {
                "message": self.message,
                "code": self.error_code,
            }
        }

        if self.reason:
            result["error"]["reason"] = self.reason

        if self.details:
            result["error"]["details"] = self.details

        if self.field_errors:
            result["error"]["field_errors"] = [
                fe.to_dict() for fe in self.field_errors
            ]

        return result


class APIError(Exception):
    """Base exception for API errors."""

    status_code: int = HTTPStatus.INTERNAL_SERVER_ERROR
    error_code: str = "internal_error"
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        field_errors: Optional[List[FieldError]] = None,
        error_code: Optional[str] = None,
    ):
        self.message = message or self.__class__.message
        self.details = details
        self.field_errors = field_errors or []
        if error_code:
            self.error_code = error_code
        super().__init__(self.message)

    @property
    def reason(self) -> Optional[str]:
        return None

    @property
    def headers(self) -> Optional[Dict[str, str]]:
        return None

    def to_response(self) -> ErrorResponse:
        """Convert exception to structured error response."""
        return ErrorResponse(
            message=self.message,
            status_code=self.status_code,
            error_code=self.error_code,
            reason=self.reason,
            details=self.details,
            field_errors=self.field_errors,
            headers=self.headers,
        )


class ValidationError(APIError):
    """Exception for request validation failures."""

    status_code: int = HTTPStatus.BAD_REQUEST
    error_code: str = "validation_error"
    message: str = "Request validation failed"


class NotFoundError(APIError):
    """Exception for resource not found."""

    status_code: int = HTTPStatus.NOT_FOUND
    error_code: str = "not_found"
    message: str = "Resource not found"


class UnauthorizedError(APIError):
    """Exception for authentication failures."""

    status_code: int = HTTPStatus.UNAUTHORIZED
    error_code: str = "unauthorized"
    message: str = "Authentication required"


class ForbiddenError(APIError):
    """Exception for authorization failures."""

    status_code: int = HTTPStatus.FORBIDDEN
    error_code: str = "forbidden"
    message: str = "Access denied"


class ConfigurationError(APIError):
    """Raised when the service is missing required configuration."""

    status_code: int = HTTPStatus.INTERNAL_SERVER_ERROR
    error_code: str = "configuration_error"
    message: str = "Service is not configured"


# =============================================================================
# Signature Lifecycle Errors
# =============================================================================

class StateConflictReason:
    """Machine-readable reasons attached to a StateConflictError."""

    ALREADY_SIGNED = "already_signed"
    ALREADY_DECLINED = "already_declined"
    DOCUMENT_COMPLETED = "document_completed"
    DOCUMENT_DECLINED = "document_declined"
    DOCUMENT_VOIDED = "document_voided"
    DOCUMENT_EXPIRED = "document_expired"
    SIGNING_LINK_EXPIRED = "signing_link_expired"
    NOT_SENT = "not_sent"
    NOT_DRAFT = "not_draft"
    NO_SIGNERS = "no_signers"
    SIGNERS_OUTSTANDING = "signers_outstanding"
    ROLE_CANNOT_SIGN = "role_cannot_sign"
    OUT_OF_ORDER = "out_of_order"
    INVALID_TRANSITION = "invalid_transition"


# User-facing messages per reason; the signing UI keys off the reason code
STATE_CONFLICT_MESSAGES: Dict[str, str] = {
    StateConflictReason.ALREADY_SIGNED: "You have already signed this document",
    StateConflictReason.ALREADY_DECLINED: "You have already declined this document",
    StateConflictReason.DOCUMENT_COMPLETED: "This document has already been completed",
    StateConflictReason.DOCUMENT_DECLINED: "This document has been declined",
    StateConflictReason.DOCUMENT_VOIDED: "This document has been voided",
    StateConflictReason.DOCUMENT_EXPIRED: "This document has expired",
    StateConflictReason.SIGNING_LINK_EXPIRED: "This signing link has expired",
    StateConflictReason.NOT_SENT: "This document has not been sent for signature",
    StateConflictReason.NOT_DRAFT: "Only draft documents can be edited",
    StateConflictReason.NO_SIGNERS: "Document needs at least one signer or approver",
    StateConflictReason.SIGNERS_OUTSTANDING: "Not all signers have signed this document",
    StateConflictReason.ROLE_CANNOT_SIGN: "This recipient is not permitted to sign",
    StateConflictReason.OUT_OF_ORDER: "Waiting for earlier signers to complete",
    StateConflictReason.INVALID_TRANSITION: "This document cannot move to the requested status",
}


class StateConflictError(APIError):
    """Action attempted against a document or recipient in the wrong state."""

    status_code: int = HTTPStatus.CONFLICT
    error_code: str = "state_conflict"
    message: str = "Action conflicts with the current document state"

    def __init__(
        self,
        reason: str,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self._reason = reason
        super().__init__(
            message=message or STATE_CONFLICT_MESSAGES.get(reason),
            details=details,
        )

    @property
    def reason(self) -> Optional[str]:
        return self._reason


class SigningOrderViolation(StateConflictError):
    """A recipient tried to act before lower-order signers finished."""

    error_code: str = "signing_order_violation"

    def __init__(self, pending_orders: List[int]):
        super().__init__(
            reason=StateConflictReason.OUT_OF_ORDER,
            details={"waiting_on_orders": sorted(set(pending_orders))},
        )


# =============================================================================
# Security Errors
# =============================================================================

class RateLimitedError(APIError):
    """Caller exceeded the request quota for a rate limit tier."""

    status_code: int = HTTPStatus.TOO_MANY_REQUESTS
    error_code: str = "rate_limit_exceeded"
    message: str = "Too many requests"

    def __init__(self, retry_after: int, limit: int, reset_seconds: int):
        self.retry_after = retry_after
        self.limit = limit
        self.reset_seconds = reset_seconds
        super().__init__(
            message=f"Rate limit exceeded. Try again in {retry_after} seconds.",
            details={"retryAfter": retry_after},
        )

    @property
    def headers(self) -> Optional[Dict[str, str]]:
        return {
            "Retry-After": str(self.retry_after),
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": "0",
            "X-RateLimit-Reset": str(self.reset_seconds),
        }


class AnomalyBlockedError(APIError):
    """Request denied because the caller's access pattern looks compromised."""

    status_code: int = HTTPStatus.FORBIDDEN
    error_code: str = "anomaly_blocked"
    message: str = "Access temporarily blocked due to suspicious activity"


class UpstreamNotificationError(Exception):
    """An outbound notification could not be delivered.

    Never surfaced to API callers; the notifier logs it and moves on.
    """


class ImmutableRecordError(Exception):
    """Raised when code tries to modify or delete an append-only record."""


def create_not_found_error(resource_type: str, identifier: Any) -> NotFoundError:
    """Create a not found error for a specific resource."""
    return NotFoundError(
        message=f"{resource_type} not found",
        details={"resource_type": resource_type, "identifier": str(identifier)},
    )
