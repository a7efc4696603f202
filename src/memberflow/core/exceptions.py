"""Custom exceptions for MemberFlow.

This module provides the exception hierarchy for the membership engine with:
- Structured error information
- HTTP status code hints for the application layer
- User-friendly error messages
- Machine-readable error codes
- Contextual details (current status, requested operation) for rendering
"""

from __future__ import annotations

from enum import Enum
from http import HTTPStatus
from typing import Any


class ErrorCode(str, Enum):
    """Machine-readable error codes."""

    # General errors (1xxx)
    UNKNOWN_ERROR = "MF1001"

    # Validation errors (4xxx)
    VALIDATION_ERROR = "MF4000"
    VALUE_OUT_OF_RANGE = "MF4004"
    CURRENCY_MISMATCH = "MF4005"

    # Resource errors (5xxx)
    RESOURCE_NOT_FOUND = "MF5000"
    PLAN_NOT_FOUND = "MF5001"
    SUBSCRIPTION_NOT_FOUND = "MF5002"
    CONTRACT_NOT_FOUND = "MF5003"
    CANCELLATION_REQUEST_NOT_FOUND = "MF5004"
    RETENTION_OFFER_NOT_FOUND = "MF5005"
    SCHEDULED_CHANGE_NOT_FOUND = "MF5006"
    WALLET_NOT_FOUND = "MF5007"
    PRICING_TIER_NOT_FOUND = "MF5008"

    # State errors (6xxx)
    INVALID_STATE_TRANSITION = "MF6000"
    CONFLICT = "MF6001"

    # Allowance errors (7xxx)
    INSUFFICIENT_RESOURCE = "MF7000"
    NO_FREEZE_DAYS_REMAINING = "MF7001"
    NO_CLASSES_REMAINING = "MF7002"
    NO_GUEST_PASSES_REMAINING = "MF7003"

    # Database errors (8xxx)
    DATABASE_ERROR = "MF8000"
    CONCURRENT_MODIFICATION = "MF8001"


class MemberFlowException(Exception):
    """Base exception for all MemberFlow errors.

    Provides structured error information suitable for the application
    layer and for logging.

    Attributes:
        message: Human-readable error message.
        error_code: Machine-readable error code.
        http_status: HTTP status hint for the application layer.
        details: Additional context for debugging and rendering.
        user_message: User-friendly message (may differ from message).
    """

    message: str = "An unexpected error occurred"
    error_code: ErrorCode = ErrorCode.UNKNOWN_ERROR
    http_status: HTTPStatus = HTTPStatus.INTERNAL_SERVER_ERROR
    user_message: str | None = None

    def __init__(
        self,
        message: str | None = None,
        *,
        error_code: ErrorCode | None = None,
        http_status: HTTPStatus | None = None,
        details: dict[str, Any] | None = None,
        user_message: str | None = None,
    ) -> None:
        """Initialize exception.

        Args:
            message: Human-readable error message.
            error_code: Machine-readable error code.
            http_status: HTTP status hint.
            details: Additional context.
            user_message: User-friendly message for end users.
        """
        self.message = message or self.__class__.message
        self.error_code = error_code or self.__class__.error_code
        self.http_status = http_status or self.__class__.http_status
        self.details = details or {}
        self.user_message = user_message or self.__class__.user_message or self.message
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to a dictionary for the caller.

        Returns:
            Dictionary with error information.
        """
        return {
            "error": {
                "code": self.error_code.value,
                "message": self.user_message,
                "details": self.details if self.details else None,
            }
        }

    def __str__(self) -> str:
        """String representation including error code."""
        return f"[{self.error_code.value}] {self.message}"

    def __repr__(self) -> str:
        """Detailed representation for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code.value}, "
            f"http_status={self.http_status.value}, "
            f"details={self.details!r}"
            f")"
        )


# ============================================================================
# Validation Exceptions
# ============================================================================


class ValidationError(MemberFlowException):
    """Malformed input rejected at construction time."""

    message = "Validation error"
    error_code = ErrorCode.VALIDATION_ERROR
    http_status = HTTPStatus.BAD_REQUEST

    def __init__(
        self,
        message: str | None = None,
        *,
        field: str | None = None,
        value: Any = None,
        constraint: str | None = None,
        **kwargs: Any,
    ) -> None:
        """Initialize validation error.

        Args:
            message: Error message.
            field: Name of the field that failed validation.
            value: The invalid value.
            constraint: Description of the constraint that was violated.
            **kwargs: Additional arguments passed to parent.
        """
        details = kwargs.pop("details", {}) or {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        if constraint:
            details["constraint"] = constraint

        super().__init__(message, details=details, **kwargs)


class ValueOutOfRangeError(ValidationError):
    """Value is outside acceptable range."""

    message = "Value is outside acceptable range"
    error_code = ErrorCode.VALUE_OUT_OF_RANGE


class CurrencyMismatchError(ValidationError):
    """Arithmetic attempted between amounts of different currencies."""

    message = "Currency mismatch"
    error_code = ErrorCode.CURRENCY_MISMATCH

    def __init__(self, left: str, right: str, **kwargs: Any) -> None:
        super().__init__(
            f"Cannot combine amounts in {left} and {right}",
            field="currency",
            value=right,
            constraint=f"must be {left}",
            **kwargs,
        )


# ============================================================================
# Resource Exceptions
# ============================================================================


class NotFoundError(MemberFlowException):
    """Referenced entity is missing."""

    message = "Resource not found"
    error_code = ErrorCode.RESOURCE_NOT_FOUND
    http_status = HTTPStatus.NOT_FOUND

    def __init__(
        self,
        message: str | None = None,
        *,
        resource_type: str | None = None,
        resource_id: str | None = None,
        **kwargs: Any,
    ) -> None:
        """Initialize not found error.

        Args:
            message: Error message.
            resource_type: Type of resource not found.
            resource_id: ID of the resource.
            **kwargs: Additional arguments passed to parent.
        """
        details = kwargs.pop("details", {}) or {}
        if resource_type:
            details["resource_type"] = resource_type
        if resource_id:
            details["resource_id"] = resource_id

        if not message and resource_type:
            message = f"{resource_type} not found"
            if resource_id:
                message = f"{resource_type} {resource_id} not found"

        super().__init__(message, details=details, **kwargs)


class PlanNotFoundError(NotFoundError):
    message = "Membership plan not found"
    error_code = ErrorCode.PLAN_NOT_FOUND


class PricingTierNotFoundError(NotFoundError):
    message = "Contract pricing tier not found"
    error_code = ErrorCode.PRICING_TIER_NOT_FOUND


class SubscriptionNotFoundError(NotFoundError):
    message = "Subscription not found"
    error_code = ErrorCode.SUBSCRIPTION_NOT_FOUND


class ContractNotFoundError(NotFoundError):
    message = "Membership contract not found"
    error_code = ErrorCode.CONTRACT_NOT_FOUND


class CancellationRequestNotFoundError(NotFoundError):
    message = "Cancellation request not found"
    error_code = ErrorCode.CANCELLATION_REQUEST_NOT_FOUND


class RetentionOfferNotFoundError(NotFoundError):
    message = "Retention offer not found"
    error_code = ErrorCode.RETENTION_OFFER_NOT_FOUND


class ScheduledPlanChangeNotFoundError(NotFoundError):
    message = "Scheduled plan change not found"
    error_code = ErrorCode.SCHEDULED_CHANGE_NOT_FOUND


class WalletNotFoundError(NotFoundError):
    message = "Member wallet not found"
    error_code = ErrorCode.WALLET_NOT_FOUND


# ============================================================================
# State Exceptions
# ============================================================================


class InvalidStateTransitionError(MemberFlowException):
    """Operation attempted from a status that does not permit it.

    Always raised before any mutation, so the entity is left untouched.
    """

    message = "Invalid state transition"
    error_code = ErrorCode.INVALID_STATE_TRANSITION
    http_status = HTTPStatus.CONFLICT

    def __init__(
        self,
        message: str | None = None,
        *,
        entity: str | None = None,
        current_status: Any = None,
        operation: str | None = None,
        **kwargs: Any,
    ) -> None:
        """Initialize invalid state transition error.

        Args:
            message: Error message.
            entity: Entity type (e.g. "subscription").
            current_status: Status the entity was in.
            operation: The operation that was rejected.
            **kwargs: Additional arguments passed to parent.
        """
        details = kwargs.pop("details", {}) or {}
        status_value = getattr(current_status, "value", current_status)
        if entity:
            details["entity"] = entity
        if status_value is not None:
            details["current_status"] = str(status_value)
        if operation:
            details["operation"] = operation

        if not message and entity and operation:
            message = f"Cannot {operation} {entity} in status {status_value}"

        super().__init__(message, details=details, **kwargs)


class ConflictError(MemberFlowException):
    """A duplicate workflow request conflicts with one already in progress."""

    message = "Request conflicts with the current state"
    error_code = ErrorCode.CONFLICT
    http_status = HTTPStatus.CONFLICT


# ============================================================================
# Allowance Exceptions
# ============================================================================


class InsufficientResourceError(MemberFlowException):
    """An allowance is exhausted; the caller must choose another path."""

    message = "Insufficient allowance"
    error_code = ErrorCode.INSUFFICIENT_RESOURCE
    http_status = HTTPStatus.UNPROCESSABLE_ENTITY

    def __init__(
        self,
        message: str | None = None,
        *,
        resource: str | None = None,
        remaining: int | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {}) or {}
        if resource:
            details["resource"] = resource
        if remaining is not None:
            details["remaining"] = remaining

        super().__init__(message, details=details, **kwargs)


class NoFreezeDaysRemainingError(InsufficientResourceError):
    message = "No freeze days remaining"
    error_code = ErrorCode.NO_FREEZE_DAYS_REMAINING
    user_message = "You have used all your freeze days. A freeze package can be purchased."


class NoClassesRemainingError(InsufficientResourceError):
    message = "No classes remaining"
    error_code = ErrorCode.NO_CLASSES_REMAINING


class NoGuestPassesRemainingError(InsufficientResourceError):
    message = "No guest passes remaining"
    error_code = ErrorCode.NO_GUEST_PASSES_REMAINING


# ============================================================================
# Database Exceptions
# ============================================================================


class DatabaseError(MemberFlowException):
    """Database-related errors."""

    message = "Database error"
    error_code = ErrorCode.DATABASE_ERROR
    http_status = HTTPStatus.INTERNAL_SERVER_ERROR
    user_message = "A database error occurred. Please try again later."


class ConcurrentModificationError(DatabaseError):
    """A concurrent writer updated the same row first."""

    message = "The record was modified concurrently"
    error_code = ErrorCode.CONCURRENT_MODIFICATION
    http_status = HTTPStatus.CONFLICT
