"""
Custom exceptions for the Vital Insights engine.

This module defines a hierarchy of exceptions that provide clear error
handling throughout the engine. Each exception includes:
- A descriptive message
- An error code for API responses
- HTTP status code mapping
- Optional details for debugging
"""

from typing import Any, Dict, Optional
from enum import Enum


class ErrorCode(str, Enum):
    """Error codes for consistent API error responses."""

    # General errors
    INTERNAL_ERROR = "INTERNAL_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"

    # Analysis errors
    INSUFFICIENT_DATA = "INSUFFICIENT_DATA"
    INVALID_RANGE_CONFIGURATION = "INVALID_RANGE_CONFIGURATION"

    # Reading errors
    PHYSIOLOGICALLY_IMPLAUSIBLE = "PHYSIOLOGICALLY_IMPLAUSIBLE"
    MISSING_SECONDARY_VALUE = "MISSING_SECONDARY_VALUE"
    FUTURE_MEASUREMENT = "FUTURE_MEASUREMENT"

    # Resource errors
    VITAL_SIGN_TYPE_NOT_FOUND = "VITAL_SIGN_TYPE_NOT_FOUND"
    RECOMMENDATION_NOT_FOUND = "RECOMMENDATION_NOT_FOUND"

    # Data/Database errors
    DATABASE_ERROR = "DATABASE_ERROR"


class VitalInsightsError(Exception):
    """
    Base exception for all Vital Insights errors.

    Attributes:
        message: Human-readable error message
        code: Error code from ErrorCode enum
        status_code: HTTP status code for API responses
        details: Optional dictionary with additional error details
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API response."""
        result: Dict[str, Any] = {
            "error": {
                "code": self.code.value,
                "message": self.message,
            }
        }
        if self.details:
            result["error"]["details"] = self.details
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code.value}, message={self.message!r})"


# ============================================================================
# Validation Errors (400 / 422)
# ============================================================================

class ValidationError(VitalInsightsError):
    """Raised when input validation fails."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        error_details = details or {}
        if field:
            error_details["field"] = field
        super().__init__(
            message=message,
            code=ErrorCode.VALIDATION_ERROR,
            status_code=400,
            details=error_details,
        )


class PhysiologicallyImplausibleValueError(ValidationError):
    """
    Raised when a reading falls outside physiological limits.

    This is a probable data-entry error, not a clinical abnormality, and is
    never turned into a flag on the measurement.
    """

    def __init__(
        self,
        vital_sign_type: str,
        primary: float,
        secondary: Optional[float] = None,
        reason: Optional[str] = None,
    ) -> None:
        message = f"Physiologically implausible {vital_sign_type} reading: {primary}"
        if secondary is not None:
            message += f"/{secondary}"
        if reason:
            message += f" ({reason})"
        super().__init__(
            message=message,
            field="value_primary",
            details={
                "vital_sign_type": vital_sign_type,
                "value_primary": primary,
                "value_secondary": secondary,
                "reason": reason,
            },
        )
        self.code = ErrorCode.PHYSIOLOGICALLY_IMPLAUSIBLE
        self.status_code = 422


class MissingSecondaryValueError(ValidationError):
    """Raised when a dual-value vital sign is recorded without its secondary value."""

    def __init__(self, vital_sign_type: str) -> None:
        super().__init__(
            message=f"{vital_sign_type} requires a secondary value",
            field="value_secondary",
            details={"vital_sign_type": vital_sign_type},
        )
        self.code = ErrorCode.MISSING_SECONDARY_VALUE


class FutureMeasurementError(ValidationError):
    """Raised when a measurement is timestamped after the current time."""

    def __init__(self, measured_at: str, now: str) -> None:
        super().__init__(
            message=f"Measurement time {measured_at} is in the future (now: {now})",
            field="measured_at",
            details={"measured_at": measured_at, "now": now},
        )
        self.code = ErrorCode.FUTURE_MEASUREMENT


# ============================================================================
# Analysis Errors
# ============================================================================

class InsufficientDataError(VitalInsightsError):
    """
    Raised when there are too few samples for the requested analysis.

    Analysis entry points catch this and return a sentinel result
    (e.g. ``insufficient_data`` direction) instead of surfacing it.
    """

    def __init__(
        self,
        operation: str,
        required: int = 1,
        actual: int = 0,
    ) -> None:
        super().__init__(
            message=f"{operation} requires at least {required} sample(s), got {actual}",
            code=ErrorCode.INSUFFICIENT_DATA,
            status_code=422,
            details={"operation": operation, "required": required, "actual": actual},
        )


class InvalidRangeConfigurationError(VitalInsightsError):
    """Raised when a vital sign type's warning range does not contain its normal range."""

    def __init__(
        self,
        vital_sign_type: str,
        reason: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        error_details = details or {}
        error_details["vital_sign_type"] = vital_sign_type
        super().__init__(
            message=f"Invalid range configuration for '{vital_sign_type}': {reason}",
            code=ErrorCode.INVALID_RANGE_CONFIGURATION,
            status_code=500,
            details=error_details,
        )


# ============================================================================
# Not Found Errors (404)
# ============================================================================

class NotFoundError(VitalInsightsError):
    """Raised when a requested resource is not found."""

    def __init__(
        self,
        resource_type: str,
        resource_id: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        message = f"{resource_type} with ID '{resource_id}' not found"
        error_details = details or {}
        error_details["resource_type"] = resource_type
        error_details["resource_id"] = resource_id
        super().__init__(
            message=message,
            code=ErrorCode.NOT_FOUND,
            status_code=404,
            details=error_details,
        )


class VitalSignTypeNotFoundError(NotFoundError):
    """Raised when a vital sign type is not in the catalog."""

    def __init__(self, type_id: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            resource_type="Vital sign type",
            resource_id=str(type_id),
            details=details,
        )
        self.code = ErrorCode.VITAL_SIGN_TYPE_NOT_FOUND


class RecommendationNotFoundError(NotFoundError):
    """Raised when a recommendation is not found."""

    def __init__(self, recommendation_id: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            resource_type="Recommendation",
            resource_id=recommendation_id,
            details=details,
        )
        self.code = ErrorCode.RECOMMENDATION_NOT_FOUND


# ============================================================================
# Database Errors (500)
# ============================================================================

class DatabaseError(VitalInsightsError):
    """Raised when a database operation fails."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        error_details = details or {}
        if operation:
            error_details["operation"] = operation
        super().__init__(
            message=message,
            code=ErrorCode.DATABASE_ERROR,
            status_code=500,
            details=error_details,
        )
