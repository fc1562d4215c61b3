"""Tests for the exception hierarchy."""

import pytest

from vital_insights.exceptions import (
    DatabaseError,
    ErrorCode,
    FutureMeasurementError,
    InsufficientDataError,
    InvalidRangeConfigurationError,
    MissingSecondaryValueError,
    NotFoundError,
    PhysiologicallyImplausibleValueError,
    RecommendationNotFoundError,
    ValidationError,
    VitalInsightsError,
    VitalSignTypeNotFoundError,
)


class TestErrorCodes:
    """Tests for codes and status mapping."""

    @pytest.mark.parametrize("error,code,status", [
        (PhysiologicallyImplausibleValueError("heart_rate", 300), ErrorCode.PHYSIOLOGICALLY_IMPLAUSIBLE, 422),
        (MissingSecondaryValueError("blood_pressure"), ErrorCode.MISSING_SECONDARY_VALUE, 400),
        (FutureMeasurementError("2030-01-01", "2026-01-01"), ErrorCode.FUTURE_MEASUREMENT, 400),
        (InsufficientDataError("mean"), ErrorCode.INSUFFICIENT_DATA, 422),
        (InvalidRangeConfigurationError("x", "inverted"), ErrorCode.INVALID_RANGE_CONFIGURATION, 500),
        (VitalSignTypeNotFoundError("x"), ErrorCode.VITAL_SIGN_TYPE_NOT_FOUND, 404),
        (RecommendationNotFoundError("r-1"), ErrorCode.RECOMMENDATION_NOT_FOUND, 404),
        (DatabaseError("locked", operation="insert"), ErrorCode.DATABASE_ERROR, 500),
    ])
    def test_code_and_status(self, error, code, status):
        """Test each error carries its code and status."""
        assert isinstance(error, VitalInsightsError)
        assert error.code == code
        assert error.status_code == status

    def test_hierarchy(self):
        """Test reading errors are validation errors and lookups are not-found errors."""
        assert issubclass(PhysiologicallyImplausibleValueError, ValidationError)
        assert issubclass(MissingSecondaryValueError, ValidationError)
        assert issubclass(RecommendationNotFoundError, NotFoundError)
        assert issubclass(VitalSignTypeNotFoundError, NotFoundError)


class TestMessages:
    """Tests for messages and serialization."""

    def test_implausible_message(self):
        """Test the message names the reading and the reason."""
        error = PhysiologicallyImplausibleValueError("blood_pressure", 120, 130, "diastolic above systolic")
        assert error.message == (
            "Physiologically implausible blood_pressure reading: 120/130 (diastolic above systolic)"
        )
        assert str(error) == error.message
        assert error.details["value_secondary"] == 130

    def test_insufficient_data_message(self):
        """Test the message states required and actual counts."""
        error = InsufficientDataError("standard deviation", required=2, actual=1)
        assert error.message == "standard deviation requires at least 2 sample(s), got 1"

    def test_to_dict(self):
        """Test API-style serialization."""
        data = RecommendationNotFoundError("r-1").to_dict()
        assert data["error"]["code"] == "RECOMMENDATION_NOT_FOUND"
        assert data["error"]["message"] == "Recommendation with ID 'r-1' not found"
        assert data["error"]["details"]["resource_id"] == "r-1"

    def test_to_dict_without_details(self):
        """Test details are omitted when empty."""
        data = VitalInsightsError("boom").to_dict()
        assert data == {"error": {"code": "INTERNAL_ERROR", "message": "boom"}}

    def test_repr(self):
        """Test repr includes the code."""
        assert repr(DatabaseError("locked")) == "DatabaseError(code=DATABASE_ERROR, message='locked')"
