"""Tests for Pydantic models."""

import pytest
from pydantic import ValidationError

from resume_parser_api.models import (
    ApiResponse,
    CurrentProvider,
    HealthResponse,
    ProbeResponse,
    QuotaExceededResponse,
    StructureValidationData,
    ValidateStructureRequest,
)


class TestApiResponse:
    """Tests for the response envelope."""

    def test_success_defaults(self):
        """Test defaults for a bare success envelope."""
        response = ApiResponse(success=True)
        assert response.model_dump() == {
            "success": True,
            "data": None,
            "message": "",
            "errors": None,
        }

    def test_nested_model_payload(self):
        """Test that nested models serialize inside data."""
        response = ApiResponse(
            success=True,
            data=ProbeResponse(status="ready", timestamp="2024-03-15T00:00:00+00:00"),
        )
        assert response.model_dump(mode="json")["data"] == {
            "status": "ready",
            "timestamp": "2024-03-15T00:00:00+00:00",
        }

    def test_success_required(self):
        """Test that success is required."""
        with pytest.raises(ValidationError):
            ApiResponse(message="missing success")


class TestQuotaExceededResponse:
    """Tests for QuotaExceededResponse."""

    def test_defaults_to_failure(self):
        """Test that the body always reports failure."""
        body = QuotaExceededResponse(
            message="limit", reset_time="2024-03-16T00:00:00+00:00", limit=10, remaining=0
        )
        assert body.success is False
        assert body.limit == 10


class TestHealthModels:
    """Tests for health models."""

    def test_health_status_literal(self):
        """Test that unknown statuses are rejected."""
        HealthResponse(status="healthy", timestamp="t", services={}, version="1.0.0")
        with pytest.raises(ValidationError):
            HealthResponse(status="degraded", timestamp="t", services={}, version="1.0.0")

    def test_probe_status_literal(self):
        """Test that probes only report ready or alive."""
        with pytest.raises(ValidationError):
            ProbeResponse(status="healthy", timestamp="t")


class TestResumeModels:
    """Tests for resume endpoint models."""

    def test_validate_structure_request_accepts_any_json(self):
        """Test that any JSON value can be submitted for validation."""
        assert ValidateStructureRequest().structure is None
        assert ValidateStructureRequest(structure=[1, 2]).structure == [1, 2]
        assert ValidateStructureRequest(structure={"a": ""}).structure == {"a": ""}

    def test_structure_validation_defaults(self):
        """Test validation verdict defaults."""
        data = StructureValidationData(valid=True)
        assert data.errors == []
        assert data.suggestions == []
        assert data.field_count == 0

    def test_current_provider_required_fields(self):
        """Test that provider info requires every field."""
        with pytest.raises(ValidationError):
            CurrentProvider(provider="openai", name="OpenAI", model="gpt-4")
