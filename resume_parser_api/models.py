"""Pydantic models for API requests and responses."""

from typing import Any, Literal

from pydantic import BaseModel, Field

# =============================================================================
# Envelope
# =============================================================================


class ApiResponse(BaseModel):
    """Envelope shared by every JSON endpoint."""

    success: bool = Field(..., description="Whether the request succeeded")
    data: Any = Field(default=None, description="Endpoint-specific payload")
    message: str = Field(default="", description="Human-readable outcome")
    errors: list[str] | None = Field(default=None, description="Error details on failure")


class QuotaExceededResponse(BaseModel):
    """Body returned when the daily quota is exhausted."""

    success: bool = False
    message: str = Field(..., description="Why the request was rejected")
    reset_time: str = Field(..., description="ISO-8601 time the quota resets")
    limit: int = Field(..., description="Requests allowed per day")
    remaining: int = Field(..., description="Requests left today")


# =============================================================================
# Resume API Models
# =============================================================================


class FormatsData(BaseModel):
    """Supported upload formats."""

    formats: list[str] = Field(..., description="Accepted MIME types")
    descriptions: dict[str, str] = Field(..., description="Description per MIME type")


class FieldsData(BaseModel):
    """Field catalogue of the default structure."""

    fields: list[str] = Field(..., description="Leaf field paths")
    categories: dict[str, list[str]] = Field(..., description="Field paths grouped by section")
    total: int = Field(..., description="Number of fields")


class StructureData(BaseModel):
    """Default structure plus example templates."""

    structure: dict[str, Any] = Field(..., description="Default résumé template")
    examples: dict[str, dict[str, Any]] = Field(..., description="Example templates by use case")


class ValidateStructureRequest(BaseModel):
    """Request body for template validation."""

    structure: Any = Field(default=None, description="Template to validate")


class StructureValidationData(BaseModel):
    """Template validation verdict."""

    valid: bool
    errors: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    field_count: int = Field(default=0, description="Number of keys in the template")


class ConnectionTestData(BaseModel):
    """Result of the AI connectivity self-test."""

    connected: bool
    message: str
    provider: str
    response_time_ms: int
    details: dict[str, Any] = Field(default_factory=dict)


class CurrentProvider(BaseModel):
    """Provider the service is currently configured with."""

    provider: str = Field(..., description="Provider tag from AI_PROVIDER")
    name: str = Field(..., description="Display name")
    model: str = Field(..., description="Model or deployment in use")
    configured: bool = Field(..., description="Whether a usable credential is present")


class ProviderInfoData(BaseModel):
    """Current provider, supported providers and their capabilities."""

    current: CurrentProvider
    supported: list[str]
    capabilities: dict[str, dict[str, Any]]


class StatsData(BaseModel):
    """Service statistics."""

    uptime_seconds: int
    uptime: str
    version: str
    supported_formats: int
    available_fields: int
    ai_provider: str
    system_info: dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# Health API Models
# =============================================================================


class HealthResponse(BaseModel):
    """Response for health check endpoint."""

    status: Literal["healthy", "unhealthy"] = Field(..., description="Service status")
    timestamp: str = Field(..., description="ISO-8601 time of the check")
    services: dict[str, str] = Field(..., description="Status per dependency")
    version: str = Field(..., description="API version")


class ProbeResponse(BaseModel):
    """Response for readiness and liveness probes."""

    status: Literal["ready", "alive"]
    timestamp: str


# =============================================================================
# Rate Limit API Models
# =============================================================================


class QuotaStatusData(BaseModel):
    """Daily quota usage for one identity."""

    key: str
    current_count: int
    max_requests: int
    remaining: int
    reset_time: str


class QuotaStatsData(BaseModel):
    """Identities that used the service today."""

    total_active_users: int
    active_users: list[str]
    date: str
