"""
Pydantic Schemas for the Prompt API

This module defines the request and response models for the KubeLLM API:
- CreatePromptRequest / CreatePromptResponse: POST /prompts
- PromptRecordResponse: GET /prompts
- Error responses, metrics, provider and health check schemas

All schemas follow Pydantic v2 patterns with field descriptions and
OpenAPI examples.
"""

from datetime import datetime
from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

if TYPE_CHECKING:
    from kubellm.dispatcher.orchestrator import DispatchResult
    from kubellm.storage.base import PromptRecord


# =============================================================================
# REQUEST MODELS
# =============================================================================


class CreatePromptRequest(BaseModel):
    """
    Request body for POST /prompts.

    Example:
        {
            "provider": "anthropic",
            "model": "claude-sonnet-4-5",
            "prompt": "Explain Kubernetes pods in one sentence",
            "temperature": 0.5,
            "max_tokens": 256
        }
    """

    provider: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description="Provider identifier (e.g. 'anthropic', 'openai', 'groq')",
    )

    model: str | None = Field(
        default=None,
        max_length=255,
        description="Model identifier; the provider default is used when omitted",
    )

    prompt: str = Field(
        ...,
        min_length=1,
        description="Prompt text to submit",
    )

    temperature: float | None = Field(
        default=None,
        ge=0.0,
        le=2.0,
        description="Sampling temperature",
    )

    max_tokens: int | None = Field(
        default=None,
        ge=1,
        description="Maximum tokens to generate",
    )

    @field_validator("prompt")
    @classmethod
    def validate_prompt_not_whitespace(cls, v: str) -> str:
        """Ensure the prompt is not empty or whitespace only."""
        if not v.strip():
            raise ValueError("Prompt cannot be empty or whitespace only")
        return v

    model_config = ConfigDict(
        extra="ignore",
        json_schema_extra={
            "examples": [
                {"provider": "anthropic", "prompt": "Hello"},
                {
                    "provider": "openai",
                    "model": "gpt-4o-mini",
                    "prompt": "Write a haiku about containers",
                    "temperature": 0.7,
                    "max_tokens": 100,
                },
            ]
        },
    )


# =============================================================================
# RESPONSE MODELS
# =============================================================================


class CreatePromptResponse(BaseModel):
    """
    Response from POST /prompts.

    Example:
        {
            "id": 42,
            "response": "Hi there",
            "provider": "anthropic",
            "model": "claude-sonnet-4-5",
            "attempts": 1,
            "latency_ms": 812.4,
            "created_at": "2026-01-01T12:00:00+00:00"
        }
    """

    id: int | None = Field(..., description="Identifier of the stored record")
    response: str = Field(..., description="Generated text")
    provider: str = Field(..., description="Provider that served the request")
    model: str = Field(..., description="Model the request ran against")
    attempts: int = Field(..., ge=1, description="Provider calls made")
    latency_ms: float = Field(..., ge=0.0, description="Total dispatch time in milliseconds")
    created_at: datetime = Field(..., description="Record creation timestamp (UTC)")


class PromptRecordResponse(BaseModel):
    """A stored prompt/response exchange as returned by GET /prompts."""

    id: int
    prompt: str
    response: str
    model: str
    provider: str
    created_at: datetime


# =============================================================================
# ERROR MODELS
# =============================================================================


class ErrorCodes:
    """
    Standard error codes for API responses.

    These codes enable programmatic error handling by clients
    without parsing human-readable messages.
    """

    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_REQUEST = "INVALID_REQUEST"
    UNKNOWN_PROVIDER = "UNKNOWN_PROVIDER"
    UNKNOWN_MODEL = "UNKNOWN_MODEL"
    PROVIDER_AUTH_ERROR = "PROVIDER_AUTH_ERROR"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    RATE_LIMITED = "RATE_LIMITED"
    TIMEOUT = "TIMEOUT"
    PERSISTENCE_ERROR = "PERSISTENCE_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"


class ErrorDetail(BaseModel):
    """
    Detailed error information for API error responses.

    Provides machine-readable error codes, human-readable messages,
    and optional field information for validation errors.
    """

    code: str = Field(
        ...,
        description="Machine-readable error code for programmatic handling",
    )

    message: str = Field(
        ...,
        description="Human-readable error message",
    )

    field: str | None = Field(
        default=None,
        description="Field that caused the error (for validation errors)",
    )


class ErrorResponse(BaseModel):
    """
    Standard error response format for all API errors.

    Example:
        {
            "error": {
                "code": "UNKNOWN_PROVIDER",
                "message": "Unknown provider: cohere",
                "field": "provider"
            }
        }
    """

    error: ErrorDetail = Field(
        ...,
        description="Error details",
    )

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "error": {
                        "code": "VALIDATION_ERROR",
                        "message": "Prompt cannot be empty or whitespace only",
                        "field": "body.prompt",
                    }
                }
            ]
        }
    )


# =============================================================================
# PROVIDER MODELS
# =============================================================================


class ProviderInfo(BaseModel):
    """Non-secret metadata for one configured provider."""

    provider: str
    kind: str
    base_url: str
    models: list[str]
    default_model: str
    timeout_seconds: float


class ProvidersResponse(BaseModel):
    """Response from GET /providers."""

    providers: list[ProviderInfo] = Field(default_factory=list)
    total_providers: int = Field(default=0, ge=0)


class ProviderModelsResponse(BaseModel):
    """Response from GET /providers/{provider}/models."""

    provider: str
    models: list[str]
    default_model: str
    source: Literal["config", "live"] = Field(
        default="config",
        description="'live' when the list came from the vendor API",
    )


# =============================================================================
# METRICS MODELS
# =============================================================================


class BreakdownMetrics(BaseModel):
    """Aggregated metrics for one provider or one provider/model pair."""

    name: str = Field(..., description="Provider ID or 'provider/model'")
    dispatch_count: int = Field(default=0, ge=0)
    success_count: int = Field(default=0, ge=0)
    total_tokens: int = Field(default=0, ge=0)
    avg_latency_ms: float = Field(default=0.0, ge=0.0)


class MetricsResponse(BaseModel):
    """
    Response from the /metrics endpoint.

    Example:
        {
            "total_dispatches": 120,
            "successful_dispatches": 117,
            "success_rate": 97.5,
            "avg_attempts": 1.08,
            "avg_latency_ms": 904.2,
            "p95_latency_ms": 2210.0,
            "outcomes": {"success": 117, "exhausted_retries": 2, "auth": 1},
            ...
        }
    """

    total_dispatches: int = Field(default=0, ge=0, description="Dispatches recorded")
    successful_dispatches: int = Field(default=0, ge=0)
    success_rate: float = Field(
        default=0.0, ge=0.0, le=100.0, description="Successful dispatches in percent"
    )
    avg_attempts: float = Field(default=0.0, ge=0.0)
    avg_latency_ms: float = Field(default=0.0, ge=0.0)
    p95_latency_ms: float = Field(default=0.0, ge=0.0)
    total_input_tokens: int = Field(default=0, ge=0)
    total_output_tokens: int = Field(default=0, ge=0)
    outcomes: dict[str, int] = Field(default_factory=dict)
    by_provider: dict[str, BreakdownMetrics] = Field(default_factory=dict)
    by_model: dict[str, BreakdownMetrics] = Field(default_factory=dict)


# =============================================================================
# HEALTH MODELS
# =============================================================================


class ComponentHealth(BaseModel):
    """
    Health status of an individual system component.

    Used to report storage and registry status in health check responses.
    """

    name: str = Field(
        ...,
        description="Component name (e.g., 'storage', 'registry')",
    )

    status: Literal["healthy", "degraded", "unhealthy"] = Field(
        ...,
        description="Component health status",
    )

    latency_ms: float | None = Field(
        default=None,
        ge=0.0,
        description="Time taken by the component check",
    )

    message: str | None = Field(
        default=None,
        description="Additional status information or error details",
    )


class HealthResponse(BaseModel):
    """
    Response from the /health endpoint.

    Example:
        {
            "status": "healthy",
            "service": "kubellm",
            "version": "0.1.0",
            "components": [
                {"name": "storage", "status": "healthy", "latency_ms": 0.4},
                {"name": "registry", "status": "healthy", "message": "2 providers"}
            ],
            "uptime_seconds": 3600.5
        }
    """

    status: Literal["healthy", "degraded", "unhealthy"] = Field(
        ...,
        description="Overall service health status",
    )

    service: str = Field(
        default="kubellm",
        description="Service identifier",
    )

    version: str = Field(
        ...,
        description="Application version",
    )

    components: list[ComponentHealth] = Field(
        default_factory=list,
        description="Health status of individual components",
    )

    uptime_seconds: float | None = Field(
        default=None,
        ge=0.0,
        description="Time since service start in seconds",
    )


# =============================================================================
# CONVERSION UTILITIES
# =============================================================================


def create_response_from_result(result: "DispatchResult") -> CreatePromptResponse:
    """
    Convert a DispatchResult dataclass to the POST /prompts response.

    Args:
        result: DispatchResult from the orchestrator

    Returns:
        CreatePromptResponse ready for API serialization
    """
    return CreatePromptResponse(
        id=result.record_id,
        response=result.response,
        provider=result.provider,
        model=result.model,
        attempts=result.attempts,
        latency_ms=round(result.latency_ms, 2),
        created_at=result.created_at,
    )


def record_response_from_record(record: "PromptRecord") -> PromptRecordResponse:
    """Convert a stored PromptRecord to its API representation."""
    return PromptRecordResponse(
        id=record.id,
        prompt=record.prompt,
        response=record.response,
        model=record.model,
        provider=record.provider,
        created_at=record.created_at,
    )
