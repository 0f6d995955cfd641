"""
Schemas module: Pydantic request/response models.

This module provides validated data models for the KubeLLM API:
- Request/response models for the /prompts endpoints
- Error response models for consistent error handling
- Provider, metrics and health check response models

Example usage:
    from kubellm.schemas import CreatePromptRequest, create_response_from_result

    request = CreatePromptRequest(provider="anthropic", prompt="Hello")
    response = create_response_from_result(dispatch_result)
"""

from kubellm.schemas.prompts import (
    # Request models
    CreatePromptRequest,
    # Response models
    CreatePromptResponse,
    PromptRecordResponse,
    # Error models
    ErrorCodes,
    ErrorDetail,
    ErrorResponse,
    # Provider models
    ProviderInfo,
    ProviderModelsResponse,
    ProvidersResponse,
    # Metrics models
    BreakdownMetrics,
    MetricsResponse,
    # Health models
    ComponentHealth,
    HealthResponse,
    # Conversion utilities
    create_response_from_result,
    record_response_from_record,
)

__all__ = [
    # Request models
    "CreatePromptRequest",
    # Response models
    "CreatePromptResponse",
    "PromptRecordResponse",
    # Error models
    "ErrorCodes",
    "ErrorDetail",
    "ErrorResponse",
    # Provider models
    "ProviderInfo",
    "ProviderModelsResponse",
    "ProvidersResponse",
    # Metrics models
    "BreakdownMetrics",
    "MetricsResponse",
    # Health models
    "ComponentHealth",
    "HealthResponse",
    # Conversion utilities
    "create_response_from_result",
    "record_response_from_record",
]
