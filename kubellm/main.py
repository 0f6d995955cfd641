"""
KubeLLM: FastAPI Application Entry Point

This module initializes the FastAPI application and defines the endpoints:
- /prompts: Submit a prompt (POST) or list stored exchanges (GET)
- /providers: Configured providers and their models
- /health: Health check endpoint
- /config: Non-sensitive configuration values
- /metrics: Dispatch statistics endpoint

The application uses a lifespan context manager to:
1. Load and validate configuration at startup
2. Configure logging based on settings
3. Build the registry, prompt store and orchestrator
4. Create the database schema if needed
"""

from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from kubellm import __version__
from kubellm.config import configure_logging, get_settings
from kubellm.dispatcher import DispatchRequest
from kubellm.errors import (
    AuthError,
    DispatchError,
    DispatchErrorKind,
    ProviderError,
    RateLimitError,
    UnknownProviderError,
)
from kubellm.metrics import MetricsReporter
from kubellm.providers import GenerationParams
from kubellm.schemas import (
    ComponentHealth,
    CreatePromptRequest,
    CreatePromptResponse,
    ErrorCodes,
    ErrorResponse,
    HealthResponse,
    MetricsResponse,
    PromptRecordResponse,
    ProviderInfo,
    ProviderModelsResponse,
    ProvidersResponse,
    create_response_from_result,
    record_response_from_record,
)
from kubellm.services import Services, build_services

logger = logging.getLogger(__name__)

_KIND_STATUS = {
    DispatchErrorKind.INVALID_REQUEST: (400, ErrorCodes.INVALID_REQUEST),
    DispatchErrorKind.UNKNOWN_PROVIDER: (400, ErrorCodes.UNKNOWN_PROVIDER),
    DispatchErrorKind.UNKNOWN_MODEL: (400, ErrorCodes.UNKNOWN_MODEL),
    DispatchErrorKind.AUTH: (502, ErrorCodes.PROVIDER_AUTH_ERROR),
    DispatchErrorKind.EXHAUSTED_RETRIES: (502, ErrorCodes.PROVIDER_ERROR),
    DispatchErrorKind.TIMEOUT: (504, ErrorCodes.TIMEOUT),
    DispatchErrorKind.PERSISTENCE: (500, ErrorCodes.PERSISTENCE_ERROR),
}

_KIND_FIELD = {
    DispatchErrorKind.UNKNOWN_PROVIDER: "provider",
    DispatchErrorKind.UNKNOWN_MODEL: "model",
}


def http_status_for(error: DispatchError) -> tuple[int, str]:
    """
    Map a DispatchError to an HTTP status and error code.

    Retry exhaustion caused by vendor throttling surfaces as 429 so
    clients can back off; every other exhaustion is a 502.
    """
    if error.kind is DispatchErrorKind.EXHAUSTED_RETRIES and error.rate_limited:
        return 429, ErrorCodes.RATE_LIMITED
    return _KIND_STATUS[error.kind]


def _error_response(status_code: int, code: str, message: str, field: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": code, "message": message, "field": field}},
    )


def create_app(services: Services | None = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        services: Pre-built services (tests inject stubs). When None, the
                  lifespan builds them from get_settings() and closes them
                  on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan handler for startup/shutdown events.

        On startup:
        - Loads configuration from environment
        - Configures logging
        - Builds services and initializes the prompt store

        On shutdown:
        - Closes provider clients and storage connections it opened
        """
        owned = services is None
        current = services or build_services(get_settings())
        configure_logging(current.settings)

        logger.info("=" * 60)
        logger.info("KubeLLM starting up...")
        logger.info("=" * 60)
        logger.info(f"Providers: {', '.join(sorted(current.registry.list()))}")
        logger.info(f"Database: {current.settings.database_url}")
        policy = current.orchestrator.policy
        logger.info(
            f"Retry policy: {policy.max_attempts} attempts, "
            f"{policy.base_delay}s base delay, {policy.max_delay}s cap"
        )
        logger.info(f"Debug mode: {'enabled' if current.settings.debug else 'disabled'}")

        await current.store.initialize()

        app.state.services = current
        app.state.started_at = time.time()

        logger.info("KubeLLM ready to accept requests")

        yield  # Application runs here

        logger.info("KubeLLM shutting down...")
        if owned:
            await current.aclose()

    app = FastAPI(
        title="KubeLLM",
        description="Prompt dispatch to multiple AI text-generation providers",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Restrict in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def get_services(request: Request) -> Services:
        return request.app.state.services

    @app.get("/")
    async def root():
        """
        Root endpoint with API information.
        """
        return {
            "name": "KubeLLM",
            "description": "Prompt dispatch to multiple AI providers",
            "version": __version__,
            "docs": "/docs",
            "health": "/health",
            "prompts": "/prompts",
            "providers": "/providers",
        }

    @app.get(
        "/health",
        response_model=HealthResponse,
        summary="Health check",
        description="Check system health and component status.",
    )
    async def health_check(request: Request):
        """
        Health check endpoint for monitoring and orchestration.

        Checks:
        - Prompt store reachability
        - Registry contents
        - System uptime
        """
        current = get_services(request)
        components = []
        overall_status = "healthy"

        started = time.perf_counter()
        reachable = await current.store.ping()
        latency_ms = (time.perf_counter() - started) * 1000
        if reachable:
            components.append(
                ComponentHealth(name="storage", status="healthy", latency_ms=latency_ms)
            )
        else:
            components.append(
                ComponentHealth(
                    name="storage",
                    status="unhealthy",
                    latency_ms=latency_ms,
                    message="Prompt store is unreachable",
                )
            )
            overall_status = "unhealthy"

        provider_count = len(current.registry)
        components.append(
            ComponentHealth(
                name="registry",
                status="healthy" if provider_count else "unhealthy",
                message=f"{provider_count} providers registered",
            )
        )
        if not provider_count:
            overall_status = "unhealthy"

        return HealthResponse(
            status=overall_status,
            service="kubellm",
            version=__version__,
            components=components,
            uptime_seconds=time.time() - request.app.state.started_at,
        )

    @app.get("/config")
    async def show_config(request: Request):
        """
        Returns non-sensitive configuration values.

        API keys are SecretStr and are NOT exposed in this endpoint.
        """
        settings = get_services(request).settings
        return {
            "providers": get_services(request).registry.describe(),
            "dispatch": {
                "retry_max_attempts": settings.retry_max_attempts,
                "retry_base_delay": settings.retry_base_delay,
                "retry_max_delay": settings.retry_max_delay,
                "dispatch_timeout": settings.dispatch_timeout,
                "default_max_tokens": settings.default_max_tokens,
                "default_temperature": settings.default_temperature,
            },
            "storage": {
                "database_url": settings.database_url,
                "max_connections": settings.db_max_connections,
                "acquire_timeout": settings.db_acquire_timeout,
            },
            "server": {
                "host": settings.host,
                "port": settings.port,
                "debug": settings.debug,
            },
            "logging": {
                "level": settings.log_level,
            },
            "api_keys_configured": {
                kind: kind in settings.enabled_providers()
                for kind in ("anthropic", "openai", "groq")
            },
        }

    @app.get("/providers", response_model=ProvidersResponse)
    async def list_providers(request: Request):
        """List configured providers with their models and defaults."""
        registry = get_services(request).registry
        providers = [ProviderInfo(**entry) for entry in registry.describe()]
        return ProvidersResponse(providers=providers, total_providers=len(providers))

    @app.get(
        "/providers/{provider}/models",
        response_model=ProviderModelsResponse,
        responses={400: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
    )
    async def list_provider_models(
        request: Request,
        provider: str,
        live: bool = Query(False, description="Ask the vendor API instead of configuration"),
    ):
        """
        Models available for one provider.

        By default returns the configured model list. With live=true the
        vendor's model listing endpoint is queried.
        """
        registry = get_services(request).registry
        try:
            config = registry.config(provider)
            adapter = registry.resolve(provider)
        except UnknownProviderError as e:
            return _error_response(400, ErrorCodes.UNKNOWN_PROVIDER, str(e), "provider")

        if not live:
            return ProviderModelsResponse(
                provider=config.provider_id,
                models=list(config.models),
                default_model=config.default_model,
            )

        try:
            models = await adapter.list_models()
        except ProviderError as e:
            logger.warning(f"Live model listing failed for {config.provider_id}: {e}")
            if isinstance(e, AuthError):
                return _error_response(502, ErrorCodes.PROVIDER_AUTH_ERROR, str(e))
            if isinstance(e, RateLimitError):
                return _error_response(429, ErrorCodes.RATE_LIMITED, str(e))
            return _error_response(502, ErrorCodes.PROVIDER_ERROR, str(e))

        return ProviderModelsResponse(
            provider=config.provider_id,
            models=models,
            default_model=config.default_model,
            source="live",
        )

    @app.post(
        "/prompts",
        response_model=CreatePromptResponse,
        responses={
            400: {"model": ErrorResponse},
            429: {"model": ErrorResponse},
            500: {"model": ErrorResponse},
            502: {"model": ErrorResponse},
            504: {"model": ErrorResponse},
        },
        summary="Submit a prompt",
        description="Dispatch a prompt to a provider and store the exchange.",
    )
    async def create_prompt(request: Request, body: CreatePromptRequest):
        """
        Main dispatch endpoint.

        Flow:
        1. Validate the request body
        2. Dispatch through the orchestrator (retries happen there)
        3. Return the stored exchange
        """
        orchestrator = get_services(request).orchestrator
        result = await orchestrator.dispatch(
            DispatchRequest(
                provider=body.provider,
                prompt=body.prompt,
                model=body.model,
                params=GenerationParams(
                    temperature=body.temperature, max_tokens=body.max_tokens
                ),
            )
        )
        return create_response_from_result(result)

    @app.get("/prompts", response_model=list[PromptRecordResponse])
    async def list_prompts(
        request: Request,
        limit: int | None = Query(None, ge=1, description="Return only the newest N records"),
    ):
        """Stored exchanges ordered by creation time, oldest first."""
        records = await get_services(request).store.list_prompts(limit)
        return [record_response_from_record(r) for r in records]

    @app.get(
        "/metrics",
        response_model=MetricsResponse,
        summary="Get metrics",
        description="Retrieve aggregated dispatch metrics.",
    )
    async def get_metrics(request: Request):
        """
        Return aggregated dispatch metrics.

        Includes:
        - Dispatch counts by outcome, provider and model
        - Success rate and average attempts
        - Average and p95 latency
        """
        return MetricsReporter(get_services(request).metrics).generate_report()

    @app.exception_handler(DispatchError)
    async def dispatch_exception_handler(request: Request, exc: DispatchError) -> JSONResponse:
        """Map dispatch failure kinds to HTTP responses."""
        status_code, code = http_status_for(exc)
        if status_code >= 500:
            logger.error(f"Dispatch failed ({exc.kind.value}): {exc}")
        return _error_response(status_code, code, str(exc), _KIND_FIELD.get(exc.kind))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """
        Handle Pydantic validation errors.

        Returns a consistent error response format with the first validation
        error's details for client-side error handling.
        """
        errors = exc.errors()
        first_error = errors[0] if errors else {}

        return _error_response(
            400,
            ErrorCodes.VALIDATION_ERROR,
            first_error.get("msg", "Validation failed"),
            ".".join(str(loc) for loc in first_error.get("loc", [])),
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        """
        Handle HTTP exceptions with consistent format.
        """
        detail = exc.detail
        if isinstance(detail, dict):
            return JSONResponse(status_code=exc.status_code, content={"error": detail})
        return _error_response(exc.status_code, "HTTP_ERROR", str(detail))

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Handle unexpected exceptions.

        Logs the full exception for debugging and returns a generic error
        response to avoid leaking implementation details.
        """
        logger.exception("Unhandled exception")
        return _error_response(500, ErrorCodes.INTERNAL_ERROR, "An unexpected error occurred")

    return app


app = create_app()
