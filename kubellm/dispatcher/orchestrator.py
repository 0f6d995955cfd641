"""
Dispatch Orchestrator - validate, route, retry, persist.

This module is the single place that decides whether a provider failure
is retried or surfaced. Adapters classify vendor errors; front ends only
map the resulting DispatchError kinds.

Key components:
- DispatchRequest: What a front end asks for
- DispatchResult: What a successful dispatch returns
- DispatchOrchestrator.dispatch(): Full request lifecycle
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime

from kubellm.dispatcher.retry import RetryPolicy
from kubellm.errors import (
    AuthError,
    DispatchError,
    DispatchErrorKind,
    InvalidRequestError,
    ProviderError,
    RateLimitError,
    StorageError,
    TransientError,
    UnknownModelError,
    UnknownProviderError,
)
from kubellm.metrics.store import DispatchMetric, MetricsStore
from kubellm.providers.base import AdapterResponse, GenerationParams, ProviderAdapter, TokenUsage
from kubellm.registry import ProviderRegistry
from kubellm.storage.base import PromptRecord, PromptStore, utc_now

logger = logging.getLogger(__name__)

MIN_TEMPERATURE = 0.0
MAX_TEMPERATURE = 2.0


@dataclass(frozen=True)
class DispatchRequest:
    """
    A prompt bound for one provider.

    Attributes:
        provider: Provider identifier, matched case-insensitively
        prompt: Prompt text; must be non-empty after trimming
        model: Model identifier, or None for the provider default
        params: Optional generation parameters
    """

    provider: str
    prompt: str
    model: str | None = None
    params: GenerationParams = field(default_factory=GenerationParams)


@dataclass(frozen=True)
class DispatchResult:
    """
    Outcome of a successful dispatch.

    Attributes:
        response: Generated text
        provider: Provider identifier as registered
        model: Model the request ran against
        latency_ms: Wall time from dispatch start to persisted record
        attempts: Provider calls made, including the successful one
        record_id: Identifier of the stored PromptRecord (None if unstored)
        created_at: Timestamp of the PromptRecord
        usage: Vendor-reported token counts
    """

    response: str
    provider: str
    model: str
    latency_ms: float
    attempts: int
    record_id: int | None
    created_at: datetime
    usage: TokenUsage = field(default_factory=TokenUsage)


def validate_request(request: DispatchRequest) -> None:
    """
    Check a request before any provider is contacted.

    Raises:
        DispatchError(INVALID_REQUEST): Empty prompt or out-of-range params.
    """
    if not isinstance(request.prompt, str) or not request.prompt.strip():
        raise DispatchError(DispatchErrorKind.INVALID_REQUEST, message="Prompt must not be empty")
    if not isinstance(request.provider, str) or not request.provider.strip():
        raise DispatchError(
            DispatchErrorKind.INVALID_REQUEST, message="Provider must not be empty"
        )

    params = request.params
    if params.temperature is not None and not (
        MIN_TEMPERATURE <= params.temperature <= MAX_TEMPERATURE
    ):
        raise DispatchError(
            DispatchErrorKind.INVALID_REQUEST,
            message=f"temperature must be between {MIN_TEMPERATURE} and {MAX_TEMPERATURE}",
        )
    if params.max_tokens is not None and params.max_tokens < 1:
        raise DispatchError(
            DispatchErrorKind.INVALID_REQUEST, message="max_tokens must be at least 1"
        )


class DispatchOrchestrator:
    """
    Runs a DispatchRequest end to end.

    The orchestrator holds no per-request state, so one instance serves
    any number of concurrent dispatches.

    Example:
        orchestrator = DispatchOrchestrator(registry, store, RetryPolicy())
        result = await orchestrator.dispatch(
            DispatchRequest(provider="anthropic", prompt="Hello")
        )
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        store: PromptStore,
        policy: RetryPolicy | None = None,
        metrics: MetricsStore | None = None,
        default_timeout: float = 120.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """
        Args:
            registry: Provider lookup
            store: Where successful exchanges are persisted
            policy: Retry/backoff policy; defaults to RetryPolicy()
            metrics: Optional metrics sink, one DispatchMetric per dispatch
            default_timeout: Overall deadline when dispatch() is given none
            clock: Monotonic clock in seconds (injectable for tests)
            sleep: Backoff sleep (injectable for tests)
        """
        self.registry = registry
        self.store = store
        self.policy = policy or RetryPolicy()
        self.metrics = metrics
        self.default_timeout = default_timeout
        self._clock = clock
        self._sleep = sleep

    async def dispatch(
        self,
        request: DispatchRequest,
        timeout: float | None = None,
    ) -> DispatchResult:
        """
        Submit a prompt to its provider and persist the exchange.

        Args:
            request: The prompt and its routing information
            timeout: Overall deadline in seconds covering every attempt
                     and backoff; defaults to the orchestrator's default

        Returns:
            DispatchResult for the stored record.

        Raises:
            DispatchError: With kind describing the failure class.
        """
        started = self._clock()
        call_started_at = utc_now()
        deadline = started + (timeout if timeout is not None else self.default_timeout)
        model_name = request.model or ""
        attempts = 0

        try:
            validate_request(request)
            try:
                adapter = self.registry.resolve(request.provider)
                config = self.registry.config(request.provider)
            except UnknownProviderError as e:
                raise DispatchError(DispatchErrorKind.UNKNOWN_PROVIDER, cause=e) from e
            try:
                model_name = self.registry.resolve_model(request.provider, request.model)
            except UnknownModelError as e:
                raise DispatchError(DispatchErrorKind.UNKNOWN_MODEL, cause=e) from e

            response, attempts = await self._submit_with_retry(
                adapter, request, model_name, config.timeout_seconds, deadline
            )
            result = await self._persist(
                request, config.provider_id, model_name, response, attempts, started,
                call_started_at,
            )
        except DispatchError as e:
            self._record(request.provider, model_name, e.kind.value, e.attempts, started)
            raise

        self._record(
            result.provider, result.model, "success", attempts, started, result.usage
        )
        return result

    async def _submit_with_retry(
        self,
        adapter: ProviderAdapter,
        request: DispatchRequest,
        model: str,
        provider_timeout: float,
        deadline: float,
    ) -> tuple[AdapterResponse, int]:
        provider = adapter.provider_id
        attempt = 0
        last_error: ProviderError | None = None

        while True:
            remaining = deadline - self._clock()
            if remaining <= 0:
                raise self._timed_out(provider, attempt, last_error)

            attempt += 1
            attempt_timeout = min(provider_timeout, remaining)
            deadline_bound = remaining <= provider_timeout
            try:
                response = await asyncio.wait_for(
                    adapter.submit(request.prompt, model, request.params, attempt_timeout),
                    timeout=attempt_timeout,
                )
                return response, attempt
            except asyncio.TimeoutError:
                last_error = TransientError(
                    f"Attempt exceeded {attempt_timeout:.2f}s deadline", provider=provider
                )
                # The loop's timer may fire a tick before our clock reaches the deadline
                if deadline_bound:
                    raise self._timed_out(provider, attempt, last_error)
            except AuthError as e:
                logger.error(
                    f"Authentication rejected by {provider} "
                    f"(status={e.status_code}); check the configured API key"
                )
                raise DispatchError(DispatchErrorKind.AUTH, cause=e, attempts=attempt) from e
            except UnknownModelError as e:
                raise DispatchError(
                    DispatchErrorKind.UNKNOWN_MODEL, cause=e, attempts=attempt
                ) from e
            except InvalidRequestError as e:
                raise DispatchError(
                    DispatchErrorKind.INVALID_REQUEST, cause=e, attempts=attempt
                ) from e
            except ProviderError as e:
                last_error = e
            except Exception as e:
                logger.warning(f"Unclassified error from {provider}: {e!r}")
                last_error = TransientError(str(e) or type(e).__name__, provider=provider)
                last_error.__cause__ = e

            if self._clock() >= deadline:
                raise self._timed_out(provider, attempt, last_error)
            if not self.policy.should_retry(attempt, last_error):
                logger.error(
                    f"Dispatch to {provider}/{model} failed after {attempt} attempts: "
                    f"{last_error}"
                )
                raise DispatchError(
                    DispatchErrorKind.EXHAUSTED_RETRIES,
                    cause=last_error,
                    message=f"Gave up after {attempt} attempts: {last_error}",
                    attempts=attempt,
                )

            delay = self.policy.delay_for(attempt, last_error)
            if self._clock() + delay >= deadline:
                raise self._timed_out(provider, attempt, last_error)

            kind = "rate limited" if isinstance(last_error, RateLimitError) else "failed"
            logger.warning(
                f"Dispatch to {provider} {kind} "
                f"(attempt {attempt}/{self.policy.max_attempts}), "
                f"retrying in {delay:.2f}s: {last_error}"
            )
            await self._sleep(delay)

    def _timed_out(
        self, provider: str, attempts: int, last_error: ProviderError | None
    ) -> DispatchError:
        logger.error(f"Dispatch to {provider} hit its deadline after {attempts} attempts")
        return DispatchError(
            DispatchErrorKind.TIMEOUT,
            cause=last_error,
            message=f"Deadline exceeded after {attempts} attempts",
            attempts=attempts,
        )

    async def _persist(
        self,
        request: DispatchRequest,
        provider: str,
        model: str,
        response: AdapterResponse,
        attempts: int,
        started: float,
        call_started_at: datetime,
    ) -> DispatchResult:
        created_at = max(utc_now(), call_started_at)
        record = PromptRecord(
            prompt=request.prompt,
            response=response.text,
            model=model,
            provider=provider,
            created_at=created_at,
        )
        try:
            record_id = await self.store.save(record)
        except StorageError as e:
            logger.error(f"Generated response from {provider} could not be stored: {e}")
            unsaved = DispatchResult(
                response=response.text,
                provider=provider,
                model=model,
                latency_ms=self._elapsed_ms(started),
                attempts=attempts,
                record_id=None,
                created_at=created_at,
                usage=response.usage,
            )
            raise DispatchError(
                DispatchErrorKind.PERSISTENCE, cause=e, attempts=attempts, result=unsaved
            ) from e

        latency_ms = self._elapsed_ms(started)
        logger.info(
            f"Dispatched to {provider}/{model} in {latency_ms:.0f}ms "
            f"({attempts} attempt{'s' if attempts != 1 else ''}), record {record_id}"
        )
        return DispatchResult(
            response=response.text,
            provider=provider,
            model=model,
            latency_ms=latency_ms,
            attempts=attempts,
            record_id=record_id,
            created_at=created_at,
            usage=response.usage,
        )

    def _elapsed_ms(self, started: float) -> float:
        return (self._clock() - started) * 1000

    def _record(
        self,
        provider: str,
        model: str,
        outcome: str,
        attempts: int,
        started: float,
        usage: TokenUsage | None = None,
    ) -> None:
        if self.metrics is None:
            return
        usage = usage or TokenUsage()
        self.metrics.record(
            DispatchMetric(
                timestamp=time.time(),
                provider=provider.strip().lower() if isinstance(provider, str) else "",
                model=model if isinstance(model, str) else "",
                outcome=outcome,
                attempts=attempts,
                latency_ms=self._elapsed_ms(started),
                input_tokens=usage.input_tokens,
                output_tokens=usage.output_tokens,
            )
        )
