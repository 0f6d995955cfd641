"""
Dispatch Orchestrator Tests

Tests for the full dispatch lifecycle against stub adapters on a fake clock.
Validates routing, retry/backoff, deadlines, persistence and metrics.

Test Categories:
1. TestSuccessfulDispatch - Happy path and persisted records
2. TestValidation - Requests rejected before any provider call
3. TestRetry - Transient failures, exhaustion and backoff delays
4. TestPermanentErrors - Auth, invalid request and unknown model
5. TestDeadline - Overall and per-attempt deadlines
6. TestPersistenceFailure - Storage failures after generation
7. TestConcurrency - Many dispatches in parallel
8. TestMetricsRecording - One metric per outcome
"""

import asyncio

import pytest

from kubellm.dispatcher import DispatchOrchestrator, DispatchRequest, RetryPolicy
from kubellm.errors import (
    AuthError,
    DispatchError,
    DispatchErrorKind,
    InvalidRequestError,
    RateLimitError,
    TransientError,
    UnknownModelError,
    UnknownProviderError,
)
from kubellm.providers import AdapterResponse, GenerationParams
from kubellm.registry import build_registry
from kubellm.storage import utc_now


class TestSuccessfulDispatch:
    """Happy-path dispatches."""

    @pytest.mark.asyncio
    async def test_hello_hi_there(self, orchestrator, memory_store, fake_clock):
        """The canonical scenario: stub returns 'Hi there' for 'Hello'."""
        call_start = utc_now()
        result = await orchestrator.dispatch(
            DispatchRequest(provider="anthropic", model="claude-x", prompt="Hello")
        )

        assert result.response == "Hi there"
        assert result.provider == "anthropic"
        assert result.model == "claude-x"
        assert result.attempts == 1

        records = await memory_store.list_prompts()
        assert len(records) == 1
        record = records[0]
        assert record.prompt == "Hello"
        assert record.response == "Hi there"
        assert record.provider == "anthropic"
        assert record.model == "claude-x"
        assert record.id == result.record_id
        assert record.created_at >= call_start

    @pytest.mark.asyncio
    async def test_default_model_used_when_omitted(self, orchestrator, stub_adapters):
        result = await orchestrator.dispatch(DispatchRequest(provider="anthropic", prompt="Hi"))

        assert result.model == "claude-x"
        assert stub_adapters["anthropic"].calls[0][1] == "claude-x"

    @pytest.mark.asyncio
    async def test_provider_matched_case_insensitively(self, orchestrator, memory_store):
        result = await orchestrator.dispatch(
            DispatchRequest(provider="Anthropic", model="claude-y", prompt="Hi")
        )

        assert result.provider == "anthropic"
        records = await memory_store.list_prompts()
        assert records[0].provider == "anthropic"

    @pytest.mark.asyncio
    async def test_routes_to_requested_provider(self, orchestrator, stub_adapters):
        stub_adapters["openai"].script("from openai")

        result = await orchestrator.dispatch(
            DispatchRequest(provider="openai", model="gpt-4o", prompt="Hi")
        )

        assert result.response == "from openai"
        assert len(stub_adapters["openai"].calls) == 1
        assert stub_adapters["anthropic"].calls == []

    @pytest.mark.asyncio
    async def test_params_forwarded(self, orchestrator, stub_adapters):
        params = GenerationParams(temperature=0.2, max_tokens=64)

        await orchestrator.dispatch(
            DispatchRequest(provider="anthropic", prompt="Hi", params=params)
        )

        assert stub_adapters["anthropic"].calls[0][2] == params

    @pytest.mark.asyncio
    async def test_attempt_timeout_is_provider_timeout(self, orchestrator, stub_adapters):
        """Each attempt gets min(provider timeout, remaining deadline)."""
        await orchestrator.dispatch(DispatchRequest(provider="anthropic", prompt="Hi"))

        assert stub_adapters["anthropic"].calls[0][3] == 30.0

    @pytest.mark.asyncio
    async def test_usage_reported(self, orchestrator):
        result = await orchestrator.dispatch(DispatchRequest(provider="anthropic", prompt="Hi"))

        assert result.usage.input_tokens == 3
        assert result.usage.output_tokens == 2


class TestValidation:
    """Requests rejected before any provider is contacted."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("prompt", ["", "   ", "\n\t"])
    async def test_empty_prompt(self, orchestrator, stub_adapters, prompt):
        with pytest.raises(DispatchError) as exc_info:
            await orchestrator.dispatch(DispatchRequest(provider="anthropic", prompt=prompt))

        assert exc_info.value.kind is DispatchErrorKind.INVALID_REQUEST
        assert exc_info.value.is_client_error
        assert stub_adapters["anthropic"].calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "params",
        [
            GenerationParams(temperature=-0.1),
            GenerationParams(temperature=2.5),
            GenerationParams(max_tokens=0),
        ],
    )
    async def test_out_of_range_params(self, orchestrator, params):
        with pytest.raises(DispatchError) as exc_info:
            await orchestrator.dispatch(
                DispatchRequest(provider="anthropic", prompt="Hi", params=params)
            )

        assert exc_info.value.kind is DispatchErrorKind.INVALID_REQUEST

    @pytest.mark.asyncio
    async def test_unknown_provider_persists_nothing(self, orchestrator, memory_store):
        with pytest.raises(DispatchError) as exc_info:
            await orchestrator.dispatch(DispatchRequest(provider="cohere", prompt="Hi"))

        assert exc_info.value.kind is DispatchErrorKind.UNKNOWN_PROVIDER
        assert isinstance(exc_info.value.cause, UnknownProviderError)
        assert await memory_store.list_prompts() == []

    @pytest.mark.asyncio
    async def test_unknown_model(self, orchestrator, stub_adapters, memory_store):
        with pytest.raises(DispatchError) as exc_info:
            await orchestrator.dispatch(
                DispatchRequest(provider="anthropic", model="claude-zzz", prompt="Hi")
            )

        assert exc_info.value.kind is DispatchErrorKind.UNKNOWN_MODEL
        assert stub_adapters["anthropic"].calls == []
        assert await memory_store.list_prompts() == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("provider", [None, 42])
    async def test_non_string_provider(self, orchestrator, metrics_store, provider):
        """A malformed provider is rejected and still leaves a metric behind."""
        with pytest.raises(DispatchError) as exc_info:
            await orchestrator.dispatch(DispatchRequest(provider=provider, prompt="Hi"))

        assert exc_info.value.kind is DispatchErrorKind.INVALID_REQUEST
        agg = metrics_store.get_aggregated()
        assert agg.outcomes == {"invalid_request": 1}
        assert list(agg.by_provider) == [""]


class TestRetry:
    """Retry and backoff behavior."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("failures", [1, 2])
    async def test_transient_then_success(
        self, orchestrator, stub_adapters, memory_store, failures
    ):
        """K transient failures followed by success report K+1 attempts."""
        stub_adapters["anthropic"].script(
            *[TransientError("503") for _ in range(failures)], "recovered"
        )

        result = await orchestrator.dispatch(DispatchRequest(provider="anthropic", prompt="Hi"))

        assert result.attempts == failures + 1
        assert result.response == "recovered"
        assert len(await memory_store.list_prompts()) == 1

    @pytest.mark.asyncio
    async def test_all_attempts_fail(self, orchestrator, stub_adapters, memory_store):
        stub_adapters["anthropic"].script(*[TransientError("503") for _ in range(3)])

        with pytest.raises(DispatchError) as exc_info:
            await orchestrator.dispatch(DispatchRequest(provider="anthropic", prompt="Hi"))

        error = exc_info.value
        assert error.kind is DispatchErrorKind.EXHAUSTED_RETRIES
        assert error.attempts == 3
        assert isinstance(error.cause, TransientError)
        assert not error.rate_limited
        assert len(stub_adapters["anthropic"].calls) == 3
        assert await memory_store.list_prompts() == []

    @pytest.mark.asyncio
    async def test_backoff_delays(self, orchestrator, stub_adapters, fake_clock):
        """Delays between attempts follow the policy: 0.5s then 1s."""
        stub_adapters["anthropic"].script(TransientError("a"), TransientError("b"), "ok")

        await orchestrator.dispatch(DispatchRequest(provider="anthropic", prompt="Hi"))

        assert fake_clock.sleeps == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_rate_limit_honors_retry_after(self, orchestrator, stub_adapters, fake_clock):
        stub_adapters["anthropic"].script(RateLimitError("429", retry_after=4.0), "ok")

        result = await orchestrator.dispatch(DispatchRequest(provider="anthropic", prompt="Hi"))

        assert result.attempts == 2
        assert fake_clock.sleeps == [4.0]

    @pytest.mark.asyncio
    async def test_rate_limit_exhaustion_flagged(self, orchestrator, stub_adapters):
        stub_adapters["anthropic"].script(*[RateLimitError("429") for _ in range(3)])

        with pytest.raises(DispatchError) as exc_info:
            await orchestrator.dispatch(DispatchRequest(provider="anthropic", prompt="Hi"))

        assert exc_info.value.kind is DispatchErrorKind.EXHAUSTED_RETRIES
        assert exc_info.value.rate_limited

    @pytest.mark.asyncio
    async def test_unclassified_error_treated_as_transient(self, orchestrator, stub_adapters):
        stub_adapters["anthropic"].script(RuntimeError("socket hiccup"), "ok")

        result = await orchestrator.dispatch(DispatchRequest(provider="anthropic", prompt="Hi"))

        assert result.attempts == 2

    @pytest.mark.asyncio
    async def test_larger_policy(self, make_orchestrator, stub_adapters, fake_clock):
        orchestrator = make_orchestrator(
            policy=RetryPolicy(max_attempts=5, base_delay=1.0, max_delay=3.0)
        )
        stub_adapters["anthropic"].script(*[TransientError("x") for _ in range(4)], "ok")

        result = await orchestrator.dispatch(DispatchRequest(provider="anthropic", prompt="Hi"))

        assert result.attempts == 5
        assert fake_clock.sleeps == [1.0, 2.0, 3.0, 3.0]


class TestPermanentErrors:
    """Permanent failures surface on first occurrence."""

    @pytest.mark.asyncio
    async def test_auth_not_retried(self, orchestrator, stub_adapters, fake_clock, caplog):
        stub_adapters["anthropic"].script(AuthError("bad key", status_code=401))

        with caplog.at_level("ERROR"):
            with pytest.raises(DispatchError) as exc_info:
                await orchestrator.dispatch(DispatchRequest(provider="anthropic", prompt="Hi"))

        assert exc_info.value.kind is DispatchErrorKind.AUTH
        assert exc_info.value.attempts == 1
        assert len(stub_adapters["anthropic"].calls) == 1
        assert fake_clock.sleeps == []
        assert "Authentication rejected by anthropic" in caplog.text

    @pytest.mark.asyncio
    async def test_invalid_request_not_retried(self, orchestrator, stub_adapters):
        stub_adapters["anthropic"].script(InvalidRequestError("prompt too long"))

        with pytest.raises(DispatchError) as exc_info:
            await orchestrator.dispatch(DispatchRequest(provider="anthropic", prompt="Hi"))

        assert exc_info.value.kind is DispatchErrorKind.INVALID_REQUEST
        assert len(stub_adapters["anthropic"].calls) == 1

    @pytest.mark.asyncio
    async def test_vendor_unknown_model(self, orchestrator, stub_adapters):
        stub_adapters["anthropic"].script(UnknownModelError("model not found"))

        with pytest.raises(DispatchError) as exc_info:
            await orchestrator.dispatch(DispatchRequest(provider="anthropic", prompt="Hi"))

        assert exc_info.value.kind is DispatchErrorKind.UNKNOWN_MODEL

    @pytest.mark.asyncio
    async def test_permanent_after_transient(self, orchestrator, stub_adapters):
        stub_adapters["anthropic"].script(TransientError("503"), AuthError("revoked"))

        with pytest.raises(DispatchError) as exc_info:
            await orchestrator.dispatch(DispatchRequest(provider="anthropic", prompt="Hi"))

        assert exc_info.value.kind is DispatchErrorKind.AUTH
        assert exc_info.value.attempts == 2


class TestDeadline:
    """Overall and per-attempt deadlines."""

    @pytest.mark.asyncio
    async def test_backoff_past_deadline_times_out(self, orchestrator, stub_adapters, fake_clock):
        """If the next backoff would overrun the deadline, stop with TIMEOUT."""
        stub_adapters["anthropic"].script(RateLimitError("429", retry_after=5.0))

        with pytest.raises(DispatchError) as exc_info:
            await orchestrator.dispatch(
                DispatchRequest(provider="anthropic", prompt="Hi"), timeout=2.0
            )

        error = exc_info.value
        assert error.kind is DispatchErrorKind.TIMEOUT
        assert isinstance(error.cause, RateLimitError)
        assert error.attempts == 1
        assert fake_clock.sleeps == []

    @pytest.mark.asyncio
    async def test_attempt_timeout_bounded_by_remaining(
        self, make_orchestrator, stub_adapters
    ):
        orchestrator = make_orchestrator(default_timeout=5.0)

        await orchestrator.dispatch(DispatchRequest(provider="anthropic", prompt="Hi"))

        assert stub_adapters["anthropic"].calls[0][3] == 5.0

    @pytest.mark.asyncio
    async def test_slow_attempt_becomes_transient(
        self, provider_configs, stub_adapters, stub_factory, memory_store, fake_clock
    ):
        """An attempt exceeding the provider timeout counts as a transient failure."""
        quick = provider_configs[0].model_copy(update={"timeout_seconds": 0.05})
        orchestrator = DispatchOrchestrator(
            build_registry((quick,), stub_factory),
            memory_store,
            policy=RetryPolicy(base_delay=0.0, max_delay=0.0),
            clock=fake_clock,
            sleep=fake_clock.sleep,
        )
        calls = []

        async def slow_then_fast(prompt, model, params, timeout):
            calls.append(timeout)
            if len(calls) == 1:
                await asyncio.sleep(10)
            return AdapterResponse(text="fast", model=model)

        stub_adapters["anthropic"].submit = slow_then_fast

        result = await orchestrator.dispatch(DispatchRequest(provider="anthropic", prompt="Hi"))

        assert result.response == "fast"
        assert result.attempts == 2
        assert calls == [0.05, 0.05]

    @pytest.mark.asyncio
    async def test_deadline_during_last_attempt_is_timeout(self, registry, memory_store):
        """Running out of overall time on the final attempt is TIMEOUT, not exhaustion."""
        orchestrator = DispatchOrchestrator(
            registry,
            memory_store,
            policy=RetryPolicy(max_attempts=2, base_delay=0.0, max_delay=0.0),
        )
        calls = []

        async def fail_then_hang(prompt, model, params, timeout):
            calls.append(timeout)
            if len(calls) == 1:
                raise TransientError("503")
            await asyncio.sleep(10)

        registry.resolve("anthropic").submit = fail_then_hang

        with pytest.raises(DispatchError) as exc_info:
            await orchestrator.dispatch(
                DispatchRequest(provider="anthropic", prompt="Hi"), timeout=0.1
            )

        assert exc_info.value.kind is DispatchErrorKind.TIMEOUT
        assert exc_info.value.attempts == 2

    @pytest.mark.asyncio
    async def test_expired_deadline_before_retry(self, orchestrator, stub_adapters, fake_clock):
        async def fail_and_burn_time(prompt, model, params, timeout):
            fake_clock.advance(timeout)
            raise TransientError("slow 503")

        stub_adapters["anthropic"].submit = fail_and_burn_time

        with pytest.raises(DispatchError) as exc_info:
            await orchestrator.dispatch(
                DispatchRequest(provider="anthropic", prompt="Hi"), timeout=3.0
            )

        assert exc_info.value.kind is DispatchErrorKind.TIMEOUT
        assert isinstance(exc_info.value.cause, TransientError)


class TestPersistenceFailure:
    """Storage failures after a successful generation."""

    @pytest.mark.asyncio
    async def test_save_failure_is_persistence_error(self, make_orchestrator, failing_store):
        orchestrator = make_orchestrator(store=failing_store)

        with pytest.raises(DispatchError) as exc_info:
            await orchestrator.dispatch(DispatchRequest(provider="anthropic", prompt="Hello"))

        error = exc_info.value
        assert error.kind is DispatchErrorKind.PERSISTENCE
        assert not error.is_client_error
        assert error.result is not None
        assert error.result.response == "Hi there"
        assert error.result.record_id is None

    @pytest.mark.asyncio
    async def test_persistence_distinct_from_generation_failure(
        self, make_orchestrator, stub_adapters, failing_store
    ):
        orchestrator = make_orchestrator(store=failing_store)
        stub_adapters["anthropic"].script(*[TransientError("503") for _ in range(3)])

        with pytest.raises(DispatchError) as exc_info:
            await orchestrator.dispatch(DispatchRequest(provider="anthropic", prompt="Hello"))

        assert exc_info.value.kind is DispatchErrorKind.EXHAUSTED_RETRIES
        assert exc_info.value.result is None


class TestConcurrency:
    """Concurrent dispatches share the registry and store safely."""

    @pytest.mark.asyncio
    async def test_many_dispatches_unique_ids(self, orchestrator, memory_store):
        requests = [
            DispatchRequest(provider="anthropic" if i % 2 else "openai", prompt=f"prompt {i}")
            for i in range(25)
        ]

        results = await asyncio.gather(*(orchestrator.dispatch(r) for r in requests))

        ids = [r.record_id for r in results]
        assert len(set(ids)) == 25
        records = await memory_store.list_prompts()
        assert len(records) == 25
        assert sorted(r.id for r in records) == sorted(ids)
        assert {r.prompt for r in records} == {f"prompt {i}" for i in range(25)}


class TestMetricsRecording:
    """Every outcome leaves one metric behind."""

    @pytest.mark.asyncio
    async def test_success_and_failures_recorded(
        self, orchestrator, stub_adapters, metrics_store
    ):
        await orchestrator.dispatch(DispatchRequest(provider="anthropic", prompt="Hi"))
        stub_adapters["anthropic"].script(AuthError("bad key"))
        with pytest.raises(DispatchError):
            await orchestrator.dispatch(DispatchRequest(provider="anthropic", prompt="Hi"))
        with pytest.raises(DispatchError):
            await orchestrator.dispatch(DispatchRequest(provider="nope", prompt="Hi"))

        agg = metrics_store.get_aggregated()
        assert agg.total_dispatches == 3
        assert agg.successful_dispatches == 1
        assert agg.outcomes == {"success": 1, "auth": 1, "unknown_provider": 1}
        assert agg.total_input_tokens == 3
