"""
Pytest configuration and shared fixtures.

Provides stub adapters, a fake clock, and wired services for the
KubeLLM test suite.

IMPORTANT: Environment variables must be set BEFORE importing kubellm
modules that use pydantic-settings, so Settings() validates in tests
without a real .env file.
"""

import os

# Set test environment variables before importing kubellm modules
os.environ["ANTHROPIC_API_KEY"] = "test-key-not-real"
os.environ["OPENAI_API_KEY"] = "test-key-not-real"
os.environ["GROQ_API_KEY"] = "test-key-not-real"
os.environ["DATABASE_URL"] = "memory://"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["DEBUG"] = "false"

# Now safe to import everything else
import pytest
from fastapi.testclient import TestClient

from kubellm.config import ProviderConfig, Settings, get_settings
from kubellm.dispatcher import DispatchOrchestrator, RetryPolicy
from kubellm.errors import StorageError
from kubellm.metrics import MetricsStore
from kubellm.providers import AdapterResponse, GenerationParams, TokenUsage
from kubellm.registry import build_registry
from kubellm.services import build_services
from kubellm.storage import InMemoryPromptStore


def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "asyncio: mark test as async")


@pytest.fixture(autouse=True)
def reset_settings_cache():
    """
    Clear the cached Settings between tests.

    Tests that monkeypatch the environment must see a fresh Settings().
    """
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def isolate_environment(monkeypatch):
    """Drop settings a developer shell may export, keeping only the test keys above."""
    for kind in ("ANTHROPIC", "OPENAI", "GROQ"):
        for suffix in ("BASE_URL", "MODELS", "DEFAULT_MODEL", "TIMEOUT"):
            monkeypatch.delenv(f"{kind}_{suffix}", raising=False)
    for name in (
        "RETRY_MAX_ATTEMPTS",
        "RETRY_BASE_DELAY",
        "RETRY_MAX_DELAY",
        "DISPATCH_TIMEOUT",
        "DB_MAX_CONNECTIONS",
        "DB_ACQUIRE_TIMEOUT",
        "DEFAULT_MAX_TOKENS",
        "DEFAULT_TEMPERATURE",
        "HISTORY_FILE_PATH",
        "HOST",
        "PORT",
    ):
        monkeypatch.delenv(name, raising=False)


# =============================================================================
# TEST DOUBLES
# =============================================================================


class StubAdapter:
    """
    Scripted ProviderAdapter.

    Each submit() consumes the next outcome: a string or AdapterResponse is
    returned, an exception instance is raised. Once the script is used up
    every call returns `default`.

    Attributes:
        calls: (prompt, model, params, timeout) for every submit()
    """

    def __init__(
        self,
        provider_id: str,
        outcomes: list | None = None,
        default: str = "Hi there",
        models: list[str] | None = None,
    ) -> None:
        self.provider_id = provider_id
        self.outcomes = list(outcomes or [])
        self.default = default
        self.models = models or []
        self.calls: list[tuple[str, str, GenerationParams, float]] = []
        self.closed = False

    def script(self, *outcomes) -> "StubAdapter":
        self.outcomes.extend(outcomes)
        return self

    async def submit(self, prompt, model, params, timeout):
        self.calls.append((prompt, model, params, timeout))
        outcome = self.outcomes.pop(0) if self.outcomes else self.default
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, AdapterResponse):
            return outcome
        return AdapterResponse(
            text=outcome, model=model, usage=TokenUsage(input_tokens=3, output_tokens=2)
        )

    async def list_models(self):
        return list(self.models)

    async def aclose(self):
        self.closed = True


class FakeClock:
    """
    Monotonic clock that only moves when sleep() is awaited.

    Lets retry/backoff tests run instantly and assert exact delays.
    """

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FailingStore(InMemoryPromptStore):
    """Prompt store whose save() always fails."""

    async def save(self, record):
        raise StorageError("disk full")


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def provider_configs():
    """Two providers: anthropic (claude-x default) and openai."""
    return (
        ProviderConfig(
            provider_id="anthropic",
            kind="anthropic",
            api_key="test-key-not-real",
            base_url="https://api.anthropic.com/v1",
            models=("claude-x", "claude-y"),
            default_model="claude-x",
            timeout_seconds=30.0,
        ),
        ProviderConfig(
            provider_id="openai",
            kind="openai",
            api_key="test-key-not-real",
            base_url="https://api.openai.com/v1",
            models=("gpt-4o-mini", "gpt-4o"),
            default_model="gpt-4o-mini",
            timeout_seconds=30.0,
        ),
    )


@pytest.fixture
def stub_adapters():
    """Stub adapter per provider ID, shared with the registry fixture."""
    return {
        "anthropic": StubAdapter("anthropic", models=["claude-x", "claude-y"]),
        "openai": StubAdapter("openai", models=["gpt-4o", "gpt-4o-mini"]),
        "groq": StubAdapter("groq", models=["llama-3.1-8b-instant"]),
    }


@pytest.fixture
def stub_factory(stub_adapters):
    """Adapter factory handing out the stub adapters."""
    return lambda config: stub_adapters[config.provider_id]


@pytest.fixture
def registry(provider_configs, stub_factory):
    return build_registry(provider_configs, stub_factory)


@pytest.fixture
def memory_store():
    return InMemoryPromptStore()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def metrics_store():
    return MetricsStore()


@pytest.fixture
def make_orchestrator(registry, memory_store, fake_clock, metrics_store):
    """
    Factory fixture for orchestrators on the fake clock.

    Usage:
        orchestrator = make_orchestrator(policy=RetryPolicy(max_attempts=5))
    """

    def _create(
        policy: RetryPolicy | None = None,
        store=None,
        default_timeout: float = 120.0,
    ) -> DispatchOrchestrator:
        return DispatchOrchestrator(
            registry,
            store if store is not None else memory_store,
            policy=policy or RetryPolicy(max_attempts=3, base_delay=0.5, max_delay=8.0),
            metrics=metrics_store,
            default_timeout=default_timeout,
            clock=fake_clock,
            sleep=fake_clock.sleep,
        )

    return _create


@pytest.fixture
def orchestrator(make_orchestrator):
    return make_orchestrator()


@pytest.fixture
def test_settings():
    """Settings with all three providers and instant retries."""
    return Settings(
        _env_file=None,
        anthropic_api_key="test-key-not-real",
        anthropic_models=["claude-x", "claude-y"],
        anthropic_default_model="claude-x",
        openai_api_key="test-key-not-real",
        openai_models=["gpt-4o-mini", "gpt-4o"],
        openai_default_model="gpt-4o-mini",
        groq_api_key="test-key-not-real",
        database_url="memory://",
        retry_max_attempts=3,
        retry_base_delay=0.0,
        retry_max_delay=0.0,
        dispatch_timeout=10.0,
    )


@pytest.fixture
def services(test_settings, stub_factory):
    """Services wired with stub adapters and an in-memory store."""
    return build_services(test_settings, store=InMemoryPromptStore(), factory=stub_factory)


@pytest.fixture
def test_client(services):
    """
    TestClient over an app built from stub services.

    The lifespan runs inside the context manager, so the store is
    initialized and app.state.services is populated.
    """
    from kubellm.main import create_app

    with TestClient(create_app(services)) as client:
        yield client


@pytest.fixture
def failing_store():
    """Prompt store whose save() raises StorageError."""
    return FailingStore()
