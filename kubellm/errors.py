"""
Error taxonomy for the dispatch engine.

Adapters raise ProviderError subclasses to classify vendor failures.
The orchestrator is the only component that turns them into a
DispatchError; front ends map DispatchError.kind to their own
presentation (HTTP status, CLI exit code).
"""

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from kubellm.dispatcher.orchestrator import DispatchResult


class KubeLLMError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(KubeLLMError):
    """Raised when settings cannot produce a usable configuration."""


class UnknownProviderError(KubeLLMError):
    """Raised by the registry for provider identifiers it does not know."""

    def __init__(self, provider: str, known: frozenset[str] | None = None) -> None:
        self.provider = provider
        self.known = known or frozenset()
        message = f"Unknown provider: {provider}"
        if self.known:
            message += f". Known providers: {', '.join(sorted(self.known))}"
        super().__init__(message)


class StorageError(KubeLLMError):
    """Raised by prompt stores when a read or write cannot complete."""


class ProviderError(KubeLLMError):
    """
    Base class for classified vendor failures.

    Attributes:
        provider: Provider identifier that produced the failure
        status_code: HTTP status returned by the vendor, if any
        retryable: Whether the orchestrator may retry the call
    """

    retryable: bool = False

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class AuthError(ProviderError):
    """Credentials were rejected by the vendor (401/403)."""


class InvalidRequestError(ProviderError):
    """The request was malformed or rejected as invalid."""


class UnknownModelError(ProviderError):
    """The model identifier is not served by the provider."""


class RateLimitError(ProviderError):
    """The vendor throttled the call (429)."""

    retryable = True

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        status_code: int | None = 429,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, provider=provider, status_code=status_code)
        self.retry_after = retry_after


class TransientError(ProviderError):
    """Network failure, vendor 5xx, or a call that exceeded its deadline."""

    retryable = True


class DispatchErrorKind(str, Enum):
    """Outcome classes a front end needs to distinguish."""

    INVALID_REQUEST = "invalid_request"
    UNKNOWN_PROVIDER = "unknown_provider"
    UNKNOWN_MODEL = "unknown_model"
    AUTH = "auth"
    EXHAUSTED_RETRIES = "exhausted_retries"
    TIMEOUT = "timeout"
    PERSISTENCE = "persistence"


CLIENT_ERROR_KINDS = frozenset(
    {
        DispatchErrorKind.INVALID_REQUEST,
        DispatchErrorKind.UNKNOWN_PROVIDER,
        DispatchErrorKind.UNKNOWN_MODEL,
    }
)


class DispatchError(KubeLLMError):
    """
    Failure of a whole dispatch.

    Attributes:
        kind: Classified outcome
        cause: Underlying error (last one for retry exhaustion)
        attempts: Provider calls made before giving up
        result: For PERSISTENCE only, the generated but unstored result
    """

    def __init__(
        self,
        kind: DispatchErrorKind,
        cause: BaseException | None = None,
        message: str | None = None,
        attempts: int = 0,
        result: "DispatchResult | None" = None,
    ) -> None:
        self.kind = kind
        self.cause = cause
        self.attempts = attempts
        self.result = result
        if message is None:
            message = str(cause) if cause is not None else kind.value
        super().__init__(message)

    @property
    def is_client_error(self) -> bool:
        return self.kind in CLIENT_ERROR_KINDS

    @property
    def rate_limited(self) -> bool:
        """True when retries ran out on vendor throttling."""
        return isinstance(self.cause, RateLimitError)
