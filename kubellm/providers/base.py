"""Provider adapter interface and shared value types."""

from dataclasses import dataclass, field
from typing import Protocol

from kubellm.errors import (
    AuthError,
    InvalidRequestError,
    ProviderError,
    RateLimitError,
    TransientError,
    UnknownModelError,
)


@dataclass(frozen=True)
class GenerationParams:
    """Optional generation knobs; None means the adapter default."""

    temperature: float | None = None
    max_tokens: int | None = None


@dataclass(frozen=True)
class TokenUsage:
    """
    Token usage reported by the vendor.

    Zero when the vendor did not report usage.
    """

    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        """Total tokens consumed (input + output)."""
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True)
class AdapterResponse:
    text: str
    model: str
    usage: TokenUsage = field(default_factory=TokenUsage)


class ProviderAdapter(Protocol):
    """One vendor's wire protocol behind a single submit capability."""

    provider_id: str

    async def submit(
        self,
        prompt: str,
        model: str,
        params: GenerationParams,
        timeout: float,
    ) -> AdapterResponse:
        """
        Send one prompt and return the normalized reply.

        Raises:
            AuthError, InvalidRequestError, RateLimitError, TransientError,
            UnknownModelError
        """
        ...

    async def list_models(self) -> list[str]:
        """Return the model identifiers the vendor currently serves."""
        ...

    async def aclose(self) -> None:
        ...


def parse_retry_after(value: str | None) -> float | None:
    """Parse a retry-after header given in seconds."""
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def classify_status(
    status_code: int,
    message: str,
    provider: str,
    retry_after: float | None = None,
) -> ProviderError:
    """
    Map a vendor HTTP status to the error taxonomy.

    Vendors report unknown models as 404; some also use 400 with a
    model-specific message, which is caught by the text check.
    """
    if status_code in (401, 403):
        return AuthError(message, provider=provider, status_code=status_code)
    if status_code == 404:
        return UnknownModelError(message, provider=provider, status_code=status_code)
    if status_code == 429:
        return RateLimitError(
            message, provider=provider, status_code=status_code, retry_after=retry_after
        )
    if status_code == 408 or status_code >= 500:
        return TransientError(message, provider=provider, status_code=status_code)
    if status_code == 400 and "model" in message.lower() and "not found" in message.lower():
        return UnknownModelError(message, provider=provider, status_code=status_code)
    return InvalidRequestError(message, provider=provider, status_code=status_code)
