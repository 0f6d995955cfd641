"""
Retry/backoff policy for provider calls.

The policy is a plain value object owned by the orchestrator so that every
vendor gets identical resilience behavior and adapters stay translators.
"""

from dataclasses import dataclass

from kubellm.errors import RateLimitError


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded exponential backoff.

    Attributes:
        max_attempts: Total provider calls allowed (first call included)
        base_delay: Delay in seconds after the first failed attempt
        max_delay: Upper bound for any single delay
        multiplier: Growth factor between consecutive delays
    """

    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 8.0
    multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be >= 0")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1")

    def delay_for(self, attempt: int, error: BaseException | None = None) -> float:
        """
        Seconds to wait after failed attempt number `attempt` (1-based).

        A vendor-supplied retry-after hint raises the delay but never past
        max_delay.
        """
        delay = self.base_delay * self.multiplier ** (attempt - 1)
        if isinstance(error, RateLimitError) and error.retry_after:
            delay = max(delay, error.retry_after)
        return min(delay, self.max_delay)

    def should_retry(self, attempt: int, error: BaseException) -> bool:
        """True when `error` is retryable and attempts remain."""
        return bool(getattr(error, "retryable", False)) and attempt < self.max_attempts
