"""Retry policy: attempt number -> backoff delay, bounded by max attempts."""

from dataclasses import dataclass


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    initial_delay_ms: int = 500
    max_delay_ms: int = 5000
    backoff_multiplier: float = 2.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.initial_delay_ms < 0 or self.max_delay_ms < 0:
            raise ValueError("delays must be non-negative")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")

    def delay_ms(self, attempt: int) -> float:
        """Delay to sleep after failed attempt ``attempt`` (1-based).

        Attempt 1 waits ``initial_delay_ms``; each later attempt multiplies by
        ``backoff_multiplier``, capped at ``max_delay_ms``.
        """
        if attempt < 1:
            raise ValueError("attempt is 1-based")
        delay = self.initial_delay_ms * self.backoff_multiplier ** (attempt - 1)
        return min(delay, self.max_delay_ms)

    def should_retry(self, attempt: int) -> bool:
        return attempt < self.max_attempts


DEFAULT_RETRY_POLICY = RetryPolicy()
