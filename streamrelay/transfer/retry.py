"""Bounded retry policy with capped exponential backoff."""

from dataclasses import dataclass


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 10000

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.max_attempts,
            base_delay_ms=settings.backoff_base_ms,
            max_delay_ms=settings.backoff_max_ms,
        )

    def delay_seconds(self, attempt: int) -> float:
        """Pause after failed attempt number `attempt` (1-based).

        min(base * 2^attempt, max), so with the defaults: 2s, 4s, 8s, 10s...
        """
        delay_ms = min(self.base_delay_ms * (2 ** attempt), self.max_delay_ms)
        return delay_ms / 1000.0

    def should_retry(self, attempt: int, retryable: bool) -> bool:
        return retryable and attempt < self.max_attempts
