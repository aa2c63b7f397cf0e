from __future__ import annotations

from dataclasses import dataclass

DEFAULT_MAX_RETRIES = 4
DEFAULT_BASE_DELAY_SECONDS = 1.0
DEFAULT_MULTIPLIER = 2.0
DEFAULT_MAX_DELAY_SECONDS = 60.0


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff for transient charge failures.

    ``max_retries`` counts retries after the initial call, so a policy with
    ``max_retries=4`` allows five provider calls in one charge loop.
    """

    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay_seconds: float = DEFAULT_BASE_DELAY_SECONDS
    multiplier: float = DEFAULT_MULTIPLIER
    max_delay_seconds: float = DEFAULT_MAX_DELAY_SECONDS

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be greater than or equal to 0")
        if self.base_delay_seconds <= 0:
            raise ValueError("base_delay_seconds must be positive")
        if self.multiplier < 1:
            raise ValueError("multiplier must be greater than or equal to 1")
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError("max_delay_seconds must be greater than or equal to base_delay_seconds")

    def should_retry(self, attempt: int) -> bool:
        return attempt <= self.max_retries

    def backoff_delay(self, attempt: int) -> float:
        if attempt < 0:
            raise ValueError("attempt must be greater than or equal to 0")
        try:
            delay = self.base_delay_seconds * (self.multiplier**attempt)
        except OverflowError:
            return self.max_delay_seconds
        return min(self.max_delay_seconds, delay)

    def backoff_schedule(self) -> tuple[float, ...]:
        # One delay between each pair of consecutive provider calls.
        return tuple(self.backoff_delay(attempt) for attempt in range(self.max_retries))
