"""
Retry delay calculation with exponential growth and jitter.
"""

import random
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Exponential backoff: ``min(max_delay, base_delay * 2^(attempt-1))`` plus
    uniform jitter in ``[0, 0.25 * delay]``.

    ``base_delay_ms = 0`` disables backoff entirely: failed jobs go straight
    back to the backlog without a ``retry_after``.
    """

    base_delay_ms: int = 1000
    max_delay_ms: int = 30000
    jitter_ratio: float = 0.25

    @property
    def enabled(self) -> bool:
        return self.base_delay_ms > 0

    def delay_ms(self, attempt: int, rng: random.Random | None = None) -> float:
        """Delay before the retry that follows ``attempt`` (1-based)."""
        if not self.enabled:
            return 0.0

        exponent = max(attempt, 1) - 1
        delay = min(self.max_delay_ms, self.base_delay_ms * (2**exponent))
        jitter = (rng or random).random() * delay * self.jitter_ratio
        return delay + jitter

    def retry_after(
        self, attempt: int, now: datetime | None = None
    ) -> datetime | None:
        """Absolute time before which the retried job must not be claimed."""
        delay = self.delay_ms(attempt)
        if delay <= 0:
            return None
        return (now or datetime.now(UTC)) + timedelta(milliseconds=delay)
