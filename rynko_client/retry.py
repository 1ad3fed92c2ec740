import random
from typing import NamedTuple, Optional

from rynko_client.config import ClientConfig


class RetryDecision(NamedTuple):
    should_retry: bool
    delay_ms: int


def parse_retry_after(value: Optional[str]) -> Optional[int]:
    """Converts a Retry-After header to milliseconds.

    Only the integer-seconds form is understood; HTTP-dates and anything else
    are treated as if the header were absent.
    """
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    try:
        seconds = int(value)
    except ValueError:
        return None
    if seconds < 0:
        return None
    return seconds * 1000


class RetryPolicy:
    """Pure retry decisions: which responses to retry and how long to wait"""

    def __init__(self, config: ClientConfig, rng: Optional[random.Random] = None):
        self.config = config
        self._rng = rng or random.Random()

    def should_retry(self, status_code: int, attempt: int) -> bool:
        if not self.config.retry_enabled:
            return False
        if status_code not in self.config.retryable_statuses:
            return False
        return attempt < self.config.max_retries - 1

    def _jitter_ms(self) -> float:
        return self._rng.uniform(0, self.config.max_jitter_ms)

    def compute_delay_ms(self, attempt: int, retry_after_ms: Optional[int] = None) -> int:
        """Calculates the backoff for ``attempt`` (0-based), preferring a server hint"""
        if retry_after_ms is not None:
            delay = retry_after_ms + self._jitter_ms()
        else:
            delay = self.config.initial_delay_ms * (2**attempt) + self._jitter_ms()
        return int(min(delay, self.config.max_delay_ms))

    def decide(
        self, status_code: int, attempt: int, retry_after: Optional[str] = None
    ) -> RetryDecision:
        if not self.should_retry(status_code, attempt):
            return RetryDecision(False, 0)
        delay_ms = self.compute_delay_ms(attempt, parse_retry_after(retry_after))
        return RetryDecision(True, delay_ms)
