"""Bounded reconnect policy.

The delay is a fixed constant, not a backoff curve.
"""

MAX_RECONNECT_ATTEMPTS = 5
RECONNECT_DELAY = 5.0  # seconds


class RetryPolicy:
    """Pure allow/deny decision over an attempt count."""

    def __init__(self, max_attempts: int = MAX_RECONNECT_ATTEMPTS, delay: float = RECONNECT_DELAY):
        self.max_attempts = max_attempts
        self.delay = delay

    def should_retry(self, attempt: int) -> bool:
        return attempt < self.max_attempts


class RetryState:
    """Automatic retry counter owned by the session controller."""

    def __init__(self):
        self.attempts = 0

    def increment(self) -> int:
        self.attempts += 1
        return self.attempts

    def reset(self):
        self.attempts = 0
