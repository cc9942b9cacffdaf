"""
Retry Policy
============

Bounded, deterministic exponential backoff.

    delay(n) = min(base_delay * 2**n, max_delay)     for n = 0, 1, 2, ...

No jitter, so the delay sequence is reproducible in tests.
"""

import logging


logger = logging.getLogger(__name__)


class RetryPolicy:
    """
    Backoff state owned by one connection state machine.

    Attributes:
        base_delay: First retry delay in seconds
        max_delay: Ceiling for any single delay in seconds
        max_attempts: Retries granted before giving up
        attempts: Retries granted so far
    """

    def __init__(
        self,
        base_delay: float = 0.5,
        max_delay: float = 10.0,
        max_attempts: int = 5,
    ) -> None:
        if base_delay <= 0:
            raise ValueError("base_delay must be > 0")
        if max_delay < base_delay:
            raise ValueError("max_delay must be >= base_delay")
        if max_attempts < 0:
            raise ValueError("max_attempts must be >= 0")

        self.base_delay = base_delay
        self.max_delay = max_delay
        self.max_attempts = max_attempts
        self.attempts: int = 0

    @classmethod
    def from_ms(cls, base_delay_ms: int, max_delay_ms: int, max_attempts: int) -> "RetryPolicy":
        return cls(base_delay_ms / 1000.0, max_delay_ms / 1000.0, max_attempts)

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    def peek_delay(self) -> float:
        # cap the exponent so huge attempt counts don't overflow
        exponent = min(self.attempts, 32)
        return min(self.base_delay * (2 ** exponent), self.max_delay)

    def next_delay(self) -> float:
        """
        Grant one more retry and return its delay.

        Raises:
            RuntimeError: If the budget is already exhausted
        """
        if self.exhausted:
            raise RuntimeError("retry budget exhausted")
        delay = self.peek_delay()
        self.attempts += 1
        return delay

    def reset(self) -> None:
        self.attempts = 0

    def __repr__(self) -> str:
        return (
            f"RetryPolicy(attempts={self.attempts}/{self.max_attempts}, "
            f"base={self.base_delay}s, max={self.max_delay}s)"
        )
