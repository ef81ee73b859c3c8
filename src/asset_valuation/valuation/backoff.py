"""Exponential backoff decisions for the valuation retry loop.

Pure functions of (attempts made, policy); nothing here sleeps.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0  # seconds
    factor: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must be >= 0")
        if self.factor < 1:
            raise ValueError("factor must be >= 1")


@dataclass(frozen=True)
class RetryDecision:
    retry: bool
    delay: float = 0.0


STOP = RetryDecision(retry=False)


def delay_for(attempt: int, policy: RetryPolicy) -> float:
    """Delay before the attempt with 0-based index `attempt`.

    No delay before the first attempt, then base * factor ** (attempt - 1).
    """
    if attempt < 0:
        raise ValueError("attempt must be >= 0")
    if attempt == 0:
        return 0.0
    return policy.base_delay * policy.factor ** (attempt - 1)


def next_retry(attempts_made: int, policy: RetryPolicy) -> RetryDecision:
    """Decide whether another attempt may follow `attempts_made` finished ones."""
    if attempts_made >= policy.max_attempts:
        return STOP
    return RetryDecision(retry=True, delay=delay_for(attempts_made, policy))
