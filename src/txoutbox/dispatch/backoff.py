"""Retry delay policies for failed outbox entries.

A policy maps the number of attempts made so far to the delay before the
entry becomes due again.  Delays are monotonic non-decreasing in
``attempts`` and capped; blocking after too many attempts is the engine's
job, not the policy's.

Example:
    >>> from txoutbox.dispatch.backoff import ExponentialBackoff
    >>>
    >>> policy = ExponentialBackoff(base_delay=30.0, multiplier=2.0, max_delay=3600.0)
    >>> for attempts in range(1, 5):
    ...     print(attempts, policy.delay(attempts))
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import timedelta


class BackoffPolicy(ABC):
    """Abstract base for backoff policies."""

    @abstractmethod
    def delay(self, attempts: int) -> timedelta:
        """Calculate the delay before the next attempt.

        Args:
            attempts: Attempts made so far, including the one that just
                failed (1 after the first failure).

        Returns:
            Time to wait before the entry is due again
        """
        ...


@dataclass(frozen=True)
class ExponentialBackoff(BackoffPolicy):
    """Exponential backoff.

    Delay = min(base_delay * (multiplier ** (attempts - 1)), max_delay)

    Attributes:
        base_delay: Delay after the first failure, in seconds
        multiplier: Exponential multiplier (>= 1)
        max_delay: Maximum delay cap in seconds
    """

    base_delay: float = 30.0
    multiplier: float = 2.0
    max_delay: float = 3600.0

    def __post_init__(self) -> None:
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1")

    def delay(self, attempts: int) -> timedelta:
        exponent = max(attempts - 1, 0)
        try:
            seconds = self.base_delay * (self.multiplier ** exponent)
        except OverflowError:
            seconds = self.max_delay
        return timedelta(seconds=min(seconds, self.max_delay))


@dataclass(frozen=True)
class FixedBackoff(BackoffPolicy):
    """Constant delay between attempts."""

    seconds: float = 120.0

    def delay(self, attempts: int) -> timedelta:
        return timedelta(seconds=self.seconds)


__all__ = ["BackoffPolicy", "ExponentialBackoff", "FixedBackoff"]
