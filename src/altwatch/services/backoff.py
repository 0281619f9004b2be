"""Exponential backoff with bounded jitter.

Shared by the stream connection manager (reconnect delays) and the dispatch
gateway (throttling without a ``Retry-After`` hint). The policy only computes
durations; callers do the sleeping.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from typing import Protocol

from altwatch.core.config import constants

_JITTER_RANDOM = secrets.SystemRandom()

# 2**_MAX_EXPONENT * base is far beyond any sensible cap; stop growing there.
_MAX_EXPONENT = 32


class _RandomSource(Protocol):
    def uniform(self, a: float, b: float) -> float: ...


@dataclass(frozen=True, slots=True)
class BackoffPolicy:
    """Stateless delay calculator: ``min(base * 2**attempt, cap)`` with jitter.

    The jittered delay is clamped to ``[base, cap]``, so it never undercuts
    the base delay and never exceeds the cap.
    """

    base: float = constants.DEFAULT_BACKOFF_BASE_SECONDS
    cap: float = constants.DEFAULT_BACKOFF_MAX_SECONDS
    jitter: float = constants.DEFAULT_BACKOFF_JITTER
    random: _RandomSource = field(default=_JITTER_RANDOM, compare=False)

    def __post_init__(self) -> None:
        """Validate the policy parameters."""
        if self.base <= 0:
            message = "Backoff base must be positive"
            raise ValueError(message)
        if self.cap < self.base:
            message = "Backoff cap must not be smaller than the base delay"
            raise ValueError(message)
        if not 0 <= self.jitter <= 1:
            message = "Backoff jitter must be between 0 and 1"
            raise ValueError(message)

    def raw_delay(self, attempt: int) -> float:
        """Return the un-jittered delay for ``attempt``."""
        if attempt < 0:
            message = f"Backoff attempt must be non-negative, got {attempt}"
            raise ValueError(message)
        exponent = min(attempt, _MAX_EXPONENT)
        return min(self.base * (2**exponent), self.cap)

    def delay(self, attempt: int) -> float:
        """Return the jittered delay in seconds for the given attempt."""
        raw = self.raw_delay(attempt)
        if self.jitter:
            raw *= 1 + self.random.uniform(-self.jitter, self.jitter)
        return min(max(raw, self.base), self.cap)
