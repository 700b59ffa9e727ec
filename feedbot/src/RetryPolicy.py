"""Deadline and polling policies with an injectable clock.

Every wait in the bot (verifier readiness, source-chain confirmations,
attestation finalization, proof retrieval) is expressed as a
``PollPolicy``: a wall-clock budget plus a delay between attempts, with
optional exponential growth capped at ``max_delay``.

.. code-block:: python

    >>> policy = PollPolicy(max_wait=300, delay=10)
    >>> deadline = policy.start(clock)
    >>> while not deadline.expired:
    ...     if await ready():
    ...         break
    ...     await deadline.sleep(policy.next_delay(attempt))
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Protocol


class Clock(Protocol):
    """Source of time and sleeping used by all waits."""

    def time(self) -> float:
        """Return the current Unix time in seconds."""
        ...

    async def sleep(self, seconds: float) -> None:
        """Suspend the current task."""
        ...


class SystemClock:
    """Wall clock backed by ``time.time`` and ``asyncio.sleep``."""

    def time(self) -> float:
        return time.time()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class Deadline:
    """A point in time after which a wait gives up.

    :ivar clock: Clock used to measure time.
    :ivar started: Time the deadline was created.
    :ivar expires_at: Time the deadline expires.
    """

    def __init__(self, clock: Clock, seconds: float) -> None:
        self.clock = clock
        self.started = clock.time()
        self.expires_at = self.started + seconds

    @property
    def elapsed(self) -> float:
        return self.clock.time() - self.started

    @property
    def remaining(self) -> float:
        return max(0.0, self.expires_at - self.clock.time())

    @property
    def expired(self) -> bool:
        return self.clock.time() >= self.expires_at

    async def sleep(self, seconds: float) -> None:
        """Sleep for ``seconds`` but never past the deadline."""
        await self.clock.sleep(min(seconds, self.remaining))


@dataclass(frozen=True)
class PollPolicy:
    """Retry budget for a polling loop.

    :ivar max_wait: Total seconds before giving up.
    :ivar delay: Delay before the second attempt.
    :ivar backoff: Multiplier applied to the delay after each attempt.
    :ivar max_delay: Upper bound for the delay.
    """

    max_wait: float
    delay: float
    backoff: float = 1.0
    max_delay: float | None = None

    def __post_init__(self) -> None:
        if self.max_wait < 0:
            raise ValueError("max_wait must not be negative")
        if self.delay < 0:
            raise ValueError("delay must not be negative")
        if self.backoff < 1.0:
            raise ValueError("backoff must be at least 1.0")

    def start(self, clock: Clock) -> Deadline:
        return Deadline(clock, self.max_wait)

    def next_delay(self, attempt: int) -> float:
        """Delay after the given 1-based attempt number.

        :param attempt: Number of attempts made so far.
        :returns: Seconds to wait before the next attempt.
        """
        delay = self.delay * (self.backoff ** max(0, attempt - 1))
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return delay
