"""Clock, cancellation and retry policy used by the polling loops."""

from __future__ import annotations

import threading
import time
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Protocol

from cert_orchestrator.errors import OperationCancelledError


class Clock(Protocol):
    def now(self) -> datetime: ...

    def sleep(self, seconds: float, token: CancellationToken | None = None) -> None: ...


class CancellationToken:
    """Cooperative cancellation with an optional absolute deadline.

    Polling loops check the token before each attempt and sleep on it, so a
    ``cancel()`` from another thread wakes them immediately.
    """

    def __init__(self, deadline: datetime | None = None) -> None:
        self.deadline = deadline
        self._event = threading.Event()

    @classmethod
    def with_timeout(cls, seconds: float, clock: Clock) -> CancellationToken:
        return cls(deadline=clock.now() + timedelta(seconds=seconds))

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def remaining(self, now: datetime) -> float | None:
        if self.deadline is None:
            return None
        return (self.deadline - now).total_seconds()

    def expired(self, now: datetime) -> bool:
        remaining = self.remaining(now)
        return remaining is not None and remaining <= 0

    def raise_if_cancelled(self, now: datetime) -> None:
        if self.cancelled:
            raise OperationCancelledError("Operation cancelled")
        if self.expired(now):
            raise OperationCancelledError("Operation deadline exceeded")

    def wait(self, seconds: float) -> bool:
        """Block up to ``seconds``; return True if cancelled meanwhile."""
        return self._event.wait(seconds)


class SystemClock:
    """Wall clock in UTC; sleeps are interruptible through the token."""

    def now(self) -> datetime:
        return datetime.now(UTC)

    def sleep(self, seconds: float, token: CancellationToken | None = None) -> None:
        if token is None:
            time.sleep(seconds)
            return
        remaining = token.remaining(self.now())
        if remaining is not None and remaining <= seconds:
            # The next attempt would start past the deadline
            token.wait(max(0.0, remaining))
            token.raise_if_cancelled(token.deadline)
        token.wait(seconds)
        token.raise_if_cancelled(self.now())


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded polling schedule: ``max_attempts`` tries, ``interval`` apart, optional backoff."""

    max_attempts: int = 15
    interval: float = 2.0
    backoff: float = 1.0
    max_interval: float = 30.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be a positive integer, got: {self.max_attempts}")
        if self.interval < 0:
            raise ValueError(f"interval must not be negative, got: {self.interval}")
        if self.backoff < 1:
            raise ValueError(f"backoff must be at least 1, got: {self.backoff}")

    def delay(self, attempt: int) -> float:
        """Seconds to wait after ``attempt`` (1-based) before the next one."""
        return min(self.interval * self.backoff ** (attempt - 1), self.max_interval)

    def attempts(self, clock: Clock, token: CancellationToken | None = None) -> Iterator[int]:
        """Yield attempt numbers, sleeping between them and honouring ``token``.

        The caller breaks out of the loop on success; falling off the end means
        the budget is exhausted.
        """
        for attempt in range(1, self.max_attempts + 1):
            if token is not None:
                token.raise_if_cancelled(clock.now())
            yield attempt
            if attempt < self.max_attempts:
                clock.sleep(self.delay(attempt), token)
