"""Token-bucket rate limiter for async database access."""

from __future__ import annotations

import asyncio
import logging
import math
import threading
import time
from collections.abc import Callable

from sqlthrottle.exceptions import AdmissionTimeoutError, ConfigurationError

logger = logging.getLogger(__name__)

INF = math.inf


class TokenBucket:
    """Token-bucket rate limiter for async contexts.

    Tokens accrue continuously at ``rate`` per second up to ``burst``. Each
    :meth:`acquire` takes one. A caller that finds the bucket empty reserves
    the next token that will accrue and sleeps until it matures, so waiters
    are served in the order they arrived.

    The bookkeeping is guarded by a plain ``threading.Lock`` and never awaits
    while holding it, which keeps one bucket usable from several event loops.
    """

    def __init__(
        self,
        rate: float,
        burst: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            rate: Tokens added per second. ``INF`` disables limiting.
            burst: Maximum number of tokens that can accumulate.
            clock: Monotonic time source, in seconds.
        """
        if isinstance(burst, bool) or not isinstance(burst, int) or burst < 1:
            raise ConfigurationError(f"burst must be an integer >= 1, got {burst!r}")
        if isinstance(rate, bool) or not isinstance(rate, (int, float)):
            raise ConfigurationError(f"rate must be a number, got {rate!r}")
        if math.isnan(rate) or rate <= 0:
            raise ConfigurationError(f"rate must be positive or INF, got {rate!r}")

        self._rate = float(rate)
        self._burst = burst
        self._clock = clock
        self._tokens = float(burst)
        self._last = clock()
        # Latest time-to-act handed out to any reservation.
        self._last_event = self._last
        self._lock = threading.Lock()

    @property
    def rate(self) -> float:
        return self._rate

    @property
    def burst(self) -> int:
        return self._burst

    @property
    def unlimited(self) -> bool:
        return self._rate == INF

    @property
    def tokens(self) -> float:
        """Tokens available right now, clamped to ``[0, burst]``."""
        if self.unlimited:
            return float(self._burst)
        with self._lock:
            return max(0.0, self._advance(self._clock()))

    def _advance(self, now: float) -> float:
        # Token count at ``now``. Negative while reservations are outstanding.
        elapsed = max(0.0, now - self._last)
        return min(float(self._burst), self._tokens + elapsed * self._rate)

    def _reserve(self, max_wait: float | None) -> float | None:
        """Reserve one token and return the delay before it may be used.

        Returns ``None`` without changing state when the delay would exceed
        ``max_wait``.
        """
        reservation = self._reservation(max_wait)
        return None if reservation is None else reservation[0]

    def _reservation(self, max_wait: float | None) -> tuple[float, float] | None:
        # (wait, time_to_act) for one token, or None if it would exceed max_wait
        with self._lock:
            now = self._clock()
            tokens = self._advance(now) - 1.0
            wait = -tokens / self._rate if tokens < 0 else 0.0
            if max_wait is not None and wait > max_wait:
                return None
            time_to_act = now + wait
            self._tokens = tokens
            self._last = now
            self._last_event = time_to_act
            return wait, time_to_act

    def _release(self, time_to_act: float) -> None:
        """Give back the part of an unused reservation nobody queued behind.

        Tokens reserved after ``time_to_act`` were counted against this one,
        so only the share not yet promised to later waiters is restored.
        """
        with self._lock:
            now = self._clock()
            if time_to_act < now:
                return
            restore = 1.0 - (self._last_event - time_to_act) * self._rate
            if restore <= 0:
                return
            self._tokens = min(float(self._burst), self._advance(now) + restore)
            self._last = now
            if time_to_act == self._last_event:
                previous = time_to_act - 1.0 / self._rate
                if previous >= now:
                    self._last_event = previous

    def try_acquire(self) -> bool:
        """Take a token if one is available right now, without waiting."""
        if self.unlimited:
            return True
        return self._reserve(max_wait=0.0) is not None

    async def acquire(self, timeout: float | None = None) -> None:
        """Wait for a token.

        Args:
            timeout: Seconds the caller is willing to wait. ``None`` waits
                as long as needed.

        Raises:
            AdmissionTimeoutError: The deadline has already passed, or no
                token can accrue before it does. No token is consumed.
            asyncio.CancelledError: The waiting task was cancelled. The
                share of its token not already promised to later waiters
                is returned to the bucket.
        """
        if timeout is not None and timeout <= 0:
            raise AdmissionTimeoutError(
                "deadline already exceeded", wait=0.0, timeout=timeout,
            )
        if self.unlimited:
            return

        reservation = self._reservation(max_wait=timeout)
        if reservation is None:
            needed = self._wait_hint()
            logger.warning(
                "Rate limit admission denied: next token in %.3fs exceeds %.3fs deadline",
                needed, timeout,
            )
            raise AdmissionTimeoutError(
                f"rate limit wait of {needed:.3f}s would exceed {timeout:.3f}s deadline",
                wait=needed,
                timeout=timeout,
            )
        wait, time_to_act = reservation
        if wait <= 0:
            return

        logger.debug(f"Rate limit: waiting {wait:.3f}s for a token")
        try:
            await asyncio.sleep(wait)
        except asyncio.CancelledError:
            self._release(time_to_act)
            raise

    def _wait_hint(self) -> float:
        with self._lock:
            tokens = self._advance(self._clock()) - 1.0
        return -tokens / self._rate if tokens < 0 else 0.0

    def __repr__(self) -> str:
        return f"TokenBucket(rate={self._rate!r}, burst={self._burst!r})"
