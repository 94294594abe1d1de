"""Adaptive request pacing and rate-limit backoff.

This module provides the BackoffController that paces requests against a
rate-limited inference backend. It keeps two separate delays:

- The persistent inter-cycle delay, returned by ``next_delay()``. It grows
  on every rate limit, jumps on retry exhaustion, and decays back toward
  the floor after successful requests.
- The per-attempt retry delay, returned by ``on_rate_limited()``. It grows
  exponentially within a burst of failures and always carries jitter.

Example:
    >>> backoff = BackoffController()
    >>> backoff.next_delay()
    3000
    >>> delay = backoff.on_rate_limited()
    >>> if delay is EXHAUSTED:
    ...     print("giving up for this cycle")
    >>> backoff.on_success()
"""

from __future__ import annotations

import logging
import random
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Final

logger = logging.getLogger(__name__)


class _Exhausted(Enum):
    """Sentinel type for exhausted retries."""

    EXHAUSTED = "exhausted"

    def __repr__(self) -> str:
        return "EXHAUSTED"


EXHAUSTED: Final = _Exhausted.EXHAUSTED


@dataclass
class BackoffConfig:
    """Configuration for the backoff controller.

    Attributes:
        initial_delay_ms: Floor for the persistent delay.
        max_delay_ms: Cap for growth from ordinary rate limits.
        rate_limit_multiplier: Persistent delay growth per rate limit.
        exhausted_multiplier: Persistent delay growth on retry exhaustion.
        exhausted_max_delay_ms: Cap after retry exhaustion.
        success_decay: Persistent delay factor applied per success.
        retry_base_ms: Base of the exponential per-attempt retry delay.
        retry_jitter_ms: Upper bound (exclusive) of the jitter added to each retry.
        max_retries: Retries allowed before reporting exhaustion.
    """

    initial_delay_ms: int = 3000  # image-bearing requests are expensive
    max_delay_ms: int = 15000
    rate_limit_multiplier: float = 1.5
    exhausted_multiplier: float = 3.0
    exhausted_max_delay_ms: int = 60000
    success_decay: float = 0.9
    retry_base_ms: int = 1000
    retry_jitter_ms: int = 500
    max_retries: int = 3

    def __post_init__(self) -> None:
        if self.initial_delay_ms < 0:
            raise ValueError("initial_delay_ms must be >= 0")
        if self.max_delay_ms < self.initial_delay_ms:
            raise ValueError("max_delay_ms must be >= initial_delay_ms")
        if self.exhausted_max_delay_ms < self.max_delay_ms:
            raise ValueError("exhausted_max_delay_ms must be >= max_delay_ms")
        if self.rate_limit_multiplier < 1.0 or self.exhausted_multiplier < 1.0:
            raise ValueError("multipliers must be >= 1.0")
        if not 0.0 < self.success_decay <= 1.0:
            raise ValueError("success_decay must be in (0, 1]")
        if self.retry_base_ms <= 0:
            raise ValueError("retry_base_ms must be > 0")
        # Retry delays are strictly increasing only while jitter < base.
        if not 0 <= self.retry_jitter_ms <= self.retry_base_ms:
            raise ValueError("retry_jitter_ms must be in [0, retry_base_ms]")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")


@dataclass(frozen=True)
class BackoffState:
    """Snapshot of the controller state."""

    current_delay_ms: int
    consecutive_failures: int
    consecutive_vision_failures: int
    retry_attempt: int


class BackoffController:
    """Tracks pacing delay and rate-limit failures for one loop session.

    Each loop session owns its own controller; controllers are never shared
    between games. All methods are thread-safe so a status display can read
    ``state`` while the loop mutates it.

    Attributes:
        config: The active configuration.
        state: Snapshot of the current delay and failure counters.
    """

    def __init__(
        self,
        config: BackoffConfig | None = None,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the controller.

        Args:
            config: Backoff configuration. Uses defaults if None.
            rng: Random source for jitter. Uses a fresh Random if None.
        """
        self._config = config or BackoffConfig()
        self._rng = rng or random.Random()
        self._lock = threading.Lock()

        self._current_delay_ms = float(self._config.initial_delay_ms)
        self._consecutive_failures = 0
        self._consecutive_vision_failures = 0
        self._retry_attempt = 0

    @property
    def config(self) -> BackoffConfig:
        """Get the configuration."""
        return self._config

    @property
    def state(self) -> BackoffState:
        """Get a snapshot of the current state."""
        with self._lock:
            return BackoffState(
                current_delay_ms=int(round(self._current_delay_ms)),
                consecutive_failures=self._consecutive_failures,
                consecutive_vision_failures=self._consecutive_vision_failures,
                retry_attempt=self._retry_attempt,
            )

    def next_delay(self) -> int:
        """Get the wait before the next request.

        Returns:
            Delay in milliseconds.
        """
        with self._lock:
            return int(round(self._current_delay_ms))

    def on_success(self) -> None:
        """Record a successful request.

        Relaxes the persistent delay geometrically toward the floor and
        clears all failure counters.
        """
        with self._lock:
            floor = float(self._config.initial_delay_ms)
            self._current_delay_ms = max(floor, self._current_delay_ms * self._config.success_decay)
            self._consecutive_failures = 0
            self._consecutive_vision_failures = 0
            self._retry_attempt = 0

    def on_rate_limited(self, vision: bool = False) -> int | _Exhausted:
        """Record a rate-limited request.

        Args:
            vision: Whether the rejected request carried an image.

        Returns:
            Milliseconds to wait before retrying, or EXHAUSTED when the
            retry budget for this burst is used up.
        """
        config = self._config
        with self._lock:
            self._consecutive_failures += 1
            if vision:
                self._consecutive_vision_failures += 1

            if self._retry_attempt >= config.max_retries:
                before = self._current_delay_ms
                self._current_delay_ms = max(
                    before,
                    min(before * config.exhausted_multiplier, float(config.exhausted_max_delay_ms)),
                )
                self._retry_attempt = 0
                logger.warning(
                    f"Rate-limit retries exhausted; persistent delay "
                    f"{before:.0f}ms -> {self._current_delay_ms:.0f}ms"
                )
                return EXHAUSTED

            attempt = self._retry_attempt
            self._retry_attempt += 1

            # Growth is capped, but an already-higher delay is never pulled down.
            self._current_delay_ms = max(
                self._current_delay_ms,
                min(self._current_delay_ms * config.rate_limit_multiplier, float(config.max_delay_ms)),
            )

            jitter = 0
            if config.retry_jitter_ms:
                jitter = min(
                    int(self._rng.random() * config.retry_jitter_ms),
                    config.retry_jitter_ms - 1,
                )
            retry_delay = config.retry_base_ms * (2**attempt) + jitter

            logger.debug(
                f"Rate limited (attempt {attempt + 1}/{config.max_retries}): "
                f"retry in {retry_delay}ms, persistent delay {self._current_delay_ms:.0f}ms"
            )
            return retry_delay

    def vision_degraded(self, threshold: int) -> bool:
        """Check whether vision requests have been rate limited too often.

        Args:
            threshold: Number of consecutive vision failures tolerated.

        Returns:
            True when consecutive vision failures exceed ``threshold``.
        """
        with self._lock:
            return self._consecutive_vision_failures > threshold

    def reset(self) -> None:
        """Return to the initial state (used when a loop session restarts)."""
        with self._lock:
            self._current_delay_ms = float(self._config.initial_delay_ms)
            self._consecutive_failures = 0
            self._consecutive_vision_failures = 0
            self._retry_attempt = 0
