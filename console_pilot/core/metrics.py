"""Metrics collection for the decision loop.

This module provides metrics tracking for:
- Cycle counts and timing
- Inference calls and token usage
- Action success rates
- Rate limits, exhaustion and skipped cycles
- Error tracking

Example:
    >>> from console_pilot.core.metrics import MetricsCollector
    >>>
    >>> metrics = MetricsCollector()
    >>> metrics.record_cycle(4200.0)
    >>> metrics.record_action(success=True, duration_ms=812.0)
    >>>
    >>> stats = metrics.get_metrics()
    >>> print(f"Success rate: {stats.action_success_rate:.0%}")
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class LoopMetrics(BaseModel):
    """Snapshot of decision loop metrics.

    Immutable and safe to share or serialize.
    """

    # Cycles
    cycles_total: int = Field(default=0, ge=0)
    cycles_skipped: int = Field(default=0, ge=0)
    avg_cycle_time_ms: float = Field(default=0.0, ge=0.0)

    # Inference
    inference_calls: int = Field(default=0, ge=0)
    vision_requests: int = Field(default=0, ge=0)
    text_requests: int = Field(default=0, ge=0)
    avg_inference_time_ms: float = Field(default=0.0, ge=0.0)
    prompt_tokens: int = Field(default=0, ge=0)
    completion_tokens: int = Field(default=0, ge=0)
    invalid_responses: int = Field(default=0, ge=0)

    # Rate limiting
    rate_limit_events: int = Field(default=0, ge=0)
    retries_exhausted: int = Field(default=0, ge=0)

    # Actions
    actions_total: int = Field(default=0, ge=0)
    actions_successful: int = Field(default=0, ge=0)
    avg_action_time_ms: float = Field(default=0.0, ge=0.0)

    # Errors
    errors_total: int = Field(default=0, ge=0)
    errors_recovered: int = Field(default=0, ge=0)
    errors_by_type: dict[str, int] = Field(default_factory=dict)

    # Uptime
    started_at: datetime | None = Field(default=None)
    uptime_seconds: float = Field(default=0.0, ge=0.0)

    model_config = {"frozen": True}

    @property
    def tokens_total(self) -> int:
        """Prompt plus completion tokens."""
        return self.prompt_tokens + self.completion_tokens

    @property
    def action_success_rate(self) -> float:
        """Fraction of actions that changed the screen (0.0 to 1.0)."""
        if self.actions_total == 0:
            return 0.0
        return self.actions_successful / self.actions_total


@dataclass
class _TimingStats:
    """Internal helper for tracking timing statistics."""

    total_ms: float = 0.0
    count: int = 0

    def record(self, duration_ms: float) -> None:
        self.total_ms += duration_ms
        self.count += 1

    @property
    def average_ms(self) -> float:
        if self.count == 0:
            return 0.0
        return self.total_ms / self.count


class MetricsCollector:
    """Collects metrics during decision loop execution.

    Thread-safe: the loop thread records while the CLI or a status display
    reads snapshots.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._reset_unlocked()
        logger.debug("MetricsCollector initialized")

    def _reset_unlocked(self) -> None:
        self._cycle_timing = _TimingStats()
        self._inference_timing = _TimingStats()
        self._action_timing = _TimingStats()

        self._cycles_skipped = 0
        self._vision_requests = 0
        self._text_requests = 0
        self._prompt_tokens = 0
        self._completion_tokens = 0
        self._invalid_responses = 0

        self._rate_limit_events = 0
        self._retries_exhausted = 0

        self._actions_successful = 0
        self._actions_failed = 0

        self._errors_recovered = 0
        self._errors_fatal = 0
        self._errors_by_type: dict[str, int] = {}

        self._started_at: datetime | None = None

    def start(self) -> None:
        """Mark the start of metrics collection."""
        with self._lock:
            self._started_at = datetime.now()

    def reset(self) -> None:
        """Reset all metrics to initial state."""
        with self._lock:
            self._reset_unlocked()
            logger.debug("Metrics reset")

    def record_cycle(self, duration_ms: float) -> None:
        """Record a completed cycle."""
        with self._lock:
            self._cycle_timing.record(duration_ms)

    def record_skipped_cycle(self, reason: str) -> None:
        """Record a cycle that ended without executing an action."""
        with self._lock:
            self._cycles_skipped += 1
        logger.debug(f"Cycle skipped: {reason}")

    def record_inference(
        self,
        duration_ms: float,
        vision: bool,
        prompt_tokens: int = 0,
        completion_tokens: int = 0,
    ) -> None:
        """Record a successful inference call.

        Args:
            duration_ms: Time spent waiting for the response, retries included.
            vision: Whether the request carried an image.
            prompt_tokens: Prompt tokens reported by the backend.
            completion_tokens: Completion tokens reported by the backend.
        """
        with self._lock:
            self._inference_timing.record(duration_ms)
            if vision:
                self._vision_requests += 1
            else:
                self._text_requests += 1
            self._prompt_tokens += prompt_tokens
            self._completion_tokens += completion_tokens

    def record_invalid_response(self) -> None:
        """Record model output without a usable action."""
        with self._lock:
            self._invalid_responses += 1

    def record_rate_limit(self) -> None:
        """Record a rate-limit signal from the backend."""
        with self._lock:
            self._rate_limit_events += 1

    def record_exhausted(self) -> None:
        """Record a cycle that gave up after exhausting retries."""
        with self._lock:
            self._retries_exhausted += 1

    def record_action(self, success: bool, duration_ms: float) -> None:
        """Record an executed action.

        Args:
            success: Whether the screen changed.
            duration_ms: Time from press to after-frame capture.
        """
        with self._lock:
            self._action_timing.record(duration_ms)
            if success:
                self._actions_successful += 1
            else:
                self._actions_failed += 1

    def record_error(self, error_type: str, recovered: bool) -> None:
        """Record an error.

        Args:
            error_type: Class name of the error.
            recovered: Whether the loop kept running.
        """
        with self._lock:
            if recovered:
                self._errors_recovered += 1
            else:
                self._errors_fatal += 1
            self._errors_by_type[error_type] = self._errors_by_type.get(error_type, 0) + 1

    def get_metrics(self) -> LoopMetrics:
        """Get a snapshot of all current metrics."""
        with self._lock:
            uptime = 0.0
            if self._started_at is not None:
                uptime = (datetime.now() - self._started_at).total_seconds()

            return LoopMetrics(
                cycles_total=self._cycle_timing.count,
                cycles_skipped=self._cycles_skipped,
                avg_cycle_time_ms=self._cycle_timing.average_ms,
                inference_calls=self._vision_requests + self._text_requests,
                vision_requests=self._vision_requests,
                text_requests=self._text_requests,
                avg_inference_time_ms=self._inference_timing.average_ms,
                prompt_tokens=self._prompt_tokens,
                completion_tokens=self._completion_tokens,
                invalid_responses=self._invalid_responses,
                rate_limit_events=self._rate_limit_events,
                retries_exhausted=self._retries_exhausted,
                actions_total=self._actions_successful + self._actions_failed,
                actions_successful=self._actions_successful,
                avg_action_time_ms=self._action_timing.average_ms,
                errors_total=self._errors_recovered + self._errors_fatal,
                errors_recovered=self._errors_recovered,
                errors_by_type=dict(self._errors_by_type),
                started_at=self._started_at,
                uptime_seconds=uptime,
            )
