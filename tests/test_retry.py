"""Tests for the rate-limit retry wrapper."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from console_pilot.core.backoff import BackoffConfig, BackoffController
from console_pilot.inference.retry import RetryingInference
from console_pilot.interfaces.inference import (
    AuthenticationError,
    InferenceRequest,
    InferenceResponse,
    RateLimited,
    RateLimitExhausted,
    RetryCancelled,
    TransientBackendError,
)


def _request(has_image: bool = True) -> InferenceRequest:
    return InferenceRequest(model="m", messages=[{"role": "user", "content": "hi"}], has_image=has_image)


class RecordingWait:
    """Wait function that records requested durations."""

    def __init__(self, interrupt_after: int | None = None) -> None:
        self.calls: list[float] = []
        self._interrupt_after = interrupt_after

    def __call__(self, seconds: float) -> bool:
        self.calls.append(seconds)
        return self._interrupt_after is not None and len(self.calls) >= self._interrupt_after


class TestRetryingInference:
    """Tests for RetryingInference.complete."""

    def test_success_passes_through(self) -> None:
        backend = MagicMock()
        backend.complete.return_value = InferenceResponse("DECISION: A")
        backoff = BackoffController()
        retrying = RetryingInference(backend, backoff, wait=RecordingWait())

        response = retrying.complete(_request())

        assert response.text == "DECISION: A"
        assert retrying.calls == 1
        assert retrying.backend is backend

    def test_retries_then_succeeds(self) -> None:
        backend = MagicMock()
        backend.complete.side_effect = [RateLimited(), RateLimited(), InferenceResponse("DECISION: B")]
        backoff = BackoffController(BackoffConfig(retry_jitter_ms=0))
        wait = RecordingWait()
        retrying = RetryingInference(backend, backoff, wait=wait)

        response = retrying.complete(_request())

        assert response.text == "DECISION: B"
        assert retrying.calls == 3
        assert wait.calls == [1.0, 2.0]
        assert backoff.state.consecutive_failures == 0

    def test_retry_after_is_a_lower_bound(self) -> None:
        backend = MagicMock()
        backend.complete.side_effect = [
            RateLimited(retry_after_s=2.5),
            RateLimited(retry_after_s=0.1),
            InferenceResponse("DECISION: A"),
        ]
        backoff = BackoffController(BackoffConfig(retry_jitter_ms=0))
        wait = RecordingWait()
        observed: list[int] = []
        retrying = RetryingInference(
            backend, backoff, wait=wait, on_rate_limited=lambda delay, _vision: observed.append(delay)
        )

        retrying.complete(_request())

        assert wait.calls == [2.5, 2.0]
        assert observed == [2500, 2000]

    def test_always_rate_limited_exhausts(self) -> None:
        backend = MagicMock()
        backend.complete.side_effect = RateLimited()
        backoff = BackoffController()
        wait = RecordingWait()
        observed: list[tuple[int, bool]] = []
        retrying = RetryingInference(
            backend, backoff, wait=wait, on_rate_limited=lambda delay, vision: observed.append((delay, vision))
        )

        with pytest.raises(RateLimitExhausted):
            retrying.complete(_request())

        assert backend.complete.call_count == 4
        assert len(wait.calls) == 3
        assert wait.calls[0] < wait.calls[1] < wait.calls[2]
        assert [vision for _, vision in observed] == [True, True, True]
        assert backoff.next_delay() >= 3 * backoff.config.initial_delay_ms

    def test_vision_failures_tracked(self) -> None:
        backend = MagicMock()
        backend.complete.side_effect = RateLimited()
        backoff = BackoffController()
        retrying = RetryingInference(backend, backoff, wait=RecordingWait())

        with pytest.raises(RateLimitExhausted):
            retrying.complete(_request(has_image=True))

        assert backoff.state.consecutive_vision_failures == 4
        assert backoff.vision_degraded(2) is True

    def test_interrupted_wait_cancels(self) -> None:
        backend = MagicMock()
        backend.complete.side_effect = RateLimited()
        retrying = RetryingInference(backend, BackoffController(), wait=RecordingWait(interrupt_after=1))

        with pytest.raises(RetryCancelled):
            retrying.complete(_request())

        assert backend.complete.call_count == 1

    @pytest.mark.parametrize("error", [AuthenticationError("bad key"), TransientBackendError("502")])
    def test_other_errors_propagate_without_retry(self, error: Exception) -> None:
        backend = MagicMock()
        backend.complete.side_effect = error
        backoff = BackoffController()
        wait = RecordingWait()
        retrying = RetryingInference(backend, backoff, wait=wait)

        with pytest.raises(type(error)):
            retrying.complete(_request())

        assert backend.complete.call_count == 1
        assert wait.calls == []
        assert backoff.state.consecutive_failures == 0
