"""Rate-limit retry wrapper around an inference backend."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from console_pilot.core.backoff import EXHAUSTED, BackoffController
from console_pilot.interfaces.inference import (
    InferenceBackend,
    InferenceRequest,
    InferenceResponse,
    RateLimited,
    RateLimitExhausted,
    RetryCancelled,
)

logger = logging.getLogger(__name__)


class RetryingInference:
    """Retries rate-limited requests using a BackoffController.

    Only ``RateLimited`` is retried here. Authentication and transient
    errors propagate to the loop, which owns the escalation policy.

    Example:
        >>> retrying = RetryingInference(backend, backoff, wait=stop_event.wait)
        >>> response = retrying.complete(request)
    """

    def __init__(
        self,
        backend: InferenceBackend,
        backoff: BackoffController,
        wait: Callable[[float], bool] | None = None,
        on_rate_limited: Callable[[int, bool], None] | None = None,
    ) -> None:
        """Initialize the wrapper.

        Args:
            backend: Backend to call.
            backoff: Controller deciding retry delays.
            wait: Interruptible wait taking seconds and returning True if
                it was interrupted, like ``threading.Event.wait``.
            on_rate_limited: Observer called with ``(retry_delay_ms, vision)``
                before every retry wait.
        """
        self._backend = backend
        self._backoff = backoff
        self._wait = wait or threading.Event().wait
        self._on_rate_limited = on_rate_limited
        self._calls = 0

    @property
    def backend(self) -> InferenceBackend:
        """Get the wrapped backend."""
        return self._backend

    @property
    def calls(self) -> int:
        """Number of backend calls made, including retries."""
        return self._calls

    def complete(self, request: InferenceRequest) -> InferenceResponse:
        """Send a request, retrying on rate limits.

        Args:
            request: The request to send.

        Returns:
            The backend response.

        Raises:
            RateLimitExhausted: If the retry budget was used up.
            RetryCancelled: If a retry wait was interrupted.
            AuthenticationError: Passed through from the backend.
            TransientBackendError: Passed through from the backend.
        """
        while True:
            self._calls += 1
            try:
                response = self._backend.complete(request)
            except RateLimited as e:
                delay = self._backoff.on_rate_limited(vision=request.has_image)
                if delay is EXHAUSTED:
                    raise RateLimitExhausted(
                        f"Rate limit retries exhausted; next cycle in {self._backoff.next_delay()}ms"
                    ) from e

                # Server's Retry-After is a floor, never a cap
                if e.retry_after_s is not None:
                    delay = max(delay, int(e.retry_after_s * 1000))

                logger.warning(f"Rate limited by backend, retrying in {delay}ms")
                if self._on_rate_limited:
                    self._on_rate_limited(delay, request.has_image)
                if self._wait(delay / 1000):
                    raise RetryCancelled("Retry wait interrupted") from e
                continue

            self._backoff.on_success()
            return response
