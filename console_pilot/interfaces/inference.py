"""Inference backend interface and its error taxonomy."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class InferenceError(Exception):
    """Base error for inference backend failures."""

    pass


class RateLimited(InferenceError):
    """The backend rejected the request with a rate-limit signal (HTTP 429)."""

    def __init__(self, message: str = "Rate limit exceeded", retry_after_s: float | None = None) -> None:
        super().__init__(message)
        self.retry_after_s = retry_after_s


class AuthenticationError(InferenceError):
    """The backend rejected the credentials (HTTP 401). Never retried."""

    pass


class TransientBackendError(InferenceError):
    """Any other backend failure (timeouts, 5xx, malformed payloads)."""

    pass


class RateLimitExhausted(InferenceError):
    """Rate-limit retries were used up for this cycle. Recoverable."""

    pass


class RetryCancelled(InferenceError):
    """A retry wait was interrupted because the loop is stopping."""

    pass


class TokenUsage:
    """Token counters reported by the backend."""

    __slots__ = ("prompt_tokens", "completion_tokens", "total_tokens")

    def __init__(
        self,
        prompt_tokens: int = 0,
        completion_tokens: int = 0,
        total_tokens: int | None = None,
    ) -> None:
        self.prompt_tokens = prompt_tokens
        self.completion_tokens = completion_tokens
        self.total_tokens = (
            total_tokens if total_tokens is not None else prompt_tokens + completion_tokens
        )

    def __repr__(self) -> str:
        return (
            f"TokenUsage(prompt={self.prompt_tokens}, "
            f"completion={self.completion_tokens}, total={self.total_tokens})"
        )


class InferenceRequest:
    """A chat-completion request in OpenAI message format.

    ``messages`` may contain a user message whose content is a list of
    ``{"type": "text"}`` and ``{"type": "image_url"}`` parts; the image is
    embedded as a ``data:image/png;base64,`` URL.
    """

    __slots__ = ("model", "messages", "temperature", "max_tokens", "has_image")

    def __init__(
        self,
        model: str,
        messages: list[dict[str, Any]],
        temperature: float = 0.7,
        max_tokens: int = 1000,
        has_image: bool = False,
    ) -> None:
        """Initialize a request.

        Args:
            model: Model identifier understood by the backend.
            messages: Chat messages.
            temperature: Sampling temperature.
            max_tokens: Maximum completion tokens.
            has_image: Whether a frame is embedded (vision request).
        """
        self.model = model
        self.messages = messages
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.has_image = has_image

    def __repr__(self) -> str:
        return f"InferenceRequest(model={self.model!r}, has_image={self.has_image})"

    @property
    def text(self) -> str:
        """Concatenate all text parts of the request (for logging and tests)."""
        chunks: list[str] = []
        for message in self.messages:
            content = message.get("content")
            if isinstance(content, str):
                chunks.append(content)
            elif isinstance(content, list):
                chunks.extend(
                    str(part.get("text", ""))
                    for part in content
                    if isinstance(part, dict) and part.get("type") == "text"
                )
        return "\n".join(chunks)


class InferenceResponse:
    """Free-text completion returned by the backend."""

    __slots__ = ("text", "usage")

    def __init__(self, text: str, usage: TokenUsage | None = None) -> None:
        self.text = text
        self.usage = usage

    def __repr__(self) -> str:
        return f"InferenceResponse({self.text[:40]!r}...)"


class InferenceBackend(ABC):
    """Abstract interface for a remote completion service."""

    @abstractmethod
    def complete(self, request: InferenceRequest) -> InferenceResponse:
        """Send a request and return the completion.

        Args:
            request: The request to send.

        Returns:
            The completion text and optional usage counters.

        Raises:
            RateLimited: If the backend signals rate limiting.
            AuthenticationError: If the credentials are rejected.
            TransientBackendError: For any other failure.
        """
        ...
