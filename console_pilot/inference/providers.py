"""Inference backends for chat-completion services.

Two SDKs cover every supported provider:

- ``openai`` for OpenAI-compatible endpoints: OpenRouter, OpenAI, and the
  local LM Studio and Ollama servers.
- ``anthropic`` for the Anthropic messages API.

SDK-level retries are disabled; rate limits are handled by
RetryingInference so pacing stays under the loop's control.

Example:
    >>> backend = create_backend(config.llm, api_key="sk-or-...")
    >>> response = backend.complete(request)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from console_pilot.interfaces.inference import (
    AuthenticationError,
    InferenceBackend,
    InferenceError,
    InferenceRequest,
    InferenceResponse,
    RateLimited,
    TokenUsage,
    TransientBackendError,
)

if TYPE_CHECKING:
    from console_pilot.config.loader import LLMConfig

logger = logging.getLogger(__name__)

PROVIDER_BASE_URLS: dict[str, str | None] = {
    "openrouter": "https://openrouter.ai/api/v1",
    "openai": None,
    "lmstudio": "http://localhost:1234/v1",
    "ollama": "http://localhost:11434/v1",
}

VALID_PROVIDERS = (*PROVIDER_BASE_URLS, "anthropic")

# Local servers ignore the key, but the SDK refuses an empty one.
_LOCAL_PLACEHOLDER_KEYS = {"lmstudio": "lm-studio", "ollama": "ollama"}

OPENROUTER_HEADERS = {
    "HTTP-Referer": "https://github.com/console-pilot/console-pilot",
    "X-Title": "Console Pilot",
}


def _retry_after(error: Exception) -> float | None:
    response = getattr(error, "response", None)
    headers = getattr(response, "headers", None)
    if not headers:
        return None
    value = headers.get("retry-after")
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


def _map_status_error(error: Exception, provider: str) -> InferenceError:
    status = getattr(error, "status_code", None)
    if status == 429:
        return RateLimited(f"{provider} rate limit exceeded: {error}", retry_after_s=_retry_after(error))
    if status in (401, 403):
        return AuthenticationError(f"{provider} rejected the API key: {error}")
    return TransientBackendError(f"{provider} API error: {error}")


class OpenAICompatibleBackend(InferenceBackend):
    """Backend for OpenAI-compatible chat-completion endpoints."""

    def __init__(
        self,
        provider: str = "openrouter",
        api_key: str | None = None,
        base_url: str | None = None,
        timeout_s: float = 60.0,
        client: Any | None = None,
    ) -> None:
        """Initialize the backend.

        Args:
            provider: One of ``openrouter``, ``openai``, ``lmstudio``, ``ollama``.
            api_key: API key. Local providers use a placeholder when None.
            base_url: Override for the provider's default endpoint.
            timeout_s: Request timeout in seconds.
            client: Preconfigured ``openai.OpenAI`` client (for tests).

        Raises:
            ValueError: If the provider is unknown.
            AuthenticationError: If a hosted provider has no API key.
            InferenceError: If the openai package is not installed.
        """
        if provider not in PROVIDER_BASE_URLS:
            raise ValueError(f"Invalid provider: {provider}. Must be one of {tuple(PROVIDER_BASE_URLS)}")

        self._provider = provider
        if client is not None:
            self._client = client
            return

        key = api_key or _LOCAL_PLACEHOLDER_KEYS.get(provider)
        if not key:
            raise AuthenticationError(f"No API key configured for {provider}")

        try:
            import openai
        except ImportError as e:
            raise InferenceError("openai package not installed. Install with: pip install openai") from e

        self._client = openai.OpenAI(
            api_key=key,
            base_url=base_url or PROVIDER_BASE_URLS[provider],
            timeout=timeout_s,
            max_retries=0,
            default_headers=OPENROUTER_HEADERS if provider == "openrouter" else None,
        )
        logger.debug(f"OpenAI-compatible backend ready: provider={provider}")

    @property
    def provider(self) -> str:
        """Get the provider name."""
        return self._provider

    def complete(self, request: InferenceRequest) -> InferenceResponse:
        import openai

        try:
            response = self._client.chat.completions.create(
                model=request.model,
                messages=request.messages,
                temperature=request.temperature,
                max_tokens=request.max_tokens,
            )
        except openai.APIStatusError as e:
            raise _map_status_error(e, self._provider) from e
        except openai.APIError as e:
            raise TransientBackendError(f"{self._provider} request failed: {e}") from e

        if not response.choices:
            raise TransientBackendError(f"{self._provider} returned no choices")
        text = response.choices[0].message.content
        if text is None:
            raise TransientBackendError(f"{self._provider} returned empty response")

        usage = None
        if response.usage is not None:
            usage = TokenUsage(
                prompt_tokens=response.usage.prompt_tokens or 0,
                completion_tokens=response.usage.completion_tokens or 0,
                total_tokens=response.usage.total_tokens,
            )
        return InferenceResponse(text=text, usage=usage)


def _to_anthropic_content(content: Any) -> Any:
    """Convert OpenAI-style content parts into Anthropic content blocks."""
    if isinstance(content, str):
        return content

    blocks: list[dict[str, Any]] = []
    for part in content:
        if part.get("type") == "image_url":
            url = part["image_url"]["url"]
            header, _, data = url.partition(",")
            media_type = header.removeprefix("data:").split(";")[0] or "image/png"
            blocks.append(
                {
                    "type": "image",
                    "source": {"type": "base64", "media_type": media_type, "data": data},
                }
            )
        elif part.get("type") == "text":
            blocks.append({"type": "text", "text": part["text"]})
    return blocks


class AnthropicBackend(InferenceBackend):
    """Backend for the Anthropic messages API."""

    def __init__(
        self,
        api_key: str | None = None,
        timeout_s: float = 60.0,
        client: Any | None = None,
    ) -> None:
        """Initialize the backend.

        Args:
            api_key: Anthropic API key.
            timeout_s: Request timeout in seconds.
            client: Preconfigured ``anthropic.Anthropic`` client (for tests).

        Raises:
            AuthenticationError: If no API key is given.
            InferenceError: If the anthropic package is not installed.
        """
        if client is not None:
            self._client = client
            return

        if not api_key:
            raise AuthenticationError("No API key configured for anthropic")

        try:
            import anthropic
        except ImportError as e:
            raise InferenceError(
                "anthropic package not installed. Install with: pip install anthropic"
            ) from e

        self._client = anthropic.Anthropic(api_key=api_key, timeout=timeout_s, max_retries=0)

    def complete(self, request: InferenceRequest) -> InferenceResponse:
        import anthropic

        system = "\n\n".join(
            m["content"] for m in request.messages if m.get("role") == "system" and isinstance(m.get("content"), str)
        )
        messages = [
            {"role": m["role"], "content": _to_anthropic_content(m["content"])}
            for m in request.messages
            if m.get("role") != "system"
        ]

        kwargs: dict[str, Any] = {
            "model": request.model.removeprefix("anthropic/"),
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
            "messages": messages,
        }
        if system:
            kwargs["system"] = system

        try:
            message = self._client.messages.create(**kwargs)
        except anthropic.APIStatusError as e:
            raise _map_status_error(e, "anthropic") from e
        except anthropic.APIError as e:
            raise TransientBackendError(f"anthropic request failed: {e}") from e

        text = "".join(block.text for block in message.content if hasattr(block, "text"))
        if not text:
            raise TransientBackendError("Unexpected response format from Anthropic API")

        usage = None
        if getattr(message, "usage", None) is not None:
            usage = TokenUsage(
                prompt_tokens=message.usage.input_tokens,
                completion_tokens=message.usage.output_tokens,
            )
        return InferenceResponse(text=text, usage=usage)


def create_backend(settings: LLMConfig, api_key: str | None = None) -> InferenceBackend:
    """Create the backend named by the LLM settings.

    Args:
        settings: LLM configuration section.
        api_key: Provider API key, if the provider needs one.

    Returns:
        A ready backend.

    Raises:
        ValueError: If the provider is unknown.
        AuthenticationError: If a hosted provider has no API key.
    """
    if settings.provider == "anthropic":
        return AnthropicBackend(api_key=api_key, timeout_s=settings.timeout_s)
    return OpenAICompatibleBackend(
        provider=settings.provider,
        api_key=api_key,
        base_url=settings.base_url,
        timeout_s=settings.timeout_s,
    )
