"""Inference backends and the rate-limit retry wrapper."""

from console_pilot.inference.providers import (
    PROVIDER_BASE_URLS,
    VALID_PROVIDERS,
    AnthropicBackend,
    OpenAICompatibleBackend,
    create_backend,
)
from console_pilot.inference.retry import RetryingInference

__all__ = [
    "PROVIDER_BASE_URLS",
    "VALID_PROVIDERS",
    "AnthropicBackend",
    "OpenAICompatibleBackend",
    "RetryingInference",
    "create_backend",
]
