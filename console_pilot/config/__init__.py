"""Configuration management for Console Pilot."""

from console_pilot.config.loader import Config, ConfigManager, LLMConfig, load_config
from console_pilot.config.secrets import (
    MissingAPIKeyError,
    load_environment_secrets,
    read_provider_api_key,
    require_provider_api_key,
)

__all__ = [
    "Config",
    "ConfigManager",
    "LLMConfig",
    "MissingAPIKeyError",
    "load_config",
    "load_environment_secrets",
    "read_provider_api_key",
    "require_provider_api_key",
]
