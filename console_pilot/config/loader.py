"""Configuration loader for Console Pilot.

Loads configuration from YAML files and environment variables.
Environment variables override YAML values using the CONSOLEPILOT_ prefix.
Nested keys use double underscores: CONSOLEPILOT_LLM__MODEL=openai/gpt-4o
"""

from __future__ import annotations

import contextlib
import logging
import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from console_pilot.config.secrets import require_provider_api_key
from console_pilot.models.actions import DEFAULT_ACTIONS

logger = logging.getLogger(__name__)

ENV_PREFIX = "CONSOLEPILOT_"


class LoopSettings(BaseModel):
    """Decision loop settings."""

    max_consecutive_errors: int = Field(default=5, ge=1, le=100)
    readiness_poll_ms: int = Field(default=1000, ge=0, le=60000)
    max_actions: int | None = Field(default=None, ge=1, description="Stop after N actions")


class BackoffSettings(BaseModel):
    """Request pacing and rate-limit backoff settings."""

    initial_delay_ms: int = Field(default=3000, ge=0)
    max_delay_ms: int = Field(default=15000, ge=0)
    rate_limit_multiplier: float = Field(default=1.5, ge=1.0)
    exhausted_multiplier: float = Field(default=3.0, ge=1.0)
    exhausted_max_delay_ms: int = Field(default=60000, ge=0)
    success_decay: float = Field(default=0.9, gt=0.0, le=1.0)
    retry_base_ms: int = Field(default=1000, gt=0)
    retry_jitter_ms: int = Field(default=500, ge=0)
    max_retries: int = Field(default=3, ge=0, le=10)

    @model_validator(mode="after")
    def _check_bounds(self) -> BackoffSettings:
        if self.max_delay_ms < self.initial_delay_ms:
            raise ValueError("max_delay_ms must be >= initial_delay_ms")
        if self.exhausted_max_delay_ms < self.max_delay_ms:
            raise ValueError("exhausted_max_delay_ms must be >= max_delay_ms")
        if self.retry_jitter_ms > self.retry_base_ms:
            raise ValueError("retry_jitter_ms must be <= retry_base_ms")
        return self


class GuardSettings(BaseModel):
    """Repetition guard settings."""

    repeat_threshold: int = Field(default=2, ge=1)
    saturation_threshold: int = Field(default=8, ge=1)


class EvaluatorSettings(BaseModel):
    """Button press timing."""

    hold_ms: int = Field(default=500, ge=0, le=10000)
    settle_ms: int = Field(default=300, ge=0, le=10000)


class LLMConfig(BaseModel):
    """LLM provider settings."""

    provider: str = Field(
        default="openrouter",
        pattern="^(openrouter|openai|lmstudio|ollama|anthropic)$",
    )
    model: str = Field(default="anthropic/claude-3-haiku")
    base_url: str | None = Field(default=None, description="Override the provider endpoint")
    max_tokens: int = Field(default=1000, ge=1, le=100000)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    timeout_s: float = Field(default=60.0, gt=0.0, le=600.0)
    vision: bool | None = Field(default=None, description="None guesses from the model name")
    vision_failure_threshold: int = Field(default=2, ge=0)

    def api_key(self) -> str | None:
        """API key for the provider, read from the environment.

        Returns:
            The key, or None for local servers that need none.

        Raises:
            MissingAPIKeyError: If a hosted provider has no key set.
        """
        return require_provider_api_key(self.provider)


class ActionsConfig(BaseModel):
    """Action vocabulary."""

    buttons: list[str] = Field(default_factory=lambda: list(DEFAULT_ACTIONS), min_length=1)

    @field_validator("buttons", mode="before")
    @classmethod
    def _split_buttons(cls, value: Any) -> Any:
        # Env overrides arrive as "UP,DOWN,A".
        if isinstance(value, str):
            return [token.strip() for token in value.split(",") if token.strip()]
        return value


class MemoryConfig(BaseModel):
    """Outcome history settings."""

    database_path: str = Field(default="data/outcomes.db")
    batch_size: int = Field(default=100, ge=1, le=10000)


class LoggingConfig(BaseModel):
    """Logging settings."""

    level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    format: str = Field(default="readable", pattern="^(readable|json)$")
    file: str | None = Field(default=None)


class Config(BaseModel):
    """Root configuration model."""

    loop: LoopSettings = Field(default_factory=LoopSettings)
    backoff: BackoffSettings = Field(default_factory=BackoffSettings)
    guard: GuardSettings = Field(default_factory=GuardSettings)
    evaluator: EvaluatorSettings = Field(default_factory=EvaluatorSettings)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    actions: ActionsConfig = Field(default_factory=ActionsConfig)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def _get_env_value(key: str) -> str | None:
    """Get environment variable with CONSOLEPILOT_ prefix."""
    return os.environ.get(f"{ENV_PREFIX}{key.upper()}")


def _apply_env_overrides(data: dict[str, Any], prefix: str = "") -> dict[str, Any]:
    """Apply environment variable overrides to config data.

    Environment variables use CONSOLEPILOT_ prefix with double underscores
    for nesting. Example: CONSOLEPILOT_BACKOFF__MAX_RETRIES=5 sets
    backoff.max_retries to 5.
    """
    result = data.copy()

    for key, value in result.items():
        env_key = f"{prefix}__{key}" if prefix else key

        if isinstance(value, dict):
            result[key] = _apply_env_overrides(value, env_key)
        else:
            env_value = _get_env_value(env_key)
            if env_value is not None:
                # Convert to appropriate type based on original value
                if isinstance(value, bool):
                    result[key] = env_value.lower() in ("true", "1", "yes")
                elif isinstance(value, int):
                    result[key] = int(env_value)
                elif isinstance(value, float):
                    result[key] = float(env_value)
                else:
                    result[key] = env_value

    return result


def _deep_merge(base: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    """Deep merge ``updates`` into a copy of ``base``."""
    result = base.copy()
    for key, value in updates.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def default_config_path() -> Path:
    """Path of the bundled default configuration file."""
    project_root = Path(__file__).parent.parent.parent
    return project_root / "configs" / "default.yaml"


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, uses
            configs/default.yaml when present, else built-in defaults.

    Returns:
        Validated Config object.

    Raises:
        FileNotFoundError: If an explicit config file doesn't exist.
        ValidationError: If config values are invalid.
    """
    if config_path is None:
        path = default_config_path()
        if not path.exists():
            logger.debug(f"No default config at {path}; using built-in defaults")
            path = None
    else:
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

    file_data: dict[str, Any] = {}
    if path is not None:
        with open(path) as f:
            file_data = yaml.safe_load(f) or {}

    # Defaults first so every key can be overridden from the environment.
    data = _deep_merge(Config().model_dump(), file_data)
    data = _apply_env_overrides(data)

    return Config.model_validate(data)


def get_default_config() -> Config:
    """Get default configuration without loading from file."""
    return Config()


# Type for config change callbacks
ConfigCallback = Callable[[Config], None]


class ConfigManager:
    """Manages configuration with runtime update support.

    Example:
        >>> manager = ConfigManager(load_config())
        >>> manager.subscribe(lambda config: print(config.llm.model))
        >>> manager.update({"llm": {"model": "openai/gpt-4o-mini"}})
        openai/gpt-4o-mini
    """

    def __init__(self, config: Config) -> None:
        self._config = config
        self._subscribers: list[ConfigCallback] = []

    @property
    def config(self) -> Config:
        """Get the current configuration."""
        return self._config

    def get(self) -> Config:
        """Get the current configuration."""
        return self._config

    def subscribe(self, callback: ConfigCallback) -> None:
        """Subscribe to configuration changes."""
        self._subscribers.append(callback)

    def unsubscribe(self, callback: ConfigCallback) -> None:
        """Unsubscribe from configuration changes."""
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def update(self, updates: dict[str, Any]) -> Config:
        """Update configuration at runtime.

        Merges updates into current config, validates, and notifies subscribers.

        Args:
            updates: Dictionary of updates. Can be nested.
                Example: {"backoff": {"initial_delay_ms": 5000}}

        Returns:
            Updated Config object.

        Raises:
            ValidationError: If updates result in invalid configuration.
        """
        merged = _deep_merge(self._config.model_dump(), updates)
        new_config = Config.model_validate(merged)
        self._config = new_config

        for subscriber in self._subscribers:
            try:
                subscriber(new_config)
            except Exception as e:
                # Log but don't fail on subscriber errors
                logger.warning(f"Config subscriber error: {e}")

        return new_config

    def reset(self) -> Config:
        """Reset configuration to defaults."""
        self._config = Config()

        for subscriber in self._subscribers:
            with contextlib.suppress(Exception):
                subscriber(self._config)

        return self._config
