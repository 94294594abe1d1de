"""Prompt templates and request assembly for the decision loop."""

from console_pilot.core.prompts.builder import PromptBuilder, PromptConfig, is_vision_model
from console_pilot.core.prompts.templates import (
    PROMPT_VERSION,
    SYSTEM_PROMPT,
    TEXT_PROMPT_TEMPLATE,
    VISION_PROMPT_TEMPLATE,
)

__all__ = [
    "PROMPT_VERSION",
    "SYSTEM_PROMPT",
    "TEXT_PROMPT_TEMPLATE",
    "VISION_PROMPT_TEMPLATE",
    "PromptBuilder",
    "PromptConfig",
    "is_vision_model",
]
