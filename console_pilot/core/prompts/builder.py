"""Request assembly for the inference backend.

The PromptBuilder turns the current frame, the game identity, the recent
decision context and the outcome digest into an InferenceRequest. It picks
between a vision request (frame embedded as a data URL) and a text-only
request with a heuristic description of the game.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field

from console_pilot.core.prompts.templates import (
    GENRE_HINTS,
    SYSTEM_PROMPT,
    TEXT_PROMPT_TEMPLATE,
    VISION_PROMPT_TEMPLATE,
)
from console_pilot.core.repetition import DecisionContext
from console_pilot.interfaces.emulator import PixelBuffer
from console_pilot.interfaces.inference import InferenceRequest
from console_pilot.models.actions import DEFAULT_ACTIONS, ActionVocabulary, GameSession

logger = logging.getLogger(__name__)

_VISION_MODEL_MARKERS = ("claude", "gpt-4", "gemini", "vision")


def is_vision_model(model: str) -> bool:
    """Guess from the model name whether it accepts images.

    Args:
        model: Model identifier, e.g. ``"anthropic/claude-3-haiku"``.

    Returns:
        True if the name matches a known vision-capable family.
    """
    name = model.lower()
    return any(marker in name for marker in _VISION_MODEL_MARKERS)


@dataclass
class PromptConfig:
    """Configuration for request assembly.

    Attributes:
        model: Model identifier placed on every request.
        temperature: Sampling temperature.
        max_tokens: Maximum completion tokens.
        vision_failure_threshold: Consecutive vision rate limits tolerated
            before falling back to text-only requests.
        include_system_prompt: Whether to send a system message.
        vocabulary: Buttons listed as available.
    """

    model: str = "anthropic/claude-3-haiku"
    temperature: float = 0.7
    max_tokens: int = 1000
    vision_failure_threshold: int = 2
    include_system_prompt: bool = True
    vocabulary: ActionVocabulary = field(default_factory=lambda: ActionVocabulary(DEFAULT_ACTIONS))


class PromptBuilder:
    """Builds inference requests for one decision cycle.

    Example:
        >>> builder = PromptBuilder(PromptConfig(model="openai/gpt-4o-mini"))
        >>> request = builder.build(frame, session, context, "No data yet", True)
        >>> request.has_image
        True
    """

    def __init__(self, config: PromptConfig | None = None) -> None:
        self._config = config or PromptConfig()

    @property
    def config(self) -> PromptConfig:
        """Get the configuration."""
        return self._config

    def build(
        self,
        frame: PixelBuffer | None,
        session: GameSession,
        context: DecisionContext,
        stats_summary: str,
        vision_capable: bool,
        *,
        advice: str | None = None,
        vision_failures: int = 0,
    ) -> InferenceRequest:
        """Build the request for the next decision.

        Args:
            frame: Current screen, or None if unavailable.
            session: Game being played.
            context: Recent decision context for this run.
            stats_summary: Outcome digest, e.g. ``"A: 1/2, START: 0/3"``.
            vision_capable: Whether the model accepts images.
            advice: Repetition advice to append, if any.
            vision_failures: Consecutive rate limits on vision requests.

        Returns:
            A vision request when the model accepts images, a frame is
            available and vision has not degraded; otherwise text-only.
        """
        degraded = vision_failures > self._config.vision_failure_threshold
        if degraded and vision_capable:
            logger.info(
                f"Vision degraded after {vision_failures} rate-limited requests; using text-only prompt"
            )

        fields = {
            "title": session.display_title,
            "buttons": ", ".join(self._config.vocabulary),
            "last_action": context.last_action_id or "None",
            "history": json.dumps(context.recent_action_counts),
            "stats": stats_summary or "No data yet",
            "advice": f"\n\n{advice}" if advice else "",
        }

        if vision_capable and frame is not None and not degraded:
            text = VISION_PROMPT_TEMPLATE.format(**fields)
            content: str | list[dict] = [
                {"type": "text", "text": text},
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:image/png;base64,{frame.to_base64_png()}"},
                },
            ]
            has_image = True
        else:
            content = TEXT_PROMPT_TEMPLATE.format(
                analysis=self.describe_screen(session, frame), **fields
            )
            has_image = False

        messages: list[dict] = []
        if self._config.include_system_prompt:
            messages.append({"role": "system", "content": SYSTEM_PROMPT})
        messages.append({"role": "user", "content": content})

        return InferenceRequest(
            model=self._config.model,
            messages=messages,
            temperature=self._config.temperature,
            max_tokens=self._config.max_tokens,
            has_image=has_image,
        )

    @staticmethod
    def describe_screen(session: GameSession, frame: PixelBuffer | None) -> str:
        """Heuristic text description of the game for text-only models."""
        lines = []
        if frame is not None:
            lines.append(f"Screen captured ({frame.width}x{frame.height} pixels)")
        else:
            lines.append("No screen capture available")
        lines.append(f"Game: {session.display_title}")
        lines.append("Image data is not sent to this model.")

        title = session.title.lower()
        for keywords, hint in GENRE_HINTS:
            if any(keyword in title for keyword in keywords):
                lines.append(hint)
                break

        return "\n".join(lines)
