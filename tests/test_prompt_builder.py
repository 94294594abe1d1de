"""Tests for prompt assembly."""

from __future__ import annotations

import base64

import pytest

from console_pilot.core.prompts import (
    PROMPT_VERSION,
    SYSTEM_PROMPT,
    PromptBuilder,
    PromptConfig,
    is_vision_model,
)
from console_pilot.core.repetition import DecisionContext
from console_pilot.models.actions import ActionVocabulary, GameSession
from tests.conftest import solid_frame


@pytest.fixture
def builder() -> PromptBuilder:
    return PromptBuilder()


@pytest.fixture
def context() -> DecisionContext:
    return DecisionContext(last_action_id="A", streak=1, recent_action_counts={"A": 1, "START": 2})


class TestIsVisionModel:
    """Tests for the model-name heuristic."""

    @pytest.mark.parametrize(
        "model",
        ["anthropic/claude-3-haiku", "openai/gpt-4o-mini", "google/gemini-pro", "llava-vision-7b"],
    )
    def test_vision_families(self, model: str) -> None:
        assert is_vision_model(model) is True

    @pytest.mark.parametrize("model", ["meta-llama/llama-3-8b", "mistral-7b-instruct", "gpt-3.5-turbo"])
    def test_text_only_families(self, model: str) -> None:
        assert is_vision_model(model) is False

    def test_case_insensitive(self) -> None:
        assert is_vision_model("Anthropic/Claude-3-Opus") is True


class TestPromptBuilder:
    """Tests for PromptBuilder.build."""

    def test_prompt_version(self) -> None:
        assert PROMPT_VERSION

    def test_vision_request(self, builder: PromptBuilder, session: GameSession, context: DecisionContext) -> None:
        frame = solid_frame(3)
        request = builder.build(frame, session, context, "A: 1/1, START: 0/2", True)

        assert request.has_image is True
        assert request.model == "anthropic/claude-3-haiku"
        assert request.temperature == 0.7
        assert request.max_tokens == 1000
        assert request.messages[0] == {"role": "system", "content": SYSTEM_PROMPT}

        user = request.messages[1]
        assert user["role"] == "user"
        text_part, image_part = user["content"]
        assert text_part["type"] == "text"
        assert image_part["type"] == "image_url"
        url = image_part["image_url"]["url"]
        assert url.startswith("data:image/png;base64,")
        assert base64.b64decode(url.split(",", 1)[1]).startswith(b"\x89PNG")

    def test_prompt_contents(self, builder: PromptBuilder, session: GameSession, context: DecisionContext) -> None:
        request = builder.build(solid_frame(0), session, context, "A: 1/1, START: 0/2", True)
        text = request.text
        assert '"Tetris"' in text
        assert "UP, DOWN, LEFT, RIGHT, A, B, START, SELECT" in text
        assert "Last decision: A" in text
        assert '{"A": 1, "START": 2}' in text
        assert "A: 1/1, START: 0/2" in text
        assert "OBSERVATION:" in text
        assert "DECISION:" in text

    def test_first_cycle_placeholders(self, builder: PromptBuilder, session: GameSession) -> None:
        request = builder.build(solid_frame(0), session, DecisionContext(), "", True)
        assert "Last decision: None" in request.text
        assert "No data yet" in request.text

    def test_advice_appended(self, builder: PromptBuilder, session: GameSession, context: DecisionContext) -> None:
        advice = 'IMPORTANT: You just pressed "START" 2 times in a row.'
        request = builder.build(solid_frame(0), session, context, "No data yet", True, advice=advice)
        assert advice in request.text

    def test_no_advice_by_default(self, builder: PromptBuilder, session: GameSession, context: DecisionContext) -> None:
        request = builder.build(solid_frame(0), session, context, "No data yet", True)
        assert "IMPORTANT" not in request.text

    def test_text_only_model(self, builder: PromptBuilder, session: GameSession, context: DecisionContext) -> None:
        request = builder.build(solid_frame(0), session, context, "No data yet", False)
        assert request.has_image is False
        content = request.messages[-1]["content"]
        assert isinstance(content, str)
        assert "image_url" not in str(request.messages)
        assert "Screen captured (4x4 pixels)" in content
        assert "This is Tetris" in content
        assert "OBSERVATION:" not in content

    def test_missing_frame_falls_back_to_text(
        self, builder: PromptBuilder, session: GameSession, context: DecisionContext
    ) -> None:
        request = builder.build(None, session, context, "No data yet", True)
        assert request.has_image is False
        assert "No screen capture available" in request.text

    def test_vision_degraded_after_threshold(
        self, builder: PromptBuilder, session: GameSession, context: DecisionContext
    ) -> None:
        at_threshold = builder.build(solid_frame(0), session, context, "", True, vision_failures=2)
        assert at_threshold.has_image is True
        degraded = builder.build(solid_frame(0), session, context, "", True, vision_failures=3)
        assert degraded.has_image is False

    def test_without_system_prompt(self, session: GameSession, context: DecisionContext) -> None:
        builder = PromptBuilder(PromptConfig(include_system_prompt=False))
        request = builder.build(solid_frame(0), session, context, "", True)
        assert len(request.messages) == 1
        assert request.messages[0]["role"] == "user"

    def test_custom_config(self, session: GameSession, context: DecisionContext) -> None:
        config = PromptConfig(
            model="local-model",
            temperature=0.2,
            max_tokens=200,
            vocabulary=ActionVocabulary(["A", "B"]),
        )
        request = PromptBuilder(config).build(None, session, context, "", False)
        assert request.model == "local-model"
        assert request.temperature == 0.2
        assert request.max_tokens == 200
        assert "Available buttons: A, B" in request.text


class TestDescribeScreen:
    """Tests for the text-only screen description."""

    @pytest.mark.parametrize(
        ("title", "expected"),
        [
            ("Super Mario Land", "platformer"),
            ("Pokemon Red", "RPG"),
            ("The Legend of Zelda", "RPG"),
        ],
    )
    def test_genre_hints(self, title: str, expected: str) -> None:
        session = GameSession(game_id="b" * 64, title=title)
        assert expected in PromptBuilder.describe_screen(session, None)

    def test_unknown_game_has_no_hint(self) -> None:
        session = GameSession(game_id="c" * 64, title="Kirby")
        description = PromptBuilder.describe_screen(session, solid_frame(0))
        assert "This is" not in description
        assert "Game: Kirby" in description

    def test_untitled_game_uses_short_id(self) -> None:
        session = GameSession(game_id="0123456789" + "f" * 54)
        description = PromptBuilder.describe_screen(session, None)
        assert "Game: game 01234567" in description
