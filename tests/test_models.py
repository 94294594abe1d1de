"""Tests for shared data models."""

from __future__ import annotations

import hashlib
from pathlib import Path

import pytest
from PIL import Image
from pydantic import ValidationError

from console_pilot.interfaces.emulator import PixelBuffer
from console_pilot.interfaces.inference import InferenceRequest, TokenUsage
from console_pilot.models import (
    DEFAULT_ACTIONS,
    ActionRecord,
    ActionStats,
    ActionVocabulary,
    GameSession,
    InvalidResponse,
    ParsedDecision,
    compute_game_id,
)


class TestActionVocabulary:
    """Tests for ActionVocabulary."""

    def test_default_buttons(self) -> None:
        vocab = ActionVocabulary()
        assert vocab.tokens == DEFAULT_ACTIONS
        assert len(vocab) == 8

    def test_normalizes_and_dedupes(self) -> None:
        vocab = ActionVocabulary(["up", " Down ", "UP", "a"])
        assert vocab.tokens == ("UP", "DOWN", "A")
        assert vocab.normalize("down") == "DOWN"
        assert vocab.normalize("jump") is None
        assert vocab.normalize(None) is None

    def test_membership(self) -> None:
        vocab = ActionVocabulary(["A", "B"])
        assert "a" in vocab
        assert "START" not in vocab
        assert 1 not in vocab
        assert list(vocab) == ["A", "B"]

    def test_others(self) -> None:
        vocab = ActionVocabulary(["UP", "A", "B", "START"])
        assert vocab.others("a", "START") == ["UP", "B"]

    def test_empty_vocabulary_is_falsy(self) -> None:
        assert not ActionVocabulary([])

    def test_rejects_bad_tokens(self) -> None:
        with pytest.raises(ValueError):
            ActionVocabulary(["A B"])


class TestGameSession:
    """Tests for GameSession and game ids."""

    def test_compute_game_id(self) -> None:
        rom = b"\x00\x01tetris"
        assert compute_game_id(rom) == hashlib.sha256(rom).hexdigest()

    def test_from_rom(self, tmp_path: Path) -> None:
        rom = tmp_path / "tetris.gb"
        rom.write_bytes(b"cartridge")
        session = GameSession.from_rom(rom)
        assert session.game_id == compute_game_id(b"cartridge")
        assert session.title == "tetris"
        assert GameSession.from_rom(rom, title="Tetris DX").title == "Tetris DX"

    def test_display_title(self) -> None:
        assert GameSession(game_id="abcdef0123", title="Tetris").display_title == "Tetris"
        assert GameSession(game_id="abcdef0123").display_title == "game abcdef01"

    def test_frozen(self) -> None:
        session = GameSession(game_id="x")
        with pytest.raises(ValidationError):
            session.title = "changed"  # type: ignore[misc]


class TestActionRecord:
    """Tests for ActionRecord validation."""

    def _record(self, **overrides: object) -> ActionRecord:
        fields: dict[str, object] = {
            "game_id": "g",
            "action_id": "A",
            "before_frame": b"png1",
            "after_frame": b"png2",
            "pixel_delta": 3,
            "success": True,
        }
        fields.update(overrides)
        return ActionRecord(**fields)  # type: ignore[arg-type]

    def test_valid_record(self) -> None:
        record = self._record()
        assert record.success is True
        assert record.observation is None

    def test_success_must_match_delta(self) -> None:
        with pytest.raises(ValidationError):
            self._record(pixel_delta=0, success=True)
        with pytest.raises(ValidationError):
            self._record(pixel_delta=5, success=False)

    def test_negative_delta_rejected(self) -> None:
        with pytest.raises(ValidationError):
            self._record(pixel_delta=-1, success=False)


class TestActionStats:
    """Tests for ActionStats."""

    def test_success_rate(self) -> None:
        assert ActionStats().success_rate == 0.0
        assert ActionStats(attempts=4, successes=1).success_rate == 0.25

    def test_str(self) -> None:
        assert str(ActionStats(attempts=3, successes=0)) == "0/3"


class TestDecisions:
    """Tests for parse result models."""

    def test_invalid_response_is_falsy(self) -> None:
        assert not InvalidResponse(raw_text="???")
        assert InvalidResponse().reason == "no vocabulary token found"

    def test_parsed_decision_is_truthy(self) -> None:
        assert ParsedDecision(action_id="A")


class TestPixelBuffer:
    """Tests for PixelBuffer."""

    def test_size_validation(self) -> None:
        with pytest.raises(ValueError):
            PixelBuffer(width=2, height=2, data=b"\x00" * 15)
        with pytest.raises(ValueError):
            PixelBuffer(width=1, height=1, data=b"\x00", mode="CMYK")

    def test_image_round_trip(self) -> None:
        image = Image.new("RGB", (3, 2), color=(10, 20, 30))
        buffer = PixelBuffer.from_image(image)
        assert buffer.mode == "RGBA"
        assert len(buffer.data) == 3 * 2 * 4
        assert buffer.to_image().getpixel((0, 0)) == (10, 20, 30, 255)

    def test_png_encoding(self) -> None:
        buffer = PixelBuffer(width=1, height=1, data=b"\x01\x02\x03\xff")
        assert buffer.to_png().startswith(b"\x89PNG")
        assert buffer.to_base64_png().startswith("iVBOR")

    def test_equality(self) -> None:
        a = PixelBuffer(width=1, height=1, data=b"\x00\x00\x00\x00")
        b = PixelBuffer(width=1, height=1, data=b"\x00\x00\x00\x00")
        assert a == b
        assert hash(a) == hash(b)


class TestInferenceModels:
    """Tests for request and usage helpers."""

    def test_token_usage_total(self) -> None:
        assert TokenUsage(10, 5).total_tokens == 15
        assert TokenUsage(10, 5, total_tokens=20).total_tokens == 20

    def test_request_text_joins_parts(self) -> None:
        request = InferenceRequest(
            model="m",
            messages=[
                {"role": "system", "content": "sys"},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": "look"},
                        {"type": "image_url", "image_url": {"url": "data:image/png;base64,xx"}},
                    ],
                },
            ],
        )
        assert request.text == "sys\nlook"
