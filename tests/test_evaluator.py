"""Tests for the OutcomeEvaluator."""

from __future__ import annotations

import pytest

from console_pilot.core.evaluator import (
    EvaluatorConfig,
    FrameUnavailableError,
    OutcomeEvaluator,
    compute_pixel_delta,
)
from tests.conftest import FakeEmulator, solid_frame


class TestComputePixelDelta:
    """Tests for compute_pixel_delta."""

    def test_identical_frames(self) -> None:
        assert compute_pixel_delta(solid_frame(7), solid_frame(7)) == 0

    def test_fully_different_frames(self) -> None:
        assert compute_pixel_delta(solid_frame(0), solid_frame(1)) == 64

    def test_partial_difference(self) -> None:
        assert compute_pixel_delta(b"\x00\x01\x02\x03", b"\x00\x09\x02\x09") == 2

    def test_length_difference_counts(self) -> None:
        assert compute_pixel_delta(b"\x00\x00", b"\x00\x00\x01\x01\x01") == 3
        assert compute_pixel_delta(b"\x05\x00\x00", b"") == 3


class TestEvaluatorConfig:
    """Tests for EvaluatorConfig."""

    def test_defaults(self) -> None:
        config = EvaluatorConfig()
        assert config.hold_ms == 500
        assert config.settle_ms == 300

    def test_rejects_negative(self) -> None:
        with pytest.raises(ValueError):
            EvaluatorConfig(hold_ms=-1)


class TestOutcomeEvaluator:
    """Tests for executing and measuring actions."""

    def _evaluator(self, emulator: FakeEmulator, waits: list[int] | None = None) -> OutcomeEvaluator:
        recorded = waits if waits is not None else []

        def wait(ms: int) -> bool:
            recorded.append(ms)
            return False

        return OutcomeEvaluator(emulator, wait=wait)

    def test_unchanged_screen_is_failure(self) -> None:
        emulator = FakeEmulator()
        record = self._evaluator(emulator).execute("START", game_id="game-1")
        assert record.pixel_delta == 0
        assert record.success is False
        assert record.action_id == "START"
        assert record.game_id == "game-1"

    def test_changed_screen_is_success(self) -> None:
        emulator = FakeEmulator(change_on_press=True)
        record = self._evaluator(emulator).execute(
            "A",
            game_id="game-1",
            observation="menu",
            reasoning="confirm",
            raw_output="DECISION: A",
        )
        assert record.pixel_delta == 64
        assert record.success is True
        assert record.observation == "menu"
        assert record.reasoning == "confirm"
        assert record.raw_output == "DECISION: A"

    def test_frames_stored_as_png(self) -> None:
        record = self._evaluator(FakeEmulator()).execute("B", game_id="game-1")
        assert record.before_frame.startswith(b"\x89PNG")
        assert record.after_frame.startswith(b"\x89PNG")

    def test_press_hold_release_settle_order(self) -> None:
        emulator = FakeEmulator()
        waits: list[int] = []
        self._evaluator(emulator, waits).execute("LEFT", game_id="game-1")
        assert emulator.calls == [("press", "LEFT"), ("release", "LEFT")]
        assert waits == [500, 300]

    def test_custom_timing(self) -> None:
        waits: list[int] = []

        def wait(ms: int) -> bool:
            waits.append(ms)
            return False

        evaluator = OutcomeEvaluator(FakeEmulator(), EvaluatorConfig(hold_ms=50, settle_ms=10), wait=wait)
        evaluator.execute("UP", game_id="game-1")
        assert waits == [50, 10]
        assert evaluator.config.hold_ms == 50

    def test_release_even_when_hold_fails(self) -> None:
        emulator = FakeEmulator()

        def wait(ms: int) -> bool:
            raise RuntimeError("interrupted")

        evaluator = OutcomeEvaluator(emulator, wait=wait)
        with pytest.raises(RuntimeError):
            evaluator.execute("A", game_id="game-1")
        assert emulator.calls == [("press", "A"), ("release", "A")]

    def test_missing_before_frame_presses_nothing(self) -> None:
        emulator = FakeEmulator(frames=[None])
        with pytest.raises(FrameUnavailableError):
            self._evaluator(emulator).execute("A", game_id="game-1")
        assert emulator.calls == []

    def test_missing_after_frame(self) -> None:
        emulator = FakeEmulator(frames=[solid_frame(0), None])
        with pytest.raises(FrameUnavailableError):
            self._evaluator(emulator).execute("A", game_id="game-1")
        assert emulator.calls == [("press", "A"), ("release", "A")]
