"""Shared test doubles."""

from __future__ import annotations

import pytest

from console_pilot.interfaces.emulator import EmulationEngine, PixelBuffer
from console_pilot.models.actions import GameSession


def solid_frame(value: int, width: int = 4, height: int = 4) -> PixelBuffer:
    """Build an RGBA frame with every byte set to ``value``."""
    return PixelBuffer(width=width, height=height, data=bytes([value]) * (width * height * 4))


class FakeEmulator(EmulationEngine):
    """Scripted emulation engine.

    By default the screen never changes. With ``change_on_press`` every
    press draws a new solid frame. With ``frames`` the screen reads are
    served from the list, then None once it is empty.
    """

    def __init__(
        self,
        *,
        ready: bool = True,
        change_on_press: bool = False,
        frames: list[PixelBuffer | None] | None = None,
    ) -> None:
        self.ready = ready
        self.change_on_press = change_on_press
        self.frames = list(frames) if frames is not None else None
        self.frame = solid_frame(0)
        self.calls: list[tuple[str, str]] = []
        self._presses = 0

    def press_button(self, action_id: str) -> None:
        self.calls.append(("press", action_id))
        if self.change_on_press:
            self._presses += 1
            self.frame = solid_frame(self._presses % 256)

    def release_button(self, action_id: str) -> None:
        self.calls.append(("release", action_id))

    def get_screen_frame(self) -> PixelBuffer | None:
        if self.frames is not None:
            return self.frames.pop(0) if self.frames else None
        return self.frame

    def reset(self) -> None:
        self.calls.append(("reset", ""))

    def is_ready(self) -> bool:
        return self.ready

    @property
    def presses(self) -> list[str]:
        return [action for kind, action in self.calls if kind == "press"]


@pytest.fixture
def emulator() -> FakeEmulator:
    return FakeEmulator()


@pytest.fixture
def session() -> GameSession:
    return GameSession(game_id="a" * 64, title="Tetris")
