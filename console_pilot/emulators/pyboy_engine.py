"""PyBoy-backed emulation engine.

PyBoy only advances when ticked, so the engine runs the emulator on its
own thread at real-time speed. Button events and screen reads take the
same lock as the tick so they never interleave with a frame.

Example:
    >>> engine = PyBoyEngine("tetris.gb")
    >>> engine.start()
    >>> engine.press_button("START")
    >>> frame = engine.get_screen_frame()
    >>> engine.close()
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any

from console_pilot.interfaces.emulator import EmulationEngine, EmulatorError, PixelBuffer

logger = logging.getLogger(__name__)

# Vocabulary token -> PyBoy WindowEvent name suffix
_BUTTON_EVENTS: dict[str, str] = {
    "UP": "ARROW_UP",
    "DOWN": "ARROW_DOWN",
    "LEFT": "ARROW_LEFT",
    "RIGHT": "ARROW_RIGHT",
    "A": "BUTTON_A",
    "B": "BUTTON_B",
    "START": "BUTTON_START",
    "SELECT": "BUTTON_SELECT",
}

FRAMES_PER_SECOND = 60


class PyBoyEngine(EmulationEngine):
    """Runs a Game Boy ROM in PyBoy without a window."""

    def __init__(
        self,
        rom_path: str | Path,
        *,
        window: str = "null",
        boot_frames: int = 120,
        pyboy: Any | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            rom_path: Path to the ROM file.
            window: PyBoy window type ("null" for headless).
            boot_frames: Frames to run before reporting ready.
            pyboy: Preconstructed PyBoy instance (for tests).

        Raises:
            EmulatorError: If pyboy is not installed or the ROM cannot be loaded.
        """
        self._rom_path = Path(rom_path)
        self._window = window
        self._boot_frames = boot_frames
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._frames = 0

        try:
            from pyboy.utils import WindowEvent
        except ImportError as e:
            raise EmulatorError("pyboy package not installed. Install with: pip install pyboy") from e

        self._events = {
            token: (getattr(WindowEvent, f"PRESS_{name}"), getattr(WindowEvent, f"RELEASE_{name}"))
            for token, name in _BUTTON_EVENTS.items()
        }

        if pyboy is not None:
            self._pyboy = pyboy
        else:
            if not self._rom_path.exists():
                raise EmulatorError(f"ROM not found: {self._rom_path}")
            from pyboy import PyBoy

            try:
                self._pyboy = PyBoy(str(self._rom_path), window=window)
            except Exception as e:
                raise EmulatorError(f"Failed to load ROM {self._rom_path}: {e}") from e

        self._pyboy.set_emulation_speed(1)
        logger.debug(f"PyBoyEngine initialized: {self._rom_path.name}")

    @property
    def frames(self) -> int:
        """Frames emulated so far."""
        return self._frames

    @property
    def title(self) -> str:
        """Cartridge title reported by PyBoy, falling back to the file name."""
        title = getattr(self._pyboy, "cartridge_title", None)
        return str(title).strip() if title else self._rom_path.stem

    def start(self) -> None:
        """Start ticking the emulator on a background thread."""
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._tick_loop, name="PyBoyTick", daemon=True)
        self._thread.start()

    def _tick_loop(self) -> None:
        period = 1.0 / FRAMES_PER_SECOND
        while not self._stop_event.is_set():
            with self._lock:
                running = self._pyboy.tick()
                self._frames += 1
            if running is False:
                logger.info("Emulator requested shutdown")
                self._stop_event.set()
                break
            self._stop_event.wait(period)

    def _event(self, action_id: str, index: int) -> Any:
        try:
            return self._events[action_id.upper()][index]
        except KeyError as e:
            raise EmulatorError(f"Unknown button: {action_id}") from e

    def press_button(self, action_id: str) -> None:
        with self._lock:
            self._pyboy.send_input(self._event(action_id, 0))

    def release_button(self, action_id: str) -> None:
        with self._lock:
            self._pyboy.send_input(self._event(action_id, 1))

    def get_screen_frame(self) -> PixelBuffer | None:
        with self._lock:
            if self._frames == 0:
                return None
            image = self._pyboy.screen.image
            if image is None:
                return None
            return PixelBuffer.from_image(image.copy(), mode="RGBA")

    def reset(self) -> None:
        """Restart the ROM from power-on by reloading it."""
        with self._lock:
            from pyboy import PyBoy

            self._pyboy.stop(save=False)
            self._pyboy = PyBoy(str(self._rom_path), window=self._window)
            self._pyboy.set_emulation_speed(1)
            self._frames = 0

    def is_ready(self) -> bool:
        return (
            self._thread is not None
            and self._thread.is_alive()
            and self._frames >= self._boot_frames
        )

    def close(self) -> None:
        """Stop the tick thread and shut the emulator down."""
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=2.0)
        with self._lock:
            self._pyboy.stop(save=False)
        logger.debug("PyBoyEngine closed")

    def __enter__(self) -> PyBoyEngine:
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
