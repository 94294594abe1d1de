"""Emulation engine interface consumed by the decision loop."""

from __future__ import annotations

import base64
import io
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from PIL import Image

_MODE_CHANNELS = {"RGBA": 4, "RGB": 3, "L": 1}


class PixelBuffer:
    """A raw screen frame captured from the emulator.

    Frames are fixed-size byte buffers (RGBA by default, 160x144 on the
    reference console). Two buffers from the same engine always have the
    same length, so byte positions line up for pixel comparisons.
    """

    __slots__ = ("width", "height", "data", "mode")

    def __init__(
        self,
        width: int,
        height: int,
        data: bytes,
        mode: str = "RGBA",
    ) -> None:
        """Initialize a pixel buffer.

        Args:
            width: Frame width in pixels.
            height: Frame height in pixels.
            data: Raw pixel bytes, row-major.
            mode: Pillow mode describing the channel layout.

        Raises:
            ValueError: If the mode is unknown or the data size does not match.
        """
        if mode not in _MODE_CHANNELS:
            raise ValueError(f"Unsupported pixel mode: {mode}")
        expected = width * height * _MODE_CHANNELS[mode]
        if len(data) != expected:
            raise ValueError(
                f"Pixel data has {len(data)} bytes, expected {expected} "
                f"for {width}x{height} {mode}"
            )
        self.width = width
        self.height = height
        self.data = bytes(data)
        self.mode = mode

    def __repr__(self) -> str:
        return f"PixelBuffer({self.width}x{self.height}, mode={self.mode})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PixelBuffer):
            return NotImplemented
        return (
            self.width == other.width
            and self.height == other.height
            and self.mode == other.mode
            and self.data == other.data
        )

    def __hash__(self) -> int:
        return hash((self.width, self.height, self.mode, self.data))

    @classmethod
    def from_image(cls, image: Image.Image, mode: str = "RGBA") -> PixelBuffer:
        """Build a buffer from a Pillow image, converting to ``mode``."""
        converted = image.convert(mode)
        width, height = converted.size
        return cls(width=width, height=height, data=converted.tobytes(), mode=mode)

    def to_image(self) -> Image.Image:
        """Convert to a Pillow image."""
        from PIL import Image

        return Image.frombytes(self.mode, (self.width, self.height), self.data)

    def to_png(self) -> bytes:
        """Encode the frame as PNG bytes."""
        buffer = io.BytesIO()
        self.to_image().save(buffer, format="PNG")
        return buffer.getvalue()

    def to_base64_png(self) -> str:
        """Encode the frame as a base64 PNG string (no data-URL prefix)."""
        return base64.b64encode(self.to_png()).decode("utf-8")


class EmulationEngine(ABC):
    """Abstract interface for the console emulator.

    The decision loop only ever talks to the emulator through these five
    calls. Calls are synchronous; the loop never inspects emulator internals.
    """

    @abstractmethod
    def press_button(self, action_id: str) -> None:
        """Start holding a button.

        Args:
            action_id: Upper-case vocabulary token, e.g. ``"START"``.
        """
        ...

    @abstractmethod
    def release_button(self, action_id: str) -> None:
        """Release a previously pressed button.

        Args:
            action_id: Upper-case vocabulary token, e.g. ``"START"``.
        """
        ...

    @abstractmethod
    def get_screen_frame(self) -> PixelBuffer | None:
        """Capture the current screen.

        Returns:
            The current frame, or None if no frame is available yet.
        """
        ...

    @abstractmethod
    def reset(self) -> None:
        """Reset the running game."""
        ...

    @abstractmethod
    def is_ready(self) -> bool:
        """Check whether the emulator is running and accepts input.

        Returns:
            True if the emulator is ready, False otherwise.
        """
        ...


class EmulatorError(Exception):
    """Error raised when the emulator cannot be driven."""

    pass
