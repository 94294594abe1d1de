"""Action execution and effect measurement.

The evaluator presses a button on the emulation engine, waits for the game
to react, and compares the screen before and after. A changed screen counts
as success. This is a coarse signal: an animated background also "succeeds".
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from console_pilot.interfaces.emulator import EmulationEngine, PixelBuffer
from console_pilot.models.records import ActionRecord

logger = logging.getLogger(__name__)


class FrameUnavailableError(Exception):
    """Raised when the emulation engine returns no frame."""

    pass


@dataclass
class EvaluatorConfig:
    """Timing for a single button press.

    Attributes:
        hold_ms: How long the button stays pressed.
        settle_ms: Wait after release before capturing the after frame.
    """

    hold_ms: int = 500
    settle_ms: int = 300

    def __post_init__(self) -> None:
        if self.hold_ms < 0 or self.settle_ms < 0:
            raise ValueError("hold_ms and settle_ms must be >= 0")


def compute_pixel_delta(before: PixelBuffer | bytes, after: PixelBuffer | bytes) -> int:
    """Count differing sample positions between two frames.

    Comparison is byte-wise over the common length; any length difference
    counts as that many differing positions.

    Args:
        before: Frame captured before the action.
        after: Frame captured after the action.

    Returns:
        Number of differing bytes (always >= 0).
    """
    a = before.data if isinstance(before, PixelBuffer) else before
    b = after.data if isinstance(after, PixelBuffer) else after
    common = min(len(a), len(b))
    if a[:common] == b[:common]:
        delta = 0
    else:
        delta = sum(1 for x, y in zip(a[:common], b[:common]) if x != y)
    return delta + abs(len(a) - len(b))


def _sleep_ms(duration_ms: int) -> bool:
    time.sleep(duration_ms / 1000)
    return False


class OutcomeEvaluator:
    """Executes one action and measures its effect on the screen.

    Once the button is pressed it is always released, even if the hold wait
    raises. The default waits are not interruptible, so a press that has
    started always runs its full hold and settle.

    Example:
        >>> evaluator = OutcomeEvaluator(engine)
        >>> record = evaluator.execute("START", game_id=session.game_id)
        >>> record.success
        True
    """

    def __init__(
        self,
        engine: EmulationEngine,
        config: EvaluatorConfig | None = None,
        wait: Callable[[int], bool] | None = None,
    ) -> None:
        """Initialize the evaluator.

        Args:
            engine: Emulation engine to act on.
            config: Hold and settle timing. Uses defaults if None.
            wait: Sleep function taking milliseconds. Its return value is
                ignored. Defaults to ``time.sleep``.
        """
        self._engine = engine
        self._config = config or EvaluatorConfig()
        self._wait = wait or _sleep_ms

    @property
    def config(self) -> EvaluatorConfig:
        """Get the timing configuration."""
        return self._config

    def execute(
        self,
        action_id: str,
        *,
        game_id: str,
        observation: str | None = None,
        reasoning: str | None = None,
        raw_output: str | None = None,
    ) -> ActionRecord:
        """Press a button and record what changed.

        Args:
            action_id: Vocabulary token to press.
            game_id: Game the action belongs to.
            observation: Model's description of the screen.
            reasoning: Model's reasoning.
            raw_output: Full model output.

        Returns:
            The resulting ActionRecord.

        Raises:
            FrameUnavailableError: If either frame could not be captured.
                No button is pressed when the before frame is missing.
        """
        before = self._engine.get_screen_frame()
        if before is None:
            raise FrameUnavailableError(f"No frame before {action_id}")

        self._engine.press_button(action_id)
        try:
            self._wait(self._config.hold_ms)
        finally:
            self._engine.release_button(action_id)

        self._wait(self._config.settle_ms)

        after = self._engine.get_screen_frame()
        if after is None:
            raise FrameUnavailableError(f"No frame after {action_id}")

        delta = compute_pixel_delta(before, after)
        logger.debug(f"Action {action_id}: pixel delta {delta}")

        return ActionRecord(
            game_id=game_id,
            action_id=action_id,
            before_frame=before.to_png(),
            after_frame=after.to_png(),
            pixel_delta=delta,
            success=delta > 0,
            observation=observation,
            reasoning=reasoning,
            raw_output=raw_output,
        )
