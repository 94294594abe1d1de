"""Outcome records for executed actions."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated

from pydantic import BaseModel, Field, model_validator


class ActionRecord(BaseModel):
    """One executed action and its measured effect.

    Records are immutable once created. ``success`` is derived from
    ``pixel_delta`` and the two must always agree.
    """

    game_id: str = Field(..., min_length=1, description="Game identity the action belongs to")
    timestamp: datetime = Field(default_factory=datetime.now, description="When the action ran")
    action_id: str = Field(..., min_length=1, description="Vocabulary token that was pressed")
    before_frame: bytes = Field(..., description="PNG-encoded frame captured before the press")
    after_frame: bytes = Field(..., description="PNG-encoded frame captured after settling")
    pixel_delta: Annotated[int, Field(ge=0)] = Field(
        ..., description="Number of differing sample positions between the frames"
    )
    success: bool = Field(..., description="True when the screen changed")
    observation: str | None = Field(default=None, description="Model's description of the screen")
    reasoning: str | None = Field(default=None, description="Model's reasoning")
    raw_output: str | None = Field(default=None, description="Full model output")

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _success_matches_delta(self) -> ActionRecord:
        if self.success != (self.pixel_delta > 0):
            raise ValueError(
                f"success={self.success} does not match pixel_delta={self.pixel_delta}"
            )
        return self


class ActionStats(BaseModel):
    """Attempt and success counts for one action."""

    attempts: Annotated[int, Field(ge=0)] = 0
    successes: Annotated[int, Field(ge=0)] = 0

    model_config = {"frozen": True}

    @property
    def success_rate(self) -> float:
        """Fraction of attempts that changed the screen (0.0 to 1.0)."""
        if self.attempts == 0:
            return 0.0
        return self.successes / self.attempts

    def __str__(self) -> str:
        return f"{self.successes}/{self.attempts}"
