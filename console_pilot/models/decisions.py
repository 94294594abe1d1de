"""Parse results for model output."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ParsedDecision(BaseModel):
    """A validated action extracted from model output."""

    action_id: str = Field(..., min_length=1, description="Canonical vocabulary token")
    observation: str | None = Field(default=None, description="OBSERVATION field, if present")
    reasoning: str | None = Field(default=None, description="REASONING field, if present")
    raw_text: str = Field(default="", description="Full model output")
    source: str = Field(default="decision_field", description="How the token was found")

    model_config = {"frozen": True}


class InvalidResponse(BaseModel):
    """Model output that contained no usable action.

    This is a normal outcome, not an error: the loop skips action
    execution for the cycle.
    """

    raw_text: str = Field(default="", description="Full model output")
    reason: str = Field(default="no vocabulary token found")

    model_config = {"frozen": True}

    def __bool__(self) -> bool:
        return False
