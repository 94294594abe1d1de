"""Shared data models for Console Pilot.

Value models use Pydantic for validation and serialization.
"""

from console_pilot.models.actions import (
    DEFAULT_ACTIONS,
    ActionVocabulary,
    GameSession,
    compute_game_id,
)
from console_pilot.models.decisions import InvalidResponse, ParsedDecision
from console_pilot.models.records import ActionRecord, ActionStats

__all__ = [
    "DEFAULT_ACTIONS",
    "ActionRecord",
    "ActionStats",
    "ActionVocabulary",
    "GameSession",
    "InvalidResponse",
    "ParsedDecision",
    "compute_game_id",
]
