"""Persistent per-game outcome history."""

from console_pilot.memory.outcomes import (
    DEFAULT_DB_PATH,
    OutcomeStoreError,
    SQLiteOutcomeStore,
)

__all__ = [
    "DEFAULT_DB_PATH",
    "OutcomeStoreError",
    "SQLiteOutcomeStore",
]
