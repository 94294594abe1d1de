"""Outcome store interface for per-game action history."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterator

from console_pilot.models.records import ActionRecord, ActionStats

NO_DATA_DIGEST = "No data yet"


def format_digest(stats: dict[str, ActionStats]) -> str:
    """Render per-action stats as ``"A: 1/2, START: 0/3"``.

    Args:
        stats: Stats keyed by action, in display order.

    Returns:
        The digest, or NO_DATA_DIGEST when there are no attempts.
    """
    if not stats:
        return NO_DATA_DIGEST
    return ", ".join(f"{action}: {entry}" for action, entry in stats.items())


class OutcomeStore(ABC):
    """Append-only, per-game log of executed actions.

    Histories are keyed by game identity and never mix. The decision loop
    is the only writer; other readers may see slightly stale data.
    """

    @abstractmethod
    def append(self, record: ActionRecord) -> int:
        """Persist a record.

        Args:
            record: The executed action.

        Returns:
            Row id of the stored record.
        """
        ...

    @abstractmethod
    def stats(self, game_id: str) -> dict[str, ActionStats]:
        """Per-action attempt and success counts, in first-attempt order."""
        ...

    @abstractmethod
    def clear(self, game_id: str) -> int:
        """Delete all history for a game.

        Returns:
            Number of records deleted.
        """
        ...

    @abstractmethod
    def all_for(self, game_id: str) -> Iterator[ActionRecord]:
        """Iterate a game's records lazily in insertion order."""
        ...

    def summarize(self, game_id: str) -> str:
        """Plain-text digest of per-action success ratios.

        Args:
            game_id: Game to summarize.

        Returns:
            e.g. ``"A: 1/2, START: 0/3"``, or ``"No data yet"``.
        """
        return format_digest(self.stats(game_id))
