"""Action vocabulary and game session identity."""

from __future__ import annotations

import hashlib
import re
from collections.abc import Iterable, Iterator
from pathlib import Path

from pydantic import BaseModel, Field

DEFAULT_ACTIONS: tuple[str, ...] = ("UP", "DOWN", "LEFT", "RIGHT", "A", "B", "START", "SELECT")

_TOKEN_PATTERN = re.compile(r"^[A-Z0-9_]+$")


class ActionVocabulary:
    """Closed, case-insensitive set of action tokens.

    Tokens are stored upper-case in their configured order. Anything not in
    the set is rejected, so the model can never invent a new button.

    Example:
        >>> vocab = ActionVocabulary(["UP", "down", "A"])
        >>> vocab.normalize("Down")
        'DOWN'
        >>> vocab.normalize("JUMP") is None
        True
    """

    __slots__ = ("_tokens",)

    def __init__(self, tokens: Iterable[str] = DEFAULT_ACTIONS) -> None:
        normalized: list[str] = []
        for token in tokens:
            upper = str(token).strip().upper()
            if not _TOKEN_PATTERN.match(upper):
                raise ValueError(f"Invalid action token: {token!r}")
            if upper not in normalized:
                normalized.append(upper)
        self._tokens = tuple(normalized)

    @property
    def tokens(self) -> tuple[str, ...]:
        """Tokens in configured order."""
        return self._tokens

    def normalize(self, token: str | None) -> str | None:
        """Return the canonical token, or None if it is not in the vocabulary."""
        if token is None:
            return None
        upper = token.strip().upper()
        return upper if upper in self._tokens else None

    def others(self, *exclude: str) -> list[str]:
        """Tokens other than ``exclude``, in configured order."""
        excluded = {token.upper() for token in exclude}
        return [token for token in self._tokens if token not in excluded]

    def __contains__(self, token: object) -> bool:
        return isinstance(token, str) and token.strip().upper() in self._tokens

    def __iter__(self) -> Iterator[str]:
        return iter(self._tokens)

    def __len__(self) -> int:
        return len(self._tokens)

    def __bool__(self) -> bool:
        return bool(self._tokens)

    def __repr__(self) -> str:
        return f"ActionVocabulary({', '.join(self._tokens)})"


class GameSession(BaseModel):
    """Identity of the game the loop is playing.

    ``game_id`` keys every persisted record; ``title`` is only used for
    prompt wording.
    """

    game_id: str = Field(..., description="Stable per-game identity (content hash)")
    title: str = Field(default="", description="Human-readable game title")

    model_config = {"frozen": True}

    @property
    def display_title(self) -> str:
        """Title for prompts, falling back to a short id."""
        return self.title or f"game {self.game_id[:8]}"

    @classmethod
    def from_rom(cls, rom_path: str | Path, title: str | None = None) -> GameSession:
        """Build a session from a ROM file on disk."""
        path = Path(rom_path)
        return cls(game_id=compute_game_id(path.read_bytes()), title=title or path.stem)


def compute_game_id(rom: bytes) -> str:
    """Compute the stable identity of a game image.

    Args:
        rom: Raw bytes of the loaded game image.

    Returns:
        SHA-256 hex digest.
    """
    return hashlib.sha256(rom).hexdigest()
