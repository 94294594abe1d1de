"""Anti-repetition heuristics for the decision loop.

The guard watches which actions the model keeps choosing during the
current run and produces plain-text advice for the next prompt. It never
vetoes or rewrites the model's choice.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field

from console_pilot.models.actions import DEFAULT_ACTIONS, ActionVocabulary

logger = logging.getLogger(__name__)


@dataclass
class DecisionContext:
    """Recent-decision context for the current run.

    Attributes:
        last_action_id: Most recently executed action.
        streak: How many times in a row ``last_action_id`` was executed.
        recent_action_counts: Per-action counts since the last reset.
    """

    last_action_id: str | None = None
    streak: int = 0
    recent_action_counts: dict[str, int] = field(default_factory=dict)

    @property
    def total(self) -> int:
        """Number of actions in the current window."""
        return sum(self.recent_action_counts.values())


class RepetitionGuard:
    """Detects repeated and alternating actions.

    Rules, in priority order:
    1. The same action ran ``max_consecutive`` times in a row: urge a
       different action.
    2. Exactly two actions fill the whole window and each ran at least
       twice: report an alternation loop naming both.

    When any count exceeds ``saturation`` the window is wiped so old
    counts stop biasing advice after the agent breaks out of a loop.

    Example:
        >>> guard = RepetitionGuard()
        >>> guard.record("START")
        >>> guard.record("START")
        >>> guard.should_warn() is not None
        True
    """

    def __init__(
        self,
        vocabulary: ActionVocabulary | None = None,
        max_consecutive: int = 2,
        saturation: int = 8,
    ) -> None:
        """Initialize the guard.

        Args:
            vocabulary: Legal actions, used to suggest alternatives.
            max_consecutive: Repeats in a row that trigger advice.
            saturation: Count above which the window is wiped.
        """
        if max_consecutive < 1:
            raise ValueError("max_consecutive must be >= 1")
        if saturation < 1:
            raise ValueError("saturation must be >= 1")
        self._vocabulary = vocabulary or ActionVocabulary(DEFAULT_ACTIONS)
        self._max_consecutive = max_consecutive
        self._saturation = saturation
        self._context = DecisionContext()

    @property
    def context(self) -> DecisionContext:
        """Get the live decision context."""
        return self._context

    def record(self, action_id: str) -> None:
        """Record an executed action."""
        context = self._context
        if action_id == context.last_action_id:
            context.streak += 1
        else:
            context.last_action_id = action_id
            context.streak = 1
        context.recent_action_counts[action_id] = context.recent_action_counts.get(action_id, 0) + 1

    def maybe_reset(self, counts: Mapping[str, int] | None = None) -> bool:
        """Wipe the counts if any of them exceeds the saturation ceiling.

        Args:
            counts: Counts to inspect. Defaults to the live window.

        Returns:
            True if the window was wiped.
        """
        counts = self._context.recent_action_counts if counts is None else counts
        if any(count > self._saturation for count in counts.values()):
            logger.info(f"Resetting repetition counts (saturation {self._saturation}): {dict(counts)}")
            self._context.recent_action_counts = {}
            return True
        return False

    def should_warn(self, context: DecisionContext | None = None) -> str | None:
        """Produce advice for the next prompt, if the agent looks stuck.

        Args:
            context: Context to inspect. Defaults to the live context.

        Returns:
            Advice text, or None when no rule fires.
        """
        context = context or self._context
        last = context.last_action_id

        if last is not None and context.streak >= self._max_consecutive:
            alternatives = ", ".join(self._vocabulary.others(last)) or "another button"
            return (
                f'IMPORTANT: You just pressed "{last}" {context.streak} times in a row. '
                f"You MUST choose a different button this time to avoid getting stuck. "
                f"Try one of: {alternatives}."
            )

        counts = context.recent_action_counts
        if len(counts) == 2:
            (first, first_count), (second, second_count) = sorted(
                counts.items(), key=lambda item: item[1], reverse=True
            )
            if first_count >= 2 and second_count >= 2:
                alternatives = ", ".join(self._vocabulary.others(first, second)) or "another button"
                return (
                    f"WARNING: You're stuck in a pattern alternating between {first} and {second}. "
                    f"Try something completely different, like {alternatives}, to break out of this loop."
                )

        return None
