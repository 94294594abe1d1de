"""Response parsing for model output.

The model is asked to answer in three labeled sections::

    OBSERVATION: what is on screen
    REASONING: why the next button helps
    DECISION: A

Models do not always comply, so parsing falls back to scanning the whole
text for any vocabulary token before giving up.
"""

from __future__ import annotations

import logging
import re

from console_pilot.models.actions import DEFAULT_ACTIONS, ActionVocabulary
from console_pilot.models.decisions import InvalidResponse, ParsedDecision

logger = logging.getLogger(__name__)

_OBSERVATION_RE = re.compile(r"OBSERVATION:\s*(.*?)(?=REASONING:|DECISION:|$)", re.IGNORECASE | re.DOTALL)
_REASONING_RE = re.compile(r"REASONING:\s*(.*?)(?=DECISION:|$)", re.IGNORECASE | re.DOTALL)
_DECISION_LINE_RE = re.compile(r"DECISION:\s*([^\n]*)", re.IGNORECASE)


class ResponseParser:
    """Extracts a validated action from free-form model output.

    Extraction order:
    1. The labeled ``DECISION:`` field. The first vocabulary token on that
       line wins, so ``DECISION: press "a" now`` still yields ``A``.
    2. A whole-word scan of the full text. Upper-case occurrences are
       preferred over other casings; among equals the earliest wins.
    3. Otherwise an InvalidResponse.

    Example:
        >>> parser = ResponseParser()
        >>> parser.parse("decision: up").action_id
        'UP'
        >>> bool(parser.parse("I have no idea"))
        False
    """

    def __init__(self, vocabulary: ActionVocabulary | None = None) -> None:
        """Initialize the parser.

        Args:
            vocabulary: Legal action tokens. Uses the default console
                buttons if None.
        """
        self._vocabulary = vocabulary or ActionVocabulary(DEFAULT_ACTIONS)
        # Longest first so SELECT is not shadowed by a shorter token.
        alternatives = "|".join(
            re.escape(token) for token in sorted(self._vocabulary.tokens, key=len, reverse=True)
        )
        self._token_re = re.compile(rf"(?<![A-Za-z0-9_])({alternatives})(?![A-Za-z0-9_])", re.IGNORECASE)

    @property
    def vocabulary(self) -> ActionVocabulary:
        """Get the action vocabulary."""
        return self._vocabulary

    def parse(self, raw_text: str | None) -> ParsedDecision | InvalidResponse:
        """Parse model output.

        Args:
            raw_text: Full model output.

        Returns:
            ParsedDecision when a vocabulary token was found, otherwise
            InvalidResponse.
        """
        text = raw_text or ""
        if not text.strip():
            return InvalidResponse(raw_text=text, reason="empty response")

        observation = self._extract(_OBSERVATION_RE, text)
        reasoning = self._extract(_REASONING_RE, text)

        decision_match = _DECISION_LINE_RE.search(text)
        if decision_match:
            token = self._scan(decision_match.group(1))
            if token:
                return ParsedDecision(
                    action_id=token,
                    observation=observation,
                    reasoning=reasoning,
                    raw_text=text,
                    source="decision_field",
                )
            logger.debug(f"DECISION field has no vocabulary token: {decision_match.group(1)!r}")

        token = self._scan(text)
        if token:
            logger.debug(f"Recovered action {token} from unlabeled text")
            return ParsedDecision(
                action_id=token,
                observation=observation,
                reasoning=reasoning,
                raw_text=text,
                source="text_scan",
            )

        logger.info(f"No valid action in response: {text[:100]!r}")
        return InvalidResponse(raw_text=text)

    def _scan(self, text: str) -> str | None:
        """Earliest token, preferring upper-case spellings over prose words."""
        matches = list(self._token_re.finditer(text))
        if not matches:
            return None
        exact = [m for m in matches if m.group(1).isupper() or m.group(1).isdigit()]
        chosen = (exact or matches)[0]
        return self._vocabulary.normalize(chosen.group(1))

    @staticmethod
    def _extract(pattern: re.Pattern[str], text: str) -> str | None:
        match = pattern.search(text)
        if not match:
            return None
        value = match.group(1).strip()
        return value or None
