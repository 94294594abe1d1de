"""Tests for the ResponseParser."""

from __future__ import annotations

from console_pilot.core.parser import ResponseParser
from console_pilot.models.actions import ActionVocabulary
from console_pilot.models.decisions import InvalidResponse, ParsedDecision

WELL_FORMED = """OBSERVATION: The title screen is showing with a blinking prompt.
REASONING: The game has not started yet, so START should begin it.
DECISION: START"""


class TestResponseParser:
    """Tests for structured and fallback parsing."""

    def test_well_formed_response(self) -> None:
        result = ResponseParser().parse(WELL_FORMED)
        assert isinstance(result, ParsedDecision)
        assert result.action_id == "START"
        assert result.source == "decision_field"
        assert result.observation == "The title screen is showing with a blinking prompt."
        assert result.reasoning == "The game has not started yet, so START should begin it."
        assert result.raw_text == WELL_FORMED

    def test_decision_is_case_insensitive(self) -> None:
        result = ResponseParser().parse("decision: up")
        assert isinstance(result, ParsedDecision)
        assert result.action_id == "UP"

    def test_decision_with_extra_words(self) -> None:
        result = ResponseParser().parse('DECISION: press "a" now')
        assert isinstance(result, ParsedDecision)
        assert result.action_id == "A"

    def test_decision_prefers_upper_case_token(self) -> None:
        result = ResponseParser().parse("DECISION: a good move is START")
        assert isinstance(result, ParsedDecision)
        assert result.action_id == "START"
        assert result.source == "decision_field"

    def test_decision_field_wins_over_earlier_mentions(self) -> None:
        text = "REASONING: LEFT is blocked by a wall.\nDECISION: RIGHT"
        result = ResponseParser().parse(text)
        assert isinstance(result, ParsedDecision)
        assert result.action_id == "RIGHT"

    def test_select_not_shadowed(self) -> None:
        result = ResponseParser().parse("DECISION: SELECT")
        assert isinstance(result, ParsedDecision)
        assert result.action_id == "SELECT"

    def test_fallback_scan_without_labels(self) -> None:
        result = ResponseParser().parse("I think the best move is DOWN.")
        assert isinstance(result, ParsedDecision)
        assert result.action_id == "DOWN"
        assert result.source == "text_scan"
        assert result.observation is None

    def test_fallback_prefers_upper_case(self) -> None:
        result = ResponseParser().parse("Move down a little, then press B.")
        assert isinstance(result, ParsedDecision)
        assert result.action_id == "B"

    def test_fallback_when_decision_field_is_unusable(self) -> None:
        result = ResponseParser().parse("REASONING: Press LEFT to dodge.\nDECISION: JUMP")
        assert isinstance(result, ParsedDecision)
        assert result.action_id == "LEFT"
        assert result.source == "text_scan"
        assert result.reasoning == "Press LEFT to dodge."

    def test_tokens_inside_words_are_ignored(self) -> None:
        result = ResponseParser().parse("Nothing useful here: UPDATE, SELECTION, BATTLE.")
        assert isinstance(result, InvalidResponse)

    def test_out_of_vocabulary_is_invalid(self) -> None:
        result = ResponseParser().parse("DECISION: JUMP")
        assert isinstance(result, InvalidResponse)
        assert not result
        assert result.raw_text == "DECISION: JUMP"

    def test_empty_response(self) -> None:
        for text in ("", "   \n", None):
            result = ResponseParser().parse(text)
            assert isinstance(result, InvalidResponse)
            assert result.reason == "empty response"

    def test_custom_vocabulary(self) -> None:
        parser = ResponseParser(ActionVocabulary(["FIRE", "WAIT"]))
        assert parser.vocabulary.tokens == ("FIRE", "WAIT")
        result = parser.parse("DECISION: fire")
        assert isinstance(result, ParsedDecision)
        assert result.action_id == "FIRE"
        assert isinstance(parser.parse("DECISION: START"), InvalidResponse)
