"""Tests for track text normalization and match scoring."""

from __future__ import annotations

import pytest
from hypothesis import given, strategies as st

from track_enrichment.utils.string_similarity import (
    CONTAINMENT_SCORE,
    EXACT_MATCH_SCORE,
    edit_distance_score,
    levenshtein_distance,
    match_score,
    normalize_track_text,
    round_half_away_from_zero,
    track_key,
)


class TestNormalizeTrackText:
    """Tests for normalize_track_text."""

    @pytest.mark.parametrize("raw,expected", [
        ("Let It Be (Remastered)", "let it be"),
        ("Song [Live] {Bonus}", "song"),
        ("Track (Deluxe (2009 Edition))", "track"),
        ("Artist feat. Someone", "artist someone"),
        ("Artist ft. Someone", "artist someone"),
        ("Artist featuring Someone", "artist someone"),
        ("  Many    spaces\there ", "many spaces here"),
        ("Unbalanced ( bracket", "unbalanced bracket"),
        ("", ""),
    ])
    def test_normalization_examples(self, raw, expected):
        assert normalize_track_text(raw) == expected

    def test_featuring_inside_words_is_kept(self):
        assert normalize_track_text("Defeat.") == "defeat."
        assert normalize_track_text("Left.") == "left."

    def test_repeated_featuring_tokens(self):
        assert normalize_track_text("feat.feat.") == ""

    def test_track_key(self):
        assert track_key("The Beatles", "Let It Be (Remastered)") == "the beatles - let it be"


@given(st.text())
def test_normalize_is_idempotent(text: str) -> None:
    """Normalizing twice gives the same result as normalizing once."""
    once = normalize_track_text(text)
    assert normalize_track_text(once) == once


@given(st.text(min_size=1))
def test_self_score_is_exact(text: str) -> None:
    normalized = normalize_track_text(text)
    value = normalized or text
    assert match_score(value, value) == EXACT_MATCH_SCORE


@given(st.text(), st.text())
def test_score_is_symmetric(a: str, b: str) -> None:
    assert match_score(a, b) == match_score(b, a)


@given(st.text(), st.text())
def test_score_is_bounded(a: str, b: str) -> None:
    assert 0 <= match_score(a, b) <= 100


class TestMatchScore:
    """Tests for the tiered match score."""

    def test_exact_match_ignores_case(self):
        assert match_score("abba - waterloo", "ABBA - Waterloo") == EXACT_MATCH_SCORE

    def test_containment(self):
        assert match_score("the beatles - let it be", "beatles - let it be") == CONTAINMENT_SCORE
        assert match_score("beatles - let it be", "the beatles - let it be") == CONTAINMENT_SCORE

    def test_edit_distance_fallback(self):
        # "kitten" -> "sitting" is 3 edits over 7 characters
        assert match_score("kitten", "sitting") == round_half_away_from_zero((1 - 3 / 7) * 100)
        assert match_score("kitten", "sitting") == 57

    def test_two_empty_strings(self):
        assert edit_distance_score("", "") == 100
        assert match_score("", "") == 100

    def test_completely_different(self):
        assert match_score("abc", "xyz") == 0


class TestHelpers:
    """Tests for the distance and rounding helpers."""

    @pytest.mark.parametrize("a,b,expected", [
        ("", "", 0),
        ("abc", "", 3),
        ("", "abc", 3),
        ("kitten", "sitting", 3),
        ("flaw", "lawn", 2),
        ("same", "same", 0),
    ])
    def test_levenshtein_distance(self, a, b, expected):
        assert levenshtein_distance(a, b) == expected

    @pytest.mark.parametrize("value,expected", [
        (0.5, 1),
        (1.5, 2),
        (2.5, 3),
        (2.4, 2),
        (-0.5, -1),
        (-2.5, -3),
        (0.0, 0),
    ])
    def test_round_half_away_from_zero(self, value, expected):
        assert round_half_away_from_zero(value) == expected
