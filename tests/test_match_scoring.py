"""
Tests for match confidence scoring.
"""
import pytest

from cardboom_pricing.services.match_scoring import (
    PositionalOverlapScorer,
    calculate_match_confidence,
    normalize_name,
)


def test_exact_number_wins():
    assert calculate_match_confidence("anything", "else entirely", True) == 1.0


def test_identical_names():
    assert calculate_match_confidence("Charizard", "Charizard", False) == 0.95


def test_punctuation_and_case_ignored():
    assert calculate_match_confidence("Pikachu (V-Max)!", "pikachu vmax", False) == 0.95


def test_containment():
    assert calculate_match_confidence("Charizard Base Set Holo 4/102", "Charizard", False) == 0.90
    assert calculate_match_confidence("Mew", "Mewtwo", False) == 0.90


def test_empty_name_scores_zero():
    assert calculate_match_confidence("", "Charizard", False) == 0.0
    assert calculate_match_confidence("!!!", "Charizard", False) == 0.0
    assert calculate_match_confidence("", "", False) == 0.0


def test_positional_overlap():
    # "abcd" vs "abxy": 2 of 4 positions match
    assert calculate_match_confidence("abcd", "abxy", False) == 0.5


def test_positional_overlap_rounds_half_up():
    # 5 of 8 = 0.625 -> 0.63
    assert calculate_match_confidence("abcdexxx", "abcdeyyy", False) == 0.63


def test_reordered_names_score_low():
    score = calculate_match_confidence("Charizard Base Set", "Base Set Charizard", False)
    assert score < 0.70


def test_normalize_name():
    assert normalize_name("Black Lotus (Alpha)") == "blacklotusalpha"
    assert normalize_name(None) == ""


@pytest.mark.parametrize("name", ["Charizard", "Black Lotus", "OP01-016 Luffy"])
def test_self_match_property(name):
    assert PositionalOverlapScorer().score(name, name, False) == 0.95
