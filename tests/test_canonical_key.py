"""
Tests for canonical key derivation.
"""
import pytest

from cardboom_pricing.services.canonical_key import (
    CanonicalKeyBuilder,
    CardIdentity,
    KeyScheme,
    build_canonical_key,
)
from tests.conftest import make_item


class TestDefaultSchemes:
    def test_onepiece_uses_card_code(self):
        assert build_canonical_key("one-piece", card_code="op01-016") == "onepiece:OP01-016"

    def test_onepiece_falls_back_to_set_and_number(self):
        assert build_canonical_key("onepiece", set_code="op01", card_number="016") == "onepiece:OP01-016"

    def test_mtg_prefers_collector_number(self):
        key = build_canonical_key("MTG", set_code="NEO", card_number="99", collector_number="123")
        assert key == "mtg:neo:123"

    def test_magic_alias(self):
        assert build_canonical_key("magic", set_code="NEO", card_number="7") == "mtg:neo:7"

    def test_pokemon_default_variant(self):
        assert build_canonical_key("pokemon", set_code="SV1", card_number="25") == "pokemon:sv1:25:normal"

    def test_pokemon_explicit_variant(self):
        key = build_canonical_key("pokemon", set_code="SV1", card_number="25", variant="reverse-holo")
        assert key == "pokemon:sv1:25:reverse-holo"

    def test_yugioh_uppercases_set(self):
        assert build_canonical_key("yugioh", set_code="lob", card_number="001") == "yugioh:LOB:001"

    def test_lorcana(self):
        assert build_canonical_key("lorcana", set_code="TFC", card_number="12") == "lorcana:tfc:12"


class TestMissingFields:
    @pytest.mark.parametrize("category,fields", [
        ("pokemon", {"set_code": "SV1"}),
        ("pokemon", {"card_number": "25"}),
        ("mtg", {"set_code": "NEO"}),
        ("yugioh", {"set_code": "LOB", "collector_number": "001"}),
        ("onepiece", {"set_code": "OP01"}),
        ("lorcana", {}),
    ])
    def test_required_fields_missing(self, category, fields):
        assert build_canonical_key(category, **fields) is None

    def test_whitespace_counts_as_missing(self):
        assert build_canonical_key("pokemon", set_code="   ", card_number="25") is None

    def test_unknown_game(self):
        assert build_canonical_key("figures", set_code="X", card_number="1") is None

    def test_no_category(self):
        assert build_canonical_key(None, set_code="X", card_number="1") is None


def test_builder_is_deterministic():
    builder = CanonicalKeyBuilder()
    card = CardIdentity(category="Pokemon", set_code="base1", card_number="4")
    assert builder.build(card) == builder.build(card) == "pokemon:base1:4:normal"


def test_build_for_item_reads_model_fields():
    item = make_item(category="yugioh", set_code="sdk", card_number="001")
    assert CanonicalKeyBuilder().build_for_item(item) == "yugioh:SDK:001"


def test_custom_scheme_injection():
    scheme = KeyScheme("digimon", ("digimon",), lambda card: f"digimon:{card.card_code}" if card.card_code else None)
    builder = CanonicalKeyBuilder([scheme])
    assert builder.build(CardIdentity(category="digimon", card_code="BT1-001")) == "digimon:BT1-001"
    assert builder.build(CardIdentity(category="pokemon", set_code="a", card_number="1")) is None
