"""
Canonical Key Builder v1.0.0

Derives a stable, game-specific identity string for a catalog card so that
observations from different sources can be matched to the same item:

    onepiece:OP01-016
    mtg:neo:123
    pokemon:sv1:25:normal
    yugioh:LOB:001
    lorcana:tfc:12

Each game's recipe is a KeyScheme. Schemes are plain configuration injected into
CanonicalKeyBuilder; the defaults below cover every game the catalog carries.
Blank or whitespace-only fields count as missing, and a key is only produced
when the game's required fields are present. Pure: no I/O, no state.
"""
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Optional, Tuple


@dataclass(frozen=True)
class CardIdentity:
    """The identifying fields of a card; every game uses a different subset."""
    category: Optional[str] = None
    set_code: Optional[str] = None
    card_number: Optional[str] = None
    collector_number: Optional[str] = None
    card_code: Optional[str] = None
    variant: Optional[str] = None
    language: Optional[str] = None

    @classmethod
    def from_item(cls, item: Any) -> "CardIdentity":
        """Read identity fields off a MarketItem (or any object with those attributes)."""
        return cls(
            category=getattr(item, "category", None),
            set_code=getattr(item, "set_code", None),
            card_number=getattr(item, "card_number", None),
            collector_number=getattr(item, "collector_number", None),
            card_code=getattr(item, "card_code", None),
            variant=getattr(item, "variant", None),
            language=getattr(item, "language", None),
        )


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


# =============================================================================
# KEY RECIPES
# =============================================================================

def _onepiece_key(card: CardIdentity) -> Optional[str]:
    code = _clean(card.card_code)
    if not code:
        set_code, number = _clean(card.set_code), _clean(card.card_number)
        if set_code and number:
            code = f"{set_code}-{number}"
    if code:
        return f"onepiece:{code.upper()}"
    return None


def _mtg_key(card: CardIdentity) -> Optional[str]:
    set_code = _clean(card.set_code)
    number = _clean(card.collector_number) or _clean(card.card_number)
    if set_code and number:
        return f"mtg:{set_code.lower()}:{number}"
    return None


def _pokemon_key(card: CardIdentity) -> Optional[str]:
    set_code = _clean(card.set_code)
    number = _clean(card.collector_number) or _clean(card.card_number)
    if set_code and number:
        variant = _clean(card.variant) or "normal"
        return f"pokemon:{set_code.lower()}:{number}:{variant}"
    return None


def _yugioh_key(card: CardIdentity) -> Optional[str]:
    set_code = _clean(card.set_code)
    number = _clean(card.card_number)
    if set_code and number:
        return f"yugioh:{set_code.upper()}:{number}"
    return None


def _lorcana_key(card: CardIdentity) -> Optional[str]:
    set_code = _clean(card.set_code)
    number = _clean(card.collector_number) or _clean(card.card_number)
    if set_code and number:
        return f"lorcana:{set_code.lower()}:{number}"
    return None


@dataclass(frozen=True)
class KeyScheme:
    """How one game builds its key, and which category names select it."""
    game: str
    aliases: Tuple[str, ...]
    build: Callable[[CardIdentity], Optional[str]]


DEFAULT_KEY_SCHEMES: Tuple[KeyScheme, ...] = (
    KeyScheme("onepiece", ("one-piece", "onepiece"), _onepiece_key),
    KeyScheme("mtg", ("mtg", "magic"), _mtg_key),
    KeyScheme("pokemon", ("pokemon",), _pokemon_key),
    KeyScheme("yugioh", ("yugioh",), _yugioh_key),
    KeyScheme("lorcana", ("lorcana",), _lorcana_key),
)


class CanonicalKeyBuilder:
    """Resolves a category to its KeyScheme and builds the key."""

    def __init__(self, schemes: Iterable[KeyScheme] = DEFAULT_KEY_SCHEMES):
        self._by_category: Dict[str, KeyScheme] = {}
        for scheme in schemes:
            for alias in scheme.aliases:
                self._by_category[alias.lower()] = scheme

    def scheme_for(self, category: Optional[str]) -> Optional[KeyScheme]:
        cat = _clean(category)
        if not cat:
            return None
        return self._by_category.get(cat.lower())

    def build(self, card: CardIdentity) -> Optional[str]:
        """Return the canonical key, or None for unknown games / missing fields."""
        scheme = self.scheme_for(card.category)
        if scheme is None:
            return None
        return scheme.build(card)

    def build_for_item(self, item: Any) -> Optional[str]:
        return self.build(CardIdentity.from_item(item))


_default_builder = CanonicalKeyBuilder()


def build_canonical_key(
    category: Optional[str],
    set_code: Optional[str] = None,
    card_number: Optional[str] = None,
    collector_number: Optional[str] = None,
    card_code: Optional[str] = None,
    variant: Optional[str] = None,
    language: Optional[str] = None,
) -> Optional[str]:
    """
    Build a canonical key with the default schemes.

    Language is accepted for completeness but no default scheme uses it.
    """
    return _default_builder.build(
        CardIdentity(
            category=category,
            set_code=set_code,
            card_number=card_number,
            collector_number=collector_number,
            card_code=card_code,
            variant=variant,
            language=language,
        )
    )
