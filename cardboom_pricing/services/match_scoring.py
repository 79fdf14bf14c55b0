"""
Match Confidence Scoring v1.0.0

Scores how likely an external listing/product name refers to a catalog item.
Scores are on a 0.0-1.0 scale and drive the ingestion gates:

    >= 0.90        auto-apply (price forwarded to PriceValidator)
    [0.70, 0.90)   human review queue
    < 0.70         recorded only

Rules (PositionalOverlapScorer):
1. Source exposes a structured card number that equals ours -> 1.0
2. Names normalized to [a-z0-9] are equal -> 0.95
3. Either normalized name is empty -> 0.0
4. One contains the other -> 0.90
5. Otherwise positional character overlap against the longer name

Known limitation: rule 5 compares characters position by position, so names
with reordered words ("Charizard Base Set" vs "Base Set Charizard") score low.
Kept as-is so historical confidences remain comparable.
"""
import logging
import re
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Protocol

logger = logging.getLogger(__name__)

_NON_ALNUM = re.compile(r"[^a-z0-9]")


class MatchScorer(Protocol):
    """Anything that can score an external name against a catalog name."""

    def score(self, external_name: str, internal_name: str, has_exact_number: bool) -> float:
        ...


def normalize_name(name: Optional[str]) -> str:
    """Lowercase and drop every character outside [a-z0-9]."""
    if not name:
        return ""
    return _NON_ALNUM.sub("", name.lower())


def _round_half_up(value: float) -> float:
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


class PositionalOverlapScorer:
    """Default scorer. Deterministic and side-effect free."""

    EXACT_NUMBER_SCORE = 1.0
    EXACT_NAME_SCORE = 0.95
    CONTAINS_SCORE = 0.90

    def score(self, external_name: str, internal_name: str, has_exact_number: bool) -> float:
        if has_exact_number:
            return self.EXACT_NUMBER_SCORE

        ext = normalize_name(external_name)
        internal = normalize_name(internal_name)

        if ext == internal and ext:
            return self.EXACT_NAME_SCORE

        if not ext or not internal:
            return 0.0

        if ext in internal or internal in ext:
            return self.CONTAINS_SCORE

        # Ties go to the internal name as the reference string
        if len(ext) > len(internal):
            longer, shorter = ext, internal
        else:
            longer, shorter = internal, ext

        matches = sum(1 for i, ch in enumerate(shorter) if longer[i] == ch)
        return _round_half_up(matches / len(longer))


_default_scorer = PositionalOverlapScorer()


def calculate_match_confidence(
    external_name: str,
    internal_name: str,
    has_exact_number: bool = False,
) -> float:
    """Score with the default PositionalOverlapScorer."""
    return _default_scorer.score(external_name, internal_name, has_exact_number)
