"""
Outlier Detection

Flags observations that are not a single, genuine copy of the card: lots,
bundles, proxies, empty boxes and so on. Terms come from PricingRules and are
matched case-insensitively on word boundaries over title + description, so
"Lot of 10" is flagged while "Black Lotus" is not.

Also provides the median-absolute-deviation filter used by daily aggregation.
"""
import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from statistics import median
from typing import Iterable, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)


@dataclass
class OutlierVerdict:
    is_outlier: bool
    reason: Optional[str] = None


class OutlierDetector:
    """Blocklist matcher built once per run from the configured terms."""

    def __init__(self, terms: Iterable[str]):
        self.terms: Tuple[str, ...] = tuple(t.strip().lower() for t in terms if t and t.strip())
        self._patterns = [
            (term, re.compile(r"\b" + r"\s+".join(re.escape(w) for w in term.split()) + r"\b", re.IGNORECASE))
            for term in self.terms
        ]

    def check(self, title: Optional[str], description: Optional[str] = None) -> OutlierVerdict:
        text = " ".join(part for part in (title, description) if part)
        if not text:
            return OutlierVerdict(is_outlier=False)

        for term, pattern in self._patterns:
            if pattern.search(text):
                return OutlierVerdict(is_outlier=True, reason=f"Contains blocked term: {term}")
        return OutlierVerdict(is_outlier=False)


def filter_mad_outliers(
    prices: Sequence[Decimal],
    multiplier: Decimal = Decimal("4"),
    min_samples: int = 5,
) -> List[Decimal]:
    """
    Drop prices further than `multiplier` MADs from the median.

    With fewer than `min_samples` prices, or a zero MAD, the input is returned
    unchanged.
    """
    if len(prices) < min_samples:
        return list(prices)

    center = median(prices)
    mad = median([abs(p - center) for p in prices])
    if mad == 0:
        return list(prices)

    threshold = multiplier * mad
    kept = [p for p in prices if abs(p - center) <= threshold]
    if len(kept) != len(prices):
        logger.debug(f"[OUTLIER] MAD filter dropped {len(prices) - len(kept)} of {len(prices)} prices")
    return kept
