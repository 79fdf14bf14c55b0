from cardboom_pricing.models.market_item import MarketItem, MarketItemGrade, Listing, GRADE_TIERS
from cardboom_pricing.models.price_event import PriceEvent
from cardboom_pricing.models.price_history import PriceHistory
from cardboom_pricing.models.price_aggregation_log import PriceAggregationLog
from cardboom_pricing.models.match_review import MatchReviewQueue
from cardboom_pricing.models.audit_log import AdminAuditLog
from cardboom_pricing.models.job_lease import JobLease

__all__ = [
    "MarketItem",
    "MarketItemGrade",
    "Listing",
    "GRADE_TIERS",
    "PriceEvent",
    "PriceHistory",
    "PriceAggregationLog",
    "MatchReviewQueue",
    "AdminAuditLog",
    "JobLease",
]
