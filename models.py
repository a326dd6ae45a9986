"""
Partner Attribution Data Models
===============================

Entities the attribution engine reads (partners, deals, touchpoints),
the rows it writes (attributions), and the derived scoring types.

Design Principles:
- Attribution rows only exist for won deals
- One row per (deal, partner, model); a recompute replaces the rows of a (deal, model)
- Scores are derived on demand and never persisted
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, List, Any, Tuple
from enum import Enum


# ============================================================================
# Enums and Constants
# ============================================================================

class TouchpointType(str, Enum):
    """How a partner interacted with a deal"""
    REFERRAL = "referral"
    DEMO = "demo"
    CONTENT_SHARE = "content_share"
    INTRODUCTION = "introduction"
    PROPOSAL = "proposal"
    NEGOTIATION = "negotiation"
    DEAL_REGISTRATION = "deal_registration"
    CO_SELL = "co_sell"
    TECHNICAL_ENABLEMENT = "technical_enablement"


class DealStatus(str, Enum):
    OPEN = "open"
    WON = "won"
    LOST = "lost"


class PartnerTier(str, Enum):
    """Partner standing, declared lowest to highest"""
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"


class PartnerStatus(str, Enum):
    ACTIVE = "active"
    PENDING = "pending"
    INACTIVE = "inactive"


class AttributionModel(str, Enum):
    """Attribution calculation methodologies"""
    EQUAL_SPLIT = "equal_split"      # Divide evenly among unique partners
    FIRST_TOUCH = "first_touch"      # 100% to the earliest touchpoint's partner
    LAST_TOUCH = "last_touch"        # 100% to the latest touchpoint's partner
    TIME_DECAY = "time_decay"        # exp(-lambda * days_ago) per touchpoint
    ROLE_BASED = "role_based"        # Weight by touchpoint type


class TierChange(str, Enum):
    UPGRADE = "upgrade"
    DOWNGRADE = "downgrade"
    MAINTAIN = "maintain"


class Trend(str, Enum):
    UP = "up"
    DOWN = "down"
    STABLE = "stable"


TIER_ORDER = [PartnerTier.BRONZE, PartnerTier.SILVER, PartnerTier.GOLD, PartnerTier.PLATINUM]

# Credit per touchpoint type for role_based attribution
DEFAULT_ROLE_WEIGHTS: Dict[str, float] = {
    TouchpointType.REFERRAL.value: 30,
    TouchpointType.DEMO.value: 25,
    TouchpointType.PROPOSAL.value: 25,
    TouchpointType.NEGOTIATION.value: 20,
    TouchpointType.DEAL_REGISTRATION.value: 30,
    TouchpointType.CO_SELL.value: 20,
    TouchpointType.TECHNICAL_ENABLEMENT.value: 20,
    TouchpointType.INTRODUCTION.value: 10,
    TouchpointType.CONTENT_SHARE.value: 5,
}

# Used for touchpoint types with no entry in the role weights
FALLBACK_ROLE_WEIGHT = 10

DEFAULT_TIME_DECAY_LAMBDA = 0.1


# ============================================================================
# Collaborator Entities
# ============================================================================

@dataclass
class Partner:
    """A partner company that can earn attribution credit."""
    id: str
    name: str
    commission_rate: float              # 0-100 percent of attributed revenue
    tier: Optional[PartnerTier] = PartnerTier.BRONZE
    status: PartnerStatus = PartnerStatus.ACTIVE
    organization_id: Optional[str] = None

    @property
    def current_tier(self) -> PartnerTier:
        return PartnerTier(self.tier) if self.tier else PartnerTier.BRONZE


@dataclass
class Deal:
    """A sales opportunity partners can be credited for."""
    id: str
    name: str
    amount: float
    status: DealStatus = DealStatus.OPEN
    created_at: datetime = field(default_factory=datetime.now)
    closed_at: Optional[datetime] = None
    organization_id: Optional[str] = None


@dataclass
class Touchpoint:
    """
    A timestamped interaction between a partner and a deal.

    `type` is kept as a plain string so types outside TouchpointType still
    reach role_based attribution (they get FALLBACK_ROLE_WEIGHT).
    """
    id: str
    deal_id: str
    partner_id: str
    type: str
    timestamp: datetime
    weight: Optional[float] = None      # Explicit role_based credit override
    organization_id: Optional[str] = None

    def __post_init__(self):
        if isinstance(self.type, TouchpointType):
            self.type = self.type.value


# ============================================================================
# Attribution Results
# ============================================================================

@dataclass
class PartnerShare:
    """One partner's share of a deal under one model (0-100)."""
    partner_id: str
    percentage: float


@dataclass
class Attribution:
    """
    Persisted attribution row: what a partner earned on a deal under a model.

    Uniquely keyed by (deal_id, partner_id, model).
    """
    deal_id: str
    partner_id: str
    model: AttributionModel
    percentage: float                   # 0-100, 2 decimals
    amount: float                       # deal amount share, rounded to cents
    commission_amount: float            # amount * commission rate, rounded to cents
    calculated_at: datetime = field(default_factory=datetime.now)
    id: Optional[int] = None
    organization_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "deal_id": self.deal_id,
            "partner_id": self.partner_id,
            "model": getattr(self.model, "value", self.model),
            "percentage": self.percentage,
            "amount": self.amount,
            "commission_amount": self.commission_amount,
            "calculated_at": self.calculated_at.isoformat(),
            "organization_id": self.organization_id,
        }


@dataclass
class SkippedShare:
    """A share dropped because its partner record could not be resolved."""
    model: AttributionModel
    partner_id: str
    percentage: float


@dataclass
class CalculationResult:
    """Result of materializing attribution for one deal."""
    deal_id: str
    deal_amount: float
    models_calculated: List[AttributionModel]
    results: List[Attribution] = field(default_factory=list)
    skipped_shares: List[SkippedShare] = field(default_factory=list)

    def results_for(self, model: AttributionModel) -> List[Attribution]:
        return [r for r in self.results if r.model == model]


@dataclass
class DeleteResult:
    deleted_count: int = 0


@dataclass
class BackfillResult:
    """Summary of a batch attribution backfill."""
    deals_processed: int = 0
    attributions_created: int = 0
    failures: Dict[str, str] = field(default_factory=dict)


# ============================================================================
# Scoring
# ============================================================================

@dataclass
class ScoreDimension:
    score: int          # 0-100
    weight: float       # 0-1
    label: str
    detail: str         # human-readable explanation


@dataclass
class ScoringConfig:
    """Dimension weights (summing to 1.0) and minimum scores per tier."""
    weights: Dict[str, float] = field(default_factory=lambda: {
        "revenue": 0.35,
        "pipeline": 0.25,
        "engagement": 0.25,
        "velocity": 0.15,
    })
    tier_thresholds: Dict[str, float] = field(default_factory=lambda: {
        "platinum": 85,
        "gold": 65,
        "silver": 40,
        # below silver = bronze
    })
    high_pipeline_threshold: float = 100000.0


@dataclass
class PartnerMetrics:
    """Raw per-partner aggregates the dimension scores are computed from."""
    partner_id: str
    total_revenue: float = 0.0
    revenue_deal_count: int = 0
    pipeline_value: float = 0.0
    open_deal_count: int = 0
    engagement_count: int = 0           # last 30 days count 2x, 30-90 days 1x
    recent_touchpoints: int = 0         # last 30 days
    previous_touchpoints: int = 0       # 30-60 days ago
    total_touchpoints: int = 0
    won_deal_count: int = 0
    avg_days_to_close: Optional[float] = None


@dataclass
class PeerCohort:
    """
    Maxima across the partners scored together.

    Every dimension is a partner's value as a fraction of the cohort maximum,
    so this is all a single partner's score depends on besides its own metrics.
    """
    max_revenue: float = 1.0
    max_pipeline: float = 1.0
    max_engagement: float = 1.0
    max_avg_days_to_close: Optional[float] = None   # None when nobody has won deals

    @classmethod
    def from_metrics(cls, metrics: List[PartnerMetrics]) -> "PeerCohort":
        avg_days = [m.avg_days_to_close for m in metrics if m.avg_days_to_close is not None]
        return cls(
            max_revenue=max([m.total_revenue for m in metrics] + [1.0]),
            max_pipeline=max([m.pipeline_value for m in metrics] + [1.0]),
            max_engagement=max([float(m.engagement_count) for m in metrics] + [1.0]),
            max_avg_days_to_close=max(avg_days) if avg_days else None,
        )

    @property
    def has_won_deals(self) -> bool:
        return self.max_avg_days_to_close is not None


@dataclass
class PartnerScore:
    partner_id: str
    partner_name: str
    current_tier: PartnerTier
    overall_score: int
    dimensions: Dict[str, ScoreDimension]
    recommended_tier: PartnerTier
    tier_change: TierChange
    trend: Trend
    highlights: List[str] = field(default_factory=list)
    rank: int = 0       # assigned after sorting


# ============================================================================
# Validation Functions
# ============================================================================

def validate_scoring_config(config: ScoringConfig) -> Tuple[bool, Optional[str]]:
    """
    Validate dimension weights and tier thresholds.

    Returns: (is_valid, error_message)
    """
    required = ["revenue", "pipeline", "engagement", "velocity"]
    for key in required:
        if key not in config.weights:
            return False, f"Missing weight for '{key}'"
        if not isinstance(config.weights[key], (int, float)):
            return False, f"Weight for '{key}' must be numeric"
        if config.weights[key] < 0:
            return False, f"Weight for '{key}' cannot be negative"

    total = sum(config.weights[key] for key in required)
    if abs(total - 1.0) > 0.001:
        return False, f"Weights must sum to 1.0 (got {total})"

    thresholds = []
    for tier in ["platinum", "gold", "silver"]:
        if tier not in config.tier_thresholds:
            return False, f"Missing threshold for '{tier}'"
        value = config.tier_thresholds[tier]
        if not 0 <= value <= 100:
            return False, f"Threshold for '{tier}' must be between 0 and 100"
        thresholds.append(value)

    if not thresholds[0] >= thresholds[1] >= thresholds[2]:
        return False, "Tier thresholds must descend from platinum to silver"

    return True, None


def parse_model(value: Any) -> Optional[AttributionModel]:
    """Return the AttributionModel for a value, or None if it isn't one."""
    try:
        return AttributionModel(value)
    except ValueError:
        return None
