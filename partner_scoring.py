"""
Partner Scoring & Tiering
=========================

Composite 0-100 partner scores over four dimensions:
1. Revenue Impact - role_based attributed revenue from won deals
2. Pipeline Contribution - value of open deals the partner touched
3. Engagement - recent touchpoint activity blended with enablement
4. Deal Velocity - average days to close on won deals (faster is better)

Every dimension is the partner's value as a fraction of the maximum across
the partners scored together (the peer cohort), so scores are relative, not
absolute. The composite drives tier recommendations.

Everything here is a pure function of its inputs; no errors are raised,
degenerate inputs fall back to neutral defaults.
"""

from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional

import config
from enablement import EnablementProvider
from models import (
    AttributionModel,
    Attribution,
    Deal,
    DealStatus,
    Partner,
    PartnerMetrics,
    PartnerScore,
    PartnerStatus,
    PartnerTier,
    PeerCohort,
    ScoreDimension,
    ScoringConfig,
    TierChange,
    Touchpoint,
    Trend,
    TIER_ORDER,
)
from utils import clamp, days_between, format_currency, round_score

RECENT_WINDOW_DAYS = 30
TREND_WINDOW_DAYS = 60
ENGAGEMENT_WINDOW_DAYS = 90
TOUCHPOINT_ENGAGEMENT_SHARE = 0.7
ENABLEMENT_ENGAGEMENT_SHARE = 0.3
NEUTRAL_VELOCITY_SCORE = 50
TOP_PERFORMER_SCORE = 80


def default_scoring_config() -> ScoringConfig:
    return ScoringConfig(high_pipeline_threshold=config.HIGH_PIPELINE_THRESHOLD)


# ============================================================================
# Metrics
# ============================================================================

def build_partner_metrics(
    partner_id: str,
    deals: List[Deal],
    touchpoints: List[Touchpoint],
    attributions: List[Attribution],
    as_of: datetime
) -> PartnerMetrics:
    """Aggregate one partner's raw metrics from a snapshot."""
    deals_by_id = {d.id: d for d in deals}
    return _build_metrics(
        partner_id,
        deals_by_id,
        [tp for tp in touchpoints if tp.partner_id == partner_id],
        [a for a in attributions if a.partner_id == partner_id],
        as_of
    )


def _build_metrics(
    partner_id: str,
    deals_by_id: Dict[str, Deal],
    partner_touchpoints: List[Touchpoint],
    partner_attributions: List[Attribution],
    as_of: datetime
) -> PartnerMetrics:
    metrics = PartnerMetrics(partner_id=partner_id)

    # Revenue: role_based rows on won deals
    revenue_deals = set()
    for attr in partner_attributions:
        if attr.model != AttributionModel.ROLE_BASED:
            continue
        deal = deals_by_id.get(attr.deal_id)
        if deal is None or deal.status != DealStatus.WON:
            continue
        metrics.total_revenue += attr.amount
        revenue_deals.add(attr.deal_id)
    metrics.revenue_deal_count = len(revenue_deals)

    # Pipeline and velocity: distinct deals the partner touched
    touched_deal_ids = list(dict.fromkeys(tp.deal_id for tp in partner_touchpoints))
    touched_deals = [deals_by_id[did] for did in touched_deal_ids if did in deals_by_id]

    open_deals = [d for d in touched_deals if d.status == DealStatus.OPEN]
    metrics.pipeline_value = sum(d.amount for d in open_deals)
    metrics.open_deal_count = len(open_deals)

    won_deals = [d for d in touched_deals if d.status == DealStatus.WON]
    metrics.won_deal_count = len(won_deals)
    if won_deals:
        metrics.avg_days_to_close = sum(
            days_between(d.created_at, d.closed_at or as_of) for d in won_deals
        ) / len(won_deals)

    # Engagement and trend windows
    metrics.total_touchpoints = len(partner_touchpoints)
    for tp in partner_touchpoints:
        age_days = days_between(tp.timestamp, as_of)
        if age_days < RECENT_WINDOW_DAYS:
            metrics.recent_touchpoints += 1
            metrics.engagement_count += 2
        elif age_days < ENGAGEMENT_WINDOW_DAYS:
            metrics.engagement_count += 1
            if age_days < TREND_WINDOW_DAYS:
                metrics.previous_touchpoints += 1

    return metrics


# ============================================================================
# Dimension Scores
# ============================================================================

def _ratio_score(value: float, maximum: float) -> int:
    """value / maximum on a 0-100 scale."""
    return round_score(clamp(value / max(maximum, 1.0) * 100))


def _calculate_revenue_score(metrics: PartnerMetrics, cohort: PeerCohort) -> tuple:
    score = _ratio_score(metrics.total_revenue, cohort.max_revenue)
    detail = f"{format_currency(metrics.total_revenue)} attributed revenue ({metrics.revenue_deal_count} deals)"
    return score, detail


def _calculate_pipeline_score(metrics: PartnerMetrics, cohort: PeerCohort) -> tuple:
    score = _ratio_score(metrics.pipeline_value, cohort.max_pipeline)
    detail = f"{format_currency(metrics.pipeline_value)} in {metrics.open_deal_count} open deals"
    return score, detail


def _calculate_engagement_score(
    metrics: PartnerMetrics,
    cohort: PeerCohort,
    enablement_score: float
) -> tuple:
    """70% touchpoint activity vs. the cohort, 30% enablement."""
    touchpoint_score = _ratio_score(metrics.engagement_count, cohort.max_engagement)
    enablement_score = clamp(enablement_score)
    score = round_score(
        touchpoint_score * TOUCHPOINT_ENGAGEMENT_SHARE
        + enablement_score * ENABLEMENT_ENGAGEMENT_SHARE
    )

    detail = f"{metrics.recent_touchpoints} touchpoints (last 30d), {metrics.total_touchpoints} total"
    if enablement_score > 0:
        detail += f" · Cert score: {round_score(enablement_score)}"
    return score, detail


def _calculate_velocity_score(metrics: PartnerMetrics, cohort: PeerCohort) -> tuple:
    """Inverse of average days to close relative to the slowest partner."""
    if not cohort.has_won_deals:
        return NEUTRAL_VELOCITY_SCORE, "No won deals yet"

    if metrics.avg_days_to_close is None:
        return 0, "No won deals yet"

    avg_days = metrics.avg_days_to_close
    detail = f"{round_score(avg_days)} avg days to close ({metrics.won_deal_count} deals)"

    max_days = cohort.max_avg_days_to_close
    if max_days <= 0:
        return NEUTRAL_VELOCITY_SCORE, detail

    score = round_score(clamp((max_days - avg_days) / max_days * 100))
    return score, detail


# ============================================================================
# Tier, Trend, Highlights
# ============================================================================

def recommend_tier(overall_score: float, scoring_config: ScoringConfig) -> PartnerTier:
    thresholds = scoring_config.tier_thresholds
    if overall_score >= thresholds["platinum"]:
        return PartnerTier.PLATINUM
    elif overall_score >= thresholds["gold"]:
        return PartnerTier.GOLD
    elif overall_score >= thresholds["silver"]:
        return PartnerTier.SILVER
    return PartnerTier.BRONZE


def compare_tiers(current: PartnerTier, recommended: PartnerTier) -> TierChange:
    current_rank = TIER_ORDER.index(PartnerTier(current))
    recommended_rank = TIER_ORDER.index(PartnerTier(recommended))
    if recommended_rank > current_rank:
        return TierChange.UPGRADE
    elif recommended_rank < current_rank:
        return TierChange.DOWNGRADE
    return TierChange.MAINTAIN


def determine_trend(metrics: PartnerMetrics) -> Trend:
    """Last 30 days vs. the 30 days before, with a margin of one touchpoint."""
    if metrics.recent_touchpoints > metrics.previous_touchpoints + 1:
        return Trend.UP
    if metrics.recent_touchpoints < metrics.previous_touchpoints - 1:
        return Trend.DOWN
    return Trend.STABLE


def generate_highlights(
    partner: Partner,
    overall_score: int,
    recommended_tier: PartnerTier,
    metrics: PartnerMetrics,
    scoring_config: ScoringConfig
) -> List[str]:
    """Actionable insights, always evaluated in the same order."""
    highlights = []
    current = partner.current_tier
    change = compare_tiers(current, recommended_tier)

    if change == TierChange.UPGRADE:
        highlights.append(f"🔺 Ready for tier upgrade: {current.value} → {recommended_tier.value}")
    elif change == TierChange.DOWNGRADE:
        highlights.append(f"🔻 Tier at risk: {current.value} → {recommended_tier.value}")

    if metrics.recent_touchpoints == 0 and metrics.total_touchpoints > 0:
        highlights.append("⚠️ No activity in last 30 days — needs re-engagement")

    if metrics.pipeline_value > scoring_config.high_pipeline_threshold:
        highlights.append(
            f"💰 High pipeline value (${metrics.pipeline_value / 1000:.0f}k) — prioritize support"
        )

    if overall_score >= TOP_PERFORMER_SCORE:
        highlights.append("⭐ Top performer — consider for co-marketing or advisory board")

    if metrics.total_revenue == 0 and partner.status == PartnerStatus.ACTIVE:
        highlights.append("📋 Active but no attributed revenue yet — review enablement needs")

    if partner.status == PartnerStatus.PENDING:
        highlights.append("🔄 Onboarding in progress — ensure enablement materials sent")

    return highlights


# ============================================================================
# Scoring
# ============================================================================

def score_partner(
    partner: Partner,
    metrics: PartnerMetrics,
    cohort: PeerCohort,
    scoring_config: Optional[ScoringConfig] = None,
    enablement_score: float = 0
) -> PartnerScore:
    """
    Score one partner against a peer cohort.

    The returned score has rank 0; ranks are assigned by calculate_partner_scores.
    """
    scoring_config = scoring_config or default_scoring_config()
    weights = scoring_config.weights

    revenue, revenue_detail = _calculate_revenue_score(metrics, cohort)
    pipeline, pipeline_detail = _calculate_pipeline_score(metrics, cohort)
    engagement, engagement_detail = _calculate_engagement_score(metrics, cohort, enablement_score)
    velocity, velocity_detail = _calculate_velocity_score(metrics, cohort)

    overall_score = round_score(clamp(
        revenue * weights["revenue"]
        + pipeline * weights["pipeline"]
        + engagement * weights["engagement"]
        + velocity * weights["velocity"]
    ))

    recommended_tier = recommend_tier(overall_score, scoring_config)

    return PartnerScore(
        partner_id=partner.id,
        partner_name=partner.name,
        current_tier=partner.current_tier,
        overall_score=overall_score,
        dimensions={
            "revenue": ScoreDimension(revenue, weights["revenue"], "Revenue Impact", revenue_detail),
            "pipeline": ScoreDimension(pipeline, weights["pipeline"], "Pipeline Contribution", pipeline_detail),
            "engagement": ScoreDimension(engagement, weights["engagement"], "Engagement", engagement_detail),
            "velocity": ScoreDimension(velocity, weights["velocity"], "Deal Velocity", velocity_detail),
        },
        recommended_tier=recommended_tier,
        tier_change=compare_tiers(partner.current_tier, recommended_tier),
        trend=determine_trend(metrics),
        highlights=generate_highlights(partner, overall_score, recommended_tier, metrics, scoring_config),
    )


def calculate_partner_scores(
    partners: List[Partner],
    deals: List[Deal],
    touchpoints: List[Touchpoint],
    attributions: List[Attribution],
    scoring_config: Optional[ScoringConfig] = None,
    enablement: Optional[EnablementProvider] = None,
    as_of: Optional[datetime] = None
) -> List[PartnerScore]:
    """
    Calculate scores for all non-inactive partners.

    Args:
        partners, deals, touchpoints, attributions: Snapshot to score
        scoring_config: Dimension weights and tier thresholds
        enablement: Source of enablement scores (default: 0 for everyone)
        as_of: Reference instant for activity windows (default: now)

    Returns:
        Scores sorted by overall score descending, ranked from 1
    """
    scoring_config = scoring_config or default_scoring_config()
    enablement = enablement or EnablementProvider()
    as_of = as_of or datetime.now()

    deals_by_id = {d.id: d for d in deals}
    touchpoints_by_partner = defaultdict(list)
    for tp in touchpoints:
        touchpoints_by_partner[tp.partner_id].append(tp)
    attributions_by_partner = defaultdict(list)
    for attr in attributions:
        attributions_by_partner[attr.partner_id].append(attr)

    active_partners = [p for p in partners if p.status != PartnerStatus.INACTIVE]
    metrics_by_partner = {
        p.id: _build_metrics(
            p.id,
            deals_by_id,
            touchpoints_by_partner.get(p.id, []),
            attributions_by_partner.get(p.id, []),
            as_of
        )
        for p in active_partners
    }
    cohort = PeerCohort.from_metrics(list(metrics_by_partner.values()))

    scores = [
        score_partner(
            partner,
            metrics_by_partner[partner.id],
            cohort,
            scoring_config,
            enablement.get_score(partner.id)
        )
        for partner in active_partners
    ]

    # Stable sort keeps input order among ties
    scores.sort(key=lambda s: s.overall_score, reverse=True)
    for i, score in enumerate(scores):
        score.rank = i + 1

    return scores


def get_tier_review_candidates(scores: List[PartnerScore]) -> Dict[str, List[PartnerScore]]:
    """Split scored partners into upgrade and downgrade candidates, rank order kept."""
    return {
        TierChange.UPGRADE.value: [s for s in scores if s.tier_change == TierChange.UPGRADE],
        TierChange.DOWNGRADE.value: [s for s in scores if s.tier_change == TierChange.DOWNGRADE],
    }
