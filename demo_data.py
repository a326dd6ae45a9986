"""
Demo Data Generator
===================

Generate realistic sample data for attribution demos.

Creates:
- 7 partners across tiers (one pending, one inactive)
- 12 SaaS B2B deals (won, lost and open pipeline)
- 1-6 touchpoints per deal, spread before the close date
- Materialized attribution for every won deal, all models

Output is deterministic for a given seed and reference time.
"""

import logging
import random
from datetime import datetime, timedelta
from typing import List, Optional

from attribution import AttributionMaterializer
from models import (
    Deal,
    DealStatus,
    Partner,
    PartnerStatus,
    PartnerTier,
    Touchpoint,
    TouchpointType,
)

logger = logging.getLogger(__name__)


# ============================================================================
# Demo Company & Partner Names
# ============================================================================

DEMO_COMPANIES = [
    "Acme Corp", "TechStart Inc", "CloudScale Systems", "DataFlow Solutions",
    "SecureNet Ltd", "InnovateCo", "GlobalTech Partners", "FutureOps Inc",
    "SmartData Corp", "AgileWorks LLC"
]

# id: (name, tier, status, commission rate %)
DEMO_PARTNERS = {
    "P001": ("Deloitte Digital", PartnerTier.PLATINUM, PartnerStatus.ACTIVE, 15.0),
    "P002": ("Accenture Cloud First", PartnerTier.GOLD, PartnerStatus.ACTIVE, 12.5),
    "P003": ("PartnerHub Consulting", PartnerTier.SILVER, PartnerStatus.ACTIVE, 10.0),
    "P004": ("TechAlliance Group", PartnerTier.SILVER, PartnerStatus.ACTIVE, 10.0),
    "P005": ("CloudExperts SI", PartnerTier.BRONZE, PartnerStatus.ACTIVE, 8.0),
    "P006": ("DataBridge Partners", PartnerTier.BRONZE, PartnerStatus.PENDING, 8.0),
    "P007": ("Integration Masters", PartnerTier.GOLD, PartnerStatus.INACTIVE, 12.5),
}


# ============================================================================
# Demo Data Generation
# ============================================================================

def generate_demo_partners(organization_id: Optional[str] = None) -> List[Partner]:
    return [
        Partner(
            id=partner_id,
            name=name,
            commission_rate=rate,
            tier=tier,
            status=status,
            organization_id=organization_id
        )
        for partner_id, (name, tier, status, rate) in DEMO_PARTNERS.items()
    ]


def generate_demo_deals(
    rng: random.Random,
    now: datetime,
    num_deals: int = 12,
    organization_id: Optional[str] = None
) -> List[Deal]:
    """
    Generate deals with a typical SaaS B2B size distribution.

    Deal sizes:
    - 40% SMB ($10K-$25K)
    - 40% Mid-Market ($25K-$100K)
    - 20% Enterprise ($100K-$500K)

    Status: 60% won, 10% lost, 30% open. Closed deals closed within the
    last 90 days after a 30-90 day cycle.
    """
    deals = []

    for i in range(num_deals):
        rand = rng.random()
        if rand < 0.40:
            amount = rng.randint(10000, 25000)
        elif rand < 0.80:
            amount = rng.randint(25000, 100000)
        else:
            amount = rng.randint(100000, 500000)

        status_rand = rng.random()
        if status_rand < 0.60:
            status = DealStatus.WON
        elif status_rand < 0.70:
            status = DealStatus.LOST
        else:
            status = DealStatus.OPEN

        if status == DealStatus.OPEN:
            closed_at = None
            created_at = now - timedelta(days=rng.randint(5, 60))
        else:
            closed_at = now - timedelta(days=rng.randint(0, 90))
            created_at = closed_at - timedelta(days=rng.randint(30, 90))

        deals.append(Deal(
            id=f"D{1000 + i}",
            name=f"{DEMO_COMPANIES[i % len(DEMO_COMPANIES)]} - OPP-{1000 + i}",
            amount=float(amount),
            status=status,
            created_at=created_at,
            closed_at=closed_at,
            organization_id=organization_id
        ))

    return deals


def generate_demo_touchpoints(
    rng: random.Random,
    deals: List[Deal],
    now: datetime,
    organization_id: Optional[str] = None
) -> List[Touchpoint]:
    """
    Generate partner touchpoints for each deal.

    Small deals get 1-3 touchpoints, medium 2-4 and large 3-6, all between
    the deal's creation and its close (or now, for open deals).
    """
    touchpoints = []
    touchpoint_id = 1
    partner_ids = list(DEMO_PARTNERS.keys())
    touchpoint_types = list(TouchpointType)

    for deal in deals:
        if deal.amount < 25000:
            num_touches = rng.randint(1, 3)
        elif deal.amount < 100000:
            num_touches = rng.randint(2, 4)
        else:
            num_touches = rng.randint(3, 6)

        end = deal.closed_at or now
        cycle_days = max(1, int((end - deal.created_at).days))

        for _ in range(num_touches):
            touchpoints.append(Touchpoint(
                id=f"T{touchpoint_id:04d}",
                deal_id=deal.id,
                partner_id=rng.choice(partner_ids),
                type=rng.choice(touchpoint_types).value,
                timestamp=deal.created_at + timedelta(days=rng.randint(0, cycle_days)),
                organization_id=organization_id
            ))
            touchpoint_id += 1

    # Insertion order follows time, like a real activity feed
    touchpoints.sort(key=lambda tp: (tp.deal_id, tp.timestamp))
    return touchpoints


def seed_demo_data(
    repository,
    now: Optional[datetime] = None,
    seed: int = 42,
    organization_id: Optional[str] = None
) -> dict:
    """
    Write the demo dataset into a repository and materialize attribution.

    Args:
        repository: Initialized AttributionRepository
        now: Reference time the dataset is generated around (default: now)
        seed: Random seed; the same seed and now give the same data

    Returns:
        Summary dict (see get_demo_data_summary)
    """
    now = now or datetime.now()
    rng = random.Random(seed)

    partners = generate_demo_partners(organization_id)
    deals = generate_demo_deals(rng, now, organization_id=organization_id)
    touchpoints = generate_demo_touchpoints(rng, deals, now, organization_id)

    for partner in partners:
        repository.create_partner(partner)
    for deal in deals:
        repository.create_deal(deal)
    for touchpoint in touchpoints:
        repository.create_touchpoint(touchpoint)

    materializer = AttributionMaterializer(
        repository,
        organization_id=organization_id,
        clock=lambda: now
    )
    backfill = materializer.calculate_missing_attributions()

    logger.info(
        f"Seeded demo data: {len(partners)} partners, {len(deals)} deals, "
        f"{len(touchpoints)} touchpoints, {backfill.attributions_created} attributions"
    )
    return get_demo_data_summary(partners, deals, touchpoints, backfill.attributions_created)


def get_demo_data_summary(
    partners: List[Partner],
    deals: List[Deal],
    touchpoints: List[Touchpoint],
    attributions_created: int = 0
) -> dict:
    """Generate summary statistics for demo data."""
    won = [d for d in deals if d.status == DealStatus.WON]
    return {
        "num_partners": len(partners),
        "num_deals": len(deals),
        "num_won_deals": len(won),
        "num_open_deals": sum(1 for d in deals if d.status == DealStatus.OPEN),
        "num_touchpoints": len(touchpoints),
        "num_attributions": attributions_created,
        "won_revenue": sum(d.amount for d in won),
    }


def main():
    """Seed the configured database and print the role_based leaderboard and partner scores."""
    from config import DB_PATH, LOG_LEVEL, LOG_FILE
    from attribution_queries import AttributionQueries
    from partner_scoring import calculate_partner_scores
    from repository import AttributionRepository
    from utils import format_currency, setup_logging

    setup_logging(LOG_LEVEL, LOG_FILE)

    repo = AttributionRepository(DB_PATH)
    repo.init_db()
    try:
        if repo.get_all_partners():
            logger.info(f"{DB_PATH} already has data; skipping seed")
        else:
            summary = seed_demo_data(repo)
            print(f"Seeded {summary['num_deals']} deals ({summary['num_won_deals']} won, "
                  f"{format_currency(summary['won_revenue'])})")

        analytics = AttributionQueries(repo).get_analytics("role_based")
        print(analytics.partners.to_string(index=False))

        scores = calculate_partner_scores(
            repo.get_all_partners(),
            repo.get_all_deals(),
            repo.get_all_touchpoints(),
            repo.get_attributions()
        )
        for score in scores:
            print(f"#{score.rank} {score.partner_name}: {score.overall_score} "
                  f"({score.current_tier.value} → {score.recommended_tier.value})")
    finally:
        repo.close()


if __name__ == "__main__":
    main()
