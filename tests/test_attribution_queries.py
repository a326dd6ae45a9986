"""Tests for the attribution views."""

import pytest
from datetime import datetime

from attribution import AttributionMaterializer
from attribution_queries import AttributionQueries
from exceptions import DealNotFoundError, PartnerNotFoundError
from models import (
    AttributionModel,
    Deal,
    DealStatus,
    Partner,
    Touchpoint,
    TouchpointType,
)
from repository import AttributionRepository


@pytest.fixture
def repo(tmp_path):
    """Two won deals attributed to partners X and Y"""
    repository = AttributionRepository(str(tmp_path / "views.db"))
    repository.init_db()

    repository.create_partner(Partner(id="X", name="Partner X", commission_rate=15.0))
    repository.create_partner(Partner(id="Y", name="Partner Y", commission_rate=10.0))

    repository.create_deal(Deal(
        id="D1", name="Deal One", amount=100000.0, status=DealStatus.WON,
        created_at=datetime(2025, 1, 1), closed_at=datetime(2025, 1, 11)
    ))
    repository.create_touchpoint(Touchpoint(
        id="T1", deal_id="D1", partner_id="X",
        type=TouchpointType.REFERRAL, timestamp=datetime(2025, 1, 1)
    ))
    repository.create_touchpoint(Touchpoint(
        id="T2", deal_id="D1", partner_id="Y",
        type=TouchpointType.NEGOTIATION, timestamp=datetime(2025, 1, 11)
    ))

    repository.create_deal(Deal(
        id="D2", name="Deal Two", amount=20000.0, status=DealStatus.WON,
        created_at=datetime(2025, 2, 1), closed_at=datetime(2025, 2, 20)
    ))
    repository.create_touchpoint(Touchpoint(
        id="T3", deal_id="D2", partner_id="Y",
        type=TouchpointType.DEMO, timestamp=datetime(2025, 2, 5)
    ))

    materializer = AttributionMaterializer(repository, clock=lambda: datetime(2025, 3, 1))
    materializer.calculate("D1")
    materializer.calculate("D2")

    yield repository
    repository.close()


@pytest.fixture
def queries(repo):
    return AttributionQueries(repo)


def test_get_by_deal_enriched(queries):
    """Deal view carries partner names and commission rates"""
    df = queries.get_by_deal("D1", model=AttributionModel.ROLE_BASED)

    assert len(df) == 2
    rows = df.set_index("partner_id")
    assert rows.loc["X", "partner_name"] == "Partner X"
    assert rows.loc["X", "commission_rate"] == 15.0
    assert rows.loc["X", "amount"] == 60000.0
    assert rows.loc["X", "commission_amount"] == 9000.0


def test_get_by_deal_all_models(queries):
    """Without a model filter every model's rows are returned"""
    df = queries.get_by_deal("D1")
    assert set(df["model"]) == {m.value for m in AttributionModel}


def test_get_by_deal_unknown(queries):
    """Unknown deals raise DealNotFoundError"""
    with pytest.raises(DealNotFoundError):
        queries.get_by_deal("NOPE")


def test_get_by_partner_newest_first(queries):
    """Partner view is newest first with deal details"""
    df = queries.get_by_partner("Y", model="equal_split")

    assert list(df["deal_id"]) == ["D2", "D1"]
    assert list(df["deal_name"]) == ["Deal Two", "Deal One"]
    assert list(df["deal_status"]) == ["won", "won"]
    assert list(df["deal_amount"]) == [20000.0, 100000.0]


def test_get_by_partner_unknown(queries):
    """Unknown partners raise PartnerNotFoundError"""
    with pytest.raises(PartnerNotFoundError):
        queries.get_by_partner("NOPE")


def test_get_analytics(queries):
    """Leaderboard is sorted by revenue (ties keep first appearance) with summary totals"""
    analytics = queries.get_analytics(AttributionModel.ROLE_BASED)

    partners = analytics.partners
    assert list(partners["partner_id"]) == ["X", "Y"]
    x = partners.iloc[0]
    assert x["deals_count"] == 1
    assert x["total_revenue"] == 60000.0
    assert x["total_commission"] == 9000.0
    y = partners.iloc[1]
    assert y["deals_count"] == 2
    assert y["total_revenue"] == 60000.0
    assert y["avg_percentage"] == 70.0

    assert analytics.summary == {
        "total_deals": 2,
        "total_revenue": 120000.0,
        "total_commissions": 15000.0,
    }


def test_get_analytics_skips_missing_partners(queries, repo):
    """Rows of deleted partners leave the leaderboard but stay in the summary"""
    repo.delete_partner("X")

    analytics = queries.get_analytics("first_touch")

    assert list(analytics.partners["partner_id"]) == ["Y"]
    assert analytics.summary["total_deals"] == 2
    assert analytics.summary["total_revenue"] == 120000.0


def test_get_analytics_empty_model(queries):
    """A model without rows gives an empty leaderboard"""
    analytics = queries.get_analytics("custom_model")
    assert analytics.partners.empty
    assert analytics.summary["total_deals"] == 0


def test_compare_models(queries):
    """Every model appears in the comparison"""
    comparison = queries.compare_models("D1")

    assert set(comparison) == {m.value for m in AttributionModel}
    assert list(comparison["first_touch"]["partner_id"]) == ["X"]
    assert list(comparison["last_touch"]["partner_id"]) == ["Y"]


def test_views_after_reopen_are_empty(repo, queries):
    """Reopening a deal empties its views"""
    AttributionMaterializer(repo).reopen_deal("D1")
    assert queries.get_by_deal("D1").empty


def test_organization_scope(repo):
    """Deals of other organizations are not visible"""
    scoped = AttributionQueries(repo, organization_id="org-1")
    with pytest.raises(DealNotFoundError):
        scoped.get_by_deal("D1")


def test_export_analytics_csv(queries):
    """Leaderboard exports as CSV bytes"""
    csv_bytes, filename = queries.export_analytics_csv(AttributionModel.ROLE_BASED)

    assert filename.startswith("attribution_role_based_")
    assert filename.endswith(".csv")
    lines = csv_bytes.decode("utf-8").strip().splitlines()
    assert lines[0] == "partner_id,partner_name,deals_count,total_revenue,total_commission,avg_percentage"
    assert len(lines) == 3
