"""Tests for attribution materialization and deal lifecycle hooks."""

import pytest
from datetime import datetime, timedelta

from attribution import AttributionMaterializer
from exceptions import (
    DatabaseError,
    DealNotFoundError,
    InvalidDealStateError,
    NoTouchpointsError,
    ValidationError,
)
from models import (
    AttributionModel,
    Deal,
    DealStatus,
    Partner,
    Touchpoint,
    TouchpointType,
)
from repository import AttributionRepository


CREATED = datetime(2025, 1, 1, 9, 0, 0)
CLOSED = datetime(2025, 1, 11, 9, 0, 0)
LATER = datetime(2025, 6, 1, 9, 0, 0)


@pytest.fixture
def repo(tmp_path):
    """Repository with partners X (15%) and Y (10%) and a won $100,000 deal"""
    repository = AttributionRepository(str(tmp_path / "test.db"))
    repository.init_db()

    repository.create_partner(Partner(id="X", name="Partner X", commission_rate=15.0))
    repository.create_partner(Partner(id="Y", name="Partner Y", commission_rate=10.0))
    repository.create_deal(Deal(
        id="D1", name="Big Deal", amount=100000.0,
        status=DealStatus.WON, created_at=CREATED, closed_at=CLOSED
    ))
    repository.create_touchpoint(Touchpoint(
        id="T1", deal_id="D1", partner_id="X",
        type=TouchpointType.REFERRAL, timestamp=CREATED
    ))
    repository.create_touchpoint(Touchpoint(
        id="T2", deal_id="D1", partner_id="Y",
        type=TouchpointType.NEGOTIATION, timestamp=CLOSED
    ))

    yield repository
    repository.close()


@pytest.fixture
def materializer(repo):
    return AttributionMaterializer(repo, clock=lambda: LATER)


def add_deal(repo, deal_id, status=DealStatus.OPEN, amount=50000.0, partners=("X",)):
    repo.create_deal(Deal(
        id=deal_id, name=f"Deal {deal_id}", amount=amount, status=status,
        created_at=CREATED, closed_at=CLOSED if status != DealStatus.OPEN else None
    ))
    for i, partner_id in enumerate(partners):
        repo.create_touchpoint(Touchpoint(
            id=f"{deal_id}-T{i}", deal_id=deal_id, partner_id=partner_id,
            type=TouchpointType.DEMO, timestamp=CREATED + timedelta(days=i)
        ))


# ============================================================================
# calculate
# ============================================================================

def test_role_based_amount_and_commission(materializer):
    """60% of a $100,000 deal at a 15% commission rate"""
    result = materializer.calculate("D1", models=[AttributionModel.ROLE_BASED])

    rows = {r.partner_id: r for r in result.results}
    assert rows["X"].percentage == 60.0
    assert rows["X"].amount == 60000.00
    assert rows["X"].commission_amount == 9000.00
    assert rows["Y"].percentage == 40.0
    assert rows["Y"].amount == 40000.00
    assert rows["Y"].commission_amount == 4000.00


def test_calculate_all_models_persists_rows(materializer, repo):
    """Default run covers every model and stores one row per partner and model"""
    result = materializer.calculate("D1")

    assert result.models_calculated == list(AttributionModel)
    assert result.deal_amount == 100000.0
    stored = repo.get_attributions(deal_id="D1")
    assert len(stored) == len(result.results)

    # equal_split 2 rows, first/last touch 1 row each, time_decay and role_based 2 rows
    assert len(stored) == 8
    keys = {(r.deal_id, r.partner_id, r.model) for r in stored}
    assert len(keys) == len(stored)
    assert all(r.id is not None for r in result.results)


def test_calculate_selected_models_dedupes(materializer):
    """Requested models run once each, in request order"""
    result = materializer.calculate("D1", models=["last_touch", AttributionModel.LAST_TOUCH, "first_touch"])
    assert result.models_calculated == [AttributionModel.LAST_TOUCH, AttributionModel.FIRST_TOUCH]
    assert [r.partner_id for r in result.results_for(AttributionModel.LAST_TOUCH)] == ["Y"]
    assert [r.partner_id for r in result.results_for(AttributionModel.FIRST_TOUCH)] == ["X"]


def test_time_decay_measures_from_close_time(materializer):
    """time_decay uses the deal's close time, not the clock"""
    result = materializer.calculate("D1", models=[AttributionModel.TIME_DECAY])

    by_partner = {r.partner_id: r.percentage for r in result.results}
    assert by_partner == {"X": 26.89, "Y": 73.11}


def test_time_decay_explicit_reference_time(materializer):
    """An explicit reference time overrides the close time"""
    result = materializer.calculate(
        "D1", models=[AttributionModel.TIME_DECAY], reference_time=CLOSED + timedelta(days=10)
    )
    by_partner = {r.partner_id: r.percentage for r in result.results}
    assert by_partner == {"X": 26.89, "Y": 73.11}


def test_time_decay_touchpoint_after_close(repo):
    """A touchpoint logged long after the close still gets time_decay credit"""
    repo.create_touchpoint(Touchpoint(
        id="T3", deal_id="D1", partner_id="X",
        type=TouchpointType.DEMO, timestamp=CLOSED + timedelta(days=800)
    ))
    materializer = AttributionMaterializer(repo, decay_lambda=1.0, clock=lambda: LATER)

    result = materializer.recalculate("D1")

    decay = [r for r in result.results if r.model == AttributionModel.TIME_DECAY]
    assert {r.partner_id: r.percentage for r in decay} == {"X": 100.0, "Y": 0.0}


def test_calculate_is_idempotent(materializer, repo):
    """Recomputing with unchanged inputs gives the same rows"""
    materializer.calculate("D1")
    first = [(r.partner_id, r.model, r.percentage, r.amount) for r in repo.get_attributions(deal_id="D1")]

    materializer.calculate("D1")
    second = [(r.partner_id, r.model, r.percentage, r.amount) for r in repo.get_attributions(deal_id="D1")]

    assert sorted(first) == sorted(second)


def test_recalculate_replaces_rows(materializer, repo):
    """Rows for partners no longer on the deal disappear after a recompute"""
    materializer.calculate("D1")
    repo.delete_touchpoint("T2")

    materializer.recalculate("D1")

    stored = repo.get_attributions(deal_id="D1")
    assert {r.partner_id for r in stored} == {"X"}
    assert all(r.percentage == 100.0 for r in stored)
    assert len(stored) == 5


def test_calculate_one_model_keeps_other_models(materializer, repo):
    """Recomputing one model leaves the other models' rows alone"""
    materializer.calculate("D1")
    materializer.calculate("D1", models=[AttributionModel.ROLE_BASED])

    assert len(repo.get_attributions(deal_id="D1", model=AttributionModel.EQUAL_SPLIT)) == 2
    assert len(repo.get_attributions(deal_id="D1", model=AttributionModel.ROLE_BASED)) == 2


def test_missing_partner_share_is_skipped(materializer, repo):
    """A share for an unknown partner is dropped and reported, not redistributed"""
    repo.create_touchpoint(Touchpoint(
        id="T3", deal_id="D1", partner_id="GHOST",
        type=TouchpointType.DEMO, timestamp=CREATED
    ))

    result = materializer.calculate("D1", models=[AttributionModel.EQUAL_SPLIT])

    assert {r.partner_id for r in result.results} == {"X", "Y"}
    assert all(r.percentage == 33.33 for r in result.results)
    assert len(result.skipped_shares) == 1
    assert result.skipped_shares[0].partner_id == "GHOST"
    assert result.skipped_shares[0].percentage == 33.33


# ============================================================================
# Preconditions: nothing is written on failure
# ============================================================================

def test_unknown_deal(materializer):
    """A missing deal raises DealNotFoundError"""
    with pytest.raises(DealNotFoundError):
        materializer.calculate("NOPE")


def test_open_deal_is_rejected(materializer, repo):
    """Only won deals can be attributed"""
    add_deal(repo, "D2", status=DealStatus.OPEN)

    with pytest.raises(InvalidDealStateError):
        materializer.calculate("D2")
    assert repo.get_attributions(deal_id="D2") == []


def test_lost_deal_is_rejected(materializer, repo):
    """Lost deals cannot be attributed"""
    add_deal(repo, "D2", status=DealStatus.LOST)

    with pytest.raises(InvalidDealStateError):
        materializer.calculate("D2")


def test_won_deal_without_touchpoints(materializer, repo):
    """A won deal with no touchpoints raises NoTouchpointsError"""
    add_deal(repo, "D2", status=DealStatus.WON, partners=())

    with pytest.raises(NoTouchpointsError):
        materializer.calculate("D2")
    assert repo.get_attributions(deal_id="D2") == []


def test_unknown_model_writes_nothing(materializer, repo):
    """An unknown model fails before any model is written"""
    with pytest.raises(ValidationError):
        materializer.calculate("D1", models=[AttributionModel.EQUAL_SPLIT, "made_up"])
    assert repo.get_attributions(deal_id="D1") == []


def test_negative_decay_lambda_is_rejected(repo):
    """A negative decay rate fails at construction"""
    with pytest.raises(ValidationError) as exc_info:
        AttributionMaterializer(repo, decay_lambda=-0.5)

    assert exc_info.value.field == "decay_lambda"


def test_deal_from_other_organization_not_found(repo):
    """A deal outside the materializer's organization looks missing"""
    repo.create_deal(Deal(
        id="D9", name="Other org", amount=1000.0, status=DealStatus.WON,
        created_at=CREATED, closed_at=CLOSED, organization_id="org-2"
    ))
    materializer = AttributionMaterializer(repo, organization_id="org-1")

    with pytest.raises(DealNotFoundError):
        materializer.calculate("D9")


# ============================================================================
# Delete and lifecycle
# ============================================================================

def test_delete_by_deal(materializer, repo):
    """Deleting removes every row of the deal regardless of model"""
    materializer.calculate("D1")

    result = materializer.delete_by_deal("D1")

    assert result.deleted_count == 8
    assert repo.get_attributions(deal_id="D1") == []


def test_close_deal_as_won_calculates(materializer, repo):
    """Closing as won materializes every model"""
    add_deal(repo, "D2", status=DealStatus.OPEN, partners=("X", "Y"))

    result = materializer.close_deal("D2", DealStatus.WON, closed_at=CLOSED)

    assert result is not None
    assert repo.get_deal("D2").status == DealStatus.WON
    assert repo.get_deal("D2").closed_at == CLOSED
    assert {r.model for r in repo.get_attributions(deal_id="D2")} == set(AttributionModel)


def test_close_deal_as_lost_writes_nothing(materializer, repo):
    """Lost deals get no attribution"""
    add_deal(repo, "D2", status=DealStatus.OPEN)

    assert materializer.close_deal("D2", "lost") is None
    assert repo.get_deal("D2").status == DealStatus.LOST
    assert repo.get_deal("D2").closed_at == LATER
    assert repo.get_attributions(deal_id="D2") == []


def test_close_deal_won_without_touchpoints(materializer, repo):
    """Winning a deal with no touchpoints closes it without attribution"""
    add_deal(repo, "D2", status=DealStatus.OPEN, partners=())

    assert materializer.close_deal("D2", DealStatus.WON) is None
    assert repo.get_deal("D2").status == DealStatus.WON


def test_close_deal_storage_failure_keeps_status(materializer, repo, monkeypatch):
    """A failed write leaves the deal won and the backfill repairs it"""
    add_deal(repo, "D2", status=DealStatus.OPEN, partners=("X", "Y"))

    def fail_replace(deal_id, rows_by_model):
        raise DatabaseError("disk full", operation="replace_attributions")

    monkeypatch.setattr(repo, "replace_attributions", fail_replace)
    with pytest.raises(DatabaseError) as exc_info:
        materializer.close_deal("D2", DealStatus.WON, closed_at=CLOSED)

    assert "D2" in exc_info.value.message
    assert exc_info.value.operation == "close_deal"
    assert repo.get_deal("D2").status == DealStatus.WON
    assert repo.get_attributions(deal_id="D2") == []

    monkeypatch.undo()
    summary = materializer.calculate_missing_attributions()

    assert "D2" not in summary.failures
    assert repo.has_attributions("D2")


def test_close_deal_rejects_bad_status(materializer, repo):
    """Closing requires won or lost, on an open deal"""
    add_deal(repo, "D2", status=DealStatus.OPEN)

    with pytest.raises(ValidationError):
        materializer.close_deal("D2", "open")
    with pytest.raises(ValidationError):
        materializer.close_deal("D2", "archived")
    with pytest.raises(InvalidDealStateError):
        materializer.close_deal("D1", DealStatus.LOST)


def test_reopen_deal_deletes_attribution(materializer, repo):
    """Reopening a won deal removes its rows and clears the close time"""
    materializer.calculate("D1")

    result = materializer.reopen_deal("D1")

    assert result.deleted_count == 8
    deal = repo.get_deal("D1")
    assert deal.status == DealStatus.OPEN
    assert deal.closed_at is None
    assert repo.get_attributions(deal_id="D1") == []


def test_reopen_open_deal_is_rejected(materializer, repo):
    """An open deal cannot be reopened"""
    add_deal(repo, "D2", status=DealStatus.OPEN)

    with pytest.raises(InvalidDealStateError):
        materializer.reopen_deal("D2")


# ============================================================================
# Backfill
# ============================================================================

def test_calculate_missing_attributions(materializer, repo):
    """Backfill covers won deals without rows and records failures"""
    materializer.calculate("D1")
    add_deal(repo, "D2", status=DealStatus.WON, partners=("X",))
    add_deal(repo, "D3", status=DealStatus.WON, partners=())
    add_deal(repo, "D4", status=DealStatus.OPEN, partners=("Y",))

    summary = materializer.calculate_missing_attributions()

    assert summary.deals_processed == 1
    assert summary.attributions_created == 5
    assert list(summary.failures) == ["D3"]
    assert repo.has_attributions("D2")
    assert not repo.has_attributions("D4")
