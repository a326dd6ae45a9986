"""Attribution materialization and deal lifecycle hooks."""

import logging
import time
from datetime import datetime
from typing import Callable, Dict, List, Optional

import config
from attribution_engine import calculate_shares, explain_share, get_all_models, is_registered
from exceptions import (
    AttributionError,
    DatabaseError,
    DealNotFoundError,
    InvalidDealStateError,
    NoTouchpointsError,
    ValidationError,
)
from models import (
    Attribution,
    BackfillResult,
    CalculationResult,
    Deal,
    DealStatus,
    DeleteResult,
    SkippedShare,
    parse_model,
)
from utils import round_to_cents

logger = logging.getLogger(__name__)


class AttributionMaterializer:
    """
    Recompute and persist attribution rows for won deals.

    Each call validates the deal, runs every requested model, converts the
    shares to money and replaces the stored rows. Writes for one deal must be
    serialized by the caller.
    """

    def __init__(
        self,
        repository,
        organization_id: Optional[str] = None,
        decay_lambda: Optional[float] = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.repository = repository
        self.organization_id = organization_id
        self.decay_lambda = config.TIME_DECAY_LAMBDA if decay_lambda is None else decay_lambda
        if self.decay_lambda < 0:
            raise ValidationError(
                f"decay_lambda must be non-negative (got {self.decay_lambda})",
                field="decay_lambda",
                value=self.decay_lambda
            )
        self.clock = clock

    def get_deal(self, deal_id: str) -> Deal:
        """Load a deal visible to this materializer, or raise DealNotFoundError."""
        deal = self.repository.get_deal(deal_id)
        if deal is None:
            raise DealNotFoundError(deal_id)
        if self.organization_id is not None and deal.organization_id != self.organization_id:
            logger.warning(f"Deal {deal_id} is outside organization {self.organization_id}")
            raise DealNotFoundError(deal_id)
        return deal

    def resolve_models(self, models: Optional[List] = None) -> List:
        """Requested models without duplicates, defaulting to every registered model."""
        if models is None:
            return get_all_models()

        resolved = []
        for model in models:
            if not is_registered(model):
                raise ValidationError(f"Unknown attribution model: {model}", field="models", value=model)
            model = parse_model(model) or model
            if model not in resolved:
                resolved.append(model)
        return resolved

    def calculate(
        self,
        deal_id: str,
        models: Optional[List] = None,
        reference_time: Optional[datetime] = None
    ) -> CalculationResult:
        """
        Calculate and store attribution for a won deal.

        Args:
            deal_id: Deal to attribute
            models: Models to calculate (defaults to all)
            reference_time: Instant time_decay measures from (defaults to the
                deal's close time, then the clock)

        Returns:
            CalculationResult with the stored rows and any dropped shares

        Raises:
            DealNotFoundError, InvalidDealStateError, NoTouchpointsError,
            ValidationError. Nothing is written when any of them is raised.
        """
        deal = self.get_deal(deal_id)

        if deal.status != DealStatus.WON:
            raise InvalidDealStateError(deal_id, deal.status.value, expected=DealStatus.WON.value)

        touchpoints = self.repository.get_touchpoints_for_deal(deal_id)
        if not touchpoints:
            raise NoTouchpointsError(deal_id)

        models_to_calculate = self.resolve_models(models)
        reference_time = reference_time or deal.closed_at or self.clock()

        partners = self.repository.get_partners_by_ids(tp.partner_id for tp in touchpoints)
        calculated_at = self.clock()

        result = CalculationResult(
            deal_id=deal_id,
            deal_amount=deal.amount,
            models_calculated=models_to_calculate
        )
        rows_by_model: Dict[str, List[Attribution]] = {}

        for model in models_to_calculate:
            start_time = time.perf_counter()
            shares = calculate_shares(
                model,
                touchpoints,
                reference_time=reference_time,
                decay_lambda=self.decay_lambda
            )
            elapsed_ms = (time.perf_counter() - start_time) * 1000
            logger.debug(f"{model} calculated for deal {deal_id} in {elapsed_ms:.2f}ms")

            rows = []
            for share in shares:
                partner = partners.get(share.partner_id)
                if partner is None:
                    # Share is dropped, not redistributed
                    logger.warning(
                        f"Dropping {share.percentage:.2f}% {model} share on deal {deal_id}: "
                        f"partner {share.partner_id} not found"
                    )
                    result.skipped_shares.append(SkippedShare(
                        model=model,
                        partner_id=share.partner_id,
                        percentage=share.percentage
                    ))
                    continue

                amount = round_to_cents(deal.amount * share.percentage / 100)
                commission_amount = round_to_cents(amount * partner.commission_rate / 100)
                rows.append(Attribution(
                    deal_id=deal_id,
                    partner_id=share.partner_id,
                    model=model,
                    percentage=share.percentage,
                    amount=amount,
                    commission_amount=commission_amount,
                    calculated_at=calculated_at,
                    organization_id=deal.organization_id
                ))
                logger.debug(f"Deal {deal_id} / {partner.name}: {explain_share(model, share, touchpoints)}")

            rows_by_model[getattr(model, "value", model)] = rows
            result.results.extend(rows)

        self.repository.replace_attributions(deal_id, rows_by_model)

        logger.info(
            f"Calculated attribution for deal {deal_id}: {len(result.results)} rows "
            f"across {len(models_to_calculate)} models"
        )
        if result.skipped_shares:
            logger.warning(f"Deal {deal_id}: {len(result.skipped_shares)} shares dropped for missing partners")

        return result

    def recalculate(self, deal_id: str, reference_time: Optional[datetime] = None) -> CalculationResult:
        """Full refresh with every model, e.g. after touchpoints were edited."""
        return self.calculate(deal_id, models=None, reference_time=reference_time)

    def delete_by_deal(self, deal_id: str) -> DeleteResult:
        """Delete all attribution rows of a deal regardless of model."""
        self.get_deal(deal_id)
        deleted = self.repository.delete_attributions_for_deal(deal_id)
        logger.info(f"Deleted {deleted} attributions for deal {deal_id}")
        return DeleteResult(deleted_count=deleted)

    # ========================================================================
    # Deal lifecycle
    # ========================================================================

    def close_deal(
        self,
        deal_id: str,
        status: DealStatus,
        closed_at: Optional[datetime] = None,
        calculate_attribution: bool = True
    ) -> Optional[CalculationResult]:
        """
        Close an open deal as won or lost.

        A won deal with touchpoints gets attribution for every model. Returns
        the CalculationResult, or None when nothing was calculated.

        The status change is committed before attribution runs. If storing
        the rows fails, the deal stays won without rows and DatabaseError
        names it; calculate_missing_attributions picks it up later.
        """
        try:
            status = DealStatus(status)
        except ValueError:
            raise ValidationError(f"Invalid close status: {status}", field="status", value=status)
        if status == DealStatus.OPEN:
            raise ValidationError("A deal can only be closed as won or lost", field="status", value=status.value)

        deal = self.get_deal(deal_id)
        if deal.status != DealStatus.OPEN:
            raise InvalidDealStateError(deal_id, deal.status.value)

        self.repository.update_deal_status(deal_id, status, closed_at or self.clock())
        logger.info(f"Deal {deal_id} closed as {status.value}")

        if status != DealStatus.WON or not calculate_attribution:
            return None

        try:
            return self.recalculate(deal_id)
        except NoTouchpointsError:
            logger.warning(f"Deal {deal_id} won without touchpoints; no attribution calculated")
            return None
        except DatabaseError as e:
            logger.error(
                f"Deal {deal_id} closed as won but attribution was not stored: {e.message}; "
                f"calculate_missing_attributions will retry it"
            )
            raise DatabaseError(
                f"Deal {deal_id} closed as won but attribution was not stored: {e.message}",
                operation="close_deal"
            ) from e

    def reopen_deal(self, deal_id: str) -> DeleteResult:
        """Reopen a closed deal and delete all of its attribution rows."""
        deal = self.get_deal(deal_id)
        if deal.status == DealStatus.OPEN:
            raise InvalidDealStateError(deal_id, deal.status.value)

        deleted = self.repository.reopen_deal(deal_id)
        logger.info(f"Deal {deal_id} reopened from {deal.status.value}; {deleted} attributions deleted")
        return DeleteResult(deleted_count=deleted)

    def calculate_missing_attributions(self) -> BackfillResult:
        """
        Calculate attribution for won deals that have no rows yet.

        A failing deal is logged and recorded; the batch continues.
        """
        summary = BackfillResult()
        won_deals = self.repository.get_all_deals(
            organization_id=self.organization_id,
            status=DealStatus.WON
        )

        for deal in won_deals:
            if self.repository.has_attributions(deal.id):
                continue
            try:
                result = self.calculate(deal.id)
            except AttributionError as e:
                logger.error(f"Failed to calculate attribution for deal {deal.id}: {e.message}")
                summary.failures[deal.id] = e.message
                continue

            summary.deals_processed += 1
            summary.attributions_created += len(result.results)

        logger.info(
            f"Backfill complete: {summary.deals_processed} deals, "
            f"{summary.attributions_created} attributions, {len(summary.failures)} failures"
        )
        return summary
