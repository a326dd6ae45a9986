"""
Attribution Views
=================

Read-only views over materialized attribution rows, returned as DataFrames:
- per deal (optionally one model), with partner names and commission rates
- per partner, newest first, with deal details
- per model analytics: partner leaderboard plus summary totals
- side-by-side comparison of every model for one deal
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional, Any

import pandas as pd

from attribution_engine import get_all_models, model_key
from exceptions import DealNotFoundError, PartnerNotFoundError
from utils import dataframe_to_csv_download, round_to_cents

logger = logging.getLogger(__name__)

ANALYTICS_COLUMNS = [
    "partner_id", "partner_name", "deals_count",
    "total_revenue", "total_commission", "avg_percentage",
]


@dataclass
class AttributionAnalytics:
    """Partner leaderboard and totals for one attribution model."""
    model: str
    partners: pd.DataFrame
    summary: Dict[str, Any] = field(default_factory=dict)


class AttributionQueries:
    """Aggregation views, optionally scoped to one organization."""

    def __init__(self, repository, organization_id: Optional[str] = None):
        self.repository = repository
        self.organization_id = organization_id

    def _in_scope(self, record) -> bool:
        return self.organization_id is None or record.organization_id == self.organization_id

    def _scope_clause(self, alias: str = "a") -> tuple:
        if self.organization_id is None:
            return "", ()
        return f" AND {alias}.organization_id = ?", (self.organization_id,)

    def get_by_deal(self, deal_id: str, model=None) -> pd.DataFrame:
        """Attribution rows of a deal, optionally for one model."""
        deal = self.repository.get_deal(deal_id)
        if deal is None or not self._in_scope(deal):
            raise DealNotFoundError(deal_id)

        sql = """
            SELECT a.id, a.deal_id, a.partner_id, p.name AS partner_name,
                   a.model, a.percentage, a.amount, a.commission_amount,
                   p.commission_rate, a.calculated_at
            FROM attributions a
            LEFT JOIN partners p ON p.id = a.partner_id
            WHERE a.deal_id = ?
        """
        params = (deal_id,)
        if model is not None:
            sql += " AND a.model = ?"
            params += (model_key(model),)
        scope_sql, scope_params = self._scope_clause()
        sql += scope_sql + " ORDER BY a.model, a.id"
        return self.repository.read_sql(sql, params + scope_params)

    def get_by_partner(self, partner_id: str, model=None) -> pd.DataFrame:
        """Attribution rows earned by a partner, newest first."""
        partner = self.repository.get_partner(partner_id)
        if partner is None or not self._in_scope(partner):
            raise PartnerNotFoundError(partner_id)

        sql = """
            SELECT a.id, a.deal_id, d.name AS deal_name, d.amount AS deal_amount,
                   d.status AS deal_status, a.partner_id, a.model, a.percentage,
                   a.amount, a.commission_amount, a.calculated_at
            FROM attributions a
            LEFT JOIN deals d ON d.id = a.deal_id
            WHERE a.partner_id = ?
        """
        params = (partner_id,)
        if model is not None:
            sql += " AND a.model = ?"
            params += (model_key(model),)
        scope_sql, scope_params = self._scope_clause()
        sql += scope_sql + " ORDER BY a.calculated_at DESC, a.id DESC"
        return self.repository.read_sql(sql, params + scope_params)

    def get_analytics(self, model) -> AttributionAnalytics:
        """
        Per-partner totals for one model, highest revenue first.

        Rows whose partner no longer exists are left out of the leaderboard
        but still count toward the summary.
        """
        key = model_key(model)
        scope_sql, scope_params = self._scope_clause()
        rows = self.repository.read_sql(f"""
            SELECT a.deal_id, a.partner_id, p.name AS partner_name,
                   a.percentage, a.amount, a.commission_amount
            FROM attributions a
            LEFT JOIN partners p ON p.id = a.partner_id
            WHERE a.model = ?{scope_sql}
            ORDER BY a.id
        """, (key,) + scope_params)

        summary = {
            "total_deals": int(rows["deal_id"].nunique()) if not rows.empty else 0,
            "total_revenue": round_to_cents(rows["amount"].sum()) if not rows.empty else 0.0,
            "total_commissions": round_to_cents(rows["commission_amount"].sum()) if not rows.empty else 0.0,
        }

        resolved = rows[rows["partner_name"].notna()]
        if resolved.empty:
            partners = pd.DataFrame(columns=ANALYTICS_COLUMNS)
        else:
            partners = (
                resolved.groupby(["partner_id", "partner_name"], sort=False)
                .agg(
                    deals_count=("deal_id", "size"),
                    total_revenue=("amount", "sum"),
                    total_commission=("commission_amount", "sum"),
                    avg_percentage=("percentage", "mean"),
                )
                .reset_index()
            )
            for col in ["total_revenue", "total_commission", "avg_percentage"]:
                partners[col] = partners[col].apply(round_to_cents)
            partners = partners.sort_values(
                "total_revenue", ascending=False, kind="stable"
            ).reset_index(drop=True)

        skipped = len(rows) - len(resolved)
        if skipped:
            logger.warning(f"{skipped} {key} attribution rows reference missing partners")

        return AttributionAnalytics(model=key, partners=partners[ANALYTICS_COLUMNS], summary=summary)

    def compare_models(self, deal_id: str) -> Dict[str, pd.DataFrame]:
        """Rows of a deal under each registered model, keyed by model identifier."""
        rows = self.get_by_deal(deal_id)
        comparison = {}
        for model in get_all_models():
            key = model_key(model)
            comparison[key] = rows[rows["model"] == key].reset_index(drop=True)
        return comparison

    def export_analytics_csv(self, model) -> tuple:
        """Partner leaderboard for a model as CSV. Returns (csv_bytes, filename)."""
        analytics = self.get_analytics(model)
        filename = f"attribution_{analytics.model}_{datetime.now().strftime('%Y%m%d')}.csv"
        return dataframe_to_csv_download(analytics.partners, filename)
