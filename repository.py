"""
Database Repository Layer for Partner Attribution
=================================================

SQLite storage for the collaborators the engine reads (partners, deals,
touchpoints) and the attribution rows it writes.

Multi-statement writes (replacing a deal's rows, reopening a deal) run in a
single transaction. Concurrent writers for the same deal must still be
serialized by the caller.
"""

import logging
import sqlite3
from datetime import datetime
from typing import Dict, List, Optional, Iterable

import pandas as pd

from exceptions import DatabaseError
from models import (
    Attribution,
    Deal,
    DealStatus,
    Partner,
    PartnerStatus,
    PartnerTier,
    Touchpoint,
    parse_model,
)

logger = logging.getLogger(__name__)


def _to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _enum_value(value):
    return getattr(value, "value", value)


class AttributionRepository:
    """Repository for partners, deals, touchpoints and attributions in SQLite."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row

    def close(self):
        """Close database connection."""
        self.conn.close()

    def init_db(self) -> None:
        """Create tables and indexes if they don't exist."""
        logger.info(f"Initializing database schema at {self.db_path}")
        self.conn.executescript("""
        CREATE TABLE IF NOT EXISTS partners (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            commission_rate REAL NOT NULL DEFAULT 0,
            tier TEXT,
            status TEXT NOT NULL DEFAULT 'active',
            organization_id TEXT
        );

        CREATE TABLE IF NOT EXISTS deals (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            amount REAL NOT NULL,
            status TEXT NOT NULL DEFAULT 'open',
            created_at TEXT NOT NULL,
            closed_at TEXT,
            organization_id TEXT
        );

        CREATE TABLE IF NOT EXISTS touchpoints (
            id TEXT PRIMARY KEY,
            deal_id TEXT NOT NULL,
            partner_id TEXT NOT NULL,
            type TEXT NOT NULL,
            timestamp TEXT NOT NULL,
            weight REAL,
            organization_id TEXT,
            FOREIGN KEY (deal_id) REFERENCES deals(id)
        );

        CREATE TABLE IF NOT EXISTS attributions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            deal_id TEXT NOT NULL,
            partner_id TEXT NOT NULL,
            model TEXT NOT NULL,
            percentage REAL NOT NULL,
            amount REAL NOT NULL,
            commission_amount REAL NOT NULL,
            calculated_at TEXT NOT NULL,
            organization_id TEXT,
            FOREIGN KEY (deal_id) REFERENCES deals(id)
        );

        CREATE UNIQUE INDEX IF NOT EXISTS idx_attributions_unique
            ON attributions(deal_id, partner_id, model);
        CREATE INDEX IF NOT EXISTS idx_attributions_partner ON attributions(partner_id);
        CREATE INDEX IF NOT EXISTS idx_attributions_model ON attributions(model);
        CREATE INDEX IF NOT EXISTS idx_touchpoints_deal ON touchpoints(deal_id);
        CREATE INDEX IF NOT EXISTS idx_touchpoints_partner ON touchpoints(partner_id);
        """)
        self.conn.commit()

    def read_sql(self, sql: str, params: tuple = ()) -> pd.DataFrame:
        """Execute a SQL query and return results as DataFrame."""
        try:
            df = pd.read_sql_query(sql, self.conn, params=params)
            logger.debug(f"Read SQL: {sql[:100]}... returned {len(df)} rows")
            return df
        except Exception as e:
            logger.error(f"Error reading SQL: {e}")
            raise

    # ========================================================================
    # Partners
    # ========================================================================

    def create_partner(self, partner: Partner) -> str:
        """Create a partner and return its ID."""
        self.conn.execute("""
            INSERT INTO partners (id, name, commission_rate, tier, status, organization_id)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (
            partner.id,
            partner.name,
            partner.commission_rate,
            _enum_value(partner.tier),
            _enum_value(partner.status),
            partner.organization_id
        ))
        self.conn.commit()
        return partner.id

    def update_partner(self, partner: Partner) -> None:
        """Update an existing partner."""
        self.conn.execute("""
            UPDATE partners
            SET name = ?, commission_rate = ?, tier = ?, status = ?, organization_id = ?
            WHERE id = ?
        """, (
            partner.name,
            partner.commission_rate,
            _enum_value(partner.tier),
            _enum_value(partner.status),
            partner.organization_id,
            partner.id
        ))
        self.conn.commit()

    def delete_partner(self, partner_id: str) -> None:
        """Delete a partner record. Its touchpoints and attributions are kept."""
        self.conn.execute("DELETE FROM partners WHERE id = ?", (partner_id,))
        self.conn.commit()

    def get_partner(self, partner_id: str) -> Optional[Partner]:
        """Get a partner by ID."""
        row = self.conn.execute("SELECT * FROM partners WHERE id = ?", (partner_id,)).fetchone()
        return self._row_to_partner(row) if row else None

    def get_partners_by_ids(self, partner_ids: Iterable[str]) -> Dict[str, Partner]:
        """Get the partners that exist among the given IDs, keyed by ID."""
        ids = list(dict.fromkeys(partner_ids))
        if not ids:
            return {}
        placeholders = ", ".join("?" for _ in ids)
        rows = self.conn.execute(
            f"SELECT * FROM partners WHERE id IN ({placeholders})", tuple(ids)
        ).fetchall()
        return {row['id']: self._row_to_partner(row) for row in rows}

    def get_all_partners(self, organization_id: Optional[str] = None) -> List[Partner]:
        """Get all partners, optionally scoped to an organization."""
        if organization_id is None:
            rows = self.conn.execute("SELECT * FROM partners ORDER BY rowid").fetchall()
        else:
            rows = self.conn.execute(
                "SELECT * FROM partners WHERE organization_id = ? ORDER BY rowid",
                (organization_id,)
            ).fetchall()
        return [self._row_to_partner(row) for row in rows]

    def _row_to_partner(self, row: sqlite3.Row) -> Partner:
        return Partner(
            id=row['id'],
            name=row['name'],
            commission_rate=row['commission_rate'],
            tier=PartnerTier(row['tier']) if row['tier'] else None,
            status=PartnerStatus(row['status']),
            organization_id=row['organization_id']
        )

    # ========================================================================
    # Deals
    # ========================================================================

    def create_deal(self, deal: Deal) -> str:
        """Create a deal and return its ID."""
        self.conn.execute("""
            INSERT INTO deals (id, name, amount, status, created_at, closed_at, organization_id)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (
            deal.id,
            deal.name,
            deal.amount,
            _enum_value(deal.status),
            _to_iso(deal.created_at),
            _to_iso(deal.closed_at),
            deal.organization_id
        ))
        self.conn.commit()
        return deal.id

    def get_deal(self, deal_id: str) -> Optional[Deal]:
        """Get a deal by ID."""
        row = self.conn.execute("SELECT * FROM deals WHERE id = ?", (deal_id,)).fetchone()
        return self._row_to_deal(row) if row else None

    def get_deals_by_ids(self, deal_ids: Iterable[str]) -> Dict[str, Deal]:
        """Get the deals that exist among the given IDs, keyed by ID."""
        ids = list(dict.fromkeys(deal_ids))
        if not ids:
            return {}
        placeholders = ", ".join("?" for _ in ids)
        rows = self.conn.execute(
            f"SELECT * FROM deals WHERE id IN ({placeholders})", tuple(ids)
        ).fetchall()
        return {row['id']: self._row_to_deal(row) for row in rows}

    def get_all_deals(
        self,
        organization_id: Optional[str] = None,
        status: Optional[DealStatus] = None
    ) -> List[Deal]:
        """Get deals, optionally filtered by organization and status."""
        sql = "SELECT * FROM deals WHERE 1 = 1"
        params = []
        if organization_id is not None:
            sql += " AND organization_id = ?"
            params.append(organization_id)
        if status is not None:
            sql += " AND status = ?"
            params.append(_enum_value(status))
        sql += " ORDER BY rowid"
        rows = self.conn.execute(sql, tuple(params)).fetchall()
        return [self._row_to_deal(row) for row in rows]

    def update_deal_status(
        self,
        deal_id: str,
        status: DealStatus,
        closed_at: Optional[datetime] = None
    ) -> None:
        """Set a deal's status and close time."""
        self.conn.execute(
            "UPDATE deals SET status = ?, closed_at = ? WHERE id = ?",
            (_enum_value(status), _to_iso(closed_at), deal_id)
        )
        self.conn.commit()

    def reopen_deal(self, deal_id: str) -> int:
        """
        Mark a deal open and delete all its attributions in one transaction.

        Returns the number of attribution rows deleted.
        """
        try:
            self.conn.execute(
                "UPDATE deals SET status = ?, closed_at = NULL WHERE id = ?",
                (DealStatus.OPEN.value, deal_id)
            )
            cursor = self.conn.execute("DELETE FROM attributions WHERE deal_id = ?", (deal_id,))
            self.conn.commit()
            return cursor.rowcount
        except sqlite3.Error as e:
            self.conn.rollback()
            logger.error(f"Error reopening deal {deal_id}: {e}")
            raise DatabaseError(f"Failed to reopen deal {deal_id}: {e}", operation="reopen_deal") from e

    def _row_to_deal(self, row: sqlite3.Row) -> Deal:
        return Deal(
            id=row['id'],
            name=row['name'],
            amount=row['amount'],
            status=DealStatus(row['status']),
            created_at=_from_iso(row['created_at']),
            closed_at=_from_iso(row['closed_at']),
            organization_id=row['organization_id']
        )

    # ========================================================================
    # Touchpoints
    # ========================================================================

    def create_touchpoint(self, touchpoint: Touchpoint) -> str:
        """Create a touchpoint and return its ID."""
        self.conn.execute("""
            INSERT INTO touchpoints (id, deal_id, partner_id, type, timestamp, weight, organization_id)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (
            touchpoint.id,
            touchpoint.deal_id,
            touchpoint.partner_id,
            touchpoint.type,
            _to_iso(touchpoint.timestamp),
            touchpoint.weight,
            touchpoint.organization_id
        ))
        self.conn.commit()
        return touchpoint.id

    def delete_touchpoint(self, touchpoint_id: str) -> None:
        self.conn.execute("DELETE FROM touchpoints WHERE id = ?", (touchpoint_id,))
        self.conn.commit()

    def get_touchpoints_for_deal(self, deal_id: str) -> List[Touchpoint]:
        """Get a deal's touchpoints in insertion order."""
        rows = self.conn.execute(
            "SELECT * FROM touchpoints WHERE deal_id = ? ORDER BY rowid", (deal_id,)
        ).fetchall()
        return [self._row_to_touchpoint(row) for row in rows]

    def get_all_touchpoints(self, organization_id: Optional[str] = None) -> List[Touchpoint]:
        """Get all touchpoints, optionally scoped to an organization."""
        if organization_id is None:
            rows = self.conn.execute("SELECT * FROM touchpoints ORDER BY rowid").fetchall()
        else:
            rows = self.conn.execute(
                "SELECT * FROM touchpoints WHERE organization_id = ? ORDER BY rowid",
                (organization_id,)
            ).fetchall()
        return [self._row_to_touchpoint(row) for row in rows]

    def _row_to_touchpoint(self, row: sqlite3.Row) -> Touchpoint:
        return Touchpoint(
            id=row['id'],
            deal_id=row['deal_id'],
            partner_id=row['partner_id'],
            type=row['type'],
            timestamp=_from_iso(row['timestamp']),
            weight=row['weight'],
            organization_id=row['organization_id']
        )

    # ========================================================================
    # Attributions
    # ========================================================================

    def replace_attributions(self, deal_id: str, rows_by_model: Dict[str, List[Attribution]]) -> int:
        """
        Replace a deal's rows for each given model in one transaction.

        Models absent from rows_by_model keep their rows. A model mapped to an
        empty list ends up with no rows. Returns the number of rows inserted.
        """
        inserted = 0
        try:
            for model, rows in rows_by_model.items():
                self.conn.execute(
                    "DELETE FROM attributions WHERE deal_id = ? AND model = ?",
                    (deal_id, _enum_value(model))
                )
                for row in rows:
                    cursor = self.conn.execute("""
                        INSERT INTO attributions (
                            deal_id, partner_id, model, percentage, amount,
                            commission_amount, calculated_at, organization_id
                        )
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """, (
                        row.deal_id,
                        row.partner_id,
                        _enum_value(row.model),
                        row.percentage,
                        row.amount,
                        row.commission_amount,
                        _to_iso(row.calculated_at),
                        row.organization_id
                    ))
                    row.id = cursor.lastrowid
                    inserted += 1
            self.conn.commit()
        except sqlite3.Error as e:
            self.conn.rollback()
            logger.error(f"Error replacing attributions for deal {deal_id}: {e}")
            raise DatabaseError(
                f"Failed to replace attributions for deal {deal_id}: {e}",
                operation="replace_attributions"
            ) from e
        return inserted

    def delete_attributions_for_deal(self, deal_id: str) -> int:
        """Delete every attribution row of a deal, regardless of model."""
        cursor = self.conn.execute("DELETE FROM attributions WHERE deal_id = ?", (deal_id,))
        self.conn.commit()
        return cursor.rowcount

    def has_attributions(self, deal_id: str) -> bool:
        row = self.conn.execute(
            "SELECT 1 FROM attributions WHERE deal_id = ? LIMIT 1", (deal_id,)
        ).fetchone()
        return row is not None

    def get_attributions(
        self,
        deal_id: Optional[str] = None,
        partner_id: Optional[str] = None,
        model=None,
        organization_id: Optional[str] = None
    ) -> List[Attribution]:
        """Get attribution rows matching every given filter."""
        sql = "SELECT * FROM attributions WHERE 1 = 1"
        params = []
        if deal_id is not None:
            sql += " AND deal_id = ?"
            params.append(deal_id)
        if partner_id is not None:
            sql += " AND partner_id = ?"
            params.append(partner_id)
        if model is not None:
            sql += " AND model = ?"
            params.append(_enum_value(model))
        if organization_id is not None:
            sql += " AND organization_id = ?"
            params.append(organization_id)
        sql += " ORDER BY id"
        rows = self.conn.execute(sql, tuple(params)).fetchall()
        return [self._row_to_attribution(row) for row in rows]

    def _row_to_attribution(self, row: sqlite3.Row) -> Attribution:
        return Attribution(
            id=row['id'],
            deal_id=row['deal_id'],
            partner_id=row['partner_id'],
            model=parse_model(row['model']) or row['model'],
            percentage=row['percentage'],
            amount=row['amount'],
            commission_amount=row['commission_amount'],
            calculated_at=_from_iso(row['calculated_at']),
            organization_id=row['organization_id']
        )
