"""
Kizeo Sync - Equipment Repository

psycopg3 access to one agency's equipment and contact tables.
Used by the deduplicator, the number generator, the persister and the
list builder.

Nothing here commits. Callers own the transaction.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Callable, Optional

import psycopg
from psycopg import sql

from .agencies import AgencyTables
from .normalize import normalize_number

logger = logging.getLogger(__name__)

EQUIPMENT_COLUMNS: tuple[str, ...] = (
    "contact_id",
    "equipment_number",
    "label",
    "equipment_type",
    "visit_code",
    "visit_year",
    "visit_date",
    "site_location",
    "commissioning_year",
    "serial_number",
    "brand",
    "operating_mode",
    "height",
    "width",
    "length",
    "condition_code",
    "anomalies",
    "technician_code",
    "is_off_contract",
    "is_archived",
    "form_id",
    "submission_id",
    "position_index",
)


class EquipmentRepository:
    """Queries against equipment_<agency> / contact_<agency>."""

    def __init__(self, conn: psycopg.Connection, tables: AgencyTables):
        self.conn = conn
        self.tables = tables

    @property
    def agency(self) -> str:
        return self.tables.code

    # ------------------------------------------------------------------
    # Identity lookups
    # ------------------------------------------------------------------

    def contract_exists(
        self,
        contact_id: int,
        number: str,
        visit_code: str,
        visit_date: date,
    ) -> bool:
        query = sql.SQL(
            """
            SELECT 1
            FROM {equipment}
            WHERE NOT is_off_contract
              AND contact_id = %(contact_id)s
              AND upper(trim(equipment_number)) = %(number)s
              AND upper(trim(visit_code)) = %(visit_code)s
              AND visit_date::date = %(visit_date)s
            LIMIT 1
            """
        ).format(equipment=self.tables.equipment)

        with self.conn.cursor() as cur:
            cur.execute(
                query,
                {
                    "contact_id": contact_id,
                    "number": normalize_number(number),
                    "visit_code": normalize_number(visit_code),
                    "visit_date": visit_date,
                },
            )
            return cur.fetchone() is not None

    def off_contract_exists(self, form_id: int, submission_id: int, position_index: int) -> bool:
        return self.find_off_contract_number(form_id, submission_id, position_index) is not None

    def find_off_contract_number(
        self,
        form_id: int,
        submission_id: int,
        position_index: int,
    ) -> Optional[str]:
        """Number previously generated for this exact submission slot."""
        query = sql.SQL(
            """
            SELECT equipment_number
            FROM {equipment}
            WHERE is_off_contract
              AND form_id = %(form_id)s
              AND submission_id = %(submission_id)s
              AND position_index = %(position_index)s
            LIMIT 1
            """
        ).format(equipment=self.tables.equipment)

        with self.conn.cursor() as cur:
            cur.execute(
                query,
                {
                    "form_id": form_id,
                    "submission_id": submission_id,
                    "position_index": position_index,
                },
            )
            row = cur.fetchone()

        return row["equipment_number"] if row else None

    # ------------------------------------------------------------------
    # Numbering
    # ------------------------------------------------------------------

    def lock_number_sequence(self, contact_id: int, prefix: str) -> None:
        """
        Serialize number generation for (contact, prefix).

        Transaction-scoped advisory lock: released on COMMIT/ROLLBACK of the
        enclosing transaction, after the new row is visible.
        """
        key = f"{self.tables.equipment_name}:{contact_id}:{prefix}"
        with self.conn.cursor() as cur:
            cur.execute("SELECT pg_advisory_xact_lock(hashtext(%(key)s))", {"key": key})

    def max_number_suffix(self, contact_id: int, prefix: str) -> int:
        """Highest N among the contact's numbers shaped PREFIX<N>, 0 if none."""
        query = sql.SQL(
            """
            SELECT COALESCE(
                MAX(substring(upper(equipment_number) FROM %(suffix_pattern)s)::int),
                0
            ) AS max_suffix
            FROM {equipment}
            WHERE contact_id = %(contact_id)s
              AND upper(equipment_number) ~ %(number_pattern)s
            """
        ).format(equipment=self.tables.equipment)

        with self.conn.cursor() as cur:
            cur.execute(
                query,
                {
                    "contact_id": contact_id,
                    "suffix_pattern": f"^{prefix}([0-9]+)$",
                    "number_pattern": f"^{prefix}[0-9]+$",
                },
            )
            row = cur.fetchone()

        return int(row["max_suffix"]) if row and row["max_suffix"] is not None else 0

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert(self, row: dict[str, Any]) -> bool:
        """
        Insert one equipment row.

        ON CONFLICT DO NOTHING covers both partial unique indexes, so a row
        that raced in from a concurrent run is skipped rather than raised.

        Returns:
            True if a row was written.
        """
        columns = [c for c in EQUIPMENT_COLUMNS if c in row]
        query = sql.SQL(
            "INSERT INTO {equipment} ({columns}) VALUES ({values}) ON CONFLICT DO NOTHING"
        ).format(
            equipment=self.tables.equipment,
            columns=sql.SQL(", ").join(sql.Identifier(c) for c in columns),
            values=sql.SQL(", ").join(sql.Placeholder(c) for c in columns),
        )

        with self.conn.cursor() as cur:
            cur.execute(query, {c: row[c] for c in columns})
            inserted = cur.rowcount > 0

        if not inserted:
            logger.info(
                "[DB] Equipment already exists",
                extra={
                    "agency": self.agency,
                    "equipment_number": row.get("equipment_number"),
                    "contact_id": row.get("contact_id"),
                },
            )
        return inserted

    def ensure_contact(
        self,
        contact_id: int,
        company_name: Optional[str],
        company_id: Optional[str],
    ) -> bool:
        """
        Create the contact row if missing. Existing contacts are left as is.

        Returns:
            True if a row was created.
        """
        query = sql.SQL(
            """
            INSERT INTO {contact} (contact_id, company_name, company_id)
            VALUES (%(contact_id)s, %(company_name)s, %(company_id)s)
            ON CONFLICT (contact_id) DO NOTHING
            """
        ).format(contact=self.tables.contact)

        with self.conn.cursor() as cur:
            cur.execute(
                query,
                {
                    "contact_id": contact_id,
                    "company_name": company_name,
                    "company_id": company_id,
                },
            )
            return cur.rowcount > 0

    # ------------------------------------------------------------------
    # Snapshot reads (list sync)
    # ------------------------------------------------------------------

    def fetch_active_rows(self) -> list[dict[str, Any]]:
        """Latest non-archived row per (contact, visit code, number), with contact fields."""
        query = sql.SQL(
            """
            SELECT DISTINCT ON (e.contact_id, upper(e.visit_code), upper(e.equipment_number))
                e.contact_id,
                e.equipment_number,
                e.visit_code,
                e.label,
                e.commissioning_year,
                e.serial_number,
                e.brand,
                e.length,
                e.width,
                e.height,
                c.company_name,
                c.company_id
            FROM {equipment} e
            LEFT JOIN {contact} c ON c.contact_id = e.contact_id
            WHERE NOT e.is_archived
              AND e.equipment_number IS NOT NULL
            ORDER BY
                e.contact_id,
                upper(e.visit_code),
                upper(e.equipment_number),
                e.visit_date DESC NULLS LAST,
                e.id DESC
            """
        ).format(equipment=self.tables.equipment, contact=self.tables.contact)

        with self.conn.cursor() as cur:
            cur.execute(query)
            rows = cur.fetchall()

        logger.debug("[DB] Active equipment loaded", extra={"agency": self.agency, "count": len(rows)})
        return rows

    def fetch_archived_rows(self) -> list[dict[str, Any]]:
        """Archived identities with no active version left."""
        query = sql.SQL(
            """
            SELECT DISTINCT a.contact_id, upper(a.visit_code) AS visit_code,
                   upper(a.equipment_number) AS equipment_number
            FROM {equipment} a
            WHERE a.is_archived
              AND a.equipment_number IS NOT NULL
              AND NOT EXISTS (
                  SELECT 1
                  FROM {equipment} e
                  WHERE NOT e.is_archived
                    AND e.contact_id = a.contact_id
                    AND upper(e.visit_code) = upper(a.visit_code)
                    AND upper(e.equipment_number) = upper(a.equipment_number)
              )
            """
        ).format(equipment=self.tables.equipment)

        with self.conn.cursor() as cur:
            cur.execute(query)
            rows = cur.fetchall()

        logger.debug("[DB] Archived equipment loaded", extra={"agency": self.agency, "count": len(rows)})
        return rows


class EquipmentStores:
    """
    agency code -> EquipmentRepository, one instance per agency.

    Callable so the deduplicator, number generator and persister can share a
    single lookup without knowing about connections.
    """

    def __init__(
        self,
        conn: psycopg.Connection,
        factory: Callable[[psycopg.Connection, AgencyTables], EquipmentRepository] = EquipmentRepository,
    ):
        self.conn = conn
        self._factory = factory
        self._cache: dict[str, EquipmentRepository] = {}

    def __call__(self, agency: str) -> EquipmentRepository:
        tables = AgencyTables.for_agency(agency)
        repo = self._cache.get(tables.code)
        if repo is None:
            repo = self._factory(self.conn, tables)
            self._cache[tables.code] = repo
        return repo
