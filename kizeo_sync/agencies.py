"""
Kizeo Sync - Agencies

Every agency has the same equipment schema in its own pair of tables
(equipment_<code>, contact_<code>). Code maps to tables here, once, and
everything downstream takes the resolved AgencyTables instead of
branching per agency.

Upstream identifiers (form id, list id) live in the ``agencies`` table.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import psycopg
from psycopg import sql

from .errors import ConfigError, UnknownAgencyError

logger = logging.getLogger(__name__)

KNOWN_AGENCIES: tuple[str, ...] = (
    "S10",
    "S40",
    "S50",
    "S60",
    "S70",
    "S80",
    "S100",
    "S120",
    "S130",
    "S140",
    "S150",
    "S160",
    "S170",
)


def normalize_agency_code(code: str) -> str:
    """
    Upper-case and validate an agency code.

    >>> normalize_agency_code(" s40 ")
    'S40'

    Raises:
        UnknownAgencyError: If the code is not a known agency.
    """
    normalized = (code or "").strip().upper()
    if normalized not in KNOWN_AGENCIES:
        raise UnknownAgencyError(code, KNOWN_AGENCIES)
    return normalized


@dataclass(frozen=True)
class AgencyTables:
    """Table identifiers for one agency."""

    code: str

    @classmethod
    def for_agency(cls, code: str) -> "AgencyTables":
        return cls(code=normalize_agency_code(code))

    @property
    def equipment_name(self) -> str:
        return f"equipment_{self.code.lower()}"

    @property
    def contact_name(self) -> str:
        return f"contact_{self.code.lower()}"

    @property
    def equipment(self) -> sql.Identifier:
        return sql.Identifier(self.equipment_name)

    @property
    def contact(self) -> sql.Identifier:
        return sql.Identifier(self.contact_name)


@dataclass(frozen=True)
class Agency:
    """An agencies row."""

    code: str
    form_id: Optional[int]
    list_id: Optional[int]
    is_active: bool = True

    @property
    def tables(self) -> AgencyTables:
        return AgencyTables.for_agency(self.code)


class AgencyRegistry:
    """Reads agency configuration from the ``agencies`` table."""

    def __init__(self, conn: psycopg.Connection):
        self.conn = conn

    def get(self, code: str) -> Agency:
        """
        Look up one agency.

        Raises:
            UnknownAgencyError: If the code is not a known agency.
            ConfigError: If the agency has no row in ``agencies``.
        """
        normalized = normalize_agency_code(code)

        with self.conn.cursor() as cur:
            cur.execute(
                """
                SELECT code, kizeo_form_id, kizeo_list_id, is_active
                FROM agencies
                WHERE code = %(code)s
                """,
                {"code": normalized},
            )
            row = cur.fetchone()

        if row is None:
            raise ConfigError(f"Agency {normalized} is not configured in the agencies table")

        return _agency_from_row(row)

    def active(self) -> list[Agency]:
        """Active agencies with a form id, in KNOWN_AGENCIES order."""
        with self.conn.cursor() as cur:
            cur.execute(
                """
                SELECT code, kizeo_form_id, kizeo_list_id, is_active
                FROM agencies
                WHERE is_active AND kizeo_form_id IS NOT NULL
                """
            )
            rows = cur.fetchall()

        agencies = []
        for row in rows:
            code = str(row["code"]).strip().upper()
            if code not in KNOWN_AGENCIES:
                logger.warning("[Agencies] Ignoring unknown agency row", extra={"agency": code})
                continue
            agencies.append(_agency_from_row(row))

        agencies.sort(key=lambda a: KNOWN_AGENCIES.index(a.code))
        logger.debug("[Agencies] Active agencies loaded", extra={"count": len(agencies)})
        return agencies


def _agency_from_row(row: dict) -> Agency:
    return Agency(
        code=str(row["code"]).strip().upper(),
        form_id=row.get("kizeo_form_id"),
        list_id=row.get("kizeo_list_id"),
        is_active=bool(row.get("is_active", True)),
    )
