"""
Kizeo Sync - Schema

Idempotent DDL (CREATE ... IF NOT EXISTS) for the agencies table, the job
queue, the media references and the per-agency equipment and contact
tables. The unique indexes are the last line of defence behind the
deduplicator and the natural keys; NULLS NOT DISTINCT needs PostgreSQL 15+.
"""

from __future__ import annotations

import logging
from typing import Iterable

import psycopg
from psycopg import sql

from .agencies import KNOWN_AGENCIES, AgencyTables

logger = logging.getLogger(__name__)

AGENCIES_DDL = """
CREATE TABLE IF NOT EXISTS agencies (
    code            text PRIMARY KEY,
    name            text,
    kizeo_form_id   bigint,
    kizeo_list_id   bigint,
    is_active       boolean NOT NULL DEFAULT true
)
"""

JOBS_DDL = """
CREATE TABLE IF NOT EXISTS kizeo_jobs (
    id                bigserial PRIMARY KEY,
    job_type          text NOT NULL CHECK (job_type IN ('photo', 'report')),
    agency_code       text NOT NULL,
    form_id           bigint NOT NULL,
    submission_id     bigint NOT NULL,
    media_name        text,
    equipment_number  text,
    contact_id        bigint NOT NULL,
    year              char(4) NOT NULL,
    visit_code        text NOT NULL DEFAULT 'CE1',
    client_name       text,
    visit_date        date,
    status            text NOT NULL DEFAULT 'pending'
                      CHECK (status IN ('pending', 'processing', 'done', 'failed')),
    priority          smallint NOT NULL DEFAULT 5,
    attempts          integer NOT NULL DEFAULT 0,
    max_attempts      integer NOT NULL DEFAULT 3,
    last_error        text,
    local_path        text,
    file_size         bigint,
    created_at        timestamptz NOT NULL DEFAULT now(),
    started_at        timestamptz,
    completed_at      timestamptz,
    CONSTRAINT kizeo_jobs_natural_key
        UNIQUE NULLS NOT DISTINCT (form_id, submission_id, media_name)
)
"""

JOBS_INDEXES = (
    """
    CREATE INDEX IF NOT EXISTS kizeo_jobs_claim_idx
        ON kizeo_jobs (job_type, status, priority, created_at)
    """,
    """
    CREATE INDEX IF NOT EXISTS kizeo_jobs_agency_idx
        ON kizeo_jobs (agency_code, status)
    """,
)

MEDIA_DDL = """
CREATE TABLE IF NOT EXISTS kizeo_media (
    id                bigserial PRIMARY KEY,
    agency_code       text NOT NULL,
    form_id           bigint NOT NULL,
    submission_id     bigint NOT NULL,
    media_name        text NOT NULL,
    field_name        text NOT NULL,
    photo_type        text NOT NULL,
    photo_index       integer,
    equipment_number  text NOT NULL,
    contact_id        bigint NOT NULL,
    visit_code        text NOT NULL DEFAULT 'CE1',
    year              char(4) NOT NULL,
    is_off_contract   boolean NOT NULL DEFAULT false,
    created_at        timestamptz NOT NULL DEFAULT now(),
    CONSTRAINT kizeo_media_natural_key UNIQUE (form_id, submission_id, media_name)
)
"""

MEDIA_INDEX = """
CREATE INDEX IF NOT EXISTS kizeo_media_equipment_idx
    ON kizeo_media (agency_code, contact_id, equipment_number)
"""

CONTACT_DDL = """
CREATE TABLE IF NOT EXISTS {contact} (
    contact_id    bigint PRIMARY KEY,
    company_name  text,
    company_id    text
)
"""

EQUIPMENT_DDL = """
CREATE TABLE IF NOT EXISTS {equipment} (
    id                  bigserial PRIMARY KEY,
    contact_id          bigint NOT NULL,
    equipment_number    text NOT NULL,
    label               text,
    equipment_type      text,
    visit_code          text NOT NULL DEFAULT 'CE1',
    visit_year          char(4),
    visit_date          date,
    site_location       text,
    commissioning_year  text,
    serial_number       text,
    brand               text,
    operating_mode      text,
    height              text,
    width               text,
    length              text,
    condition_code      text,
    anomalies           text,
    technician_code     text,
    is_off_contract     boolean NOT NULL DEFAULT false,
    is_archived         boolean NOT NULL DEFAULT false,
    form_id             bigint,
    submission_id       bigint,
    position_index      integer,
    created_at          timestamptz NOT NULL DEFAULT now()
)
"""

EQUIPMENT_INDEXES = (
    """
    CREATE UNIQUE INDEX IF NOT EXISTS {name}
        ON {equipment} (contact_id, upper(equipment_number), upper(visit_code), visit_date)
        WHERE NOT is_off_contract
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS {name}
        ON {equipment} (form_id, submission_id, position_index)
        WHERE is_off_contract
    """,
    """
    CREATE INDEX IF NOT EXISTS {name}
        ON {equipment} (contact_id, equipment_number)
    """,
)
_EQUIPMENT_INDEX_SUFFIXES = ("contract_identity", "off_contract_identity", "contact_number_idx")


def ensure_schema(conn: psycopg.Connection, agencies: Iterable[str] = KNOWN_AGENCIES) -> int:
    """
    Create any missing table or index.

    Also seeds one (inactive, unconfigured) agencies row per code so the
    operator only has to fill in the Kizeo ids.

    Returns:
        Number of agencies whose tables were ensured.
    """
    count = 0
    with conn.transaction():
        with conn.cursor() as cur:
            cur.execute(AGENCIES_DDL)
            cur.execute(JOBS_DDL)
            for ddl in JOBS_INDEXES:
                cur.execute(ddl)
            cur.execute(MEDIA_DDL)
            cur.execute(MEDIA_INDEX)

            for code in agencies:
                tables = AgencyTables.for_agency(code)
                _ensure_agency_tables(cur, tables)
                cur.execute(
                    """
                    INSERT INTO agencies (code, is_active)
                    VALUES (%(code)s, false)
                    ON CONFLICT (code) DO NOTHING
                    """,
                    {"code": tables.code},
                )
                count += 1

    logger.info("[Schema] Schema ensured", extra={"count": count})
    return count


def _ensure_agency_tables(cur: psycopg.Cursor, tables: AgencyTables) -> None:
    cur.execute(sql.SQL(CONTACT_DDL).format(contact=tables.contact))
    cur.execute(sql.SQL(EQUIPMENT_DDL).format(equipment=tables.equipment))
    for ddl, suffix in zip(EQUIPMENT_INDEXES, _EQUIPMENT_INDEX_SUFFIXES):
        cur.execute(
            sql.SQL(ddl).format(
                name=sql.Identifier(f"{tables.equipment_name}_{suffix}"),
                equipment=tables.equipment,
            )
        )
