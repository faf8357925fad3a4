"""
Kizeo Sync - Database Connection

psycopg3 (sync). Connections are opened in autocommit mode: every unit of
work is wrapped in an explicit ``with conn.transaction():`` block, and a
nested block becomes a SAVEPOINT. A failed statement therefore never
leaves the connection in an aborted state for the next submission.
"""

from __future__ import annotations

import logging
from urllib.parse import urlparse

import psycopg
from psycopg.rows import dict_row

logger = logging.getLogger(__name__)

# Visible in pg_stat_activity
APP_NAME = "kizeo_sync"
CONNECT_TIMEOUT_SECONDS = 10


def get_connection(dsn: str, *, autocommit: bool = True) -> psycopg.Connection:
    """
    Create a database connection with standard settings.

    Args:
        dsn: PostgreSQL connection string.
        autocommit: Leave True unless the caller commits by hand.

    Raises:
        psycopg.OperationalError: If connection fails.
    """
    conn = psycopg.connect(
        dsn,
        autocommit=autocommit,
        row_factory=dict_row,
        application_name=APP_NAME,
        connect_timeout=CONNECT_TIMEOUT_SECONDS,
    )

    logger.info(
        "[DB] Connected",
        extra={"host": _extract_host(dsn), "application_name": APP_NAME},
    )
    return conn


def _extract_host(dsn: str) -> str:
    """Extract host from DSN for logging (no credentials)."""
    try:
        return urlparse(dsn).hostname or "unknown"
    except ValueError:
        return "unknown"


def ping(conn: psycopg.Connection) -> bool:
    try:
        with conn.cursor() as cur:
            cur.execute("SELECT 1 AS ok")
            row = cur.fetchone()
            return row is not None and row.get("ok") == 1
    except psycopg.Error as e:
        logger.error("[DB] Ping failed", extra={"error": str(e)})
        return False
