"""
Kizeo Sync - Job Queue

Durable download queue in the ``kizeo_jobs`` table, replacing a broker.

Lifecycle:
    pending -> processing -> done
    processing -> pending   (failure, attempts < max_attempts)
    processing -> failed    (failure, attempts >= max_attempts)
    processing -> pending   (stuck sweep; attempts untouched)

Natural key (form_id, submission_id, media_name) with NULLS NOT DISTINCT:
one report job per submission, one photo job per media file. Inserting an
existing key is a logged no-op. Each insert runs in its own SAVEPOINT so
the enclosing transaction stays usable after a collision.

The download worker that drains the queue lives outside this package; it
uses claim(), mark_done() and mark_failed().
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

import psycopg
from psycopg import errors as pg_errors

from .models import Job, JobStats, JobStatus, JobType, QueueStats

logger = logging.getLogger(__name__)

# ============================================================================
# Constants
# ============================================================================

DEFAULT_STUCK_MINUTES = 60
DEFAULT_PURGE_DONE_DAYS = 14
DEFAULT_PURGE_FAILED_DAYS = 30
MAX_ERROR_LENGTH = 1000

_INSERT_COLUMNS = (
    "job_type",
    "agency_code",
    "form_id",
    "submission_id",
    "media_name",
    "equipment_number",
    "contact_id",
    "year",
    "visit_code",
    "client_name",
    "visit_date",
    "status",
    "priority",
    "attempts",
    "max_attempts",
)


@dataclass
class PurgeResult:
    """Rows deleted (or that would be, on a dry run)."""

    done: int = 0
    failed: int = 0
    dry_run: bool = False

    @property
    def total(self) -> int:
        return self.done + self.failed


def _job_params(job: Job) -> dict[str, Any]:
    params = {column: getattr(job, column) for column in _INSERT_COLUMNS}
    params["job_type"] = job.job_type.value
    params["status"] = job.status.value
    params["priority"] = int(job.priority)
    return params


class JobRepository:
    """kizeo_jobs access. Callers own the outer transaction."""

    def __init__(self, conn: psycopg.Connection):
        self.conn = conn

    # ------------------------------------------------------------------
    # Enqueue
    # ------------------------------------------------------------------

    def insert(self, job: Job) -> bool:
        """
        Enqueue a job.

        Returns:
            True if created, False if the natural key already exists.
        """
        columns = ", ".join(_INSERT_COLUMNS)
        placeholders = ", ".join(f"%({c})s" for c in _INSERT_COLUMNS)

        try:
            with self.conn.transaction():
                with self.conn.cursor() as cur:
                    cur.execute(
                        f"INSERT INTO kizeo_jobs ({columns}) VALUES ({placeholders}) RETURNING id",
                        _job_params(job),
                    )
                    row = cur.fetchone()
        except pg_errors.UniqueViolation:
            logger.info(
                "[Jobs] Job already exists",
                extra={
                    "job_type": job.job_type.value,
                    "form_id": job.form_id,
                    "submission_id": job.submission_id,
                    "media_name": job.media_name,
                },
            )
            return False

        logger.debug(
            "[Jobs] Job created",
            extra={
                "job_id": row["id"] if row else None,
                "job_type": job.job_type.value,
                "submission_id": job.submission_id,
                "media_name": job.media_name,
            },
        )
        return True

    def exists_report(self, form_id: int, submission_id: int) -> bool:
        with self.conn.cursor() as cur:
            cur.execute(
                """
                SELECT 1 FROM kizeo_jobs
                WHERE job_type = 'report'
                  AND form_id = %(form_id)s
                  AND submission_id = %(submission_id)s
                LIMIT 1
                """,
                {"form_id": form_id, "submission_id": submission_id},
            )
            return cur.fetchone() is not None

    def exists_photo(self, form_id: int, submission_id: int, media_name: str) -> bool:
        with self.conn.cursor() as cur:
            cur.execute(
                """
                SELECT 1 FROM kizeo_jobs
                WHERE job_type = 'photo'
                  AND form_id = %(form_id)s
                  AND submission_id = %(submission_id)s
                  AND media_name = %(media_name)s
                LIMIT 1
                """,
                {"form_id": form_id, "submission_id": submission_id, "media_name": media_name},
            )
            return cur.fetchone() is not None

    # ------------------------------------------------------------------
    # Worker transitions
    # ------------------------------------------------------------------

    def claim(self, job_type: JobType | str, limit: int, agency: Optional[str] = None) -> list[Job]:
        """
        Move up to ``limit`` pending jobs to processing.

        Uses FOR UPDATE SKIP LOCKED so concurrent workers never claim the
        same row. Oldest first within a priority.
        """
        job_type = JobType(job_type)
        with self.conn.transaction():
            with self.conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE kizeo_jobs
                    SET status = 'processing',
                        attempts = attempts + 1,
                        started_at = now()
                    WHERE id IN (
                        SELECT id FROM kizeo_jobs
                        WHERE status = 'pending'
                          AND job_type = %(job_type)s
                          AND (%(agency)s::text IS NULL OR agency_code = %(agency)s)
                        ORDER BY priority ASC, created_at ASC
                        LIMIT %(limit)s
                        FOR UPDATE SKIP LOCKED
                    )
                    RETURNING *
                    """,
                    {
                        "job_type": job_type.value,
                        "agency": agency.upper() if agency else None,
                        "limit": limit,
                    },
                )
                rows = cur.fetchall()

        jobs = [Job.model_validate(row) for row in rows]
        # RETURNING does not preserve the subquery order; ids follow creation
        jobs.sort(key=lambda j: (j.priority, j.id or 0))

        logger.info("[Jobs] Claimed", extra={"job_type": job_type.value, "count": len(jobs)})
        return jobs

    def mark_done(self, job_id: int, local_path: str, file_size: int) -> bool:
        with self.conn.transaction():
            with self.conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE kizeo_jobs
                    SET status = 'done',
                        local_path = %(local_path)s,
                        file_size = %(file_size)s,
                        last_error = NULL,
                        completed_at = now()
                    WHERE id = %(id)s
                    """,
                    {"id": job_id, "local_path": local_path, "file_size": file_size},
                )
                updated = cur.rowcount > 0

        if not updated:
            logger.warning("[Jobs] mark_done: job not found", extra={"job_id": job_id})
        return updated

    def mark_failed(self, job_id: int, error: str) -> Optional[JobStatus]:
        """
        Record a failed attempt.

        Returns:
            FAILED when attempts are exhausted, PENDING when the job will be
            retried, None if the job does not exist.
        """
        with self.conn.transaction():
            with self.conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE kizeo_jobs
                    SET status = CASE WHEN attempts >= max_attempts
                                      THEN 'failed' ELSE 'pending' END,
                        completed_at = CASE WHEN attempts >= max_attempts
                                            THEN now() ELSE NULL END,
                        last_error = %(error)s
                    WHERE id = %(id)s
                    RETURNING status, attempts, max_attempts
                    """,
                    {"id": job_id, "error": (error or "")[:MAX_ERROR_LENGTH]},
                )
                row = cur.fetchone()

        if row is None:
            logger.warning("[Jobs] mark_failed: job not found", extra={"job_id": job_id})
            return None

        status = JobStatus(row["status"])
        log = logger.error if status is JobStatus.FAILED else logger.warning
        log(
            "[Jobs] Job attempt failed",
            extra={
                "job_id": job_id,
                "status": status.value,
                "attempts": row["attempts"],
                "max_attempts": row["max_attempts"],
            },
        )
        return status

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def reset_stuck(self, minutes: int = DEFAULT_STUCK_MINUTES) -> int:
        """Return processing jobs started more than ``minutes`` ago to pending."""
        with self.conn.transaction():
            with self.conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE kizeo_jobs
                    SET status = 'pending',
                        started_at = NULL
                    WHERE status = 'processing'
                      AND started_at < now() - make_interval(mins => %(minutes)s)
                    """,
                    {"minutes": minutes},
                )
                count = cur.rowcount

        if count:
            logger.warning("[Jobs] Stuck jobs reset", extra={"count": count, "minutes": minutes})
        return count

    def purge(
        self,
        done_days: int = DEFAULT_PURGE_DONE_DAYS,
        failed_days: int = DEFAULT_PURGE_FAILED_DAYS,
        include_failed: bool = False,
        dry_run: bool = False,
    ) -> PurgeResult:
        """
        Delete finished jobs past their retention.

        Failed jobs are only purged with include_failed, since they are
        the operator's record of what never downloaded.
        """
        result = PurgeResult(dry_run=dry_run)
        targets = [("done", done_days)]
        if include_failed:
            targets.append(("failed", failed_days))

        verb = "SELECT count(*) AS n FROM" if dry_run else "DELETE FROM"
        with self.conn.transaction():
            with self.conn.cursor() as cur:
                for status, days in targets:
                    cur.execute(
                        f"""
                        {verb} kizeo_jobs
                        WHERE status = %(status)s
                          AND COALESCE(completed_at, created_at)
                              < now() - make_interval(days => %(days)s)
                        """,
                        {"status": status, "days": days},
                    )
                    count = cur.fetchone()["n"] if dry_run else cur.rowcount
                    setattr(result, status, count)

        logger.info(
            "[Jobs] Purge complete",
            extra={"done": result.done, "failed": result.failed, "dry_run": dry_run},
        )
        return result

    def retry_failed(self, job_type: JobType | str | None = None) -> int:
        """Give failed jobs a fresh set of attempts."""
        job_type_value = JobType(job_type).value if job_type else None
        with self.conn.transaction():
            with self.conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE kizeo_jobs
                    SET status = 'pending',
                        attempts = 0,
                        last_error = NULL,
                        started_at = NULL,
                        completed_at = NULL
                    WHERE status = 'failed'
                      AND (%(job_type)s::text IS NULL OR job_type = %(job_type)s)
                    """,
                    {"job_type": job_type_value},
                )
                count = cur.rowcount

        logger.info("[Jobs] Failed jobs requeued", extra={"count": count, "job_type": job_type_value})
        return count

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def stats(self) -> QueueStats:
        with self.conn.cursor() as cur:
            cur.execute(
                """
                SELECT job_type, status, count(*) AS n
                FROM kizeo_jobs
                GROUP BY job_type, status
                """
            )
            rows = cur.fetchall()

        stats = QueueStats()
        for row in rows:
            per_type = getattr(stats, row["job_type"], None)
            if per_type is not None:
                per_type.add(row["status"], row["n"])
            stats.total.add(row["status"], row["n"])
        return stats

    def stats_by_agency(self) -> dict[str, JobStats]:
        with self.conn.cursor() as cur:
            cur.execute(
                """
                SELECT agency_code, status, count(*) AS n
                FROM kizeo_jobs
                GROUP BY agency_code, status
                ORDER BY agency_code
                """
            )
            rows = cur.fetchall()

        by_agency: dict[str, JobStats] = {}
        for row in rows:
            by_agency.setdefault(row["agency_code"], JobStats()).add(row["status"], row["n"])
        return by_agency

    def recent_failures(self, limit: int = 10) -> list[Job]:
        with self.conn.cursor() as cur:
            cur.execute(
                """
                SELECT *
                FROM kizeo_jobs
                WHERE status = 'failed'
                ORDER BY completed_at DESC NULLS LAST, id DESC
                LIMIT %(limit)s
                """,
                {"limit": limit},
            )
            rows = cur.fetchall()

        return [Job.model_validate(row) for row in rows]
