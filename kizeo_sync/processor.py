"""
Kizeo Sync - Submission Processor

Per-agency batch: list unread submissions, then for each one

    1. fetch the full data
    2. extract
    3. persist equipment, record media and create jobs in ONE transaction
    4. commit
    5. mark read upstream

Marking read only after the commit means a crash at any point leaves the
submission unread, and the next run reprocesses it; the deduplicator and
the job natural key absorb the replay. The reverse order could lose a
submission for good.

One submission failing (network, bad data, database) is counted and the
batch moves on.

An invalid submission (no contact, no visit date) stays unread and keeps
taking a slot of every batch. When they fill the whole batch the summary
flags the queue as blocked; the operator fixes them in Kizeo or clears them
with mark_read().
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

import psycopg

from .agencies import Agency, AgencyRegistry
from .client import KizeoClient
from .errors import ConfigError, KizeoSyncError, UpstreamError
from .extractor import FormDataExtractor
from .job_creator import JobCreator
from .jobs import JobRepository
from .logging import LogContext, Timer
from .media import MediaPersister, MediaRepository
from .persister import EquipmentPersister
from .repository import EquipmentStores

logger = logging.getLogger(__name__)


@dataclass
class AgencyRunSummary:
    """Counters for one agency run."""

    agency: str
    form_id: Optional[int] = None
    fetched: int = 0
    processed: int = 0
    invalid: int = 0
    invalid_ids: list[Any] = field(default_factory=list)
    limit: Optional[int] = None
    equipment_created: int = 0
    equipment_skipped: int = 0
    jobs_created: int = 0
    media_recorded: int = 0
    marked_read: int = 0
    mark_read_failures: int = 0
    errors: int = 0
    error_details: list[dict[str, Any]] = field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def success(self) -> bool:
        return self.errors == 0

    @property
    def queue_blocked(self) -> bool:
        """Every unread slot went to an invalid submission: nothing else can get through."""
        return bool(self.limit) and self.invalid >= self.limit

    def record_error(self, message: str, submission_id: Any = None) -> None:
        self.errors += 1
        self.error_details.append({"submission_id": submission_id, "error": message})

    def to_dict(self) -> dict[str, Any]:
        return {
            "agency": self.agency,
            "form_id": self.form_id,
            "fetched": self.fetched,
            "processed": self.processed,
            "invalid": self.invalid,
            "invalid_ids": self.invalid_ids,
            "queue_blocked": self.queue_blocked,
            "equipment_created": self.equipment_created,
            "equipment_skipped": self.equipment_skipped,
            "jobs_created": self.jobs_created,
            "media_recorded": self.media_recorded,
            "marked_read": self.marked_read,
            "mark_read_failures": self.mark_read_failures,
            "errors": self.errors,
            "duration_ms": self.duration_ms,
        }


@dataclass
class RunSummary:
    """Aggregate over all agencies of one run."""

    agencies: list[AgencyRunSummary] = field(default_factory=list)

    def _sum(self, name: str) -> int:
        return sum(getattr(a, name) for a in self.agencies)

    @property
    def processed(self) -> int:
        return self._sum("processed")

    @property
    def equipment_created(self) -> int:
        return self._sum("equipment_created")

    @property
    def jobs_created(self) -> int:
        return self._sum("jobs_created")

    @property
    def invalid(self) -> int:
        return self._sum("invalid")

    @property
    def errors(self) -> int:
        return self._sum("errors")

    @property
    def success(self) -> bool:
        return self.errors == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "agencies": [a.to_dict() for a in self.agencies],
            "processed": self.processed,
            "equipment_created": self.equipment_created,
            "jobs_created": self.jobs_created,
            "invalid": self.invalid,
            "errors": self.errors,
        }


class SubmissionProcessor:
    def __init__(
        self,
        conn: psycopg.Connection,
        client: KizeoClient,
        *,
        registry: Optional[AgencyRegistry] = None,
        extractor: Optional[FormDataExtractor] = None,
        persister: Optional[EquipmentPersister] = None,
        job_creator: Optional[JobCreator] = None,
        media_persister: Optional[MediaPersister] = None,
    ):
        self.conn = conn
        self.client = client
        self.registry = registry or AgencyRegistry(conn)
        self.extractor = extractor or FormDataExtractor()
        self.persister = persister or EquipmentPersister(EquipmentStores(conn))
        self.job_creator = job_creator or JobCreator(JobRepository(conn))
        self.media_persister = media_persister or MediaPersister(MediaRepository(conn))

    # ------------------------------------------------------------------
    # Batch entry points
    # ------------------------------------------------------------------

    def process_all(
        self,
        limit: int = 10,
        dry_run: bool = False,
        skip_mark_read: bool = False,
    ) -> RunSummary:
        run = RunSummary()
        for agency in self.registry.active():
            run.agencies.append(
                self._run_agency(agency, limit, dry_run=dry_run, skip_mark_read=skip_mark_read)
            )

        logger.info("[Fetch] Run complete", extra=run.to_dict())
        return run

    def process_agency(
        self,
        agency: str,
        limit: int = 10,
        dry_run: bool = False,
        skip_mark_read: bool = False,
    ) -> AgencyRunSummary:
        """
        Process up to ``limit`` unread submissions of one agency.

        Configuration problems (unknown agency, no form id) are reported
        in the summary's error count rather than raised.
        """
        try:
            resolved = self.registry.get(agency)
        except KizeoSyncError as e:
            summary = AgencyRunSummary(agency=agency.strip().upper())
            summary.record_error(e.message)
            logger.error("[Fetch] Agency not usable", extra={"agency": summary.agency, "error": e.message})
            return summary

        return self._run_agency(resolved, limit, dry_run=dry_run, skip_mark_read=skip_mark_read)

    def _run_agency(
        self,
        agency: Agency,
        limit: int,
        *,
        dry_run: bool,
        skip_mark_read: bool,
    ) -> AgencyRunSummary:
        summary = AgencyRunSummary(agency=agency.code, form_id=agency.form_id, limit=limit)

        with LogContext(agency=agency.code, form_id=agency.form_id), Timer() as timer:
            if not agency.form_id:
                logger.warning("[Fetch] Agency has no form id, skipped")
                return summary

            try:
                unread = self.client.get_unread(agency.form_id, limit)
            except UpstreamError as e:
                summary.record_error(e.message)
                logger.error("[Fetch] Could not list unread submissions", extra={"error": e.message})
                return summary

            summary.fetched = len(unread)
            for item in unread:
                data_id = (item.get("id") or item.get("_id")) if isinstance(item, dict) else None
                if data_id is None:
                    summary.record_error("Unread item without id")
                    logger.warning("[Fetch] Unread item without id")
                    continue
                with LogContext(submission_id=data_id):
                    self._process_submission(agency, data_id, summary, dry_run, skip_mark_read)

            if summary.invalid:
                logger.warning(
                    "[Fetch] Invalid submissions stay unread until fixed in Kizeo or marked read",
                    extra={"invalid_ids": summary.invalid_ids, "queue_blocked": summary.queue_blocked},
                )

        summary.duration_ms = timer.elapsed_ms
        logger.info("[Fetch] Agency complete", extra=summary.to_dict())
        return summary

    # ------------------------------------------------------------------
    # One submission
    # ------------------------------------------------------------------

    def _process_submission(
        self,
        agency: Agency,
        data_id: Any,
        summary: AgencyRunSummary,
        dry_run: bool,
        skip_mark_read: bool,
    ) -> None:
        form_id = agency.form_id
        try:
            raw = self.client.get_submission(form_id, data_id)
            if raw is None:
                summary.record_error("Submission data unavailable", data_id)
                logger.warning("[Fetch] Submission data unavailable")
                return

            submission = self.extractor.extract(raw, form_id)
            if not submission.is_valid:
                summary.invalid += 1
                summary.invalid_ids.append(data_id)
                logger.warning(
                    "[Fetch] Invalid submission left unread",
                    extra={"contact_id": submission.contact_id, "visit_year": submission.visit_year},
                )
                return

            if dry_run:
                summary.processed += 1
                summary.equipment_created += submission.equipment_count
                summary.jobs_created += 1 + len(submission.media)
                summary.media_recorded += len(submission.media)
                return

            with self.conn.transaction():
                persisted = self.persister.persist(submission, agency.code)
                media = self.media_persister.persist(
                    submission, agency.code, persisted.generated_numbers
                )
                created = self.job_creator.create_jobs(
                    submission, agency.code, persisted.generated_numbers
                )

        except (KizeoSyncError, psycopg.Error) as e:
            message = e.message if isinstance(e, KizeoSyncError) else f"{type(e).__name__}: {e}"
            summary.record_error(message, data_id)
            logger.error("[Fetch] Submission failed, left unread", extra={"error": message})
            return
        except Exception as e:
            summary.record_error(f"{type(e).__name__}: {e}", data_id)
            logger.exception("[Fetch] Unexpected error, submission left unread")
            return

        summary.processed += 1
        summary.equipment_created += persisted.inserted
        summary.equipment_skipped += persisted.skipped
        summary.jobs_created += created.created
        summary.media_recorded += media.recorded
        if created.errors:
            summary.record_error(f"{created.errors} job insert(s) failed", data_id)

        if skip_mark_read:
            return

        try:
            self.client.mark_read(form_id, [data_id])
            summary.marked_read += 1
        except UpstreamError as e:
            summary.mark_read_failures += 1
            logger.warning("[Fetch] Mark read failed, will be reprocessed", extra={"error": e.message})

    # ------------------------------------------------------------------
    # Operator helpers
    # ------------------------------------------------------------------

    def mark_unread(self, agency: str, data_ids: Iterable[int | str]) -> int:
        """Put submissions back in the unread queue for reprocessing."""
        resolved, ids = self._operator_target(agency, data_ids)
        self.client.mark_unread(resolved.form_id, ids)
        logger.info("[Fetch] Submissions marked unread", extra={"agency": resolved.code, "count": len(ids)})
        return len(ids)

    def mark_read(self, agency: str, data_ids: Iterable[int | str]) -> int:
        """Take submissions out of the unread queue without ingesting them."""
        resolved, ids = self._operator_target(agency, data_ids)
        self.client.mark_read(resolved.form_id, ids)
        logger.warning(
            "[Fetch] Submissions marked read without ingestion",
            extra={"agency": resolved.code, "data_ids": ids},
        )
        return len(ids)

    def _operator_target(self, agency: str, data_ids: Iterable[int | str]) -> tuple[Agency, list[str]]:
        resolved = self.registry.get(agency)
        if not resolved.form_id:
            raise ConfigError(f"Agency {resolved.code} has no Kizeo form id")
        return resolved, [str(i) for i in data_ids]
