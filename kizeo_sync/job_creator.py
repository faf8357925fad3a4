"""
Kizeo Sync - Job Creator

Turns one persisted submission into download jobs: a single urgent report
job, then one normal-priority photo job per media reference.

Off-contract photos carry an HC_<index> placeholder until the persister
has assigned a number. A placeholder missing from the index map is skipped;
a job is never enqueued under a made-up number.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

import psycopg

from .jobs import JobRepository
from .models import ExtractedMedia, ExtractedSubmission, Job

logger = logging.getLogger(__name__)


@dataclass
class JobCreationResult:
    report_created: bool = False
    photos_created: int = 0
    photos_skipped: int = 0
    photos_unresolved: int = 0
    errors: int = 0

    @property
    def created(self) -> int:
        return self.photos_created + (1 if self.report_created else 0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "report_created": self.report_created,
            "photos_created": self.photos_created,
            "photos_skipped": self.photos_skipped,
            "photos_unresolved": self.photos_unresolved,
            "errors": self.errors,
        }


class JobCreator:
    def __init__(self, jobs: JobRepository):
        self.jobs = jobs

    def create_jobs(
        self,
        submission: ExtractedSubmission,
        agency: str,
        generated_numbers: Mapping[int, str],
    ) -> JobCreationResult:
        """
        Enqueue the report and photo jobs of one submission.

        Args:
            submission: Extraction result.
            agency: Agency code.
            generated_numbers: Off-contract index -> number, from the persister.

        Returns:
            JobCreationResult. A failed insert is counted in ``errors`` and
            does not stop the remaining jobs.
        """
        result = JobCreationResult()
        if not submission.is_valid:
            logger.debug(
                "[JobCreator] Invalid submission, no jobs",
                extra={"submission_id": submission.submission_id},
            )
            return result

        visit_code = submission.primary_visit_code

        result.report_created = self._create_report(submission, agency, visit_code, result)

        for media in submission.media:
            self._create_photo(submission, agency, visit_code, media, generated_numbers, result)

        logger.info(
            "[JobCreator] Jobs created",
            extra={"agency": agency, "submission_id": submission.submission_id, **result.to_dict()},
        )
        return result

    def _create_report(
        self,
        submission: ExtractedSubmission,
        agency: str,
        visit_code: str,
        result: JobCreationResult,
    ) -> bool:
        if self.jobs.exists_report(submission.form_id, submission.submission_id):
            return False

        job = Job.report(
            agency_code=agency,
            form_id=submission.form_id,
            submission_id=submission.submission_id,
            contact_id=submission.contact_id,
            year=submission.visit_year,
            visit_code=visit_code,
            client_name=submission.client_name,
            visit_date=submission.visit_date,
        )
        return self._insert(job, result)

    def _create_photo(
        self,
        submission: ExtractedSubmission,
        agency: str,
        visit_code: str,
        media: ExtractedMedia,
        generated_numbers: Mapping[int, str],
        result: JobCreationResult,
    ) -> None:
        equipment_number = media.resolve_number(generated_numbers)
        if equipment_number is None:
            result.photos_unresolved += 1
            logger.debug(
                "[JobCreator] Unresolved placeholder, photo skipped",
                extra={"media_name": media.media_name, "placeholder": media.placeholder},
            )
            return

        if self.jobs.exists_photo(submission.form_id, submission.submission_id, media.media_name):
            result.photos_skipped += 1
            return

        job = Job.photo(
            agency_code=agency,
            form_id=submission.form_id,
            submission_id=submission.submission_id,
            media_name=media.media_name,
            equipment_number=equipment_number,
            contact_id=submission.contact_id,
            year=submission.visit_year,
            visit_code=visit_code,
        )
        if self._insert(job, result):
            result.photos_created += 1
        else:
            result.photos_skipped += 1

    def _insert(self, job: Job, result: JobCreationResult) -> bool:
        try:
            return self.jobs.insert(job)
        except psycopg.Error as e:
            # Savepoint already rolled back; the submission transaction is intact
            result.errors += 1
            logger.warning(
                "[JobCreator] Job insert failed",
                extra={
                    "job_type": job.job_type.value,
                    "submission_id": job.submission_id,
                    "media_name": job.media_name,
                    "error": f"{type(e).__name__}: {str(e)[:200]}",
                },
            )
            return False
