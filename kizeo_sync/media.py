"""
Kizeo Sync - Media References

Permanent record of every photo a submission carries, in ``kizeo_media``,
keyed like photo jobs on (form_id, submission_id, media_name). Jobs are
purged once downloaded; these rows keep the photo-to-equipment link.

Off-contract photos are recorded under the number the persister assigned.
A placeholder the persister did not resolve is not recorded.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

import psycopg

from .models import ExtractedSubmission, MediaReference

logger = logging.getLogger(__name__)

_INSERT_COLUMNS = (
    "agency_code",
    "form_id",
    "submission_id",
    "media_name",
    "field_name",
    "photo_type",
    "photo_index",
    "equipment_number",
    "contact_id",
    "visit_code",
    "year",
    "is_off_contract",
)


class MediaRepository:
    """kizeo_media access. Callers own the transaction."""

    def __init__(self, conn: psycopg.Connection):
        self.conn = conn

    def insert(self, reference: MediaReference) -> bool:
        """
        Record one photo.

        Returns:
            True if created, False if the natural key already exists.
        """
        columns = ", ".join(_INSERT_COLUMNS)
        placeholders = ", ".join(f"%({c})s" for c in _INSERT_COLUMNS)

        with self.conn.cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO kizeo_media ({columns}) VALUES ({placeholders})
                ON CONFLICT (form_id, submission_id, media_name) DO NOTHING
                RETURNING id
                """,
                {c: getattr(reference, c) for c in _INSERT_COLUMNS},
            )
            row = cur.fetchone()

        return row is not None

    def get(self, form_id: int, submission_id: int, media_name: str) -> Optional[MediaReference]:
        with self.conn.cursor() as cur:
            cur.execute(
                """
                SELECT * FROM kizeo_media
                WHERE form_id = %(form_id)s
                  AND submission_id = %(submission_id)s
                  AND media_name = %(media_name)s
                """,
                {"form_id": form_id, "submission_id": submission_id, "media_name": media_name},
            )
            row = cur.fetchone()
        return MediaReference.model_validate(row) if row else None


@dataclass
class MediaPersistResult:
    recorded: int = 0
    skipped: int = 0
    unresolved: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"recorded": self.recorded, "skipped": self.skipped, "unresolved": self.unresolved}


class MediaPersister:
    def __init__(self, media: MediaRepository):
        self.media = media

    def persist(
        self,
        submission: ExtractedSubmission,
        agency: str,
        generated_numbers: Mapping[int, str],
    ) -> MediaPersistResult:
        """Record the photos of one submission; a replay creates nothing."""
        result = MediaPersistResult()
        if not submission.is_valid:
            return result

        for media in submission.media:
            equipment_number = media.resolve_number(generated_numbers)
            if not equipment_number:
                result.unresolved += 1
                continue

            reference = MediaReference.from_media(
                media, submission, agency_code=agency, equipment_number=equipment_number
            )
            if self.media.insert(reference):
                result.recorded += 1
            else:
                result.skipped += 1

        logger.debug(
            "[Media] Media references recorded",
            extra={"agency": agency, "submission_id": submission.submission_id, **result.to_dict()},
        )
        return result
