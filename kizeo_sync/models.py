"""
Kizeo Sync - Data Models

Extraction results are plain frozen dataclasses (built once, never mutated).
Job and media rows are pydantic models validated on the way out of the database.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum, IntEnum
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field

from .normalize import DEFAULT_VISIT_CODE, sanitize_client_name

# Placeholder linking an off-contract photo to its row before a number exists
PLACEHOLDER_PREFIX = "HC_"
_PLACEHOLDER_PATTERN = re.compile(r"^HC_(\d+)$")

DEFAULT_MAX_ATTEMPTS = 3


def make_placeholder(position_index: int) -> str:
    return f"{PLACEHOLDER_PREFIX}{position_index}"


def parse_placeholder(value: str | None) -> int | None:
    """'HC_2' -> 2; anything else -> None."""
    if not value:
        return None
    match = _PLACEHOLDER_PATTERN.match(value)
    return int(match.group(1)) if match else None


# =============================================================================
# Extraction Results
# =============================================================================


class EquipmentKind(str, Enum):
    """Contract equipment arrives numbered; off-contract gets a number later."""

    CONTRACT = "contract"
    OFF_CONTRACT = "off_contract"


@dataclass(frozen=True)
class ExtractedEquipment:
    """One equipment entry parsed out of a submission."""

    kind: EquipmentKind
    number: Optional[str] = None
    visit_code: Optional[str] = None
    label: Optional[str] = None
    equipment_type: Optional[str] = None
    brand: Optional[str] = None
    operating_mode: Optional[str] = None
    site_location: Optional[str] = None
    commissioning_year: Optional[str] = None
    serial_number: Optional[str] = None
    height: Optional[str] = None
    width: Optional[str] = None
    length: Optional[str] = None
    condition_code: Optional[str] = None
    anomalies: Optional[str] = None
    position_index: Optional[int] = None

    @property
    def is_contract(self) -> bool:
        return self.kind is EquipmentKind.CONTRACT

    def to_log_context(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "number": self.number,
            "visit_code": self.visit_code,
            "equipment_type": self.equipment_type,
            "position_index": self.position_index,
        }


@dataclass(frozen=True)
class ExtractedMedia:
    """
    A photo reference found in an equipment entry.

    Contract media carry the equipment number directly. Off-contract media
    carry a placeholder (HC_<index>) resolved after persistence.
    """

    media_name: str
    field_name: str
    photo_type: str
    is_contract: bool
    equipment_number: Optional[str] = None
    position_index: Optional[int] = None
    photo_index: Optional[int] = None

    @property
    def placeholder(self) -> Optional[str]:
        if self.is_contract or self.position_index is None:
            return None
        return make_placeholder(self.position_index)

    @property
    def extension(self) -> str:
        _, dot, ext = self.media_name.rpartition(".")
        return ext.lower() if dot and ext else "jpg"

    def resolve_number(self, generated_numbers: Mapping[int, str]) -> Optional[str]:
        """Equipment number of this photo, or None while its placeholder is unassigned."""
        if self.is_contract:
            return self.equipment_number
        if self.position_index is None:
            return None
        return generated_numbers.get(self.position_index)


@dataclass(frozen=True)
class ExtractedSubmission:
    """Everything the pipeline needs from one raw Kizeo submission."""

    form_id: int
    submission_id: int
    contact_id: Optional[int] = None
    company_id: Optional[str] = None
    company_name: Optional[str] = None
    visit_date: Optional[date] = None
    technician_code: Optional[str] = None
    contract_equipment: tuple[ExtractedEquipment, ...] = ()
    off_contract_equipment: tuple[ExtractedEquipment, ...] = ()
    media: tuple[ExtractedMedia, ...] = ()

    @property
    def visit_year(self) -> Optional[str]:
        return f"{self.visit_date.year:04d}" if self.visit_date else None

    @property
    def is_valid(self) -> bool:
        """Persistable only with a contact and a four-digit visit year."""
        return self.contact_id is not None and self.visit_year is not None

    @property
    def primary_visit_code(self) -> str:
        """Visit code of the first contract equipment, CE1 if there is none."""
        for equipment in self.contract_equipment:
            if equipment.visit_code:
                return equipment.visit_code
        return DEFAULT_VISIT_CODE

    @property
    def client_name(self) -> str:
        return sanitize_client_name(self.company_name)

    @property
    def equipment_count(self) -> int:
        return len(self.contract_equipment) + len(self.off_contract_equipment)

    def to_log_context(self) -> dict[str, Any]:
        return {
            "form_id": self.form_id,
            "submission_id": self.submission_id,
            "contact_id": self.contact_id,
            "company_name": self.company_name,
            "visit_date": self.visit_date.isoformat() if self.visit_date else None,
            "technician_code": self.technician_code,
            "contract_count": len(self.contract_equipment),
            "off_contract_count": len(self.off_contract_equipment),
            "media_count": len(self.media),
        }


# =============================================================================
# Job Queue
# =============================================================================


class JobType(str, Enum):
    """Artifact a job downloads."""

    PHOTO = "photo"
    REPORT = "report"


class JobStatus(str, Enum):
    """Job lifecycle status."""

    PENDING = "pending"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"


class JobPriority(IntEnum):
    """Lower value is claimed first."""

    URGENT = 1
    NORMAL = 5
    LOW = 10


class Job(BaseModel):
    """A kizeo_jobs row."""

    model_config = ConfigDict(validate_assignment=True, extra="ignore")

    id: Optional[int] = None
    job_type: JobType
    agency_code: str
    form_id: int
    submission_id: int
    media_name: Optional[str] = None
    equipment_number: Optional[str] = None
    contact_id: int
    year: str = Field(..., min_length=4, max_length=4)
    visit_code: str = DEFAULT_VISIT_CODE
    client_name: Optional[str] = None
    visit_date: Optional[date] = None
    status: JobStatus = JobStatus.PENDING
    priority: int = JobPriority.NORMAL
    attempts: int = Field(default=0, ge=0)
    max_attempts: int = Field(default=DEFAULT_MAX_ATTEMPTS, ge=1)
    last_error: Optional[str] = None
    local_path: Optional[str] = None
    file_size: Optional[int] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @computed_field
    @property
    def can_retry(self) -> bool:
        return self.attempts < self.max_attempts

    @classmethod
    def photo(
        cls,
        *,
        agency_code: str,
        form_id: int,
        submission_id: int,
        media_name: str,
        equipment_number: Optional[str],
        contact_id: int,
        year: str,
        visit_code: str,
    ) -> "Job":
        return cls(
            job_type=JobType.PHOTO,
            agency_code=agency_code.upper(),
            form_id=form_id,
            submission_id=submission_id,
            media_name=media_name,
            equipment_number=equipment_number,
            contact_id=contact_id,
            year=year,
            visit_code=visit_code.upper(),
            priority=JobPriority.NORMAL,
        )

    @classmethod
    def report(
        cls,
        *,
        agency_code: str,
        form_id: int,
        submission_id: int,
        contact_id: int,
        year: str,
        visit_code: str,
        client_name: Optional[str] = None,
        visit_date: Optional[date] = None,
    ) -> "Job":
        return cls(
            job_type=JobType.REPORT,
            agency_code=agency_code.upper(),
            form_id=form_id,
            submission_id=submission_id,
            contact_id=contact_id,
            year=year,
            visit_code=visit_code.upper(),
            client_name=client_name,
            visit_date=visit_date,
            priority=JobPriority.URGENT,
        )


class MediaReference(BaseModel):
    """
    A kizeo_media row: one photo of one submission, tied to its equipment.

    Unlike jobs these rows are never purged.
    """

    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    agency_code: str
    form_id: int
    submission_id: int
    media_name: str
    field_name: str
    photo_type: str
    photo_index: Optional[int] = None
    equipment_number: str
    contact_id: int
    visit_code: str = DEFAULT_VISIT_CODE
    year: str = Field(..., min_length=4, max_length=4)
    is_off_contract: bool = False
    created_at: Optional[datetime] = None

    @classmethod
    def from_media(
        cls,
        media: ExtractedMedia,
        submission: ExtractedSubmission,
        *,
        agency_code: str,
        equipment_number: str,
    ) -> "MediaReference":
        return cls(
            agency_code=agency_code.upper(),
            form_id=submission.form_id,
            submission_id=submission.submission_id,
            media_name=media.media_name,
            field_name=media.field_name,
            photo_type=media.photo_type,
            photo_index=media.photo_index,
            equipment_number=equipment_number,
            contact_id=submission.contact_id,
            visit_code=submission.primary_visit_code.upper(),
            year=submission.visit_year,
            is_off_contract=not media.is_contract,
        )


@dataclass
class JobStats:
    """Counts per status for one job type (or all)."""

    pending: int = 0
    processing: int = 0
    done: int = 0
    failed: int = 0

    def add(self, status: str, count: int) -> None:
        if hasattr(self, status):
            setattr(self, status, getattr(self, status) + count)

    @property
    def total(self) -> int:
        return self.pending + self.processing + self.done + self.failed

    def to_dict(self) -> dict[str, int]:
        return {
            "pending": self.pending,
            "processing": self.processing,
            "done": self.done,
            "failed": self.failed,
            "total": self.total,
        }


@dataclass
class QueueStats:
    """Job counts by type plus a grand total."""

    photo: JobStats = field(default_factory=JobStats)
    report: JobStats = field(default_factory=JobStats)
    total: JobStats = field(default_factory=JobStats)

    def to_dict(self) -> dict[str, dict[str, int]]:
        return {
            "photo": self.photo.to_dict(),
            "report": self.report.to_dict(),
            "total": self.total.to_dict(),
        }
