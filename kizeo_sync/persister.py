"""
Kizeo Sync - Equipment Persister

Writes the non-duplicate equipment of one submission and reports, for every
off-contract slot, the number it ended up with. Photo jobs for off-contract
equipment resolve their HC_<index> placeholder through that map, so it must
cover duplicates too (looked up again from the existing row).

Must run inside the caller's transaction: numbering locks are held until it
commits.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from .deduplicator import Deduplicator
from .models import ExtractedEquipment, ExtractedSubmission
from .numbering import OffContractNumberGenerator

logger = logging.getLogger(__name__)


@dataclass
class PersistResult:
    """Outcome of persisting one submission."""

    inserted_contract: int = 0
    skipped_contract: int = 0
    inserted_off_contract: int = 0
    skipped_off_contract: int = 0
    generated_numbers: dict[int, str] = field(default_factory=dict)

    @property
    def inserted(self) -> int:
        return self.inserted_contract + self.inserted_off_contract

    @property
    def skipped(self) -> int:
        return self.skipped_contract + self.skipped_off_contract

    def to_dict(self) -> dict[str, Any]:
        return {
            "inserted_contract": self.inserted_contract,
            "skipped_contract": self.skipped_contract,
            "inserted_off_contract": self.inserted_off_contract,
            "skipped_off_contract": self.skipped_off_contract,
            "generated_numbers": dict(self.generated_numbers),
        }


class EquipmentPersister:
    def __init__(
        self,
        stores,
        deduplicator: Deduplicator | None = None,
        numbers: OffContractNumberGenerator | None = None,
    ):
        self.stores = stores
        self.deduplicator = deduplicator or Deduplicator(stores)
        self.numbers = numbers or OffContractNumberGenerator(stores)

    def persist(self, submission: ExtractedSubmission, agency: str) -> PersistResult:
        """
        Persist all equipment of a valid submission.

        Args:
            submission: Extraction result (is_valid must be True).
            agency: Agency code.

        Returns:
            PersistResult with counters and the index -> number map.
        """
        result = PersistResult()
        if not submission.is_valid:
            logger.warning(
                "[Persist] Invalid submission ignored",
                extra={"agency": agency, "submission_id": submission.submission_id},
            )
            return result

        store = self.stores(agency)
        if store.ensure_contact(submission.contact_id, submission.company_name, submission.company_id):
            logger.info(
                "[Persist] Contact created",
                extra={"agency": agency, "contact_id": submission.contact_id},
            )

        for equipment in submission.contract_equipment:
            self._persist_contract(submission, agency, equipment, result)

        inherited_visit_code = submission.primary_visit_code
        for equipment in submission.off_contract_equipment:
            self._persist_off_contract(submission, agency, equipment, inherited_visit_code, result)

        logger.info(
            "[Persist] Submission persisted",
            extra={
                "agency": agency,
                "submission_id": submission.submission_id,
                "inserted": result.inserted,
                "skipped": result.skipped,
            },
        )
        return result

    def _persist_contract(
        self,
        submission: ExtractedSubmission,
        agency: str,
        equipment: ExtractedEquipment,
        result: PersistResult,
    ) -> None:
        if self.deduplicator.exists_contract(
            agency,
            submission.contact_id,
            equipment.number,
            equipment.visit_code,
            submission.visit_date,
        ):
            result.skipped_contract += 1
            return

        row = _build_row(submission, equipment, equipment.number, equipment.visit_code)
        if self.stores(agency).insert(row):
            result.inserted_contract += 1
        else:
            result.skipped_contract += 1

    def _persist_off_contract(
        self,
        submission: ExtractedSubmission,
        agency: str,
        equipment: ExtractedEquipment,
        visit_code: str,
        result: PersistResult,
    ) -> None:
        index = equipment.position_index
        store = self.stores(agency)

        if self.deduplicator.exists_off_contract(
            agency, submission.form_id, submission.submission_id, index
        ):
            result.skipped_off_contract += 1
            existing = store.find_off_contract_number(submission.form_id, submission.submission_id, index)
            if existing:
                result.generated_numbers[index] = existing
            return

        number = self.numbers.generate(agency, submission.contact_id, equipment.equipment_type or equipment.label)
        row = _build_row(submission, equipment, number, visit_code)

        if store.insert(row):
            result.inserted_off_contract += 1
            result.generated_numbers[index] = number
            return

        # Lost a race with a concurrent run for the same slot
        result.skipped_off_contract += 1
        existing = store.find_off_contract_number(submission.form_id, submission.submission_id, index)
        if existing:
            result.generated_numbers[index] = existing


def _build_row(
    submission: ExtractedSubmission,
    equipment: ExtractedEquipment,
    number: str,
    visit_code: str,
) -> dict[str, Any]:
    return {
        "contact_id": submission.contact_id,
        "equipment_number": number,
        "label": equipment.label,
        "equipment_type": equipment.equipment_type,
        "visit_code": visit_code,
        "visit_year": submission.visit_year,
        "visit_date": submission.visit_date,
        "site_location": equipment.site_location,
        "commissioning_year": equipment.commissioning_year,
        "serial_number": equipment.serial_number,
        "brand": equipment.brand,
        "operating_mode": equipment.operating_mode,
        "height": equipment.height,
        "width": equipment.width,
        "length": equipment.length,
        "condition_code": equipment.condition_code,
        "anomalies": equipment.anomalies,
        "technician_code": submission.technician_code,
        "is_off_contract": not equipment.is_contract,
        "is_archived": False,
        "form_id": submission.form_id,
        "submission_id": submission.submission_id,
        "position_index": equipment.position_index,
    }
