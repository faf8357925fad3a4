"""
Kizeo Sync - Deduplicator

Two disjoint identity schemes, never mixed:

    contract      (contact_id, number, visit_code, visit_date)
                  same physical unit in the same audit cycle
    off-contract  (form_id, submission_id, position_index)
                  same raw slot of the same submission; content is ignored
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Optional

from .normalize import normalize_number

logger = logging.getLogger(__name__)


class Deduplicator:
    def __init__(self, stores):
        """
        Args:
            stores: Callable agency code -> equipment repository.
        """
        self.stores = stores

    def exists_contract(
        self,
        agency: str,
        contact_id: int,
        number: str,
        visit_code: str,
        visit_date: Optional[date],
    ) -> bool:
        """True if the contract triple exists for the same visit day."""
        if visit_date is None:
            return False
        if isinstance(visit_date, datetime):
            visit_date = visit_date.date()

        exists = self.stores(agency).contract_exists(
            contact_id,
            normalize_number(number),
            normalize_number(visit_code),
            visit_date,
        )
        if exists:
            logger.debug(
                "[Dedup] Contract equipment already recorded",
                extra={
                    "agency": agency,
                    "contact_id": contact_id,
                    "equipment_number": number,
                    "visit_code": visit_code,
                },
            )
        return exists

    def exists_off_contract(
        self,
        agency: str,
        form_id: int,
        submission_id: int,
        position_index: int,
    ) -> bool:
        exists = self.stores(agency).off_contract_exists(form_id, submission_id, position_index)
        if exists:
            logger.debug(
                "[Dedup] Off-contract slot already recorded",
                extra={
                    "agency": agency,
                    "form_id": form_id,
                    "submission_id": submission_id,
                    "position_index": position_index,
                },
            )
        return exists
