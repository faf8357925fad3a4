"""
Kizeo Sync - Off-Contract Number Generator

Equipment found outside contract has no number upstream. It gets
<PREFIX><NN>, where PREFIX comes from the type label and NN is one more
than the highest existing suffix for the same contact and prefix.

Lookup-then-insert is a critical section per (contact, prefix). The
repository takes a transaction-scoped advisory lock, so generate() must
run inside the same transaction as the insert that consumes the number.
"""

from __future__ import annotations

import logging

from .normalize import format_equipment_number, type_prefix

logger = logging.getLogger(__name__)

# Two-digit suffix; larger sequences still format, just wider
MAX_FORMATTED_SEQUENCE = 99


class OffContractNumberGenerator:
    def __init__(self, stores):
        self.stores = stores

    def generate(self, agency: str, contact_id: int, label: str | None) -> str:
        """
        Next free number for this contact and type.

        Args:
            agency: Agency code.
            contact_id: Owning contact.
            label: Equipment type label ("Rideau métallique" -> RID).

        Returns:
            e.g. "RID01" for the first rolling shutter of a fresh contact.
        """
        prefix = type_prefix(label)
        store = self.stores(agency)

        store.lock_number_sequence(contact_id, prefix)
        sequence = store.max_number_suffix(contact_id, prefix) + 1

        if sequence > MAX_FORMATTED_SEQUENCE:
            logger.warning(
                "[Numbering] Sequence exceeds two digits",
                extra={"agency": agency, "contact_id": contact_id, "prefix": prefix, "sequence": sequence},
            )

        number = format_equipment_number(prefix, sequence)
        logger.debug(
            "[Numbering] Generated number",
            extra={"agency": agency, "contact_id": contact_id, "equipment_number": number},
        )
        return number
