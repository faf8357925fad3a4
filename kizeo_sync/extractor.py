"""
Kizeo Sync - Record Extractor

Parses one raw Kizeo submission (the "data" object of
GET /forms/{form}/data/{id}) into an ExtractedSubmission.

The form schema drifted across agencies and over time, so top-level
attributes are looked up through ordered alias lists and the first
non-empty value wins. A defect in one equipment entry drops that entry
only; a submission without a contact or visit year is returned with
is_valid == False rather than raised.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from .errors import ExtractionError
from .models import EquipmentKind, ExtractedEquipment, ExtractedMedia, ExtractedSubmission
from .normalize import (
    DEFAULT_VISIT_CODE,
    clean_value,
    normalize_photo_type,
    parse_visit_date,
    visit_code_from_path,
)

logger = logging.getLogger(__name__)

# ============================================================================
# Field Mapping
# ============================================================================

CONTACT_ID_ALIASES = ("id_client_", "id_client", "id_contact")
COMPANY_ID_ALIASES = ("id_societe",)
COMPANY_NAME_ALIASES = ("raison_sociale", "nom_client", "client", "societe")
VISIT_DATE_ALIASES = ("date_et_heure1", "date_visite", "date")
TECHNICIAN_ALIASES = ("trigramme", "technicien")

CONTRACT_TABLE_FIELD = "contrat_de_maintenance"
OFF_CONTRACT_TABLE_FIELD = "tableau2"

# Sub-field holding the equipment number (and the CLIENT\CEx path)
CONTRACT_NUMBER_FIELD = "equipement"

# attribute -> sub-field names, first non-empty wins
CONTRACT_FIELD_MAP: dict[str, tuple[str, ...]] = {
    "label": ("reference7",),
    "equipment_type": ("reference7",),
    "brand": ("reference5",),
    "operating_mode": ("mode_fonctionnement_2",),
    "site_location": ("localisation_site_client",),
    "commissioning_year": ("reference2",),
    "serial_number": ("reference6",),
    "height": ("reference3",),
    "width": ("reference1",),
    "condition_code": ("etat",),
}

OFF_CONTRACT_FIELD_MAP: dict[str, tuple[str, ...]] = {
    "equipment_type": ("nature", "type_equipement", "type"),
    "brand": ("marque",),
    "condition_code": ("etat1", "etat_equipement", "etat"),
}

ANOMALY_FIELDS = ("anomalie_trigramme", "anomalies", "anomalie", "defaut", "observations")
ANOMALY_SEPARATOR = " | "

OFF_CONTRACT_DEFAULT_LABEL = "Équipement HC"

# Photo slots recognised by name even when Kizeo omits the field type
KNOWN_PHOTO_FIELDS = frozenset(
    {
        "photo_plaque",
        "photo_generale",
        "photo_environnement",
        "photo_anomalie",
        "photo_compte_rendu",
        "photo_etiquette_somafi",
        "photo_etiquette_somafi1",
        "photo_plaque_signaletique",
        "photo_fixation_coulisse",
        "photo_coffret_de_commande",
        "photo_complementaire_equipeme",
        "photo2",
        "photo3",
    }
)
PHOTO_FIELD_TYPE = "photo"
FIXED_IMAGE_FIELD_TYPE = "fixed_image"


# ============================================================================
# Field Helpers
# ============================================================================


def field_value(fields: Mapping[str, Any], name: str) -> str | None:
    """Top-level field: either a bare string or {"value": ...}."""
    raw = fields.get(name)
    if isinstance(raw, Mapping):
        raw = raw.get("value")
    return clean_value(raw)


def first_field_value(fields: Mapping[str, Any], aliases: Iterable[str]) -> str | None:
    for alias in aliases:
        value = field_value(fields, alias)
        if value is not None:
            return value
    return None


def nested_value(item: Mapping[str, Any], name: str, key: str = "value") -> str | None:
    sub = item.get(name)
    if not isinstance(sub, Mapping):
        return None
    return clean_value(sub.get(key))


def _first_nested(item: Mapping[str, Any], names: Iterable[str]) -> str | None:
    for name in names:
        value = nested_value(item, name)
        if value is not None:
            return value
    return None


def _table_rows(fields: Mapping[str, Any], name: str) -> list[Any]:
    table = fields.get(name)
    rows = table.get("value") if isinstance(table, Mapping) else None
    return rows if isinstance(rows, list) else []


def extract_anomalies(item: Mapping[str, Any]) -> str | None:
    parts = [value for value in (nested_value(item, name) for name in ANOMALY_FIELDS) if value]
    return ANOMALY_SEPARATOR.join(parts) if parts else None


# ============================================================================
# Extractor
# ============================================================================


class FormDataExtractor:
    """Stateless parser for CR technician submissions."""

    def extract(self, raw: Mapping[str, Any], form_id: int) -> ExtractedSubmission:
        """
        Parse a raw submission.

        Args:
            raw: Submission object with "id" and "fields".
            form_id: Kizeo form the submission belongs to.

        Returns:
            ExtractedSubmission (check is_valid before persisting).

        Raises:
            ExtractionError: If the submission carries no id at all.
        """
        submission_id = self._submission_id(raw)
        fields = raw.get("fields") or {}
        if not isinstance(fields, Mapping):
            fields = {}

        contact_id = self._contact_id(fields, submission_id)
        visit_date = self._visit_date(fields, submission_id)

        contract = self._contract_equipment(fields)
        off_contract = self._off_contract_equipment(fields)
        media = self._media(fields)

        submission = ExtractedSubmission(
            form_id=form_id,
            submission_id=submission_id,
            contact_id=contact_id,
            company_id=first_field_value(fields, COMPANY_ID_ALIASES),
            company_name=first_field_value(fields, COMPANY_NAME_ALIASES),
            visit_date=visit_date,
            technician_code=first_field_value(fields, TECHNICIAN_ALIASES),
            contract_equipment=tuple(contract),
            off_contract_equipment=tuple(off_contract),
            media=tuple(media),
        )

        logger.info("[Extract] Submission parsed", extra=submission.to_log_context())
        return submission

    # ------------------------------------------------------------------
    # Top-level fields
    # ------------------------------------------------------------------

    @staticmethod
    def _submission_id(raw: Mapping[str, Any]) -> int:
        value = raw.get("id", raw.get("_id"))
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ExtractionError(f"Submission has no usable id: {value!r}") from None

    @staticmethod
    def _contact_id(fields: Mapping[str, Any], submission_id: int) -> int | None:
        value = first_field_value(fields, CONTACT_ID_ALIASES)
        if value is None:
            logger.warning(
                "[Extract] Contact id missing",
                extra={"submission_id": submission_id},
            )
            return None
        try:
            return int(float(value)) if "." in value else int(value)
        except ValueError:
            logger.warning(
                "[Extract] Contact id not numeric",
                extra={"submission_id": submission_id, "value": value},
            )
            return None

    @staticmethod
    def _visit_date(fields: Mapping[str, Any], submission_id: int):
        value = first_field_value(fields, VISIT_DATE_ALIASES)
        if value is None:
            return None
        parsed = parse_visit_date(value)
        if parsed is None:
            logger.warning(
                "[Extract] Visit date invalid",
                extra={"submission_id": submission_id, "value": value},
            )
        return parsed

    # ------------------------------------------------------------------
    # Equipment
    # ------------------------------------------------------------------

    def _contract_equipment(self, fields: Mapping[str, Any]) -> list[ExtractedEquipment]:
        equipment = []
        for index, item in enumerate(_table_rows(fields, CONTRACT_TABLE_FIELD)):
            if not isinstance(item, Mapping):
                logger.debug("[Extract] Contract entry is not an object", extra={"index": index})
                continue
            parsed = self._parse_contract(item, index)
            if parsed is not None:
                equipment.append(parsed)

        logger.debug("[Extract] Contract equipment", extra={"count": len(equipment)})
        return equipment

    @staticmethod
    def _parse_contract(item: Mapping[str, Any], index: int) -> ExtractedEquipment | None:
        number = nested_value(item, CONTRACT_NUMBER_FIELD)
        if number is None:
            logger.debug("[Extract] Contract entry without number dropped", extra={"index": index})
            return None

        path = nested_value(item, CONTRACT_NUMBER_FIELD, "path")
        attributes = {
            name: _first_nested(item, aliases) for name, aliases in CONTRACT_FIELD_MAP.items()
        }
        return ExtractedEquipment(
            kind=EquipmentKind.CONTRACT,
            number=number.upper(),
            visit_code=visit_code_from_path(path) or DEFAULT_VISIT_CODE,
            anomalies=extract_anomalies(item),
            **attributes,
        )

    def _off_contract_equipment(self, fields: Mapping[str, Any]) -> list[ExtractedEquipment]:
        equipment = []
        for index, item in enumerate(_table_rows(fields, OFF_CONTRACT_TABLE_FIELD)):
            if not isinstance(item, Mapping):
                logger.debug("[Extract] Off-contract entry is not an object", extra={"index": index})
                continue
            attributes = {
                name: _first_nested(item, aliases)
                for name, aliases in OFF_CONTRACT_FIELD_MAP.items()
            }
            equipment.append(
                ExtractedEquipment(
                    kind=EquipmentKind.OFF_CONTRACT,
                    label=attributes["equipment_type"] or OFF_CONTRACT_DEFAULT_LABEL,
                    anomalies=extract_anomalies(item),
                    position_index=index,
                    **attributes,
                )
            )

        logger.debug("[Extract] Off-contract equipment", extra={"count": len(equipment)})
        return equipment

    # ------------------------------------------------------------------
    # Media
    # ------------------------------------------------------------------

    def _media(self, fields: Mapping[str, Any]) -> list[ExtractedMedia]:
        media: list[ExtractedMedia] = []

        for item in _table_rows(fields, CONTRACT_TABLE_FIELD):
            if not isinstance(item, Mapping):
                continue
            number = nested_value(item, CONTRACT_NUMBER_FIELD)
            if number is None:
                continue
            media.extend(self._photo_fields(item, equipment_number=number.upper()))

        for index, item in enumerate(_table_rows(fields, OFF_CONTRACT_TABLE_FIELD)):
            if not isinstance(item, Mapping):
                continue
            media.extend(self._photo_fields(item, position_index=index))

        logger.debug(
            "[Extract] Media",
            extra={
                "count": len(media),
                "contract": sum(1 for m in media if m.is_contract),
                "off_contract": sum(1 for m in media if not m.is_contract),
            },
        )
        return media

    @staticmethod
    def _photo_fields(
        item: Mapping[str, Any],
        *,
        equipment_number: str | None = None,
        position_index: int | None = None,
    ) -> list[ExtractedMedia]:
        found = []
        for field_name, data in item.items():
            if not isinstance(data, Mapping):
                continue

            field_type = data.get("type")
            if field_type == FIXED_IMAGE_FIELD_TYPE:
                continue
            if field_type != PHOTO_FIELD_TYPE and field_name not in KNOWN_PHOTO_FIELDS:
                continue

            value = data.get("value")
            if isinstance(value, list):
                names = [v.strip() for v in value if isinstance(v, str) and v.strip()]
            elif isinstance(value, str) and value.strip():
                names = [value.strip()]
            else:
                names = []

            for position, media_name in enumerate(names, start=1):
                found.append(
                    ExtractedMedia(
                        media_name=media_name,
                        field_name=field_name,
                        photo_type=normalize_photo_type(field_name),
                        is_contract=equipment_number is not None,
                        equipment_number=equipment_number,
                        position_index=position_index,
                        photo_index=position if len(names) > 1 else None,
                    )
                )
        return found
