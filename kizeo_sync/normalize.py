"""
Kizeo Sync - Normalization Module

Pure, deterministic helpers shared by the extractor, the number generator
and the list builder. No I/O, no clock, no database.

The keyword tables are ordered: the first substring match wins, so more
specific keywords must come before the generic ones they contain.
"""

from __future__ import annotations

import re
import unicodedata
from datetime import date, datetime
from typing import Any

# ============================================================================
# Constants
# ============================================================================

VISIT_CODES = ("CE1", "CE2", "CE3", "CE4", "CEA")
DEFAULT_VISIT_CODE = "CE1"
VISIT_CODE_PATTERN = re.compile(r"^CE[A1-4]$")

# Separator used by Kizeo hierarchical paths ("CLIENT\CE2")
PATH_SEPARATOR = "\\"

DEFAULT_PREFIX = "EQU"
UNKNOWN_CLIENT = "UNKNOWN"
CLIENT_NAME_MAX_LENGTH = 50

# Equipment type keyword -> 3-letter numbering prefix.
# Keys are lower-case and diacritic-free; labels are folded the same way
# before matching.
TYPE_PREFIXES: tuple[tuple[str, str], ...] = (
    ("porte sectionnelle", "SEC"),
    ("sectionnelle", "SEC"),
    ("porte rapide", "RAP"),
    ("porte automatique", "RAP"),
    ("rapide", "RAP"),
    ("rideau metallique", "RID"),
    ("rideau", "RID"),
    ("portail coulissant", "PAU"),
    ("portail battant", "PMO"),
    ("portail manuel", "PMA"),
    ("portail", "PAU"),
    ("barriere levante", "BLE"),
    ("barriere", "BLE"),
    ("niveleur de quai", "NIV"),
    ("niveleur", "NIV"),
    ("quai", "NIV"),
    ("porte coupe-feu", "CFE"),
    ("porte coupe feu", "CFE"),
    ("coupe-feu", "CFE"),
    ("coupe feu", "CFE"),
    ("porte pietonne", "PPV"),
    ("porte pieton", "PPV"),
    ("pieton", "PPI"),
    ("tourniquet", "TOU"),
    ("sas", "SAS"),
    ("bloc-roue", "BRO"),
    ("bloc roue", "BRO"),
    ("table elevatrice", "TEL"),
    ("butoir", "BUT"),
    ("buttoir", "BUT"),
    ("automatique", "PAU"),
)

# Photo types used in job rows and local file names
PHOTO_TYPE_GENERAL = "general"
PHOTO_TYPE_PLATE = "plate"
PHOTO_TYPE_ENVIRONMENT = "environment"
PHOTO_TYPE_ANOMALY = "anomaly"
PHOTO_TYPE_REPORT = "report"
PHOTO_TYPE_OTHER = "other"

PHOTO_TYPE_KEYWORDS: tuple[tuple[str, str], ...] = (
    ("photo_generale", PHOTO_TYPE_GENERAL),
    ("generale", PHOTO_TYPE_GENERAL),
    ("general", PHOTO_TYPE_GENERAL),
    ("photo_plaque", PHOTO_TYPE_PLATE),
    ("plaque", PHOTO_TYPE_PLATE),
    ("photo_environnement", PHOTO_TYPE_ENVIRONMENT),
    ("environnement", PHOTO_TYPE_ENVIRONMENT),
    ("environment", PHOTO_TYPE_ENVIRONMENT),
    ("photo_anomalie", PHOTO_TYPE_ANOMALY),
    ("anomalie", PHOTO_TYPE_ANOMALY),
    ("defaut", PHOTO_TYPE_ANOMALY),
    ("compte_rendu", PHOTO_TYPE_REPORT),
)


# ============================================================================
# String Normalization
# ============================================================================


def clean_value(value: Any) -> str | None:
    """
    Coerce a raw Kizeo scalar to a stripped string.

    Lists yield their first element. Numbers are stringified.
    Blank strings and unsupported types yield None.
    """
    if isinstance(value, list):
        value = value[0] if value else None

    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        value = str(value)

    if not isinstance(value, str):
        return None

    value = value.strip()
    return value or None


def fold_diacritics(value: str) -> str:
    """Strip accents: 'Rideau métallique' -> 'Rideau metallique'."""
    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_label(value: str | None) -> str:
    """Lower-case, accent-free, whitespace-collapsed label for keyword matching."""
    if value is None:
        return ""
    folded = fold_diacritics(str(value)).lower()
    return re.sub(r"\s+", " ", folded).strip()


def normalize_number(value: str | None) -> str:
    """Equipment numbers compare upper-cased and trimmed."""
    return (value or "").strip().upper()


# ============================================================================
# Visit Codes & Dates
# ============================================================================


def normalize_visit_code(value: str | None) -> str | None:
    """Return the upper-cased visit code if valid (CE1..CE4, CEA), else None."""
    if value is None:
        return None
    candidate = str(value).strip().upper()
    return candidate if VISIT_CODE_PATTERN.match(candidate) else None


def visit_code_from_path(path: str | None) -> str | None:
    """
    Parse the visit code out of a Kizeo hierarchical path.

    "GROUPE MAURIN\\CE1" -> "CE1"
    "CLIENT XYZ\\CE2\\Sous-niveau" -> "CE2"

    The code normally sits in position 1; older forms put it last.
    """
    if not path:
        return None

    parts = str(path).split(PATH_SEPARATOR)
    if len(parts) > 1:
        code = normalize_visit_code(parts[1])
        if code:
            return code

    return normalize_visit_code(parts[-1])


def parse_visit_date(value: str | None) -> date | None:
    """
    Parse a Kizeo date field.

    Accepts "2025-01-08", "2025-01-08 14:30:00", ISO-8601 with "T",
    and the French "08/01/2025" layout. Returns None if unparseable.
    """
    if not value:
        return None

    text = str(value).strip()
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        pass

    for fmt in ("%Y-%m-%d %H:%M", "%d/%m/%Y %H:%M", "%d/%m/%Y"):
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue

    return None


# ============================================================================
# Prefixes & Client Names
# ============================================================================


def type_prefix(label: str | None) -> str:
    """
    Map an equipment type label to its numbering prefix.

    >>> type_prefix("Rideau métallique")
    'RID'
    >>> type_prefix("Portail coulissant")
    'PAU'
    >>> type_prefix(None)
    'EQU'
    """
    normalized = normalize_label(label)
    if not normalized:
        return DEFAULT_PREFIX

    for keyword, prefix in TYPE_PREFIXES:
        if keyword in normalized:
            return prefix

    return DEFAULT_PREFIX


def format_equipment_number(prefix: str, sequence: int) -> str:
    """SEC + 4 -> 'SEC04'."""
    return f"{prefix}{sequence:02d}"


def sanitize_client_name(name: str | None) -> str:
    """Upper-case, filesystem-safe company name, at most 50 characters."""
    if not name:
        return UNKNOWN_CLIENT

    sanitized = re.sub(r"[^a-zA-Z0-9_]", "_", fold_diacritics(name))
    sanitized = re.sub(r"_+", "_", sanitized).strip("_")
    return sanitized[:CLIENT_NAME_MAX_LENGTH].upper() or UNKNOWN_CLIENT


def normalize_photo_type(field_name: str) -> str:
    """Derive a photo type from a Kizeo photo field name."""
    lowered = field_name.strip().lower()
    for keyword, photo_type in PHOTO_TYPE_KEYWORDS:
        if keyword in lowered:
            return photo_type
    return PHOTO_TYPE_OTHER


# ============================================================================
# Merge Keys
# ============================================================================


def build_merge_key(contact_id: Any, visit_code: str | None, number: str | None) -> str:
    """
    Identity of an equipment entry in the external list.

    Format: "<contact_id>\\<VISIT>\\<NUMBER>". Company name and other
    cosmetic fields are deliberately absent.
    """
    contact = "" if contact_id is None else str(contact_id).strip()
    return PATH_SEPARATOR.join(
        (contact, (visit_code or "").strip().upper(), normalize_number(number))
    )
