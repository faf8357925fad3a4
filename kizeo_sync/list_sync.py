"""
Kizeo Sync - Equipment List Sync

Pushes each agency's active equipment into its Kizeo external list, which
technicians pick from in the mobile form.

The upstream list also holds entries curated by hand in Kizeo, so the push
is a merge, not a replace:

    1. a local item whose merge key is upstream replaces that entry (updated)
    2. a local item with no upstream match is appended (added)
    3. an unmatched upstream entry is dropped only if its key is known
       archived locally (removed); otherwise it is kept verbatim (kept)

PUT /lists/{id} overwrites the whole list, so the pre-merge upstream list
is written to a backup file before every push.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

import psycopg

from .agencies import AgencyRegistry, normalize_agency_code
from .backups import BackupStore
from .client import KizeoClient
from .errors import ConfigError, KizeoSyncError
from .list_codec import ListItem, encode_item, merge_key_from_item
from .logging import LogContext, Timer
from .normalize import build_merge_key

logger = logging.getLogger(__name__)


# ============================================================================
# List Builder
# ============================================================================


class ListBuilder:
    """Local side of the merge: active items and archived identities."""

    def __init__(self, stores):
        self.stores = stores

    def build_items(self, agency: str) -> dict[str, str]:
        """Merge key -> encoded item for the latest active row of each identity."""
        agency = normalize_agency_code(agency)
        items: dict[str, str] = {}

        for row in self.stores(agency).fetch_active_rows():
            item = ListItem.from_values(
                company=row.get("company_name"),
                visit_code=(row.get("visit_code") or "").upper(),
                number=(row.get("equipment_number") or "").upper(),
                label=row.get("label"),
                commissioning_year=row.get("commissioning_year"),
                serial_number=row.get("serial_number"),
                brand=row.get("brand"),
                length=row.get("length"),
                width=row.get("width"),
                height=row.get("height"),
                contact_id=row.get("contact_id"),
                company_id=row.get("company_id"),
                agency_code=agency,
            )
            items.setdefault(item.merge_key, encode_item(item))

        return items

    def archived_keys(self, agency: str) -> set[str]:
        return {
            build_merge_key(row["contact_id"], row["visit_code"], row["equipment_number"])
            for row in self.stores(agency).fetch_archived_rows()
        }


# ============================================================================
# Merge
# ============================================================================


@dataclass
class MergeResult:
    items: list[str] = field(default_factory=list)
    added: int = 0
    updated: int = 0
    kept: int = 0
    removed: int = 0


def merge(
    local_items: Mapping[str, str],
    upstream_items: Iterable[str],
    archived_keys: set[str] | frozenset[str],
) -> MergeResult:
    """
    Merge the local snapshot into the upstream list.

    Upstream order is preserved; added items go at the end. An upstream
    entry that is neither active locally nor archived is always kept.
    A second upstream entry with an already-replaced key is dropped and
    counted as removed.
    """
    result = MergeResult()
    replaced: set[str] = set()

    for raw in upstream_items:
        key = merge_key_from_item(raw)

        if key is not None and key in local_items:
            if key in replaced:
                result.removed += 1
                continue
            replaced.add(key)
            result.items.append(local_items[key])
            result.updated += 1
        elif key is not None and key in archived_keys:
            result.removed += 1
        else:
            result.items.append(raw)
            result.kept += 1

    for key, item in local_items.items():
        if key not in replaced:
            result.items.append(item)
            result.added += 1

    return result


# ============================================================================
# Sync
# ============================================================================


@dataclass
class SyncResult:
    """Outcome of one agency push. Failures are reported, not raised."""

    agency: str
    success: bool = False
    dry_run: bool = False
    list_id: Optional[int] = None
    upstream_count: int = 0
    local_count: int = 0
    archived_count: int = 0
    added: int = 0
    updated: int = 0
    kept: int = 0
    removed: int = 0
    final_count: int = 0
    backup_path: Optional[Path] = None
    error: Optional[str] = None
    duration_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "agency": self.agency,
            "success": self.success,
            "dry_run": self.dry_run,
            "list_id": self.list_id,
            "upstream_count": self.upstream_count,
            "local_count": self.local_count,
            "archived_count": self.archived_count,
            "added": self.added,
            "updated": self.updated,
            "kept": self.kept,
            "removed": self.removed,
            "final_count": self.final_count,
            "backup_path": str(self.backup_path) if self.backup_path else None,
            "error": self.error,
            "duration_ms": self.duration_ms,
        }


class EquipmentListSync:
    def __init__(
        self,
        client: KizeoClient,
        registry: AgencyRegistry,
        builder: ListBuilder,
        backups: BackupStore,
    ):
        self.client = client
        self.registry = registry
        self.builder = builder
        self.backups = backups

    def sync_agency(self, agency: str, dry_run: bool = False) -> SyncResult:
        """
        Merge and push one agency's list.

        Steps: resolve list id, GET upstream, back it up, build local items,
        merge, PUT (skipped on dry run).
        """
        result = SyncResult(agency=agency.strip().upper(), dry_run=dry_run)

        with LogContext(agency=result.agency), Timer() as timer:
            try:
                self._sync(result, dry_run)
                result.success = True
            except (KizeoSyncError, psycopg.Error, OSError) as e:
                result.error = f"{type(e).__name__}: {e}"
                logger.error("[ListSync] Sync failed", extra={"error": result.error})

        result.duration_ms = timer.elapsed_ms
        if result.success:
            logger.info("[ListSync] Sync complete", extra=result.to_dict())
        return result

    def _sync(self, result: SyncResult, dry_run: bool) -> None:
        agency = self.registry.get(result.agency)
        if not agency.list_id:
            raise ConfigError(f"Agency {agency.code} has no Kizeo list id")
        result.list_id = agency.list_id

        upstream = self.client.get_list(agency.list_id)
        result.upstream_count = len(upstream)

        result.backup_path = self.backups.write(agency.code, agency.list_id, upstream)

        local = self.builder.build_items(agency.code)
        archived = self.builder.archived_keys(agency.code)
        result.local_count = len(local)
        result.archived_count = len(archived)

        merged = merge(local, upstream, archived)
        result.added = merged.added
        result.updated = merged.updated
        result.kept = merged.kept
        result.removed = merged.removed
        result.final_count = len(merged.items)

        if dry_run:
            logger.info("[ListSync] Dry run, list not pushed", extra={"final_count": result.final_count})
            return

        self.client.put_list(agency.list_id, merged.items)

    def sync_all(self, dry_run: bool = False) -> list[SyncResult]:
        """Sync every active agency that has a list id."""
        results = []
        for agency in self.registry.active():
            if not agency.list_id:
                logger.debug("[ListSync] No list id, skipped", extra={"agency": agency.code})
                continue
            results.append(self.sync_agency(agency.code, dry_run=dry_run))
        return results
