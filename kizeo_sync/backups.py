"""
Kizeo Sync - List Backups

The list push is a full overwrite, so the upstream list as it was before
the merge is written to disk first. Retention is bounded per agency by age
and by count.
"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable

logger = logging.getLogger(__name__)

FILENAME_PREFIX = "equipment_list"
TIMESTAMP_FORMAT = "%Y-%m-%d_%H%M%S_%f"
SECONDS_PER_DAY = 86400


class BackupStore:
    def __init__(
        self,
        directory: Path | str,
        max_age_days: int = 7,
        max_per_agency: int = 2,
        clock: Callable[[], datetime] | None = None,
    ):
        self.directory = Path(directory)
        self.max_age_days = max_age_days
        self.max_per_agency = max_per_agency
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def files_for(self, agency: str) -> list[Path]:
        """Backups of one agency, newest first."""
        if not self.directory.is_dir():
            return []
        files = self.directory.glob(f"{FILENAME_PREFIX}_{agency.upper()}_*.json")
        return sorted(files, key=lambda p: (p.stat().st_mtime, p.name), reverse=True)

    def cleanup(self, agency: str, reserve: int = 0) -> int:
        """
        Apply retention for one agency.

        Deletes files older than max_age_days, then the oldest files beyond
        max_per_agency - reserve (reserve leaves room for a file about to be
        written).

        Returns:
            Number of files deleted.
        """
        cutoff = time.time() - self.max_age_days * SECONDS_PER_DAY
        deleted = 0

        remaining = []
        for path in self.files_for(agency):
            if path.stat().st_mtime < cutoff:
                deleted += self._delete(path)
            else:
                remaining.append(path)

        keep = max(self.max_per_agency - reserve, 0)
        for path in remaining[keep:]:
            deleted += self._delete(path)

        return deleted

    def write(self, agency: str, list_id: int, items: Iterable[str]) -> Path:
        """
        Snapshot a list before it is overwritten.

        Returns:
            Path of the new backup file.

        Raises:
            OSError: If the directory or file cannot be written.
        """
        agency = agency.upper()
        items = list(items)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.cleanup(agency, reserve=1)

        now = self._clock()
        path = self._free_path(agency, now)
        payload = {
            "list_id": list_id,
            "agency_code": agency,
            "date": now.isoformat(),
            "count": len(items),
            "items": items,
        }
        path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")

        logger.info(
            "[Backup] List snapshot written",
            extra={"agency": agency, "path": str(path), "count": len(items)},
        )
        return path

    def _free_path(self, agency: str, now: datetime) -> Path:
        """Timestamped file name, suffixed _1, _2 ... if that name is taken."""
        stem = f"{FILENAME_PREFIX}_{agency}_{now.strftime(TIMESTAMP_FORMAT)}"
        path = self.directory / f"{stem}.json"
        counter = 1
        while path.exists():
            path = self.directory / f"{stem}_{counter}.json"
            counter += 1
        return path

    @staticmethod
    def _delete(path: Path) -> int:
        path.unlink(missing_ok=True)
        logger.debug("[Backup] Deleted", extra={"path": str(path)})
        return 1
