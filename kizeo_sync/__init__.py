"""
Kizeo Sync

Ingests Kizeo Forms maintenance-visit submissions into per-agency equipment
tables, queues photo and report downloads, and pushes equipment lists back
to Kizeo.

Run via: python -m kizeo_sync

Modules:
    extractor     - Raw submission -> ExtractedSubmission
    deduplicator  - Contract / off-contract identity checks
    numbering     - Type-prefixed numbers for off-contract equipment
    persister     - Equipment writes, index -> number map
    jobs          - kizeo_jobs queue (psycopg3 sync)
    job_creator   - Report and photo jobs for a submission
    media         - Permanent photo -> equipment records
    list_codec    - External list item wire format
    list_sync     - List builder, merge and push
    processor     - Per-agency batch, persist-then-mark-read
    scheduler     - APScheduler periodic jobs
    cli           - click commands
"""

__version__ = "1.0.0"

from .errors import (
    ConfigError,
    ExtractionError,
    KizeoSyncError,
    UnknownAgencyError,
    UpstreamError,
    UpstreamTimeout,
)
from .extractor import FormDataExtractor
from .list_codec import ListItem, decode_item, encode_item, merge_key_from_item
from .list_sync import MergeResult, merge
from .models import ExtractedEquipment, ExtractedMedia, ExtractedSubmission, Job, JobStatus, JobType

__all__ = [
    "ConfigError",
    "ExtractionError",
    "KizeoSyncError",
    "UnknownAgencyError",
    "UpstreamError",
    "UpstreamTimeout",
    "FormDataExtractor",
    "ListItem",
    "decode_item",
    "encode_item",
    "merge_key_from_item",
    "MergeResult",
    "merge",
    "ExtractedEquipment",
    "ExtractedMedia",
    "ExtractedSubmission",
    "Job",
    "JobStatus",
    "JobType",
]
