"""
Kizeo Sync - Exceptions

One base class so callers (CLI, scheduler) can catch everything the package
raises on purpose and still let programming errors surface.
"""

from __future__ import annotations

# Error codes (machine-readable, logged with every raise site)
ERROR_CONFIG = "config_error"
ERROR_UNKNOWN_AGENCY = "unknown_agency"
ERROR_UPSTREAM = "upstream_error"
ERROR_UPSTREAM_TIMEOUT = "upstream_timeout"
ERROR_EXTRACTION = "extraction_error"
ERROR_DATABASE = "database_error"


class KizeoSyncError(Exception):
    """Base exception for kizeo_sync business errors."""

    def __init__(self, message: str, error_code: str = ERROR_DATABASE):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class ConfigError(KizeoSyncError):
    """Missing or invalid settings."""

    def __init__(self, message: str):
        super().__init__(message, error_code=ERROR_CONFIG)


class UnknownAgencyError(KizeoSyncError, ValueError):
    """Agency code outside the known set."""

    def __init__(self, agency_code: str, known: tuple[str, ...] | list[str] = ()):
        message = f"Unknown agency: {agency_code}"
        if known:
            message += f". Valid agencies: {', '.join(known)}"
        super().__init__(message, error_code=ERROR_UNKNOWN_AGENCY)
        self.agency_code = agency_code


class UpstreamError(KizeoSyncError):
    """Kizeo API answered with a non-2xx status or an undecodable body."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message, error_code=ERROR_UPSTREAM)
        self.status_code = status_code


class UpstreamTimeout(UpstreamError):
    """Kizeo API call exceeded its timeout budget."""

    def __init__(self, message: str):
        super().__init__(message)
        self.error_code = ERROR_UPSTREAM_TIMEOUT


class ExtractionError(KizeoSyncError):
    """Submission cannot be identified at all (no data id)."""

    def __init__(self, message: str):
        super().__init__(message, error_code=ERROR_EXTRACTION)
