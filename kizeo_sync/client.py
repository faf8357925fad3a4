"""
Kizeo Sync - Kizeo Forms API Client

Synchronous httpx client for the Kizeo REST v3 API.

Each call type has its own timeout budget: metadata calls are short, media
downloads longer, generated PDF reports longest. Idempotent metadata calls
(read listings, mark read/unread, get list) are retried on transient
failures with tenacity. Downloads are not retried here; the job queue's
attempt counter owns that. The list PUT is a destructive overwrite and is
never replayed blindly.

Every failure surfaces as UpstreamError (UpstreamTimeout for timeouts).
"""

from __future__ import annotations

import functools
import logging
from typing import Any, Callable, Iterable, Optional, TypeVar

import httpx
from tenacity import (
    RetryError,
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from .config import SyncConfig
from .errors import UpstreamError, UpstreamTimeout

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Kizeo refuses larger unread pages
MAX_UNREAD_LIMIT = 50

DEFAULT_TIMEOUT_METADATA = 30.0
DEFAULT_TIMEOUT_MEDIA = 60.0
DEFAULT_TIMEOUT_REPORT = 90.0
CONNECT_TIMEOUT = 10.0

RETRIABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, UpstreamTimeout):
        return True
    if isinstance(exc, UpstreamError):
        return exc.status_code is None or exc.status_code in RETRIABLE_STATUS_CODES
    return False


def with_retry(func: Callable[..., T]) -> Callable[..., T]:
    """
    Retry a client method on transient upstream failures.

    Attempts and backoff come from the client instance, so tests can run
    with zero wait.
    """

    @functools.wraps(func)
    def wrapper(self: "KizeoClient", *args: Any, **kwargs: Any) -> T:
        @retry(
            retry=retry_if_exception(_is_transient),
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=1, min=self.retry_min_wait, max=self.retry_max_wait),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        def inner() -> T:
            return func(self, *args, **kwargs)

        try:
            return inner()
        except RetryError as e:
            logger.error(f"Retries exhausted for {func.__name__} after {self.retry_attempts} attempts")
            last_exc = e.last_attempt.exception()
            if last_exc is not None:
                raise last_exc from e
            raise UpstreamError(f"Retry exhausted for {func.__name__}") from e

    return wrapper


class KizeoClient:
    """
    Kizeo Forms REST client.

    Usage:
        with KizeoClient.from_config(config) as client:
            for item in client.get_unread(form_id, limit=10):
                ...
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        timeout_metadata: float = DEFAULT_TIMEOUT_METADATA,
        timeout_media: float = DEFAULT_TIMEOUT_MEDIA,
        timeout_report: float = DEFAULT_TIMEOUT_REPORT,
        retry_attempts: int = 3,
        retry_min_wait: float = 1.0,
        retry_max_wait: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_metadata = timeout_metadata
        self.timeout_media = timeout_media
        self.timeout_report = timeout_report
        self.retry_attempts = retry_attempts
        self.retry_min_wait = retry_min_wait
        self.retry_max_wait = retry_max_wait
        self._client = httpx.Client(
            base_url=self.base_url,
            headers={
                "Authorization": token,
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            timeout=httpx.Timeout(timeout_metadata, connect=CONNECT_TIMEOUT),
            transport=transport,
        )

    @classmethod
    def from_config(cls, config: SyncConfig) -> "KizeoClient":
        return cls(
            config.kizeo_api_url,
            config.kizeo_api_token,
            timeout_metadata=config.kizeo_timeout_metadata,
            timeout_media=config.kizeo_timeout_media,
            timeout_report=config.kizeo_timeout_report,
            retry_attempts=config.retry_attempts,
        )

    def __enter__(self) -> "KizeoClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _request(self, method: str, path: str, timeout: float, **kwargs: Any) -> httpx.Response:
        try:
            response = self._client.request(
                method,
                path,
                timeout=httpx.Timeout(timeout, connect=CONNECT_TIMEOUT),
                **kwargs,
            )
        except httpx.TimeoutException as e:
            raise UpstreamTimeout(f"{method} {path} timed out after {timeout}s") from e
        except httpx.TransportError as e:
            raise UpstreamError(f"{method} {path} failed: {type(e).__name__}: {e}") from e

        if response.status_code >= 400:
            raise UpstreamError(
                f"{method} {path} returned HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        return response

    def _json(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        response = self._request(method, path, self.timeout_metadata, **kwargs)
        if not response.content:
            return {}
        try:
            payload = response.json()
        except ValueError as e:
            raise UpstreamError(
                f"{method} {path} returned invalid JSON", status_code=response.status_code
            ) from e
        if not isinstance(payload, dict):
            raise UpstreamError(
                f"{method} {path} returned {type(payload).__name__}, expected object",
                status_code=response.status_code,
            )
        return payload

    # ------------------------------------------------------------------
    # Submissions
    # ------------------------------------------------------------------

    @with_retry
    def get_unread(self, form_id: int, limit: int = 10) -> list[dict[str, Any]]:
        """Unread submissions of a form (summary objects, not full data)."""
        limit = max(1, min(int(limit), MAX_UNREAD_LIMIT))
        payload = self._json("GET", f"/forms/{form_id}/data/unread/read/{limit}")
        data = payload.get("data") or []
        if not isinstance(data, list):
            raise UpstreamError(f"Unread listing for form {form_id} is not a list")

        logger.info("[Kizeo] Unread submissions", extra={"form_id": form_id, "count": len(data)})
        return data

    @with_retry
    def get_submission(self, form_id: int, data_id: int | str) -> Optional[dict[str, Any]]:
        """Full data of one submission, None if the body has no data object."""
        payload = self._json("GET", f"/forms/{form_id}/data/{data_id}")
        data = payload.get("data")
        return data if isinstance(data, dict) else None

    @with_retry
    def mark_read(self, form_id: int, data_ids: Iterable[int | str]) -> None:
        ids = [str(i) for i in data_ids]
        if not ids:
            return
        self._json("POST", f"/forms/{form_id}/markasreadbyaction/read", json={"data_ids": ids})
        logger.debug("[Kizeo] Marked read", extra={"form_id": form_id, "count": len(ids)})

    @with_retry
    def mark_unread(self, form_id: int, data_ids: Iterable[int | str]) -> None:
        ids = [str(i) for i in data_ids]
        if not ids:
            return
        self._json("POST", f"/forms/{form_id}/markasunreadbyaction/read", json={"data_ids": ids})
        logger.info("[Kizeo] Marked unread", extra={"form_id": form_id, "count": len(ids)})

    # ------------------------------------------------------------------
    # Downloads (single attempt)
    # ------------------------------------------------------------------

    def download_media(self, form_id: int, data_id: int | str, media_name: str) -> bytes:
        response = self._request(
            "GET", f"/forms/{form_id}/data/{data_id}/medias/{media_name}", self.timeout_media
        )
        return response.content

    def download_report(self, form_id: int, data_id: int | str) -> bytes:
        response = self._request("GET", f"/forms/{form_id}/data/{data_id}/pdf", self.timeout_report)
        return response.content

    # ------------------------------------------------------------------
    # External lists
    # ------------------------------------------------------------------

    @with_retry
    def get_list(self, list_id: int) -> list[str]:
        payload = self._json("GET", f"/lists/{list_id}")
        body = payload.get("list")
        items = body.get("items") if isinstance(body, dict) else None
        if items is None:
            raise UpstreamError(f"List {list_id} response has no list.items")
        if not isinstance(items, list):
            raise UpstreamError(f"List {list_id} items is not a list")
        return [str(item) for item in items]

    def put_list(self, list_id: int, items: list[str]) -> None:
        """Replace the whole list. Not retried."""
        self._json("PUT", f"/lists/{list_id}", json={"items": list(items)})
        logger.info("[Kizeo] List replaced", extra={"list_id": list_id, "count": len(items)})
