"""
Tests for kizeo_sync.client.KizeoClient using httpx.MockTransport.
"""

import json

import httpx
import pytest

from kizeo_sync.client import KizeoClient
from kizeo_sync.errors import UpstreamError, UpstreamTimeout

pytestmark = pytest.mark.unit

BASE_URL = "https://kizeo.test/rest/v3"


class Recorder:
    """Transport handler replaying queued responses and recording requests."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


def _client(handler, **kwargs) -> KizeoClient:
    return KizeoClient(
        BASE_URL,
        "secret-token",
        retry_min_wait=0,
        retry_max_wait=0,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


class TestSubmissions:
    def test_get_unread(self):
        handler = Recorder(httpx.Response(200, json={"data": [{"id": 1}, {"id": 2}]}))
        with _client(handler) as client:
            items = client.get_unread(500, limit=10)

        assert items == [{"id": 1}, {"id": 2}]
        request = handler.requests[0]
        assert request.url.path == "/rest/v3/forms/500/data/unread/read/10"
        assert request.headers["Authorization"] == "secret-token"

    def test_unread_limit_capped(self):
        handler = Recorder(httpx.Response(200, json={"data": []}))
        with _client(handler) as client:
            client.get_unread(500, limit=500)

        assert handler.requests[0].url.path.endswith("/unread/read/50")

    def test_get_submission(self):
        handler = Recorder(httpx.Response(200, json={"data": {"id": 7, "fields": {}}}))
        with _client(handler) as client:
            assert client.get_submission(500, 7) == {"id": 7, "fields": {}}

    def test_get_submission_without_data(self):
        handler = Recorder(httpx.Response(200, json={"status": "ok"}))
        with _client(handler) as client:
            assert client.get_submission(500, 7) is None

    def test_mark_read_body(self):
        handler = Recorder(httpx.Response(200, json={}))
        with _client(handler) as client:
            client.mark_read(500, [7, 8])

        request = handler.requests[0]
        assert request.method == "POST"
        assert request.url.path.endswith("/forms/500/markasreadbyaction/read")
        assert json.loads(request.content) == {"data_ids": ["7", "8"]}

    def test_mark_read_nothing_to_do(self):
        handler = Recorder(httpx.Response(200, json={}))
        with _client(handler) as client:
            client.mark_read(500, [])
        assert handler.requests == []


class TestRetries:
    def test_transient_status_retried(self):
        handler = Recorder(
            httpx.Response(503, text="busy"),
            httpx.Response(200, json={"data": []}),
        )
        with _client(handler) as client:
            assert client.get_unread(500) == []
        assert len(handler.requests) == 2

    def test_retries_exhausted(self):
        handler = Recorder(httpx.Response(502, text="bad gateway"))
        with _client(handler, retry_attempts=3) as client:
            with pytest.raises(UpstreamError) as exc:
                client.get_unread(500)

        assert exc.value.status_code == 502
        assert len(handler.requests) == 3

    def test_client_error_not_retried(self):
        handler = Recorder(httpx.Response(401, text="bad token"))
        with _client(handler) as client:
            with pytest.raises(UpstreamError) as exc:
                client.get_submission(500, 1)

        assert exc.value.status_code == 401
        assert len(handler.requests) == 1

    def test_timeout_mapped_and_retried(self):
        handler = Recorder(httpx.ReadTimeout("slow"))
        with _client(handler, retry_attempts=2) as client:
            with pytest.raises(UpstreamTimeout):
                client.get_unread(500)
        assert len(handler.requests) == 2

    def test_connection_error_mapped(self):
        handler = Recorder(httpx.ConnectError("refused"))
        with _client(handler, retry_attempts=1) as client:
            with pytest.raises(UpstreamError):
                client.mark_unread(500, [1])


class TestDownloadsAndLists:
    def test_download_not_retried(self):
        handler = Recorder(httpx.Response(500, text="boom"))
        with _client(handler) as client:
            with pytest.raises(UpstreamError):
                client.download_media(500, 7, "p1.jpg")
        assert len(handler.requests) == 1

    def test_download_report_bytes(self):
        handler = Recorder(httpx.Response(200, content=b"%PDF-1.4"))
        with _client(handler) as client:
            assert client.download_report(500, 7) == b"%PDF-1.4"
        assert handler.requests[0].url.path.endswith("/forms/500/data/7/pdf")

    def test_get_list(self):
        handler = Recorder(httpx.Response(200, json={"list": {"items": ["a", "b"]}}))
        with _client(handler) as client:
            assert client.get_list(900) == ["a", "b"]

    def test_get_list_malformed(self):
        handler = Recorder(httpx.Response(200, json={"list": {}}))
        with _client(handler) as client:
            with pytest.raises(UpstreamError):
                client.get_list(900)
        assert len(handler.requests) == 3

    def test_put_list_not_retried(self):
        handler = Recorder(httpx.Response(503, text="busy"))
        with _client(handler) as client:
            with pytest.raises(UpstreamError):
                client.put_list(900, ["a"])

        assert len(handler.requests) == 1
        assert handler.requests[0].method == "PUT"

    def test_put_list_body(self):
        handler = Recorder(httpx.Response(200, json={}))
        with _client(handler) as client:
            client.put_list(900, ["a", "b"])
        assert json.loads(handler.requests[0].content) == {"items": ["a", "b"]}
