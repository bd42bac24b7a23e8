"""Tests for the analytics store client and data point writers."""

import asyncio
import json

import httpx
import pytest

from cachecount.config import ConfigurationError
from cachecount.core.store import (
    AnalyticsEngineClient,
    HttpDataPointWriter,
    LoggingDataPointWriter,
    TransientStoreError,
    write_data_point,
)


def run_async(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _client(handler, account="test-account", token="test-token"):
    return AnalyticsEngineClient(
        cf_account_id=account,
        cf_bearer_token=token,
        transport=httpx.MockTransport(handler),
    )


class TestQuery:
    """Test AnalyticsEngineClient.query()."""

    def test_posts_sql_with_bearer_token(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["authorization"]
            seen["body"] = request.content.decode()
            return httpx.Response(200, json={"data": [{"count": "3"}]})

        rows = run_async(_client(handler).query("SELECT 1"))

        assert rows == [{"count": "3"}]
        assert seen["url"] == (
            "https://api.cloudflare.com/client/v4/accounts/test-account/analytics_engine/sql"
        )
        assert seen["auth"] == "Bearer test-token"
        assert seen["body"] == "SELECT 1"

    def test_missing_data_is_empty(self):
        rows = run_async(_client(lambda r: httpx.Response(200, json={"meta": []})).query("SELECT 1"))
        assert rows == []

    def test_missing_credentials(self):
        client = _client(lambda r: httpx.Response(200, json={"data": []}), token=None)
        with pytest.raises(ConfigurationError):
            run_async(client.query("SELECT 1"))

    @pytest.mark.parametrize("status", [401, 403])
    def test_rejected_credentials(self, status):
        client = _client(lambda r: httpx.Response(status, text="denied"))
        with pytest.raises(ConfigurationError):
            run_async(client.query("SELECT 1"))

    def test_server_error_is_transient(self):
        client = _client(lambda r: httpx.Response(500, text="boom"))
        with pytest.raises(TransientStoreError):
            run_async(client.query("SELECT 1"))

    def test_network_error_is_transient(self):
        def handler(request):
            raise httpx.ConnectError("unreachable", request=request)

        with pytest.raises(TransientStoreError):
            run_async(_client(handler).query("SELECT 1"))

    def test_invalid_json_is_transient(self):
        client = _client(lambda r: httpx.Response(200, text="<html>"))
        with pytest.raises(TransientStoreError):
            run_async(client.query("SELECT 1"))


class TestWriters:
    """Test data point writers."""

    PAYLOAD = {"indexes": ["site"], "blobs": ["a"], "doubles": [1.0]}

    def test_http_writer_posts_json(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(204)

        writer = HttpDataPointWriter(
            "https://ingest.example.com/write", "secret", transport=httpx.MockTransport(handler)
        )
        assert run_async(write_data_point(writer, self.PAYLOAD)) is True
        assert seen["body"] == self.PAYLOAD
        assert seen["auth"] == "Bearer secret"

    def test_http_writer_failure_is_swallowed(self):
        writer = HttpDataPointWriter(
            "https://ingest.example.com/write",
            transport=httpx.MockTransport(lambda r: httpx.Response(503)),
        )
        assert run_async(write_data_point(writer, self.PAYLOAD)) is False

    def test_http_writer_raises_transient(self):
        writer = HttpDataPointWriter(
            "https://ingest.example.com/write",
            transport=httpx.MockTransport(lambda r: httpx.Response(500)),
        )
        with pytest.raises(TransientStoreError):
            run_async(writer.write(self.PAYLOAD))

    def test_logging_writer_accepts(self, caplog):
        assert run_async(write_data_point(LoggingDataPointWriter(), self.PAYLOAD)) is True
        assert "Can't save data point" in caplog.text
