"""Tests for the server-side tracker."""

import asyncio
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from cachecount.tracker import (
    InitCommand,
    PageviewOptions,
    TrackerClient,
    TrackPageviewCommand,
    build_collect_params,
    dispatch,
    is_localhost_address,
    track_pageview,
)

CLIENT = TrackerClient(site_id="example", reporter_url="https://stats.example.net/collect")


def run_async(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


class RecordingTransport:
    """Builds a MockTransport that records request URLs."""

    def __init__(self, fail=False):
        self.urls = []
        self.fail = fail

    def __call__(self):
        def handler(request):
            if self.fail:
                raise httpx.ConnectTimeout("timed out", request=request)
            self.urls.append(str(request.url))
            return httpx.Response(200, content=b"GIF89a")
        return httpx.MockTransport(handler)

    def params(self, index=0):
        return {k: v[0] for k, v in parse_qs(urlparse(self.urls[index]).query).items()}


class TestBuildCollectParams:
    """Test build_collect_params()."""

    def test_absolute_url(self):
        params = build_collect_params(CLIENT, PageviewOptions(url="https://example.com/blog/post"))
        assert params == {"p": "/blog/post", "h": "https://example.com", "sid": "example", "ht": "1"}

    def test_relative_url_needs_hostname(self):
        with pytest.raises(ValueError, match="hostname"):
            build_collect_params(CLIENT, PageviewOptions(url="/blog"))

    def test_relative_url_with_hostname(self):
        params = build_collect_params(CLIENT, PageviewOptions(url="/blog", hostname="example.com"))
        assert params["h"] == "https://example.com"
        assert params["p"] == "/blog"

    def test_localhost_relative_url_uses_http(self):
        params = build_collect_params(CLIENT, PageviewOptions(url="/", hostname="localhost:8000"))
        assert params["h"] == "http://localhost"

    def test_invalid_url(self):
        with pytest.raises(ValueError):
            build_collect_params(CLIENT, PageviewOptions(url="not a url"))
        with pytest.raises(ValueError):
            build_collect_params(CLIENT, PageviewOptions(url=""))

    def test_same_host_referrer_dropped(self):
        params = build_collect_params(CLIENT, PageviewOptions(
            url="https://example.com/b", referrer="https://example.com/a",
        ))
        assert "r" not in params

    def test_referrer_query_stripped(self):
        params = build_collect_params(CLIENT, PageviewOptions(
            url="https://example.com/", referrer="https://news.site/item?id=1",
        ))
        assert params["r"] == "https://news.site/item"

    def test_utm_from_url_overridden_by_options(self):
        params = build_collect_params(CLIENT, PageviewOptions(
            url="https://example.com/?utm_source=url&utm_medium=cpc",
            utm_source="explicit",
        ))
        assert params["us"] == "explicit"
        assert params["um"] == "cpc"


class TestTrackPageview:
    """Test track_pageview()."""

    def test_sends_get_request(self):
        transport = RecordingTransport()
        sent = run_async(track_pageview(
            CLIENT, PageviewOptions(url="https://example.com/x"), transport=transport(),
        ))

        assert sent is True
        assert transport.urls[0].startswith("https://stats.example.net/collect?")
        assert transport.params() == {"p": "/x", "h": "https://example.com", "sid": "example", "ht": "1"}

    def test_localhost_skipped_by_default(self):
        transport = RecordingTransport()
        sent = run_async(track_pageview(
            CLIENT, PageviewOptions(url="http://127.0.0.1/x"), transport=transport(),
        ))

        assert sent is False
        assert transport.urls == []

    def test_localhost_reported_when_enabled(self):
        transport = RecordingTransport()
        client = TrackerClient(site_id="example", reporter_url=CLIENT.reporter_url, report_on_localhost=True)
        run_async(track_pageview(client, PageviewOptions(url="http://localhost/x"), transport=transport()))

        assert len(transport.urls) == 1

    def test_network_failure_does_not_raise(self):
        transport = RecordingTransport(fail=True)
        sent = run_async(track_pageview(
            CLIENT, PageviewOptions(url="https://example.com/"), transport=transport(),
        ))
        assert sent is False

    def test_localhost_detection(self):
        assert is_localhost_address("localhost")
        assert is_localhost_address("127.0.0.1")
        assert is_localhost_address("::1")
        assert not is_localhost_address("example.com")


class TestDispatch:
    """Test dispatch()."""

    def test_init_then_track(self):
        transport = RecordingTransport()

        async def run():
            state = await dispatch(None, InitCommand(site_id="s", reporter_url="https://r.example/collect"))
            return await dispatch(
                state,
                TrackPageviewCommand(PageviewOptions(url="https://example.com/")),
                transport=transport(),
            )

        state = run_async(run())
        assert state.site_id == "s"
        assert transport.params()["sid"] == "s"

    def test_track_before_init_is_ignored(self):
        transport = RecordingTransport()
        state = run_async(dispatch(
            None, TrackPageviewCommand(PageviewOptions(url="https://example.com/")), transport=transport(),
        ))

        assert state is None
        assert transport.urls == []
