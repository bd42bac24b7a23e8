"""Tests for the query API routes."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from cachecount.config import ConfigurationError
from cachecount.core.intervals import IntervalType
from cachecount.core.models import (
    CountRow,
    GroupedCounts,
    SiteHits,
    StatsResult,
    TimeSeriesPoint,
)
from cachecount.core.query import QueryEngine
from cachecount.core.store import TransientStoreError
from cachecount.routes import create_resources_router
from cachecount.routes.resources import DIMENSIONS

STATS = StatsResult(
    views=10, visitors=4, visits=5, bounces=2,
    bounce_rate=0.4, has_sufficient_bounce_data=True,
)


@pytest.fixture
def engine():
    engine = MagicMock(spec=QueryEngine)
    engine.get_stats = AsyncMock(return_value=STATS)
    engine.get_count_by_column = AsyncMock(return_value=GroupedCounts(
        column="path", page=1, rows=[CountRow(value="/", visitors=3, views=7)],
    ))
    engine.get_time_series = AsyncMock(return_value=(
        IntervalType.DAY,
        [TimeSeriesPoint(bucket=datetime(2024, 3, 8, tzinfo=timezone.utc), views=1)],
    ))
    engine.get_sites_ordered_by_hits = AsyncMock(return_value=[SiteHits(site_id="a", hits=3)])
    return engine


@pytest.fixture
def client(engine):
    app = FastAPI()
    app.include_router(create_resources_router(engine))
    return TestClient(app)


class TestStats:
    """Test GET /resources/stats."""

    def test_stats(self, client, engine):
        response = client.get("/resources/stats", params={"site": "example"})

        assert response.status_code == 200
        assert response.json()["bounce_rate"] == 0.4
        args = engine.get_stats.call_args.args
        assert args[:3] == ("example", "7d", "UTC")

    def test_filters_are_forwarded(self, client, engine):
        client.get(
            "/resources/stats",
            params={"site": "example", "interval": "30d", "path": "/a", "nonsense": "x"},
        )
        filters = engine.get_stats.call_args.args[3]
        assert filters.active_filters() == {"path": "/a"}

    def test_camel_case_filters_are_forwarded(self, client, engine):
        client.get(
            "/resources/stats",
            params={"site": "example", "browserName": "Chrome", "utmSource": "news"},
        )
        filters = engine.get_stats.call_args.args[3]
        assert filters.active_filters() == {"browser_name": "Chrome", "utm_source": "news"}

    def test_missing_site(self, client):
        assert client.get("/resources/stats").status_code == 400

    def test_invalid_interval(self, client, engine):
        response = client.get("/resources/stats", params={"site": "example", "interval": "fortnight"})
        assert response.status_code == 400
        engine.get_stats.assert_not_called()

    def test_invalid_timezone(self, client):
        response = client.get("/resources/stats", params={"site": "example", "timezone": "Nowhere/Land"})
        assert response.status_code == 400


class TestErrorMapping:
    """Store failures are never reported as empty data."""

    def test_configuration_error(self, client, engine):
        engine.get_stats.side_effect = ConfigurationError("credentials missing")
        response = client.get("/resources/stats", params={"site": "example"})

        assert response.status_code == 500
        assert response.json()["detail"]["error"] == "configuration_error"

    def test_transient_error(self, client, engine):
        engine.get_stats.side_effect = TransientStoreError("timeout")
        response = client.get("/resources/stats", params={"site": "example"})

        assert response.status_code == 502
        assert response.json()["detail"] == {"error": "store_unavailable", "message": "timeout"}


class TestDimensions:
    """Test GET /resources/{dimension}."""

    def test_paths(self, client, engine):
        response = client.get("/resources/paths", params={"site": "example", "page": "2"})

        assert response.status_code == 200
        assert response.json()["rows"][0] == {"value": "/", "visitors": 3, "views": 7}
        call = engine.get_count_by_column.call_args
        assert call.args[:2] == ("example", "path")
        assert call.kwargs["page"] == 2

    @pytest.mark.parametrize("dimension,column", sorted(DIMENSIONS.items()))
    def test_dimension_mapping(self, client, engine, dimension, column):
        client.get(f"/resources/{dimension}", params={"site": "example"})
        assert engine.get_count_by_column.call_args.args[1] == column

    def test_unknown_dimension(self, client):
        assert client.get("/resources/favourites", params={"site": "example"}).status_code == 404

    def test_invalid_page(self, client):
        response = client.get("/resources/paths", params={"site": "example", "page": "0"})
        assert response.status_code == 400


class TestTimeSeriesAndSites:
    """Test GET /resources/timeseries and /resources/sites."""

    def test_timeseries(self, client):
        response = client.get("/resources/timeseries", params={"site": "example"})

        body = response.json()
        assert body["interval_type"] == "DAY"
        assert body["points"][0]["views"] == 1

    def test_sites(self, client):
        response = client.get("/resources/sites", params={"interval": "30d"})
        assert response.json() == {"sites": [{"site_id": "a", "hits": 3}]}

    def test_sites_invalid_interval(self, client):
        assert client.get("/resources/sites", params={"interval": "x"}).status_code == 400
