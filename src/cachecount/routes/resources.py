"""
Query API routes consumed by the dashboard.

Every endpoint accepts ``site``, ``interval``, ``timezone``, ``page`` and the
filter keys of ``QueryFilters``; unknown parameters are ignored.
"""

import logging

from fastapi import APIRouter, HTTPException, Request
from pydantic import ValidationError

from ..config import ConfigurationError
from ..core.intervals import InvalidQueryError, get_interval_type, parse_timezone
from ..core.models import GroupedCounts, QueryFilters, QueryRequest, StatsResult
from ..core.query import QueryEngine
from ..core.store import TransientStoreError

logger = logging.getLogger(__name__)

# URL segment -> logical column
DIMENSIONS = {
    "paths": "path",
    "referrer": "referrer",
    "country": "country",
    "region": "region",
    "city": "city",
    "browser": "browser_name",
    "browserversion": "browser_version",
    "device": "device_model",
    "devicetype": "device_type",
    "utm-source": "utm_source",
    "utm-medium": "utm_medium",
    "utm-campaign": "utm_campaign",
    "utm-term": "utm_term",
    "utm-content": "utm_content",
}


def _parse_query_request(request: Request) -> QueryRequest:
    """Validate query parameters into a QueryRequest.

    Raises:
        HTTPException: 400 if site is missing or interval/timezone/page are invalid
    """
    params = request.query_params
    site = params.get("site")
    if not site:
        raise HTTPException(status_code=400, detail="Missing required parameter: site")

    try:
        query = QueryRequest(
            site_id=site,
            interval=params.get("interval") or "7d",
            timezone=params.get("timezone") or "UTC",
            page=params.get("page") or 1,
            filters=QueryFilters.from_params(params),
        )
        # Fail fast instead of guessing
        get_interval_type(query.interval)
        parse_timezone(query.timezone)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"Invalid query parameters: {e.errors()[0]['msg']}") from None
    except InvalidQueryError as e:
        raise HTTPException(status_code=400, detail=str(e)) from None

    return query


async def _run_query(coro):
    """Await a query, mapping store failures to distinct HTTP errors.

    A failed query is never turned into an empty result: empty data would
    look exactly like a site with no traffic.
    """
    try:
        return await coro
    except InvalidQueryError as e:
        raise HTTPException(status_code=400, detail=str(e)) from None
    except ConfigurationError as e:
        logger.error(f"Analytics store misconfigured: {e}")
        raise HTTPException(
            status_code=500,
            detail={"error": "configuration_error", "message": str(e)},
        ) from None
    except TransientStoreError as e:
        logger.error(f"Analytics store unavailable: {e}")
        raise HTTPException(
            status_code=502,
            detail={"error": "store_unavailable", "message": str(e)},
        ) from None


def create_resources_router(engine: QueryEngine) -> APIRouter:
    """Create the query API router.

    Args:
        engine: Query engine bound to the analytics store
    """
    router = APIRouter(prefix="/resources", tags=["analytics"])

    @router.get("/stats", response_model=StatsResult)
    async def stats(request: Request):
        """Views, visitors and bounce rate for the interval."""
        query = _parse_query_request(request)
        return await _run_query(
            engine.get_stats(query.site_id, query.interval, query.timezone, query.filters)
        )

    @router.get("/timeseries")
    async def timeseries(request: Request):
        """Gapless per-hour or per-day counts for the interval."""
        query = _parse_query_request(request)
        interval_type, points = await _run_query(
            engine.get_time_series(query.site_id, query.interval, query.timezone, query.filters)
        )
        return {
            "interval_type": interval_type.value,
            "points": [point.model_dump(mode="json") for point in points],
        }

    @router.get("/sites")
    async def sites(interval: str = "7d", timezone: str = "UTC"):
        """Sites ordered by hits, for the site selector."""
        try:
            get_interval_type(interval)
            parse_timezone(timezone)
        except InvalidQueryError as e:
            raise HTTPException(status_code=400, detail=str(e)) from None

        results = await _run_query(engine.get_sites_ordered_by_hits(interval, timezone))
        return {"sites": [site.model_dump() for site in results]}

    @router.get("/{dimension}", response_model=GroupedCounts)
    async def counts_by_dimension(dimension: str, request: Request):
        """One page of visitor/view counts grouped by a dimension."""
        column = DIMENSIONS.get(dimension)
        if column is None:
            raise HTTPException(status_code=404, detail=f"Unknown dimension: {dimension}")

        query = _parse_query_request(request)
        return await _run_query(
            engine.get_count_by_column(
                query.site_id,
                column,
                query.interval,
                query.timezone,
                query.filters,
                page=query.page,
            )
        )

    return router
