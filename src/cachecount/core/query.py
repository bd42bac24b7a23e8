"""
Query engine over the analytics dataset.

Translates typed requests (site, interval, timezone, filters, grouping) into
SQL for the store and folds the raw rows into typed aggregates.

NOTE: The store's SQL API has no parameter binding, so every literal is
escaped with ``quote()``. The API is read-only (SELECT only).
"""
import asyncio
import logging
from datetime import datetime, timezone, tzinfo
from typing import Any, Callable

from . import schema
from .intervals import (
    DateTimeRange,
    IntervalType,
    InvalidQueryError,
    bucket_starts,
    get_date_time_range,
    get_interval_type,
    parse_timezone,
    zone_name,
)
from .models import (
    CountRow,
    CountsResult,
    EarliestEvents,
    GroupedCounts,
    QueryFilters,
    SiteHits,
    StatsResult,
    TimeSeriesPoint,
)
from .store import AnalyticsEngineClient
from .visits import as_utc

logger = logging.getLogger(__name__)

PAGE_SIZE = 10
NONE_LABEL = "(none)"

SITE_ID = schema.physical_column("site_id")
NEW_VISITOR = schema.physical_column("new_visitor")
NEW_SESSION = schema.physical_column("new_session")
BOUNCE = schema.physical_column("bounce")

# Columns that can be grouped on
GROUPABLE_COLUMNS = tuple(
    name for name in schema.COLUMN_MAPPINGS
    if schema.is_blob(name) and name not in ("site_id", "user_agent")
)


def quote(value: str) -> str:
    """Quote a string literal for the store's SQL dialect."""
    escaped = str(value).replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def format_sql_datetime(moment: datetime) -> str:
    """UTC ``YYYY-MM-DD HH:MM:SS`` as expected by toDateTime()."""
    return as_utc(moment).strftime("%Y-%m-%d %H:%M:%S")


def parse_store_datetime(value: Any) -> datetime | None:
    """Parse a timestamp returned by the store (UTC)."""
    if value in (None, ""):
        return None
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _int(value: Any) -> int:
    """Store numbers may arrive as strings or floats."""
    if value in (None, ""):
        return 0
    return int(float(value))


class QueryEngine:
    """Aggregation queries for the dashboard and the query API."""

    def __init__(
        self,
        store: AnalyticsEngineClient,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def _query(self, sql: str) -> list[dict[str, Any]]:
        logger.debug(f"Analytics query: {sql}")
        return await self.store.query(sql)

    @property
    def table(self) -> str:
        return self.store.dataset

    # =========================================================================
    # SQL BUILDING
    # =========================================================================

    def _resolve(self, interval: str, tz: str | tzinfo | None) -> tuple[DateTimeRange, tzinfo]:
        zone = tz if isinstance(tz, tzinfo) else parse_timezone(tz)
        return get_date_time_range(interval, zone, now=self._clock()), zone

    def _build_filter_sql(self, filters: QueryFilters | None) -> str:
        """Build AND-joined equality clauses from filters."""
        if not filters:
            return ""

        clauses = [
            f"AND {schema.physical_column(name)} = {quote(value)}"
            for name, value in filters.active_filters().items()
        ]
        return " ".join(clauses)

    def _build_where_sql(
        self,
        site_id: str,
        date_range: DateTimeRange,
        filters: QueryFilters | None,
    ) -> str:
        if not site_id:
            raise InvalidQueryError("site is required")

        return (
            f"timestamp >= toDateTime({quote(format_sql_datetime(date_range.start))})"
            f" AND timestamp < toDateTime({quote(format_sql_datetime(date_range.end))})"
            f" AND {SITE_ID} = {quote(site_id)} {self._build_filter_sql(filters)}"
        ).rstrip()

    # =========================================================================
    # COUNTS
    # =========================================================================

    async def get_counts(
        self,
        site_id: str,
        interval: str,
        tz: str | tzinfo | None = "UTC",
        filters: QueryFilters | None = None,
    ) -> CountsResult:
        """Views, visitors, visits and bounces over an interval."""
        date_range, _ = self._resolve(interval, tz)
        return await self.get_counts_in_range(site_id, date_range, filters)

    async def get_counts_in_range(
        self,
        site_id: str,
        date_range: DateTimeRange,
        filters: QueryFilters | None = None,
    ) -> CountsResult:
        rows = await self._query(
            f"""
            SELECT SUM(_sample_interval) as count,
                {NEW_VISITOR} as isVisitor,
                {NEW_SESSION} as isSession,
                {BOUNCE} as isBounce
            FROM {self.table}
            WHERE {self._build_where_sql(site_id, date_range, filters)}
            GROUP BY isVisitor, isSession, isBounce
            ORDER BY isVisitor, isSession, isBounce ASC
            """
        )

        counts = CountsResult()
        bounces = 0
        # Any subset of the flag combinations may be missing from the result
        for row in rows:
            count = _int(row.get("count"))
            is_visitor = _int(row.get("isVisitor")) == 1
            is_session = _int(row.get("isSession")) == 1

            counts.views += count
            if is_visitor:
                counts.visitors += count
            if is_visitor or is_session:
                counts.visits += count
            bounces += count * _int(row.get("isBounce"))

        # A second hit inside the range can cancel a first hit that fell
        # before it, so partial sums may dip below zero.
        counts.bounces = max(0, bounces)
        return counts

    async def get_earliest_events(self, site_id: str) -> EarliestEvents:
        """Earliest recorded event and earliest bounce candidate for a site."""
        rows = await self._query(
            f"""
            SELECT MIN(timestamp) as earliestEvent,
                {BOUNCE} as isBounce
            FROM {self.table}
            WHERE {SITE_ID} = {quote(site_id)}
            GROUP BY isBounce
            """
        )

        earliest_event = earliest_bounce = None
        for row in rows:
            ts = parse_store_datetime(row.get("earliestEvent"))
            if ts is None:
                continue
            if earliest_event is None or ts < earliest_event:
                earliest_event = ts
            if _int(row.get("isBounce")) != 0 and (earliest_bounce is None or ts < earliest_bounce):
                earliest_bounce = ts

        return EarliestEvents(earliest_event=earliest_event, earliest_bounce=earliest_bounce)

    async def get_stats(
        self,
        site_id: str,
        interval: str,
        tz: str | tzinfo | None = "UTC",
        filters: QueryFilters | None = None,
    ) -> StatsResult:
        """Counts plus bounce rate, flagged when bounce history is incomplete.

        Bounce data may not have been recorded for the whole dataset. The
        rate is only trustworthy if the earliest bounce candidate is the
        earliest event overall, or predates the start of the interval.
        """
        date_range, _ = self._resolve(interval, tz)

        counts, earliest = await asyncio.gather(
            self.get_counts_in_range(site_id, date_range, filters),
            self.get_earliest_events(site_id),
        )

        has_sufficient_bounce_data = (
            earliest.earliest_bounce is not None
            and earliest.earliest_event is not None
            and (
                earliest.earliest_event == earliest.earliest_bounce
                or earliest.earliest_bounce < date_range.start
            )
        )
        bounce_rate = counts.bounces / counts.visits if counts.visits > 0 else None

        return StatsResult(
            views=counts.views,
            visitors=counts.visitors,
            visits=counts.visits,
            bounces=counts.bounces,
            bounce_rate=bounce_rate,
            has_sufficient_bounce_data=has_sufficient_bounce_data,
        )

    # =========================================================================
    # GROUPED BREAKDOWNS
    # =========================================================================

    async def get_count_by_column(
        self,
        site_id: str,
        column: str,
        interval: str,
        tz: str | tzinfo | None = "UTC",
        filters: QueryFilters | None = None,
        page: int = 1,
        limit: int = PAGE_SIZE,
    ) -> GroupedCounts:
        """Visitors and views grouped by one column, most visitors first.

        Rows with equal counts come back in the store's row order, which is
        stable but carries no meaning.
        """
        if column not in GROUPABLE_COLUMNS:
            raise InvalidQueryError(f"Cannot group by {column!r}")
        if page < 1:
            raise InvalidQueryError("page must be 1 or greater")

        date_range, _ = self._resolve(interval, tz)
        _column = schema.physical_column(column)

        rows = await self._query(
            f"""
            SELECT {_column} as value,
                SUM(_sample_interval * {NEW_VISITOR}) as visitors,
                SUM(_sample_interval) as views
            FROM {self.table}
            WHERE {self._build_where_sql(site_id, date_range, filters)}
            GROUP BY value
            ORDER BY visitors DESC, views DESC
            LIMIT {limit * page}
            """
        )

        page_rows = [
            CountRow(
                value=row.get("value") or NONE_LABEL,
                visitors=_int(row.get("visitors")),
                views=_int(row.get("views")),
            )
            for row in rows[(page - 1) * limit:page * limit]
        ]

        return GroupedCounts(
            column=column,
            page=page,
            rows=page_rows,
            has_more=len(page_rows) == limit,
        )

    async def get_count_by_path(self, site_id, interval, tz="UTC", filters=None, page=1):
        return await self.get_count_by_column(site_id, "path", interval, tz, filters, page)

    async def get_count_by_referrer(self, site_id, interval, tz="UTC", filters=None, page=1):
        return await self.get_count_by_column(site_id, "referrer", interval, tz, filters, page)

    async def get_count_by_country(self, site_id, interval, tz="UTC", filters=None, page=1):
        return await self.get_count_by_column(site_id, "country", interval, tz, filters, page)

    async def get_count_by_region(self, site_id, interval, tz="UTC", filters=None, page=1):
        return await self.get_count_by_column(site_id, "region", interval, tz, filters, page)

    async def get_count_by_city(self, site_id, interval, tz="UTC", filters=None, page=1):
        return await self.get_count_by_column(site_id, "city", interval, tz, filters, page)

    async def get_count_by_browser(self, site_id, interval, tz="UTC", filters=None, page=1):
        return await self.get_count_by_column(site_id, "browser_name", interval, tz, filters, page)

    async def get_count_by_browser_version(self, site_id, interval, tz="UTC", filters=None, page=1):
        return await self.get_count_by_column(site_id, "browser_version", interval, tz, filters, page)

    async def get_count_by_device(self, site_id, interval, tz="UTC", filters=None, page=1):
        return await self.get_count_by_column(site_id, "device_model", interval, tz, filters, page)

    async def get_count_by_device_type(self, site_id, interval, tz="UTC", filters=None, page=1):
        return await self.get_count_by_column(site_id, "device_type", interval, tz, filters, page)

    async def get_count_by_utm_source(self, site_id, interval, tz="UTC", filters=None, page=1):
        return await self.get_count_by_column(site_id, "utm_source", interval, tz, filters, page)

    async def get_count_by_utm_medium(self, site_id, interval, tz="UTC", filters=None, page=1):
        return await self.get_count_by_column(site_id, "utm_medium", interval, tz, filters, page)

    async def get_count_by_utm_campaign(self, site_id, interval, tz="UTC", filters=None, page=1):
        return await self.get_count_by_column(site_id, "utm_campaign", interval, tz, filters, page)

    async def get_count_by_utm_term(self, site_id, interval, tz="UTC", filters=None, page=1):
        return await self.get_count_by_column(site_id, "utm_term", interval, tz, filters, page)

    async def get_count_by_utm_content(self, site_id, interval, tz="UTC", filters=None, page=1):
        return await self.get_count_by_column(site_id, "utm_content", interval, tz, filters, page)

    # =========================================================================
    # TIME SERIES
    # =========================================================================

    async def get_views_grouped_by_interval(
        self,
        site_id: str,
        interval_type: IntervalType | str,
        start: datetime,
        end: datetime,
        tz: str | tzinfo | None = "UTC",
        filters: QueryFilters | None = None,
    ) -> list[TimeSeriesPoint]:
        """Views/visitors/bounces per bucket, with empty buckets filled in.

        Buckets start on local hours or local midnights in ``tz`` and are
        returned in ascending order with UTC timestamps.
        """
        try:
            interval_type = IntervalType(interval_type)
        except ValueError:
            raise InvalidQueryError(f"Invalid interval type: {interval_type!r}") from None

        zone = tz if isinstance(tz, tzinfo) else parse_timezone(tz)
        tz_name = zone_name(zone)
        date_range = DateTimeRange(start=as_utc(start), end=as_utc(end))

        # The store only returns buckets that have rows
        buckets: dict[datetime, dict[str, int]] = {
            bucket: {"views": 0, "visitors": 0, "bounces": 0}
            for bucket in bucket_starts(interval_type, date_range.start, date_range.end, zone)
        }

        rows = await self._query(
            f"""
            SELECT SUM(_sample_interval) as count,
                toStartOfInterval(timestamp, INTERVAL '1' {interval_type.value}, {quote(tz_name)}) as _bucket,
                toDateTime(_bucket, 'Etc/UTC') as bucket,
                {NEW_VISITOR} as isVisitor,
                {BOUNCE} as isBounce
            FROM {self.table}
            WHERE {self._build_where_sql(site_id, date_range, filters)}
            GROUP BY _bucket, isVisitor, isBounce
            ORDER BY _bucket ASC
            """
        )

        for row in rows:
            bucket = parse_store_datetime(row.get("bucket"))
            if bucket is None:
                continue
            if bucket not in buckets:
                logger.warning(f"Store returned unexpected bucket {bucket.isoformat()} for {tz_name}")
                buckets[bucket] = {"views": 0, "visitors": 0, "bounces": 0}

            count = _int(row.get("count"))
            buckets[bucket]["views"] += count
            if _int(row.get("isVisitor")) == 1:
                buckets[bucket]["visitors"] += count
            buckets[bucket]["bounces"] += count * _int(row.get("isBounce"))

        return [
            TimeSeriesPoint(
                bucket=bucket,
                views=values["views"],
                visitors=values["visitors"],
                bounces=max(0, values["bounces"]),
            )
            for bucket, values in sorted(buckets.items())
        ]

    async def get_time_series(
        self,
        site_id: str,
        interval: str,
        tz: str | tzinfo | None = "UTC",
        filters: QueryFilters | None = None,
    ) -> tuple[IntervalType, list[TimeSeriesPoint]]:
        """Time series for a named interval, at its natural granularity."""
        date_range, zone = self._resolve(interval, tz)
        interval_type = get_interval_type(interval)
        points = await self.get_views_grouped_by_interval(
            site_id, interval_type, date_range.start, date_range.end, zone, filters
        )
        return interval_type, points

    # =========================================================================
    # SITES
    # =========================================================================

    async def get_sites_ordered_by_hits(
        self,
        interval: str,
        tz: str | tzinfo | None = "UTC",
        limit: int = PAGE_SIZE,
    ) -> list[SiteHits]:
        """Sites with the most hits over an interval."""
        date_range, _ = self._resolve(interval, tz)

        rows = await self._query(
            f"""
            SELECT SUM(_sample_interval) as count,
                {SITE_ID} as siteId
            FROM {self.table}
            WHERE timestamp >= toDateTime({quote(format_sql_datetime(date_range.start))})
                AND timestamp < toDateTime({quote(format_sql_datetime(date_range.end))})
            GROUP BY siteId
            ORDER BY count DESC
            LIMIT {int(limit)}
            """
        )

        return [
            SiteHits(site_id=row.get("siteId") or "", hits=_int(row.get("count")))
            for row in rows
        ]
