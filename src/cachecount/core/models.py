"""
Pydantic models for collected events and query results.
"""
from datetime import datetime
from typing import Any, Mapping

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from . import schema

# =============================================================================
# Write Side
# =============================================================================

class CollectRequest(BaseModel):
    """Parameters of an incoming ``/collect`` request."""
    site_id: str
    host: str = ""
    path: str = ""
    referrer: str = ""

    # UTM
    utm_source: str = ""
    utm_medium: str = ""
    utm_campaign: str = ""
    utm_term: str = ""
    utm_content: str = ""

    # Client-reported classification (from /cache)
    hits: int | None = None
    new_visitor: int | None = None
    new_session: int | None = None


class DataPoint(BaseModel):
    """A single event record, in logical field names."""
    site_id: str
    host: str = ""
    user_agent: str = ""
    path: str = ""
    country: str = ""
    region: str = ""
    city: str = ""
    referrer: str = ""

    # Technology
    browser_name: str = ""
    browser_version: str = ""
    device_model: str = ""
    device_type: str = ""

    # UTM
    utm_source: str = ""
    utm_medium: str = ""
    utm_campaign: str = ""
    utm_term: str = ""
    utm_content: str = ""

    # Flags
    new_visitor: int = 0
    new_session: int = 0
    bounce: int = 0

    def to_payload(self) -> dict[str, Any]:
        """Lay the record out in the store's positional write format."""
        values = self.model_dump()
        return {
            "indexes": [schema.to_index(self.site_id)],
            "blobs": schema.to_blobs(values),
            "doubles": schema.to_doubles(values),
        }


# =============================================================================
# Query Side
# =============================================================================

class QueryFilters(BaseModel):
    """Exact-match filters applied to queries.

    Multiple filters are AND'd together. Unknown keys are ignored so that
    older or newer clients can send parameters this version doesn't know.
    Multi-word keys are also accepted in the dashboard's camelCase spelling
    (``browserName``, ``deviceModel``, ...).
    """
    model_config = ConfigDict(extra="ignore")

    host: str | None = None
    path: str | None = None
    referrer: str | None = None
    country: str | None = None
    region: str | None = None
    city: str | None = None
    browser_name: str | None = Field(default=None, validation_alias=AliasChoices("browser_name", "browserName"))
    browser_version: str | None = Field(default=None, validation_alias=AliasChoices("browser_version", "browserVersion"))
    device_model: str | None = Field(default=None, validation_alias=AliasChoices("device_model", "deviceModel"))
    device_type: str | None = Field(default=None, validation_alias=AliasChoices("device_type", "deviceType"))
    utm_source: str | None = Field(default=None, validation_alias=AliasChoices("utm_source", "utmSource"))
    utm_medium: str | None = Field(default=None, validation_alias=AliasChoices("utm_medium", "utmMedium"))
    utm_campaign: str | None = Field(default=None, validation_alias=AliasChoices("utm_campaign", "utmCampaign"))
    utm_term: str | None = Field(default=None, validation_alias=AliasChoices("utm_term", "utmTerm"))
    utm_content: str | None = Field(default=None, validation_alias=AliasChoices("utm_content", "utmContent"))

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> "QueryFilters":
        """Pick recognised filter keys out of arbitrary request parameters."""
        return cls.model_validate({
            key: value for key, value in params.items() if isinstance(value, str)
        })

    def active_filters(self) -> dict[str, str]:
        """Return dict of active (non-empty) filters."""
        return {k: v for k, v in self.model_dump().items() if v}


class QueryRequest(BaseModel):
    """A validated query API request."""
    site_id: str
    interval: str = "7d"
    timezone: str = "UTC"
    filters: QueryFilters = Field(default_factory=QueryFilters)
    page: int = Field(default=1, ge=1)


class CountsResult(BaseModel):
    """Totals for a site over an interval."""
    views: int = 0
    visitors: int = 0
    visits: int = 0  # hits that started a session or a new day
    bounces: int = 0


class EarliestEvents(BaseModel):
    """Earliest recorded event and earliest bounce candidate for a site."""
    earliest_event: datetime | None = None
    earliest_bounce: datetime | None = None


class StatsResult(BaseModel):
    """Headline numbers, with bounce rate guarded by data sufficiency."""
    views: int
    visitors: int
    visits: int
    bounces: int
    bounce_rate: float | None = None  # 0-1, None when there were no visits
    has_sufficient_bounce_data: bool = False


class CountRow(BaseModel):
    """One row of a grouped breakdown."""
    value: str
    visitors: int
    views: int


class GroupedCounts(BaseModel):
    """A page of a grouped breakdown."""
    column: str
    page: int
    rows: list[CountRow]
    has_more: bool = False


class TimeSeriesPoint(BaseModel):
    """Counts for one time bucket (bucket start in UTC)."""
    bucket: datetime
    views: int = 0
    visitors: int = 0
    bounces: int = 0


class SiteHits(BaseModel):
    """Hit count for a site, used by the site selector."""
    site_id: str
    hits: int
