"""
Core analytics module.

Contains cookieless classification, the collector, the store client and
the query engine.
"""

from .collect import Collector, MissingSiteIdError, parse_collect_params
from .hits import HitState, decode_hit_token, encode_hit_token, next_hit_state
from .intervals import IntervalType, InvalidQueryError
from .models import (
    CollectRequest,
    CountRow,
    CountsResult,
    DataPoint,
    EarliestEvents,
    GroupedCounts,
    QueryFilters,
    QueryRequest,
    SiteHits,
    StatsResult,
    TimeSeriesPoint,
)
from .query import QueryEngine
from .store import (
    AnalyticsEngineClient,
    DataPointWriter,
    HttpDataPointWriter,
    LoggingDataPointWriter,
    TransientStoreError,
)
from .visits import VisitClassification, classify

__all__ = [
    "classify", "VisitClassification",
    "next_hit_state", "encode_hit_token", "decode_hit_token", "HitState",
    "Collector", "parse_collect_params", "MissingSiteIdError",
    "AnalyticsEngineClient", "DataPointWriter", "HttpDataPointWriter",
    "LoggingDataPointWriter", "TransientStoreError",
    "QueryEngine", "IntervalType", "InvalidQueryError",
    "CollectRequest", "DataPoint", "QueryFilters", "QueryRequest",
    "CountsResult", "StatsResult", "EarliestEvents",
    "CountRow", "GroupedCounts", "TimeSeriesPoint", "SiteHits",
]
