"""
Pageview collection.

Turns an inbound ``/collect`` request into one data point:

1. Extract tracking parameters from the query string
2. Derive browser/device facets from the User-Agent
3. Classify the hit from the ``If-Modified-Since`` validator (or from the
   hit count the client obtained from ``/cache``)
4. Hand the data point to the writer

HTTP framing (status codes, pixel, headers) lives in ``routes.collect``.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from typing import Callable, Mapping

from ..user_agent import parse_user_agent
from .hits import MAX_HITS, bounce_value, next_hit_state, parse_http_date
from .models import CollectRequest, DataPoint
from .store import DataPointWriter, write_data_point
from .visits import classify

logger = logging.getLogger(__name__)

# /collect query parameter -> CollectRequest field
COLLECT_PARAMS = {
    "sid": "site_id",
    "h": "host",
    "p": "path",
    "r": "referrer",
    "us": "utm_source",
    "um": "utm_medium",
    "uc": "utm_campaign",
    "ut": "utm_term",
    "uco": "utm_content",
}

# Location headers added by the edge (Cloudflare visitor location headers)
GEO_HEADERS = {
    "country": "cf-ipcountry",
    "region": "cf-region",
    "city": "cf-ipcity",
}


class MissingSiteIdError(ValueError):
    """Raised when a collect request carries no site identifier."""
    pass


@dataclass(frozen=True)
class CacheState:
    """Classification derived from the validator round trip."""
    hits: int
    new_visitor: int
    new_session: int
    next_token: datetime


@dataclass(frozen=True)
class CollectResult:
    """What a collect request produced."""
    data_point: DataPoint
    hits: int
    next_token: datetime


def _parse_int(value: str | None, minimum: int, maximum: int) -> int | None:
    if value is None or value == "":
        return None
    try:
        number = int(value)
    except ValueError:
        return None
    if number < minimum:
        return None
    return min(number, maximum)


def parse_collect_params(params: Mapping[str, str]) -> CollectRequest:
    """Build a CollectRequest from query parameters.

    Only ``sid`` is required. Missing optional values become empty strings
    and unknown parameters are ignored.

    Raises:
        MissingSiteIdError: If ``sid`` is absent or blank
    """
    site_id = (params.get("sid") or "").strip()
    if not site_id:
        raise MissingSiteIdError("Missing siteId")

    fields = {
        field: params.get(key) or ""
        for key, field in COLLECT_PARAMS.items()
    }
    fields["site_id"] = site_id

    return CollectRequest(
        **fields,
        hits=_parse_int(params.get("ht"), 1, MAX_HITS),
        new_visitor=_parse_int(params.get("v"), 0, 1),
        new_session=_parse_int(params.get("s"), 0, 1),
    )


def evaluate_cache_headers(
    now: datetime,
    if_modified_since: str | None,
    tz: tzinfo = timezone.utc,
) -> CacheState:
    """Classify a hit from the echoed validator token."""
    prior_token = parse_http_date(if_modified_since)
    visit = classify(now, prior_token, tz)
    state = next_hit_state(now, prior_token, tz)
    return CacheState(
        hits=state.hits,
        new_visitor=visit.new_visitor,
        new_session=visit.new_session,
        next_token=state.next_token,
    )


class Collector:
    """Classifies tracking requests and writes one data point per hit."""

    def __init__(
        self,
        writer: DataPointWriter,
        tz: tzinfo = timezone.utc,
        clock: Callable[[], datetime] | None = None,
    ):
        self.writer = writer
        self.tz = tz
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def now(self) -> datetime:
        return self._clock()

    def check_cache(self, if_modified_since: str | None) -> CacheState:
        """Evaluate the validator token at the current time."""
        return evaluate_cache_headers(self.now(), if_modified_since, self.tz)

    def process(self, request: CollectRequest, headers: Mapping[str, str]) -> CollectResult:
        """Build the data point for a collect request.

        ``headers`` are the inbound request headers; keys are matched
        case-insensitively.
        """
        headers = {k.lower(): v for k, v in headers.items()}
        cache = self.check_cache(headers.get("if-modified-since"))

        if request.hits is not None:
            # Client already asked /cache; trust its classification
            hits = request.hits
            first_hit = 1 if hits == 1 else 0
            new_visitor = first_hit if request.new_visitor is None else request.new_visitor
            new_session = first_hit if request.new_session is None else request.new_session
        else:
            hits = cache.hits
            new_visitor = cache.new_visitor
            new_session = cache.new_session

        user_agent = headers.get("user-agent", "")
        ua = parse_user_agent(user_agent)

        data_point = DataPoint(
            site_id=request.site_id,
            host=request.host,
            path=request.path,
            referrer=request.referrer,
            user_agent=user_agent,
            browser_name=ua.browser_name,
            browser_version=ua.browser_version,
            device_model=ua.device_model,
            device_type=ua.device_type.value,
            utm_source=request.utm_source,
            utm_medium=request.utm_medium,
            utm_campaign=request.utm_campaign,
            utm_term=request.utm_term,
            utm_content=request.utm_content,
            new_visitor=new_visitor,
            new_session=new_session,
            bounce=bounce_value(hits),
            **{field: headers.get(header, "") for field, header in GEO_HEADERS.items()},
        )

        return CollectResult(data_point=data_point, hits=hits, next_token=cache.next_token)

    async def write(self, data_point: DataPoint) -> bool:
        """Write a data point; failures are logged, never raised."""
        return await write_data_point(self.writer, data_point.to_payload())
