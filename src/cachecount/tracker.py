"""
Server-side pageview tracking.

Reports pageviews to a ``/collect`` endpoint from backend code, for pages
that are rendered without the browser snippet (or for clients that block it).

Usage:
    state = await dispatch(None, InitCommand(site_id="example", reporter_url=url))
    await dispatch(state, TrackPageviewCommand(PageviewOptions(url="https://example.com/")))

The tracker never raises on network failure: tracking is fire-and-forget.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from urllib.parse import urlencode, urlparse

import httpx

from .utm import UTMParams, parse_utm

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 1.0
TRACKER_USER_AGENT = "cachecount-tracker-server"

LOCALHOST_RE = re.compile(r"^localhost$|^127(?:\.[0-9]+){0,2}\.[0-9]+$|^(?:0*:)*?:?0*1$")


class TrackerCommand(str, Enum):
    """Commands accepted by ``dispatch``."""
    INIT = "init"
    TRACK_PAGEVIEW = "trackPageview"


@dataclass(frozen=True)
class TrackerClient:
    """Configured reporter for one site."""
    site_id: str
    reporter_url: str
    report_on_localhost: bool = False
    timeout: float = DEFAULT_TIMEOUT_SECONDS
    user_agent: str = TRACKER_USER_AGENT


@dataclass(frozen=True)
class PageviewOptions:
    """A pageview to report.

    ``url`` may be relative, in which case ``hostname`` is required. UTM
    values given here override those found in the URL.
    """
    url: str
    referrer: str = ""
    hostname: str | None = None
    utm_source: str | None = None
    utm_medium: str | None = None
    utm_campaign: str | None = None
    utm_term: str | None = None
    utm_content: str | None = None

    @property
    def utm(self) -> UTMParams:
        return UTMParams(
            source=self.utm_source,
            medium=self.utm_medium,
            campaign=self.utm_campaign,
            term=self.utm_term,
            content=self.utm_content,
        )


@dataclass(frozen=True)
class InitCommand:
    site_id: str
    reporter_url: str
    report_on_localhost: bool = False
    timeout: float = DEFAULT_TIMEOUT_SECONDS

    kind = TrackerCommand.INIT


@dataclass(frozen=True)
class TrackPageviewCommand:
    options: PageviewOptions

    kind = TrackerCommand.TRACK_PAGEVIEW


def is_localhost_address(hostname: str) -> bool:
    return bool(LOCALHOST_RE.match(hostname or ""))


def resolve_url(options: PageviewOptions) -> str:
    """Return the absolute URL of a pageview.

    Raises:
        ValueError: If the URL is empty, relative without a hostname, or malformed
    """
    if not options.url:
        raise ValueError("url is required for server-side tracking")

    if options.url.startswith("/"):
        if not options.hostname:
            raise ValueError("hostname is required when tracking relative URLs")
        local = options.hostname.startswith("localhost") or "127.0.0.1" in options.hostname
        scheme = "http" if local else "https"
        full_url = f"{scheme}://{options.hostname}{options.url}"
    else:
        full_url = options.url

    parsed = urlparse(full_url)
    if not parsed.scheme or not parsed.hostname:
        raise ValueError(f"Invalid URL: {options.url}")
    return full_url


def clean_referrer(origin: str, referrer: str) -> str:
    """Drop same-host referrers and strip query strings."""
    if not referrer or origin in referrer:
        return ""
    return referrer.split("?")[0]


def build_collect_params(client: TrackerClient, options: PageviewOptions) -> dict[str, str]:
    """Build ``/collect`` query parameters for a pageview.

    Server-side hits are always reported as the first hit of a visit
    (``ht=1``) since there is no browser validator to count with.

    Raises:
        ValueError: If the URL cannot be resolved
    """
    full_url = resolve_url(options)
    parsed = urlparse(full_url)
    origin = f"{parsed.scheme}://{parsed.hostname}"

    params = {
        "p": parsed.path or "/",
        "h": origin,
        "r": clean_referrer(origin, options.referrer),
        "sid": client.site_id,
    }
    params.update(parse_utm(full_url).merged_with(options.utm).to_collect_params())
    params["ht"] = "1"

    # Empty values are not sent
    return {key: value for key, value in params.items() if value}


async def track_pageview(
    client: TrackerClient,
    options: PageviewOptions,
    transport: httpx.AsyncBaseTransport | None = None,
) -> bool:
    """Report a pageview.

    Returns:
        True if a request was sent and answered, False if it was skipped or failed

    Raises:
        ValueError: If the pageview URL is invalid
    """
    params = build_collect_params(client, options)

    hostname = urlparse(params["h"]).hostname or ""
    if not client.report_on_localhost and is_localhost_address(hostname):
        logger.debug(f"Not reporting localhost pageview for {client.site_id}")
        return False

    url = f"{client.reporter_url}?{urlencode(params)}"
    try:
        async with httpx.AsyncClient(timeout=client.timeout, transport=transport) as http:
            await http.get(url, headers={"User-Agent": client.user_agent})
    except httpx.HTTPError as e:
        logger.warning(f"Pageview report failed: {e!r}")
        return False
    return True


async def dispatch(
    client: TrackerClient | None,
    command: InitCommand | TrackPageviewCommand,
    transport: httpx.AsyncBaseTransport | None = None,
) -> TrackerClient | None:
    """Apply a tracker command and return the resulting client state.

    ``INIT`` replaces the client. ``TRACK_PAGEVIEW`` before ``INIT`` is
    dropped with a warning.
    """
    if command.kind is TrackerCommand.INIT:
        return TrackerClient(
            site_id=command.site_id,
            reporter_url=command.reporter_url,
            report_on_localhost=command.report_on_localhost,
            timeout=command.timeout,
        )

    if command.kind is TrackerCommand.TRACK_PAGEVIEW:
        if client is None:
            logger.warning("trackPageview called before init; ignoring")
            return None
        await track_pageview(client, command.options, transport=transport)
        return client

    raise ValueError(f"Unknown tracker command: {command.kind!r}")
