"""
Session hit counter carried in the seconds field of ``Last-Modified``.

The server hands the browser a ``Last-Modified`` date whose seconds field
holds the number of hits seen so far in the current session. The browser
echoes it back as ``If-Modified-Since`` on the next request, so the count
survives without cookies or server-side state.

Nothing outside this module should touch the seconds field directly; use
``encode_hit_token`` / ``decode_hit_token`` / ``next_hit_state``.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from email.utils import format_datetime, parsedate_to_datetime

from .visits import as_utc, is_session_active, same_calendar_day

logger = logging.getLogger(__name__)

# Seconds field range is 0-59; the counter saturates at the top.
MIN_HITS = 1
MAX_HITS = 59


@dataclass(frozen=True)
class HitState:
    """Hit count for the current request and the token to hand back."""
    hits: int
    next_token: datetime


def encode_hit_token(moment: datetime, hits: int) -> datetime:
    """Build a token for ``moment`` carrying ``hits`` in its seconds field.

    The count is clamped to 1..59. Sub-second precision is dropped since
    HTTP dates only carry whole seconds.
    """
    hits = max(MIN_HITS, min(MAX_HITS, hits))
    return as_utc(moment).replace(second=hits, microsecond=0)


def decode_hit_token(token: datetime) -> int:
    """Read the hit count from a token.

    A token only exists if there was a prior hit, so a zero seconds field
    (e.g. a date not issued by us) still counts as one hit.
    """
    return max(MIN_HITS, as_utc(token).second)


def next_hit_state(
    now: datetime,
    prior_token: datetime | None,
    tz: tzinfo = timezone.utc,
) -> HitState:
    """Advance the session hit counter.

    The session resets (hits = 1) when there is no prior token, when the
    calendar day has changed, or when 30 minutes or more have passed.
    Otherwise the prior count is incremented.
    """
    if (
        prior_token is None
        or not same_calendar_day(now, prior_token, tz)
        or not is_session_active(now, prior_token)
    ):
        return HitState(hits=MIN_HITS, next_token=encode_hit_token(now, MIN_HITS))

    hits = min(MAX_HITS, decode_hit_token(prior_token) + 1)
    return HitState(hits=hits, next_token=encode_hit_token(now, hits))


def bounce_value(hits: int) -> int:
    """Per-event bounce candidacy.

    The first hit of a session is recorded as a bounce (1). The second hit
    records -1, cancelling the first. Later hits record 0. Summing the
    column over a period yields the number of single-hit sessions.
    """
    if hits <= 1:
        return 1
    if hits == 2:
        return -1
    return 0


def parse_http_date(value: str | None) -> datetime | None:
    """Parse an HTTP date header. Invalid or empty values return None."""
    if not value or not value.strip():
        return None
    try:
        parsed = parsedate_to_datetime(value.strip())
        # Out-of-range offsets (e.g. year 9999 at -0100) overflow here
        return as_utc(parsed) if parsed is not None else None
    except (TypeError, ValueError, IndexError, OverflowError):
        logger.debug(f"Ignoring unparseable HTTP date: {value!r}")
        return None


def format_http_date(moment: datetime) -> str:
    """Format a datetime as an RFC 7231 HTTP date (always GMT)."""
    return format_datetime(as_utc(moment), usegmt=True)
