"""
Cookieless visitor and session classification.

The only input besides the current time is the cache validator token the
browser echoes back in ``If-Modified-Since``. Two independent questions are
answered from it:

- new visitor: has the calendar day changed since the token was issued?
- new session: have 30 minutes or more passed since the token was issued?

A session may continue across midnight while the hit is also counted as a
new visitor for the new day. The two checks never influence each other.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo

SESSION_TIMEOUT = timedelta(minutes=30)


@dataclass(frozen=True)
class VisitClassification:
    """Result of classifying a single hit."""
    new_visitor: int  # 0 or 1
    new_session: int  # 0 or 1


def as_utc(moment: datetime) -> datetime:
    """Return an aware UTC datetime. Naive values are taken to be UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def same_calendar_day(a: datetime, b: datetime, tz: tzinfo = timezone.utc) -> bool:
    """Check whether two instants fall on the same calendar day in ``tz``.

    Instants that cannot be expressed in ``tz`` (the edges of the datetime
    range) are never on the same day as anything.
    """
    try:
        return as_utc(a).astimezone(tz).date() == as_utc(b).astimezone(tz).date()
    except OverflowError:
        return False


def is_session_active(now: datetime, prior_token: datetime) -> bool:
    """A session continues while less than 30 minutes have elapsed."""
    return as_utc(now) - as_utc(prior_token) < SESSION_TIMEOUT


def classify(
    now: datetime,
    prior_token: datetime | None,
    tz: tzinfo = timezone.utc,
) -> VisitClassification:
    """Classify a hit as new/returning visitor and new/continuing session.

    Args:
        now: Time the hit was received
        prior_token: Token echoed back by the client, or None on first contact
        tz: Reference timezone for the calendar-day boundary

    Returns:
        VisitClassification with 0/1 flags
    """
    if prior_token is None:
        return VisitClassification(new_visitor=1, new_session=1)

    new_visitor = 0 if same_calendar_day(now, prior_token, tz) else 1
    new_session = 0 if is_session_active(now, prior_token) else 1

    return VisitClassification(new_visitor=new_visitor, new_session=new_session)
