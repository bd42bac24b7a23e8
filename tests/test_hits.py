"""Tests for the hit counter carried in Last-Modified seconds."""

from datetime import datetime, timedelta, timezone

from cachecount.core.hits import (
    MAX_HITS,
    bounce_value,
    decode_hit_token,
    encode_hit_token,
    format_http_date,
    next_hit_state,
    parse_http_date,
)


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


class TestHitToken:
    """Test encode/decode of the seconds field."""

    def test_encode_sets_seconds(self):
        token = encode_hit_token(utc(2024, 1, 1, 12, 0, 37, 123456), 3)
        assert token == utc(2024, 1, 1, 12, 0, 3)

    def test_encode_clamps(self):
        assert encode_hit_token(utc(2024, 1, 1, 12, 0), 500).second == MAX_HITS
        assert encode_hit_token(utc(2024, 1, 1, 12, 0), 0).second == 1

    def test_zero_seconds_decodes_as_one(self):
        assert decode_hit_token(utc(2024, 1, 1, 12, 0, 0)) == 1

    def test_decode(self):
        assert decode_hit_token(utc(2024, 1, 1, 12, 0, 7)) == 7


class TestNextHitState:
    """Test next_hit_state()."""

    def test_first_hit(self):
        now = utc(2024, 1, 1, 12, 0, 42)
        state = next_hit_state(now, None)

        assert state.hits == 1
        assert state.next_token == utc(2024, 1, 1, 12, 0, 1)

    def test_increments_within_session(self):
        now = utc(2024, 1, 1, 12, 5)
        state = next_hit_state(now, utc(2024, 1, 1, 12, 0, 1))

        assert state.hits == 2
        assert state.next_token.second == 2

    def test_sequence_of_hits(self):
        token = None
        now = utc(2024, 1, 1, 12, 0)
        seen = []
        for _ in range(4):
            state = next_hit_state(now, token)
            seen.append(state.hits)
            token = state.next_token
            now += timedelta(minutes=5)

        assert seen == [1, 2, 3, 4]

    def test_resets_after_timeout(self):
        state = next_hit_state(utc(2024, 1, 1, 13, 0), utc(2024, 1, 1, 12, 0, 5))
        assert state.hits == 1

    def test_resets_on_new_day(self):
        state = next_hit_state(utc(2024, 1, 2, 0, 5), utc(2024, 1, 1, 23, 55, 5))
        assert state.hits == 1

    def test_saturates_at_max(self):
        state = next_hit_state(utc(2024, 1, 1, 12, 5), utc(2024, 1, 1, 12, 0, MAX_HITS))
        assert state.hits == MAX_HITS
        assert state.next_token.second == MAX_HITS


class TestBounceValue:
    """Summing bounce values gives single-hit sessions."""

    def test_values(self):
        assert bounce_value(1) == 1
        assert bounce_value(2) == -1
        assert bounce_value(3) == 0
        assert bounce_value(59) == 0

    def test_sum_counts_single_hit_sessions(self):
        # One session of 1 hit, one of 3 hits, one of 2 hits
        sessions = [[1], [1, 2, 3], [1, 2]]
        total = sum(bounce_value(h) for session in sessions for h in session)
        assert total == 1


class TestHttpDates:
    """Test HTTP date parsing and formatting."""

    def test_format_is_gmt(self):
        assert format_http_date(utc(2024, 1, 1, 12, 0, 3)) == "Mon, 01 Jan 2024 12:00:03 GMT"

    def test_parse_round_trip(self):
        parsed = parse_http_date("Mon, 01 Jan 2024 12:00:03 GMT")
        assert parsed == utc(2024, 1, 1, 12, 0, 3)

    def test_invalid_is_none(self):
        assert parse_http_date("not a date") is None
        assert parse_http_date("") is None
        assert parse_http_date(None) is None

    def test_out_of_range_date_is_none(self):
        # Valid syntax, but converting to UTC leaves the datetime range
        assert parse_http_date("Fri, 31 Dec 9999 23:59:59 -0100") is None
