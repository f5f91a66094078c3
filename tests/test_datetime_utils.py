from datetime import datetime, timedelta, timezone

from datetime_utils import ensure_utc, next_after, parse_rfc3339, to_rfc3339_utc


def test_parse_rfc3339_variants():
    assert parse_rfc3339("2024-03-01T10:00:00Z") == datetime(2024, 3, 1, 10, tzinfo=timezone.utc)
    assert parse_rfc3339("2024-03-01T12:00:00.5+02:00") == datetime(
        2024, 3, 1, 10, 0, 0, 500000, tzinfo=timezone.utc
    )
    assert parse_rfc3339("") is None
    assert parse_rfc3339("not a date") is None


def test_precise_serialisation_keeps_microseconds():
    moment = datetime(2024, 3, 1, 10, 0, 0, 123456, tzinfo=timezone.utc)
    assert to_rfc3339_utc(moment) == "2024-03-01T10:00:00Z"
    assert to_rfc3339_utc(moment, precise=True) == "2024-03-01T10:00:00.123456Z"
    assert parse_rfc3339(to_rfc3339_utc(moment, precise=True)) == moment


def test_ensure_utc_treats_naive_as_utc():
    naive = datetime(2024, 1, 1, 8, 30)
    assert ensure_utc(naive) == datetime(2024, 1, 1, 8, 30, tzinfo=timezone.utc)
    assert ensure_utc(None) is None


def test_next_after_is_strictly_increasing():
    previous = datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert next_after(previous, previous) == previous + timedelta(microseconds=1)
    earlier = previous - timedelta(seconds=5)
    assert next_after(previous, earlier) == previous + timedelta(microseconds=1)
    later = previous + timedelta(seconds=5)
    assert next_after(previous, later) == later
    assert next_after(None, later) == later
