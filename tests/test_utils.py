from datetime import datetime, timedelta, timezone

from sportswriter.utils import isoformat_utc, parse_iso, slugify, trim_words, utc_midnight


def test_slugify_ascii_folds_and_limits_length():
    assert slugify("Atlético Madrid vs. Real Sociedad!") == "atletico-madrid-vs-real-sociedad"
    assert slugify("Derby Day Drama", max_length=9) == "derby-day"
    assert slugify("???") == "untitled"
    assert slugify("") == "untitled"


def test_trim_words_appends_marker():
    assert trim_words("one two three", 2) == "one two..."
    assert trim_words("one two", 6) == "one two..."


def test_isoformat_utc_drops_microseconds_and_converts_zone():
    value = datetime(2026, 3, 10, 14, 30, 5, 999, tzinfo=timezone(timedelta(hours=2)))
    assert isoformat_utc(value) == "2026-03-10T12:30:05+00:00"
    assert isoformat_utc(datetime(2026, 3, 10, 12, 0)) == "2026-03-10T12:00:00+00:00"


def test_parse_iso_accepts_z_suffix_and_naive_values():
    assert parse_iso("2026-03-10T12:00:00Z") == datetime(2026, 3, 10, 12, tzinfo=timezone.utc)
    assert parse_iso("2026-03-10T12:00:00").tzinfo == timezone.utc


def test_utc_midnight_uses_utc_day():
    value = datetime(2026, 3, 10, 1, 30, tzinfo=timezone(timedelta(hours=3)))
    assert utc_midnight(value) == datetime(2026, 3, 9, tzinfo=timezone.utc)
