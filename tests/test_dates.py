"""
Unit tests for the date normalizer.
"""
from datetime import date, datetime, timedelta, timezone

import pytest

from src.dendrites.dates import normalize_date, parse_date, to_iso, utc_now_iso


def _parse_iso(value: str) -> datetime:
    return datetime.fromisoformat(value.replace('Z', '+00:00'))


class TestNormalizeDate:
    """Every input becomes a canonical UTC ISO string."""

    def test_rfc_822_with_gmt(self):
        assert normalize_date("Mon, 01 Jan 2024 12:00:00 GMT") == "2024-01-01T12:00:00.000Z"

    def test_rfc_822_with_numeric_offset(self):
        assert normalize_date("Mon, 01 Jan 2024 12:00:00 +0200") == "2024-01-01T10:00:00.000Z"

    def test_rfc_822_with_named_us_zone(self):
        assert normalize_date("Mon, 01 Jan 2024 12:00:00 EST") == "2024-01-01T17:00:00.000Z"

    def test_iso_with_z(self):
        assert normalize_date("2024-03-15T08:30:00Z") == "2024-03-15T08:30:00.000Z"

    def test_iso_with_offset(self):
        assert normalize_date("2024-03-15T08:30:00-05:00") == "2024-03-15T13:30:00.000Z"

    def test_iso_without_zone_is_utc(self):
        assert normalize_date("2024-03-15T08:30:00") == "2024-03-15T08:30:00.000Z"

    def test_date_only_is_midnight_utc(self):
        assert normalize_date("2024-03-15") == "2024-03-15T00:00:00.000Z"

    def test_datetime_object(self):
        value = datetime(2024, 3, 15, 8, 30, tzinfo=timezone.utc)
        assert normalize_date(value) == "2024-03-15T08:30:00.000Z"

    def test_date_object(self):
        assert normalize_date(date(2024, 3, 15)) == "2024-03-15T00:00:00.000Z"

    def test_surrounding_whitespace(self):
        assert normalize_date("  2024-03-15T08:30:00Z\n") == "2024-03-15T08:30:00.000Z"

    @pytest.mark.parametrize("garbage", ["not a date", "", None, "!!!", "2024-13-45"])
    def test_garbage_returns_now(self, garbage):
        before = datetime.now(timezone.utc) - timedelta(seconds=1)
        result = normalize_date(garbage)
        after = datetime.now(timezone.utc) + timedelta(seconds=1)

        assert result.endswith("Z")
        assert before <= _parse_iso(result) <= after

    def test_output_sorts_chronologically_as_text(self):
        values = [
            "Tue, 02 Jan 2024 12:00:00 GMT",
            "2024-01-01",
            "2024-01-03T00:00:00+05:00",
        ]
        normalized = [normalize_date(value) for value in values]

        assert sorted(normalized) == sorted(normalized, key=_parse_iso)


class TestParseDate:
    """Lower-level parsing used by the normalizer."""

    def test_returns_aware_utc(self):
        parsed = parse_date("2024-01-01T12:00:00+01:00")
        assert parsed == datetime(2024, 1, 1, 11, 0, tzinfo=timezone.utc)
        assert parsed.utcoffset() == timedelta(0)

    def test_unparseable_is_none(self):
        assert parse_date("yesterday-ish") is None
        assert parse_date("") is None
        assert parse_date(None) is None


class TestIsoRendering:

    def test_to_iso_naive_is_utc(self):
        assert to_iso(datetime(2024, 1, 1, 0, 0, 0, 123456)) == "2024-01-01T00:00:00.123Z"

    def test_utc_now_iso_format(self):
        value = utc_now_iso()
        assert value.endswith("Z")
        assert len(value) == len("2024-01-01T00:00:00.000Z")
