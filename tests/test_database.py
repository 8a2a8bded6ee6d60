from datetime import date, datetime, timedelta, timezone

import pytest
from bson import ObjectId
from bson.timestamp import Timestamp

from database import parse_object_id, parse_point_in_time, to_datetime


class TestToDatetime:
    def test_naive_datetime_is_taken_as_utc(self):
        result = to_datetime(datetime(2025, 3, 1, 10, 30))
        assert result == datetime(2025, 3, 1, 10, 30, tzinfo=timezone.utc)
        assert result.tzinfo is not None

    def test_aware_datetime_is_converted_to_utc(self):
        ist = timezone(timedelta(hours=5, minutes=30))
        result = to_datetime(datetime(2025, 3, 1, 5, 30, tzinfo=ist))
        assert result == datetime(2025, 3, 1, 0, 0, tzinfo=timezone.utc)
        assert result.utcoffset() == timedelta(0)

    def test_bson_timestamp(self):
        moment = datetime(2024, 6, 15, 8, 0, tzinfo=timezone.utc)
        result = to_datetime(Timestamp(moment, 1))
        assert result == moment

    def test_bare_date_is_midnight_utc(self):
        assert to_datetime(date(2025, 12, 31)) == datetime(2025, 12, 31, tzinfo=timezone.utc)

    def test_none_passes_through(self):
        assert to_datetime(None) is None

    def test_strings_are_rejected(self):
        with pytest.raises(ValueError):
            to_datetime("2025-12-31")


class TestParsePointInTime:
    def test_form_date(self):
        result = parse_point_in_time("2025-12-31")
        assert result == datetime(2025, 12, 31, tzinfo=timezone.utc)
        assert result.date() == date(2025, 12, 31)

    def test_iso_datetime_with_zulu(self):
        assert parse_point_in_time("2025-01-02T03:04:05Z") == datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

    def test_surrounding_whitespace(self):
        assert parse_point_in_time("  2025-07-01 ").date() == date(2025, 7, 1)

    @pytest.mark.parametrize("value", ["", "   ", "next friday", "2025-13-40", None])
    def test_unparseable(self, value):
        with pytest.raises(ValueError):
            parse_point_in_time(value)


def test_parse_object_id():
    oid = ObjectId()
    assert parse_object_id(str(oid)) == oid
    assert parse_object_id(oid) is oid
    assert parse_object_id("not-an-id") is None
    assert parse_object_id("") is None
