"""Tests for date-time normalization."""

from datetime import datetime, timezone

import pytest

from memcal.calendar.exceptions import InvalidTemporalValue
from memcal.calendar.models import UTC_ZONE
from memcal.calendar.temporal import format_compact, normalize_datetime, resolve_zone

pytestmark = [pytest.mark.unit, pytest.mark.fast]


class TestResolveZone:
    def test_resolve_zone_when_iana_name_then_returns_zone(self) -> None:
        assert resolve_zone("Europe/Berlin").key == "Europe/Berlin"

    @pytest.mark.parametrize("zone_id", [None, "", "Not/AZone", "../../etc/passwd"])
    def test_resolve_zone_when_missing_or_unknown_then_utc(self, zone_id) -> None:
        assert resolve_zone(zone_id).key == UTC_ZONE

    def test_resolve_zone_when_windows_name_then_maps_to_iana(self) -> None:
        assert resolve_zone("Pacific Standard Time").key == "America/Los_Angeles"


class TestNormalizeDatetime:
    def test_normalize_when_zone_given_then_wall_time_is_local_to_zone(self) -> None:
        ts = normalize_datetime("20240101T100000", "America/New_York")

        assert ts.zone == "America/New_York"
        assert ts.utc == datetime(2024, 1, 1, 15, 0, tzinfo=timezone.utc)
        assert ts.local.hour == 10

    def test_normalize_when_summer_date_then_uses_daylight_offset(self) -> None:
        """The zone, not a fixed offset, decides the instant."""
        ts = normalize_datetime("20240701T100000", "America/New_York")

        assert ts.utc == datetime(2024, 7, 1, 14, 0, tzinfo=timezone.utc)

    def test_normalize_when_no_zone_then_utc(self) -> None:
        ts = normalize_datetime("20240101T100000")

        assert ts.zone == UTC_ZONE
        assert ts.utc == datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)

    def test_normalize_when_unknown_zone_then_falls_back_to_utc(self) -> None:
        ts = normalize_datetime("20240101T100000", "Mars/Olympus_Mons")

        assert ts.zone == UTC_ZONE
        assert ts.utc.hour == 10

    def test_normalize_when_trailing_z_then_utc_regardless_of_param(self) -> None:
        ts = normalize_datetime("20240101T100000Z", "America/New_York")

        assert ts.zone == UTC_ZONE
        assert ts.utc.hour == 10

    @pytest.mark.parametrize("text", ["not-a-date", "", "20240101", "2024-01-01T10:00:00"])
    def test_normalize_when_unparseable_then_raises(self, text: str) -> None:
        with pytest.raises(InvalidTemporalValue) as exc_info:
            normalize_datetime(text, "America/New_York", "DTSTART")

        assert exc_info.value.field_name == "DTSTART"

    def test_format_compact_when_round_tripped_then_same_text(self) -> None:
        ts = normalize_datetime("20241103T013000", "America/New_York")

        assert format_compact(ts) == "20241103T013000"
