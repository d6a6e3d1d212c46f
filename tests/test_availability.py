"""Tests for availability resolution, overrides, public holidays and holiday blocking."""

from datetime import date, timezone
from types import SimpleNamespace
from zoneinfo import ZoneInfo

import pytest

from slotbook.domain.availability.holidays import country_from_timezone, public_holidays
from slotbook.domain.availability.resolver import AvailabilityResolver, TimeWindow, resolve_windows
from slotbook.domain.availability.schemas import DateOverrideIn, Holiday
from slotbook.domain.availability.service import AvailabilityService
from slotbook.errors import InvalidInputError, NotFoundError

from tests.helpers import MONDAY, MONDAY_DOW, add_rule, at, make_user


def rule(day_of_week, start, end):
    return SimpleNamespace(day_of_week=day_of_week, start_time=start, end_time=end)


def override(is_available, start=None, end=None):
    return SimpleNamespace(is_available=is_available, start_time=start, end_time=end)


RULES = [rule(MONDAY_DOW, "13:00", "17:00"), rule(MONDAY_DOW, "09:00", "12:00"), rule(2, "09:00", "17:00")]


def test_weekly_rules_for_weekday_sorted():
    assert resolve_windows(MONDAY, RULES, None) == [TimeWindow("09:00", "12:00"), TimeWindow("13:00", "17:00")]


def test_blocking_override_returns_no_windows():
    assert resolve_windows(MONDAY, RULES, override(False)) == []


def test_custom_hours_override_replaces_rules():
    assert resolve_windows(MONDAY, RULES, override(True, "10:00", "11:30")) == [TimeWindow("10:00", "11:30")]


def test_available_override_without_hours_keeps_rules():
    assert len(resolve_windows(MONDAY, RULES, override(True))) == 2


def test_date_without_rules_is_unavailable():
    assert resolve_windows(date(2025, 1, 5), RULES, None) == []


def test_resolve_between_converts_host_wall_clock(db):
    host = make_user(db, "berlin@example.com", tz="Europe/Berlin")
    add_rule(db, host, MONDAY_DOW, "09:00", "10:00")
    resolver = AvailabilityResolver(db)

    tz = ZoneInfo("Europe/Berlin")
    windows = resolver.resolve_between(host.id, tz, at(0), at(23, 59))

    assert len(windows) == 1
    # CET is UTC+1 in January
    assert windows[0].start == at(8)
    assert windows[0].end == at(9)


def test_override_only_affects_its_date(db):
    host = make_user(db, "host@example.com")
    add_rule(db, host, MONDAY_DOW, "09:00", "10:00")
    service = AvailabilityService(db)
    service.upsert_override(MONDAY, DateOverrideIn(isAvailable=False, reason="Off"), host)

    assert service.resolve(MONDAY, host) == []
    assert service.resolve(date(2025, 1, 13), host) == [TimeWindow("09:00", "10:00")]


def test_block_holidays_blocks_each_date_once(db):
    host = make_user(db, "host@example.com")
    add_rule(db, host, MONDAY_DOW, "09:00", "17:00")
    service = AvailabilityService(db)

    overrides = service.block_holidays(
        [
            Holiday(date=MONDAY, name="Epiphany"),
            Holiday(date=date(2025, 1, 13), name="Team day"),
            Holiday(date=MONDAY, name="Epiphany (observed)"),
        ],
        host,
    )

    assert [o.date for o in overrides] == [MONDAY, date(2025, 1, 13)]
    assert overrides[0].reason == "Epiphany (observed)"
    assert service.resolve(MONDAY, host) == []
    assert service.resolve(date(2025, 1, 20), host) == [TimeWindow("09:00", "17:00")]


def test_holiday_replaces_custom_hours_override(db):
    host = make_user(db, "host@example.com")
    service = AvailabilityService(db)
    service.upsert_override(MONDAY, DateOverrideIn(isAvailable=True, startTime="10:00", endTime="12:00"), host)

    service.block_holidays([Holiday(date=MONDAY, name="Holiday")], host)

    assert service.resolve(MONDAY, host) == []


def test_delete_missing_override_is_not_found(db):
    host = make_user(db, "host@example.com")
    with pytest.raises(NotFoundError):
        AvailabilityService(db).delete_override(MONDAY, host)


def test_list_overrides_rejects_inverted_range(db):
    host = make_user(db, "host@example.com")
    with pytest.raises(InvalidInputError):
        AvailabilityService(db).list_overrides(host, date(2025, 2, 1), date(2025, 1, 1))


def test_override_schema_requires_both_times():
    with pytest.raises(ValueError):
        DateOverrideIn(isAvailable=True, startTime="10:00")


def test_resolved_windows_are_aware_utc(db):
    host = make_user(db, "host@example.com")
    add_rule(db, host)
    windows = AvailabilityResolver(db).resolve_between(host.id, ZoneInfo("UTC"), at(0), at(23))
    assert windows[0].start.tzinfo is not None
    assert windows[0].start.astimezone(timezone.utc) == at(9)


def test_public_holidays_follow_the_owner_timezone():
    holidays = public_holidays("America/New_York", 2025)

    assert Holiday(date=date(2025, 7, 4), name="Independence Day") in holidays
    assert holidays == sorted(holidays, key=lambda h: h.date)


def test_public_holidays_for_one_month():
    july = public_holidays("US", 2025, month=7)
    assert [h.date for h in july] == [date(2025, 7, 4)]


@pytest.mark.parametrize(
    "tz, country",
    [
        ("Europe/Paris", "FR"),
        ("America/Winnipeg", "US"),
        ("Europe/Luxembourg", "GB"),
        ("Asia/Bangkok", None),
        (None, None),
    ],
)
def test_country_from_timezone(tz, country):
    assert country_from_timezone(tz) == country


def test_unmapped_region_has_no_holidays():
    assert public_holidays("Asia/Bangkok", 2025) == []


def test_default_work_days_by_region(db):
    service = AvailabilityService(db)
    assert service.default_work_days(make_user(db, "tlv@example.com", tz="Asia/Jerusalem")) == [0, 1, 2, 3, 4]
    assert service.default_work_days(make_user(db, "nyc@example.com", tz="America/New_York")) == [1, 2, 3, 4, 5]


def test_explicit_holiday_country_wins_over_timezone(db):
    host = make_user(db, "host@example.com", tz="America/New_York")
    host.holiday_country = "IL"
    db.commit()

    assert AvailabilityService(db).default_work_days(host) == [0, 1, 2, 3, 4]


def test_block_holidays_defaults_to_public_holidays(db):
    host = make_user(db, "host@example.com", tz="America/New_York")
    add_rule(db, host, 4, "09:00", "17:00")  # Thursdays
    service = AvailabilityService(db)

    overrides = service.block_holidays(None, host, year=2025)

    christmas = next(o for o in overrides if o.date == date(2025, 12, 25))
    assert christmas.reason == "Christmas Day"
    assert service.resolve(date(2025, 12, 25), host) == []
    assert service.resolve(date(2025, 12, 18), host) == [TimeWindow("09:00", "17:00")]
