"""
Public holiday lookup by owner timezone

The owner's IANA timezone picks a country; the country's public holidays
(observances excluded) come from the holidays package.
"""

import logging
from typing import Optional

import holidays

from .schemas import Holiday

logger = logging.getLogger(__name__)

TIMEZONE_TO_COUNTRY = {
    "Asia/Jerusalem": "IL",
    "Asia/Tel_Aviv": "IL",
    "America/New_York": "US",
    "America/Chicago": "US",
    "America/Denver": "US",
    "America/Los_Angeles": "US",
    "America/Phoenix": "US",
    "America/Anchorage": "US",
    "Pacific/Honolulu": "US",
    "Europe/London": "GB",
    "Europe/Paris": "FR",
    "Europe/Berlin": "DE",
    "Europe/Madrid": "ES",
    "Europe/Rome": "IT",
    "Europe/Amsterdam": "NL",
    "Europe/Brussels": "BE",
    "Europe/Zurich": "CH",
    "Europe/Vienna": "AT",
    "Europe/Stockholm": "SE",
    "Europe/Oslo": "NO",
    "Europe/Copenhagen": "DK",
    "Europe/Helsinki": "FI",
    "Europe/Warsaw": "PL",
    "Europe/Prague": "CZ",
    "Europe/Budapest": "HU",
    "Europe/Bucharest": "RO",
    "Europe/Athens": "GR",
    "Europe/Istanbul": "TR",
    "Europe/Moscow": "RU",
    "Europe/Lisbon": "PT",
    "Europe/Dublin": "IE",
    "Asia/Tokyo": "JP",
    "Asia/Seoul": "KR",
    "Asia/Shanghai": "CN",
    "Asia/Hong_Kong": "HK",
    "Asia/Singapore": "SG",
    "Asia/Kolkata": "IN",
    "Asia/Dubai": "AE",
    "Asia/Riyadh": "SA",
    "Australia/Sydney": "AU",
    "Australia/Melbourne": "AU",
    "Australia/Perth": "AU",
    "Pacific/Auckland": "NZ",
    "America/Toronto": "CA",
    "America/Vancouver": "CA",
    "America/Sao_Paulo": "BR",
    "America/Mexico_City": "MX",
    "America/Argentina/Buenos_Aires": "AR",
    "Africa/Johannesburg": "ZA",
    "Africa/Cairo": "EG",
    "Africa/Lagos": "NG",
}

# Unlisted zones fall back by region; Asia and Africa are too diverse to guess
REGION_FALLBACK = {"America": "US", "Europe": "GB", "Australia": "AU"}

# Countries whose work week runs Sunday to Thursday
SUN_THU_COUNTRIES = {"IL", "AE", "SA", "BH", "QA", "KW", "OM", "IQ", "YE", "JO", "SY", "LB", "PS"}


def country_from_timezone(timezone: Optional[str]) -> Optional[str]:
    if not timezone:
        return None
    if timezone in TIMEZONE_TO_COUNTRY:
        return TIMEZONE_TO_COUNTRY[timezone]
    return REGION_FALLBACK.get(timezone.split("/")[0])


def _country(country_or_timezone: Optional[str]) -> Optional[str]:
    if country_or_timezone and len(country_or_timezone) == 2:
        return country_or_timezone.upper()
    return country_from_timezone(country_or_timezone)


def public_holidays(country_or_timezone: str, year: int, month: Optional[int] = None) -> list[Holiday]:
    """
    Public holidays for a year, optionally one month (1-12).

    Accepts an ISO country code or an IANA timezone. Unknown countries
    have no holidays.
    """
    country = _country(country_or_timezone)
    if not country:
        return []

    try:
        calendar = holidays.country_holidays(country, years=year)
    except NotImplementedError:
        logger.warning(f"⚠️ No holiday calendar for country {country}")
        return []

    return [
        Holiday(date=day, name=name)
        for day, name in sorted(calendar.items())
        if month is None or day.month == month
    ]


def default_work_days(country_or_timezone: Optional[str]) -> list[int]:
    """Work days for a country or timezone, 0=Sunday"""
    if _country(country_or_timezone) in SUN_THU_COUNTRIES:
        return [0, 1, 2, 3, 4]
    return [1, 2, 3, 4, 5]
