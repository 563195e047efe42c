from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Any
from zoneinfo import ZoneInfo

from dateutil import parser as date_parser

ISO_DAY_PATTERN = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})(?:[T\s].*)?$")
DAY_MON_YEAR_PATTERN = re.compile(r"^(\d{1,2})-([A-Za-z]{3})-(\d{4})$")
US_SLASH_PATTERN = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
MONTH_ABBREVIATIONS = {
    "jan": 1,
    "feb": 2,
    "mar": 3,
    "apr": 4,
    "may": 5,
    "jun": 6,
    "jul": 7,
    "aug": 8,
    "sep": 9,
    "oct": 10,
    "nov": 11,
    "dec": 12,
}
SERIAL_EPOCH = date(1899, 12, 30)
LOCAL_ANCHOR = time(12, 0)


def get_zone(name: str) -> tzinfo:
    try:
        return ZoneInfo(name)
    except Exception:
        return timezone.utc


def _safe_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_date_text(text: str) -> date | None:
    value = str(text or "").strip()
    if not value:
        return None
    match = ISO_DAY_PATTERN.match(value)
    if match:
        return _safe_date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    match = DAY_MON_YEAR_PATTERN.match(value)
    if match:
        month = MONTH_ABBREVIATIONS.get(match.group(2).lower())
        if month is None:
            return None
        return _safe_date(int(match.group(3)), month, int(match.group(1)))
    match = US_SLASH_PATTERN.match(value)
    if match:
        return _safe_date(int(match.group(3)), int(match.group(1)), int(match.group(2)))
    try:
        return date_parser.parse(value, fuzzy=False).date()
    except (ValueError, OverflowError):
        return None


def _date_from_raw(raw: Any, zone: tzinfo) -> date | None:
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        # Sheet date cells arrive as UTC midnight; shift into the sheet's zone.
        aware = raw if raw.tzinfo is not None else raw.replace(tzinfo=timezone.utc)
        return aware.astimezone(zone).date()
    if isinstance(raw, date):
        return raw
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        if raw <= 0:
            return None
        try:
            return SERIAL_EPOCH + timedelta(days=int(raw))
        except OverflowError:
            return None
    return parse_date_text(str(raw))


def parse_local_noon(raw: Any, display: str, zone: tzinfo) -> datetime | None:
    display_text = str(display or "").strip()
    parsed = parse_date_text(display_text) if display_text else None
    if parsed is None:
        parsed = _date_from_raw(raw, zone)
    if parsed is None:
        return None
    return datetime.combine(parsed, LOCAL_ANCHOR, tzinfo=zone)


def to_day_key(raw: Any, display: str, zone: tzinfo) -> str | None:
    anchored = parse_local_noon(raw, display, zone)
    if anchored is None:
        return None
    return anchored.date().isoformat()


def add_years(day: date, years: int) -> date:
    try:
        return day.replace(year=day.year + years)
    except ValueError:
        return day.replace(year=day.year + years, day=28)


def today_in(zone: tzinfo, now: datetime | None = None) -> date:
    current = now or datetime.now(timezone.utc)
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    return current.astimezone(zone).date()
