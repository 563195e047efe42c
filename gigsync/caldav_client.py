from __future__ import annotations

import logging
import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Any

from icalendar import Calendar as ICalendar
from icalendar import Event as ICEvent

from gigsync.errors import ConfigurationError, RateLimitError
from gigsync.identity import embed_identity, extract_identity
from gigsync.models import CalDAVConfig, CanonicalEvent, TaggedEvent

try:
    import caldav
    from caldav.lib.error import NotFoundError
except ImportError:  # pragma: no cover - dependency managed by requirements
    caldav = None
    NotFoundError = None

logger = logging.getLogger(__name__)

RATE_LIMIT_PATTERN = re.compile(r"\b(429|503)\b|too many requests|rate limit", re.IGNORECASE)
UID_DOMAIN = "gigsync"


def _normalize_calendar_id(value: str) -> str:
    return str(value or "").strip().rstrip("/")


def _normalize_calendar_name(value: str) -> str:
    collapsed = re.sub(r"\s+", " ", str(value or "").strip())
    return collapsed.casefold()


def _first_vevent(calendar_obj: ICalendar) -> ICEvent | None:
    for component in calendar_obj.walk():
        if component.name == "VEVENT":
            return component
    return None


def _decode_raw_ical(raw_data: Any) -> str:
    if isinstance(raw_data, bytes):
        return raw_data.decode("utf-8", errors="replace")
    return str(raw_data)


def _as_day(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return None


def event_uid(identity: str) -> str:
    return f"{identity}@{UID_DOMAIN}"


def _raise_if_rate_limited(exc: Exception) -> None:
    if RATE_LIMIT_PATTERN.search(f"{type(exc).__name__} {exc}"):
        raise RateLimitError(str(exc)) from exc


class CalDAVService:
    def __init__(self, config: CalDAVConfig, calendar_id: str) -> None:
        self.config = config
        self.calendar_id = calendar_id
        self._client: Any = None
        self._principal: Any = None
        self._calendar: Any = None

    def _require_dependency(self) -> None:
        if caldav is None:
            raise RuntimeError("caldav dependency is not installed.")

    def _connect(self) -> None:
        self._require_dependency()
        if self._principal is not None:
            return
        if not self.config.base_url or not self.config.username:
            raise ConfigurationError("caldav", "base_url/username required")
        self._client = caldav.DAVClient(
            url=self.config.base_url,
            username=self.config.username,
            password=self.config.password,
        )
        self._principal = self._client.principal()

    def _get_calendar(self) -> Any:
        if self._calendar is not None:
            return self._calendar
        self._connect()
        wanted_id = _normalize_calendar_id(self.calendar_id)
        wanted_name = _normalize_calendar_name(self.calendar_id)
        by_name = None
        for calendar in self._principal.calendars():
            if _normalize_calendar_id(str(calendar.url)) == wanted_id:
                self._calendar = calendar
                return calendar
            name = getattr(calendar, "name", "") or ""
            if by_name is None and _normalize_calendar_name(name) == wanted_name:
                by_name = calendar
        if by_name is None:
            raise ConfigurationError("calendar", f"calendar not found: {self.calendar_id}")
        self._calendar = by_name
        return by_name

    def ensure_available(self) -> None:
        self._get_calendar()

    def fetch_tagged_events(self, start: date, end: date) -> list[TaggedEvent]:
        """All-day events in ``[start, end)`` that carry an identity marker."""
        calendar = self._get_calendar()
        try:
            resources = calendar.date_search(
                start=datetime.combine(start, time.min, tzinfo=timezone.utc),
                end=datetime.combine(end, time.min, tzinfo=timezone.utc),
                expand=False,
            )
        except Exception as exc:
            _raise_if_rate_limited(exc)
            raise
        events: list[TaggedEvent] = []
        untagged = 0
        for resource in resources:
            event = self._parse_resource(resource)
            if event is None:
                continue
            if event.start_day is not None and not (start <= event.start_day < end):
                continue
            if not event.identity:
                untagged += 1
                continue
            events.append(event)
        if untagged:
            logger.debug("Ignored %d untagged events in %s", untagged, self.calendar_id)
        return events

    def _parse_resource(self, resource: Any) -> TaggedEvent | None:
        raw_ical = _decode_raw_ical(resource.data)
        calendar_obj = ICalendar.from_ical(raw_ical)
        vevent = _first_vevent(calendar_obj)
        if vevent is None:
            return None
        description = str(vevent.get("DESCRIPTION", "") or "")
        dtstart_raw = vevent.decoded("DTSTART") if vevent.get("DTSTART") is not None else None
        return TaggedEvent(
            identity=extract_identity(description),
            title=str(vevent.get("SUMMARY", "")).strip(),
            location=str(vevent.get("LOCATION", "")).strip(),
            description=description.strip(),
            start_day=_as_day(dtstart_raw),
            href=str(getattr(resource, "url", "") or ""),
            uid=str(vevent.get("UID", "")).strip(),
        )

    def _build_ical(self, event: CanonicalEvent, uid: str) -> str:
        calendar_obj = ICalendar()
        calendar_obj.add("PRODID", "-//gigsync//Sheet Calendar Sync//EN")
        calendar_obj.add("VERSION", "2.0")
        vevent = ICEvent()
        vevent.add("UID", uid)
        vevent.add("SUMMARY", event.title)
        vevent.add("DESCRIPTION", embed_identity(event.description, event.identity))
        if event.location:
            vevent.add("LOCATION", event.location)
        vevent.add("DTSTART", event.day)
        vevent.add("DTEND", event.day + timedelta(days=1))
        vevent.add("TRANSP", "TRANSPARENT")
        calendar_obj.add_component(vevent)
        return calendar_obj.to_ical().decode("utf-8")

    def create_event(self, event: CanonicalEvent) -> None:
        calendar = self._get_calendar()
        raw_ical = self._build_ical(event, event_uid(event.identity))
        try:
            calendar.save_event(raw_ical)
        except Exception as exc:
            _raise_if_rate_limited(exc)
            raise

    def update_event(self, existing: TaggedEvent, event: CanonicalEvent) -> None:
        calendar = self._get_calendar()
        raw_ical = self._build_ical(event, existing.uid or event_uid(event.identity))
        try:
            resource = calendar.event_by_url(existing.href)
            resource.data = raw_ical
            resource.save()
        except Exception as exc:
            _raise_if_rate_limited(exc)
            raise

    def delete_event(self, existing: TaggedEvent) -> bool:
        calendar = self._get_calendar()
        try:
            resource = calendar.event_by_url(existing.href)
            resource.delete()
            return True
        except Exception as exc:
            _raise_if_rate_limited(exc)
            if NotFoundError is not None and isinstance(exc, NotFoundError):
                return False
            raise
