from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from typing import Any


DEFAULT_COLUMN_KEYWORDS = {
    "date": "date",
    "artist": "artist",
    "venue": "venue",
    "rating": "rating",
    "notes": "notes",
    "ticket": "ticket",
    "identity": "event id",
}
REQUIRED_COLUMNS = ("date", "artist", "venue")


def serialize_datetime(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


@dataclass
class CalDAVConfig:
    base_url: str = ""
    username: str = ""
    password: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "CalDAVConfig":
        data = data or {}
        return cls(
            base_url=str(data.get("base_url", "")).strip(),
            username=str(data.get("username", "")).strip(),
            password=str(data.get("password", "")).strip(),
        )


@dataclass
class CalendarConfig:
    calendar_id: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "CalendarConfig":
        data = data or {}
        return cls(calendar_id=str(data.get("calendar_id", "") or "").strip())


@dataclass
class SheetsConfig:
    spreadsheet_id: str = ""
    credentials_file: str = ""
    active_sheet: str = "Upcoming"
    archive_sheet: str = "Archive"
    header_scan_rows: int = 10
    header_row: int = 0
    columns: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_COLUMN_KEYWORDS))

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "SheetsConfig":
        data = data or {}
        columns = dict(DEFAULT_COLUMN_KEYWORDS)
        raw_columns = data.get("columns", {})
        if isinstance(raw_columns, dict):
            for key, value in raw_columns.items():
                keyword = str(value or "").strip().lower()
                if key in columns and keyword:
                    columns[key] = keyword
        return cls(
            spreadsheet_id=str(data.get("spreadsheet_id", "")).strip(),
            credentials_file=str(data.get("credentials_file", "")).strip(),
            active_sheet=str(data.get("active_sheet", "Upcoming")).strip() or "Upcoming",
            archive_sheet=str(data.get("archive_sheet", "Archive")).strip() or "Archive",
            header_scan_rows=max(1, int(data.get("header_scan_rows", 10))),
            header_row=max(0, int(data.get("header_row", 0))),
            columns=columns,
        )


@dataclass
class SyncConfig:
    timezone: str = "America/Los_Angeles"
    horizon_years: int = 2
    debounce_seconds: int = 30
    guard_seconds: int = 25
    daily_hour: int = 4
    lock_timeout_seconds: int = 30
    mutation_pause_seconds: float = 0.25

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "SyncConfig":
        data = data or {}
        debounce_seconds = max(2, int(data.get("debounce_seconds", 30)))
        # A scheduled run must be able to tell a newer edit apart from its own.
        guard_seconds = min(max(1, int(data.get("guard_seconds", 25))), debounce_seconds - 1)
        return cls(
            timezone=str(data.get("timezone", "America/Los_Angeles")).strip() or "America/Los_Angeles",
            horizon_years=max(1, int(data.get("horizon_years", 2))),
            debounce_seconds=debounce_seconds,
            guard_seconds=guard_seconds,
            daily_hour=min(23, max(0, int(data.get("daily_hour", 4)))),
            lock_timeout_seconds=max(0, int(data.get("lock_timeout_seconds", 30))),
            mutation_pause_seconds=max(0.0, float(data.get("mutation_pause_seconds", 0.25))),
        )


@dataclass
class PurgeConfig:
    batch_size: int = 40
    pause_seconds: float = 1.0
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 32.0
    max_retries: int = 6

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "PurgeConfig":
        data = data or {}
        base = max(0.0, float(data.get("backoff_base_seconds", 1.0)))
        return cls(
            batch_size=max(1, int(data.get("batch_size", 40))),
            pause_seconds=max(0.0, float(data.get("pause_seconds", 1.0))),
            backoff_base_seconds=base,
            backoff_max_seconds=max(base, float(data.get("backoff_max_seconds", 32.0))),
            max_retries=max(1, int(data.get("max_retries", 6))),
        )


@dataclass
class VenuesConfig:
    canonical: dict[str, str] = field(default_factory=dict)
    aliases: dict[str, str] = field(default_factory=dict)
    rules: list[dict[str, str]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "VenuesConfig":
        data = data or {}
        canonical: dict[str, str] = {}
        raw_canonical = data.get("canonical", {})
        if isinstance(raw_canonical, dict):
            for name, address in raw_canonical.items():
                key = str(name or "").strip()
                if key:
                    canonical[key] = str(address or "").strip()
        aliases: dict[str, str] = {}
        raw_aliases = data.get("aliases", {})
        if isinstance(raw_aliases, dict):
            for alias, target in raw_aliases.items():
                alias_text = str(alias or "").strip()
                target_text = str(target or "").strip()
                if alias_text and target_text:
                    aliases[alias_text] = target_text
        rules: list[dict[str, str]] = []
        raw_rules = data.get("rules", [])
        if isinstance(raw_rules, list):
            for item in raw_rules:
                if not isinstance(item, dict):
                    continue
                pattern = str(item.get("pattern", "") or "").strip()
                target = str(item.get("canonical", "") or "").strip()
                if pattern and target:
                    rules.append({"pattern": pattern, "canonical": target})
        return cls(canonical=canonical, aliases=aliases, rules=rules)


@dataclass
class AppConfig:
    caldav: CalDAVConfig = field(default_factory=CalDAVConfig)
    calendar: CalendarConfig = field(default_factory=CalendarConfig)
    sheets: SheetsConfig = field(default_factory=SheetsConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    purge: PurgeConfig = field(default_factory=PurgeConfig)
    venues: VenuesConfig = field(default_factory=VenuesConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "AppConfig":
        data = data or {}
        return cls(
            caldav=CalDAVConfig.from_dict(data.get("caldav")),
            calendar=CalendarConfig.from_dict(data.get("calendar")),
            sheets=SheetsConfig.from_dict(data.get("sheets")),
            sync=SyncConfig.from_dict(data.get("sync")),
            purge=PurgeConfig.from_dict(data.get("purge")),
            venues=VenuesConfig.from_dict(data.get("venues")),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def default_app_config() -> AppConfig:
    return AppConfig()


@dataclass
class SourceRow:
    row_index: int
    date_raw: Any = None
    date_display: str = ""
    artist: str = ""
    venue: str = ""
    rating: str = ""
    notes: str = ""
    ticket: str = ""
    identity: str = ""


@dataclass
class CanonicalEvent:
    identity: str
    day_key: str
    title: str
    location: str
    description: str
    row_index: int

    @property
    def day(self) -> date:
        return date.fromisoformat(self.day_key)


@dataclass
class TaggedEvent:
    identity: str
    title: str = ""
    location: str = ""
    description: str = ""
    start_day: date | None = None
    href: str = ""
    uid: str = ""

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["start_day"] = self.start_day.isoformat() if self.start_day else None
        return payload


@dataclass
class CellWrite:
    row_index: int
    column_index: int
    value: str
    kind: str = "identity"


@dataclass
class RunSummary:
    lines: list[str] = field(default_factory=list)

    def add(self, line: str) -> None:
        self.lines.append(line)

    def render(self) -> str:
        return "\n".join(self.lines)


@dataclass
class SyncResult:
    status: str
    message: str
    duration_ms: int
    changes_applied: int
    trigger: str
    dry_run: bool = False
    summary: list[str] = field(default_factory=list)
    run_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "message": self.message,
            "duration_ms": self.duration_ms,
            "changes_applied": self.changes_applied,
            "trigger": self.trigger,
            "dry_run": self.dry_run,
            "summary": list(self.summary),
            "run_at": serialize_datetime(self.run_at),
        }
