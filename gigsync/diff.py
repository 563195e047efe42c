from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date

from gigsync.identity import strip_identity
from gigsync.models import CanonicalEvent, TaggedEvent


@dataclass
class EventUpdate:
    desired: CanonicalEvent
    existing: TaggedEvent
    fields: list[str]


@dataclass
class DiffResult:
    create: list[CanonicalEvent] = field(default_factory=list)
    update: list[EventUpdate] = field(default_factory=list)
    delete: list[TaggedEvent] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.create) + len(self.update) + len(self.delete)


def _clean(value: str) -> str:
    return str(value or "").strip()


def changed_fields(desired: CanonicalEvent, existing: TaggedEvent) -> list[str]:
    fields: list[str] = []
    if _clean(desired.title) != _clean(existing.title):
        fields.append("title")
    if _clean(desired.location) != _clean(existing.location):
        fields.append("location")
    if _clean(desired.description) != strip_identity(existing.description):
        fields.append("description")
    return fields


def _existing_order(event: TaggedEvent) -> tuple[date, str]:
    return (event.start_day or date.min, event.href or event.uid)


def diff_events(desired: dict[str, CanonicalEvent], existing: list[TaggedEvent]) -> DiffResult:
    result = DiffResult()
    matched: dict[str, TaggedEvent] = {}
    for event in sorted(existing, key=_existing_order):
        if not event.identity:
            continue
        if event.identity not in desired or event.identity in matched:
            # Unknown identities and duplicate copies of a known one both go.
            result.delete.append(event)
            continue
        matched[event.identity] = event

    for identity, event in desired.items():
        current = matched.get(identity)
        if current is None:
            result.create.append(event)
            continue
        fields = changed_fields(event, current)
        if fields:
            result.update.append(EventUpdate(desired=event, existing=current, fields=fields))
    return result
