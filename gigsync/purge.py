from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable

from gigsync.errors import RateLimitError
from gigsync.models import PurgeConfig, TaggedEvent
from gigsync.reconciler import call_with_backoff
from gigsync.state_store import PURGE_CURSOR_KEY, PURGE_QUEUE_KEY

logger = logging.getLogger(__name__)


@dataclass
class PurgeProgress:
    deleted: int
    missing: int
    cursor: int
    total: int
    finished: bool
    stalled: bool = False


def _load_queue(state_store: Any) -> list[TaggedEvent] | None:
    raw = state_store.get_meta(PURGE_QUEUE_KEY)
    if raw is None:
        return None
    items = json.loads(raw or "[]")
    return [
        TaggedEvent(
            identity=str(item.get("identity", "")),
            title=str(item.get("title", "")),
            href=str(item.get("href", "")),
            uid=str(item.get("uid", "")),
            start_day=date.fromisoformat(item["start_day"]) if item.get("start_day") else None,
        )
        for item in items
    ]


def _save_queue(state_store: Any, events: list[TaggedEvent]) -> None:
    payload = [
        {
            "identity": event.identity,
            "title": event.title,
            "href": event.href,
            "uid": event.uid,
            "start_day": event.start_day.isoformat() if event.start_day else None,
        }
        for event in events
    ]
    state_store.set_meta(PURGE_QUEUE_KEY, json.dumps(payload, ensure_ascii=False))


def purge_future_events(
    *,
    calendar: Any,
    state_store: Any,
    config: PurgeConfig,
    start: date,
    end: date,
    sleep: Callable[[float], None] = time.sleep,
    on_deleted: Callable[[TaggedEvent, bool], None] | None = None,
) -> PurgeProgress:
    """Delete tagged events from ``start`` onward, a bounded batch per call.

    The first call snapshots the event list into the state store; every call
    resumes at the stored cursor, so repeated invocations finish the pass
    even when each one is cut short. Both keys are removed once the queue is
    exhausted.
    """
    queue = _load_queue(state_store)
    if queue is None:
        queue = sorted(
            calendar.fetch_tagged_events(start, end),
            key=lambda event: (event.start_day or date.min, event.href),
        )
        _save_queue(state_store, queue)
        state_store.set_meta(PURGE_CURSOR_KEY, "0")
        logger.info("Purge pass started with %d tagged events", len(queue))

    cursor = int(state_store.get_meta(PURGE_CURSOR_KEY) or 0)
    deleted = 0
    missing = 0
    stalled = False
    batch_end = min(len(queue), cursor + config.batch_size)

    while cursor < batch_end:
        event = queue[cursor]
        if deleted or missing:
            sleep(config.pause_seconds)
        try:
            removed = call_with_backoff(
                lambda event=event: calendar.delete_event(event),
                base_seconds=config.backoff_base_seconds,
                max_seconds=config.backoff_max_seconds,
                max_attempts=config.max_retries,
                sleep=sleep,
            )
        except RateLimitError as exc:
            logger.warning("Purge paused at %d/%d: %s", cursor, len(queue), exc)
            stalled = True
            break
        if removed:
            deleted += 1
        else:
            missing += 1
        if on_deleted is not None:
            on_deleted(event, bool(removed))
        cursor += 1
        state_store.set_meta(PURGE_CURSOR_KEY, str(cursor))

    finished = cursor >= len(queue)
    if finished:
        state_store.delete_meta(PURGE_CURSOR_KEY)
        state_store.delete_meta(PURGE_QUEUE_KEY)
        logger.info("Purge pass finished (%d events)", len(queue))
    return PurgeProgress(
        deleted=deleted,
        missing=missing,
        cursor=cursor,
        total=len(queue),
        finished=finished,
        stalled=stalled,
    )
