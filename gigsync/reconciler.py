from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, TypeVar

from gigsync.diff import DiffResult
from gigsync.errors import RateLimitError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def call_with_backoff(
    action: Callable[[], T],
    *,
    base_seconds: float = 1.0,
    max_seconds: float = 32.0,
    max_attempts: int = 6,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    delay = base_seconds
    attempt = 1
    while True:
        try:
            return action()
        except RateLimitError:
            if attempt >= max_attempts:
                raise
            logger.warning("Rate limited (attempt %d/%d), retrying in %.1fs", attempt, max_attempts, delay)
            sleep(delay)
            delay = min(max_seconds, delay * 2 if delay > 0 else base_seconds)
            attempt += 1


@dataclass
class ApplyOutcome:
    created: int = 0
    updated: int = 0
    deleted: int = 0
    failures: list[str] = field(default_factory=list)

    @property
    def applied(self) -> int:
        return self.created + self.updated + self.deleted


def apply_actions(
    *,
    calendar: Any,
    diff: DiffResult,
    pause_seconds: float = 0.0,
    backoff_base_seconds: float = 1.0,
    backoff_max_seconds: float = 32.0,
    max_attempts: int = 6,
    sleep: Callable[[float], None] = time.sleep,
    on_applied: Callable[[str, str, dict[str, Any]], None] | None = None,
) -> ApplyOutcome:
    """Push creates, updates and deletes to the calendar store.

    Actions key on disjoint identities, so order between them does not
    matter. A mutation that is still rate limited after ``max_attempts`` is
    recorded as a failure and the rest of the batch continues.
    """
    outcome = ApplyOutcome()
    first = True

    def _run(kind: str, identity: str, details: dict[str, Any], action: Callable[[], Any]) -> bool:
        nonlocal first
        if not first and pause_seconds > 0:
            sleep(pause_seconds)
        first = False
        try:
            call_with_backoff(
                action,
                base_seconds=backoff_base_seconds,
                max_seconds=backoff_max_seconds,
                max_attempts=max_attempts,
                sleep=sleep,
            )
        except RateLimitError as exc:
            outcome.failures.append(f"{kind} {identity}: {exc}")
            logger.error("Giving up on %s for %s: %s", kind, identity, exc)
            return False
        if on_applied is not None:
            on_applied(kind, identity, details)
        return True

    for event in diff.create:
        details = {"title": event.title, "day": event.day_key}
        if _run("create_event", event.identity, details, lambda event=event: calendar.create_event(event)):
            outcome.created += 1

    for item in diff.update:
        details = {"title": item.desired.title, "day": item.desired.day_key, "fields": item.fields}
        if _run(
            "update_event",
            item.desired.identity,
            details,
            lambda item=item: calendar.update_event(item.existing, item.desired),
        ):
            outcome.updated += 1

    for existing in diff.delete:
        details = {"title": existing.title, "href": existing.href}
        if _run("delete_event", existing.identity, details, lambda existing=existing: calendar.delete_event(existing)):
            outcome.deleted += 1

    return outcome
