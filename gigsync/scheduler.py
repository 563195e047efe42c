from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from gigsync.config_manager import ConfigManager
from gigsync.dates import get_zone
from gigsync.state_store import LAST_EDIT_KEY
from gigsync.sync_engine import SyncEngine

logger = logging.getLogger(__name__)


def seconds_until_daily_run(now: datetime, hour: int, zone: Any) -> float:
    local_now = now.astimezone(zone)
    target = local_now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if target <= local_now:
        target = target + timedelta(days=1)
    return max(1.0, (target - local_now).total_seconds())


class DebounceScheduler:
    """Trailing-edge debounce for sheet edit notifications.

    Every edit stores its timestamp in the state store and replaces the
    pending timer. When a timer fires it only calls back if no edit landed
    within the guard window; otherwise a later timer is already queued.
    """

    def __init__(
        self,
        state_store: Any,
        callback: Callable[[], Any],
        delay_seconds: float,
        guard_seconds: float,
        clock: Callable[[], float] = time.time,
        timer_factory: Callable[..., Any] = threading.Timer,
    ) -> None:
        if guard_seconds >= delay_seconds:
            raise ValueError("guard_seconds must be shorter than delay_seconds")
        self.state_store = state_store
        self.callback = callback
        self.delay_seconds = delay_seconds
        self.guard_seconds = guard_seconds
        self.clock = clock
        self.timer_factory = timer_factory
        self._lock = threading.Lock()
        self._timer: Any = None

    def notify_edit(self) -> None:
        with self._lock:
            self.state_store.set_meta(LAST_EDIT_KEY, repr(self.clock()))
            if self._timer is not None:
                self._timer.cancel()
            timer = self.timer_factory(self.delay_seconds, self.fire)
            timer.daemon = True
            self._timer = timer
            timer.start()

    def fire(self) -> bool:
        raw = self.state_store.get_meta(LAST_EDIT_KEY)
        last_edit = float(raw) if raw else 0.0
        elapsed = self.clock() - last_edit
        if elapsed < self.guard_seconds:
            logger.debug("Debounced run skipped, last edit %.1fs ago", elapsed)
            return False
        self.callback()
        return True

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None


class SyncScheduler:
    def __init__(self, sync_engine: SyncEngine, config_manager: ConfigManager) -> None:
        self.sync_engine = sync_engine
        self.config_manager = config_manager
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._manual_trigger_event = threading.Event()
        sync_config = config_manager.load().sync
        self.debouncer = DebounceScheduler(
            sync_engine.state_store,
            lambda: sync_engine.run_once(trigger="edit"),
            delay_seconds=sync_config.debounce_seconds,
            guard_seconds=sync_config.guard_seconds,
        )

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="gigsync-daily-scheduler", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        self._manual_trigger_event.set()
        self.debouncer.cancel()
        if self._thread:
            self._thread.join(timeout=5)

    def trigger_manual(self) -> None:
        self._manual_trigger_event.set()

    def notify_edit(self, sheet: str, row: int, column: int) -> bool:
        if not self.sync_engine.is_relevant_edit(sheet, row, column):
            return False
        self.debouncer.notify_edit()
        return True

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            config = self.config_manager.load()
            wait_seconds = seconds_until_daily_run(
                datetime.now(timezone.utc), config.sync.daily_hour, get_zone(config.sync.timezone)
            )
            manual = self._manual_trigger_event.wait(timeout=wait_seconds)
            self._manual_trigger_event.clear()
            if self._stop_event.is_set():
                break
            if manual:
                self.sync_engine.run_once(trigger="manual")
            else:
                self.sync_engine.run_daily(trigger="scheduled")
