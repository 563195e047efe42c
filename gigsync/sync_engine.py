from __future__ import annotations

import logging
import time
import traceback
from datetime import date, datetime, timezone
from typing import Any, Callable

from gigsync.archive import move_past_rows
from gigsync.caldav_client import CalDAVService
from gigsync.config_manager import ConfigManager, resolve_calendar_id
from gigsync.dates import add_years, get_zone, today_in
from gigsync.desired_state import DesiredState, build_desired_state
from gigsync.diff import DiffResult, diff_events
from gigsync.errors import LockTimeout
from gigsync.locking import SerialLock
from gigsync.models import AppConfig, RunSummary, SyncResult
from gigsync.purge import purge_future_events
from gigsync.reconciler import ApplyOutcome, apply_actions, call_with_backoff
from gigsync.sheets_client import GoogleSheetsService
from gigsync.source_rows import ColumnMap, compact_and_sort, read_source_rows, resolve_columns
from gigsync.state_store import HEADER_ROW_KEY, IDENTITY_COLUMN_KEY, LAST_RUN_SUMMARY_KEY, StateStore
from gigsync.venues import VenueAliasTable

logger = logging.getLogger(__name__)


def _elapsed_ms(started_at: datetime) -> int:
    return int((datetime.now(timezone.utc) - started_at).total_seconds() * 1000)


def _resolve_source_columns(config: AppConfig, worksheet: Any) -> tuple[Any, ColumnMap]:
    grid = worksheet.get_grid()
    columns = resolve_columns(
        grid.display,
        config.sheets.columns,
        scan_rows=config.sheets.header_scan_rows,
        fallback_row=config.sheets.header_row,
    )
    return grid, columns


def _describe_actions(diff: DiffResult) -> list[str]:
    lines: list[str] = []
    for event in diff.create:
        lines.append(f"  create {event.day_key} {event.title} @ {event.location.splitlines()[0]}")
    for item in diff.update:
        lines.append(f"  update {item.desired.day_key} {item.desired.title} ({', '.join(item.fields)})")
    for event in diff.delete:
        day = event.start_day.isoformat() if event.start_day else "?"
        lines.append(f"  delete {day} {event.title}")
    return lines


class SyncEngine:
    def __init__(
        self,
        config_manager: ConfigManager,
        state_store: StateStore,
        lock: SerialLock | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config_manager = config_manager
        self.state_store = state_store
        self.lock = lock or SerialLock()
        self.sleep = sleep

    def _record_error(
        self,
        *,
        trigger: str,
        kind: str,
        started_at: datetime,
        exc: Exception,
        run_id: int | None,
        dry_run: bool = False,
    ) -> SyncResult:
        duration_ms = _elapsed_ms(started_at)
        error_message = f"{type(exc).__name__}: {exc}"
        logger.error("%s run failed: %s", kind, error_message)
        if run_id is None:
            run_id = self.state_store.record_sync_run(
                trigger=trigger,
                kind=kind,
                status="error",
                message=error_message,
                duration_ms=duration_ms,
                changes_applied=0,
                dry_run=dry_run,
            )
        else:
            self.state_store.finish_sync_run(
                run_id=run_id,
                status="error",
                message=error_message,
                duration_ms=duration_ms,
                changes_applied=0,
            )
        self.state_store.record_audit_event(
            target="system",
            identity=kind,
            action="run_error",
            details={
                "trigger": trigger,
                "error": error_message,
                "traceback": traceback.format_exc(limit=5),
            },
            run_id=run_id,
        )
        self.state_store.set_meta(LAST_RUN_SUMMARY_KEY, f"{kind} ({trigger}) failed\n{error_message}")
        return SyncResult(
            status="error",
            message=error_message,
            duration_ms=duration_ms,
            changes_applied=0,
            trigger=trigger,
            dry_run=dry_run,
        )

    def _skipped(self, *, trigger: str, kind: str, started_at: datetime, exc: LockTimeout, dry_run: bool = False) -> SyncResult:
        # Another run holds the lock; the next trigger picks the work up.
        logger.info("%s run (%s) skipped: %s", kind, trigger, exc)
        return SyncResult(
            status="skipped",
            message=str(exc),
            duration_ms=_elapsed_ms(started_at),
            changes_applied=0,
            trigger=trigger,
            dry_run=dry_run,
        )

    def _finish(
        self,
        *,
        run_id: int,
        trigger: str,
        kind: str,
        started_at: datetime,
        summary: RunSummary,
        changes_applied: int,
        dry_run: bool = False,
    ) -> SyncResult:
        duration_ms = _elapsed_ms(started_at)
        rendered = summary.render()
        self.state_store.set_meta(LAST_RUN_SUMMARY_KEY, rendered)
        message = summary.lines[-1] if summary.lines else ""
        self.state_store.finish_sync_run(
            run_id=run_id,
            status="success",
            message=rendered,
            duration_ms=duration_ms,
            changes_applied=changes_applied,
        )
        logger.info("%s run %d finished in %dms\n%s", kind, run_id, duration_ms, rendered)
        return SyncResult(
            status="success",
            message=f"{message} run_id={run_id}",
            duration_ms=duration_ms,
            changes_applied=changes_applied,
            trigger=trigger,
            dry_run=dry_run,
            summary=list(summary.lines),
        )

    def _locked_run(
        self,
        *,
        kind: str,
        trigger: str,
        body: Callable[[AppConfig, int, datetime], SyncResult],
        dry_run: bool = False,
    ) -> SyncResult:
        """Run ``body`` under the lock with a run row opened for its audit events."""
        started_at = datetime.now(timezone.utc)
        run_id: int | None = None
        try:
            config = self.config_manager.load()
            with self.lock.hold(config.sync.lock_timeout_seconds):
                run_id = self.state_store.start_sync_run(trigger=trigger, kind=kind, dry_run=dry_run)
                return body(config, run_id, started_at)
        except LockTimeout as exc:
            return self._skipped(trigger=trigger, kind=kind, started_at=started_at, exc=exc, dry_run=dry_run)
        except Exception as exc:
            return self._record_error(
                trigger=trigger,
                kind=kind,
                started_at=started_at,
                exc=exc,
                run_id=run_id,
                dry_run=dry_run,
            )

    def run_once(self, trigger: str = "manual", dry_run: bool = False, today: date | None = None) -> SyncResult:
        return self._locked_run(
            kind="reconcile",
            trigger=trigger,
            dry_run=dry_run,
            body=lambda config, run_id, started_at: self._reconcile(
                config, run_id=run_id, trigger=trigger, dry_run=dry_run, today=today, started_at=started_at
            ),
        )

    def _reconcile(
        self,
        config: AppConfig,
        *,
        run_id: int,
        trigger: str,
        dry_run: bool,
        today: date | None,
        started_at: datetime,
    ) -> SyncResult:
        zone = get_zone(config.sync.timezone)
        today = today or today_in(zone)
        horizon = add_years(today, config.sync.horizon_years)

        # Everything that can fail on configuration is checked before any write.
        calendar_id = resolve_calendar_id(config)
        sheets = GoogleSheetsService(config.sheets)
        source = sheets.worksheet(config.sheets.active_sheet)
        calendar = CalDAVService(config.caldav, calendar_id)
        calendar.ensure_available()
        grid, columns = _resolve_source_columns(config, source)
        identity_column = columns.require("identity")

        if not dry_run:
            grid = compact_and_sort(source, columns)
        self.state_store.set_meta(IDENTITY_COLUMN_KEY, str(identity_column))
        self.state_store.set_meta(HEADER_ROW_KEY, str(columns.header_row))

        desired = build_desired_state(
            read_source_rows(grid, columns),
            columns,
            VenueAliasTable.from_config(config.venues),
            today,
            config.sync.horizon_years,
            zone,
        )
        if not dry_run:
            self._write_back(source, desired, run_id=run_id, trigger=trigger, config=config)

        existing = calendar.fetch_tagged_events(today, horizon)
        diff = diff_events(desired.events, existing)

        outcome = ApplyOutcome()
        if not dry_run:
            outcome = apply_actions(
                calendar=calendar,
                diff=diff,
                pause_seconds=config.sync.mutation_pause_seconds,
                backoff_base_seconds=config.purge.backoff_base_seconds,
                backoff_max_seconds=config.purge.backoff_max_seconds,
                max_attempts=config.purge.max_retries,
                sleep=self.sleep,
                on_applied=lambda action, identity, details: self.state_store.record_audit_event(
                    target=calendar_id,
                    identity=identity,
                    action=action,
                    details={**details, "trigger": trigger},
                    run_id=run_id,
                ),
            )

        summary = self._reconcile_summary(
            trigger=trigger,
            dry_run=dry_run,
            today=today,
            horizon=horizon,
            desired=desired,
            existing_count=len(existing),
            diff=diff,
            outcome=outcome,
        )
        return self._finish(
            run_id=run_id,
            trigger=trigger,
            kind="reconcile",
            started_at=started_at,
            summary=summary,
            changes_applied=outcome.applied,
            dry_run=dry_run,
        )

    def _write_back(
        self, source: Any, desired: DesiredState, *, run_id: int, trigger: str, config: AppConfig
    ) -> None:
        if not desired.writes:
            return
        updates = [(write.row_index, write.column_index, write.value) for write in desired.writes]
        call_with_backoff(
            lambda: source.update_cells(updates),
            base_seconds=config.purge.backoff_base_seconds,
            max_seconds=config.purge.backoff_max_seconds,
            max_attempts=config.purge.max_retries,
            sleep=self.sleep,
        )
        for write in desired.writes:
            self.state_store.record_audit_event(
                target=source.title,
                identity=write.value if write.kind == "identity" else "",
                action=f"write_{write.kind}",
                details={"row": write.row_index + 1, "column": write.column_index + 1, "value": write.value, "trigger": trigger},
                run_id=run_id,
            )

    def _reconcile_summary(
        self,
        *,
        trigger: str,
        dry_run: bool,
        today: date,
        horizon: date,
        desired: DesiredState,
        existing_count: int,
        diff: DiffResult,
        outcome: ApplyOutcome,
    ) -> RunSummary:
        summary = RunSummary()
        summary.add(f"Reconcile ({trigger}) window {today.isoformat()} to {horizon.isoformat()}")
        if dry_run:
            summary.add("DRY RUN: no sheet or calendar changes were made")
        summary.add(
            f"Rows scanned: {desired.scanned}, skipped: {desired.skipped}, outside window: {desired.out_of_window}"
        )
        written = "pending" if dry_run else "written"
        summary.add(
            f"Identity cells {written}: {len(desired.identity_writes)}, venue cells {written}: {len(desired.venue_writes)}"
        )
        summary.add(f"Desired events: {len(desired.events)}, tagged calendar events: {existing_count}")
        if dry_run:
            summary.lines.extend(_describe_actions(diff))
            summary.add(f"Would create: {len(diff.create)}, update: {len(diff.update)}, delete: {len(diff.delete)}")
            return summary
        for failure in outcome.failures:
            summary.add(f"Failed: {failure}")
        summary.add(f"Created: {outcome.created}, updated: {outcome.updated}, deleted: {outcome.deleted}")
        return summary

    def run_archive(self, trigger: str = "manual", today: date | None = None) -> SyncResult:
        return self._locked_run(
            kind="archive",
            trigger=trigger,
            body=lambda config, run_id, started_at: self._archive(
                config, run_id=run_id, trigger=trigger, today=today, started_at=started_at
            ),
        )

    def _archive(
        self, config: AppConfig, *, run_id: int, trigger: str, today: date | None, started_at: datetime
    ) -> SyncResult:
        zone = get_zone(config.sync.timezone)
        today = today or today_in(zone)
        sheets = GoogleSheetsService(config.sheets)
        source = sheets.worksheet(config.sheets.active_sheet)
        archive = sheets.worksheet(config.sheets.archive_sheet)
        _, columns = _resolve_source_columns(config, source)

        outcome = move_past_rows(
            source=source,
            archive=archive,
            columns=columns,
            keywords=config.sheets.columns,
            today=today,
            zone=zone,
            scan_rows=config.sheets.header_scan_rows,
        )
        for moved in outcome.moved:
            self.state_store.record_audit_event(
                target=archive.title,
                identity="",
                action="archive_row",
                details={**moved, "trigger": trigger},
                run_id=run_id,
            )

        summary = RunSummary()
        summary.add(f"Archive ({trigger}) rows dated before {today.isoformat()}")
        for moved in outcome.moved:
            summary.add(f"  moved {moved['day']} {moved['artist']} @ {moved['venue']}")
        summary.add(f"Moved {outcome.count} rows from {source.title} to {archive.title}")
        return self._finish(
            run_id=run_id,
            trigger=trigger,
            kind="archive",
            started_at=started_at,
            summary=summary,
            changes_applied=outcome.count,
        )

    def run_daily(self, trigger: str = "scheduled") -> list[SyncResult]:
        archive_result = self.run_archive(trigger=trigger)
        return [archive_result, self.run_once(trigger=trigger)]

    def run_purge(self, trigger: str = "manual", today: date | None = None) -> SyncResult:
        return self._locked_run(
            kind="purge",
            trigger=trigger,
            body=lambda config, run_id, started_at: self._purge(
                config, run_id=run_id, trigger=trigger, today=today, started_at=started_at
            ),
        )

    def _purge(
        self, config: AppConfig, *, run_id: int, trigger: str, today: date | None, started_at: datetime
    ) -> SyncResult:
        zone = get_zone(config.sync.timezone)
        today = today or today_in(zone)
        calendar_id = resolve_calendar_id(config)
        calendar = CalDAVService(config.caldav, calendar_id)
        calendar.ensure_available()

        progress = purge_future_events(
            calendar=calendar,
            state_store=self.state_store,
            config=config.purge,
            start=today,
            end=add_years(today, config.sync.horizon_years),
            sleep=self.sleep,
            on_deleted=lambda event, removed: self.state_store.record_audit_event(
                target=calendar_id,
                identity=event.identity,
                action="purge_delete",
                details={"title": event.title, "href": event.href, "removed": removed, "trigger": trigger},
                run_id=run_id,
            ),
        )
        summary = RunSummary()
        summary.add(f"Purge ({trigger}) tagged events from {today.isoformat()}")
        summary.add(f"Deleted: {progress.deleted}, already gone: {progress.missing}")
        if progress.stalled:
            summary.add("Rate limit retries exhausted; the next invocation resumes from the cursor")
        if progress.finished:
            summary.add(f"Purge complete ({progress.total} events)")
        else:
            summary.add(f"Purge in progress: {progress.cursor}/{progress.total}")
        return self._finish(
            run_id=run_id,
            trigger=trigger,
            kind="purge",
            started_at=started_at,
            summary=summary,
            changes_applied=progress.deleted,
        )

    def is_relevant_edit(self, sheet: str, row: int, column: int) -> bool:
        """Whether a sheet edit (1-based row/column) should schedule a reconcile."""
        config = self.config_manager.load()
        if sheet and sheet != config.sheets.active_sheet:
            return False
        header_row = self.state_store.get_meta(HEADER_ROW_KEY)
        if header_row is not None and row <= int(header_row) + 1:
            return False
        identity_column = self.state_store.get_meta(IDENTITY_COLUMN_KEY)
        if identity_column is not None and column == int(identity_column) + 1:
            return False
        return True

    def last_summary(self) -> str:
        return self.state_store.get_meta(LAST_RUN_SUMMARY_KEY) or ""
