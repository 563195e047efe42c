from __future__ import annotations

import os
from typing import Any

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from gigsync.config_manager import ConfigManager
from gigsync.errors import ConfigurationError
from gigsync.scheduler import SyncScheduler
from gigsync.state_store import StateStore
from gigsync.sync_engine import SyncEngine


class ConfigUpdateRequest(BaseModel):
    payload: dict[str, Any] = Field(default_factory=dict)


class SyncRunRequest(BaseModel):
    dry_run: bool = False


class SheetEditRequest(BaseModel):
    sheet: str = ""
    row: int = Field(default=0, ge=0)
    column: int = Field(default=0, ge=0)


class AppContext:
    def __init__(self, config_manager: ConfigManager, state_path: str) -> None:
        self.config_manager = config_manager
        self.state_store = StateStore(state_path)
        self.sync_engine = SyncEngine(self.config_manager, self.state_store)
        self.scheduler = SyncScheduler(self.sync_engine, self.config_manager)


def _sanitize_config_payload(payload: dict[str, Any], current: dict[str, Any]) -> dict[str, Any]:
    sanitized = dict(payload)
    current_caldav_password = str(current.get("caldav", {}).get("password", ""))

    caldav = sanitized.get("caldav")
    if isinstance(caldav, dict):
        password = caldav.get("password")
        if password is not None:
            password_text = str(password).strip()
            if password_text in {"", "***"}:
                if current_caldav_password:
                    caldav.pop("password", None)
                else:
                    caldav["password"] = ""
        if not caldav:
            sanitized.pop("caldav", None)
    return sanitized


def create_app() -> FastAPI:
    state_path = os.getenv("GIGSYNC_STATE_PATH", "data/state.db")
    context = AppContext(config_manager=ConfigManager.from_env(), state_path=state_path)

    app = FastAPI(title="gigsync", version="0.1.0")
    app.state.context = context

    @app.on_event("startup")
    def _startup() -> None:
        app.state.context.scheduler.start()

    @app.on_event("shutdown")
    def _shutdown() -> None:
        app.state.context.scheduler.stop()

    @app.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/config")
    def get_config() -> dict[str, Any]:
        return app.state.context.config_manager.masked()

    @app.put("/api/config")
    def put_config(request: ConfigUpdateRequest) -> dict[str, Any]:
        if not isinstance(request.payload, dict):
            raise HTTPException(status_code=400, detail="payload must be an object")
        current = app.state.context.config_manager.load().to_dict()
        sanitized_payload = _sanitize_config_payload(request.payload, current)
        try:
            updated = app.state.context.config_manager.update(sanitized_payload)
        except (ConfigurationError, TypeError, ValueError) as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {
            "message": "config updated",
            "config": updated.to_dict(),
        }

    @app.post("/api/sync/run")
    def run_sync(request: SyncRunRequest) -> dict[str, Any]:
        result = app.state.context.sync_engine.run_once(trigger="manual", dry_run=request.dry_run)
        return {"message": "sync finished", "result": result.to_dict()}

    @app.post("/api/sync/trigger")
    def trigger_sync() -> dict[str, str]:
        app.state.context.scheduler.trigger_manual()
        return {"message": "sync triggered"}

    @app.post("/api/archive/run")
    def run_archive() -> dict[str, Any]:
        result = app.state.context.sync_engine.run_archive(trigger="manual")
        return {"message": "archive finished", "result": result.to_dict()}

    @app.post("/api/purge/run")
    def run_purge() -> dict[str, Any]:
        result = app.state.context.sync_engine.run_purge(trigger="manual")
        return {"message": "purge step finished", "result": result.to_dict()}

    @app.post("/api/sheet/edit")
    def sheet_edit(request: SheetEditRequest) -> dict[str, Any]:
        scheduled = app.state.context.scheduler.notify_edit(request.sheet, request.row, request.column)
        return {"scheduled": scheduled}

    @app.get("/api/sync/status")
    def sync_status(limit: int = 20) -> dict[str, Any]:
        return {"runs": app.state.context.state_store.recent_sync_runs(limit=limit)}

    @app.get("/api/sync/summary")
    def sync_summary() -> dict[str, Any]:
        summary = app.state.context.sync_engine.last_summary()
        return {"summary": summary, "lines": summary.splitlines()}

    @app.get("/api/audit/events")
    def audit_events(limit: int = 100, action: str | None = None, run_id: int | None = None) -> dict[str, Any]:
        events = app.state.context.state_store.recent_audit_events(limit=limit, action=action, run_id=run_id)
        return {"events": events}

    return app
