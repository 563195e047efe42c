from __future__ import annotations

import copy
import errno
import os
import threading
from pathlib import Path
from typing import Any

import yaml

from gigsync.errors import ConfigurationError
from gigsync.models import AppConfig, default_app_config

CONFIG_PATH_ENV = "GIGSYNC_CONFIG_PATH"
CALENDAR_ID_ENV = "GIGSYNC_CALENDAR_ID"
DEFAULT_CONFIG_PATH = "config.yaml"

MASK = "***"
# (section, key) pairs never returned in clear by the admin API.
SECRET_FIELDS = (("caldav", "password"),)


def _deep_merge(base: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def resolve_calendar_id(config: AppConfig) -> str:
    """The target calendar: ``GIGSYNC_CALENDAR_ID`` first, then ``calendar.calendar_id``."""
    calendar_id = os.getenv(CALENDAR_ID_ENV, "").strip() or config.calendar.calendar_id
    if not calendar_id:
        raise ConfigurationError("calendar_id", f"set calendar.calendar_id or {CALENDAR_ID_ENV}")
    return calendar_id


def _render(config: AppConfig) -> str:
    return yaml.safe_dump(config.to_dict(), sort_keys=False, allow_unicode=True, default_flow_style=False)


class ConfigManager:
    """YAML-backed ``AppConfig`` with defaults written on first use."""

    def __init__(self, config_path: str | os.PathLike[str]) -> None:
        self.config_path = Path(config_path)
        self._lock = threading.RLock()
        if not self.config_path.exists():
            self.save(default_app_config())

    @classmethod
    def from_env(cls) -> ConfigManager:
        return cls(os.getenv(CONFIG_PATH_ENV, "").strip() or DEFAULT_CONFIG_PATH)

    def load(self) -> AppConfig:
        with self._lock:
            text = self.config_path.read_text(encoding="utf-8")
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise ConfigurationError("config", f"{self.config_path}: {exc}") from exc
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigurationError("config", f"{self.config_path} must hold a mapping of sections")
        return AppConfig.from_dict(data)

    def _write(self, path: Path, text: str) -> None:
        path.write_text(text, encoding="utf-8")

    def save(self, config: AppConfig) -> None:
        text = _render(config)
        with self._lock:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = Path(f"{self.config_path}.tmp")
            self._write(tmp_path, text)
            try:
                tmp_path.replace(self.config_path)
            except OSError as exc:
                # A bind-mounted config file cannot be replaced, only rewritten.
                if exc.errno != errno.EBUSY:
                    raise
                self._write(self.config_path, text)
                tmp_path.unlink(missing_ok=True)

    def update(self, payload: dict[str, Any]) -> AppConfig:
        with self._lock:
            current = self.load().to_dict()
            unknown = sorted(name for name in payload if name not in current)
            if unknown:
                raise ConfigurationError("config:" + ",".join(unknown), "unknown section")
            config = AppConfig.from_dict(_deep_merge(current, payload))
            self.save(config)
            return config

    def masked(self) -> dict[str, Any]:
        config = self.load().to_dict()
        for section, key in SECRET_FIELDS:
            values = config.get(section)
            if isinstance(values, dict) and values.get(key):
                values[key] = MASK
        return config
