import json
import logging
import os
import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from glucosentry.core.constants import (
    ALARM_TYPE_PLUGINS,
    DEFAULT_FEATURES,
    TWO_DAYS,
    UNITS_MGDL,
    UNITS_MMOL,
)
from glucosentry.models.levels import Level
from glucosentry.utils.units import mmol_to_mgdl

logger = logging.getLogger(__name__)

# Plugins that may receive extended settings from "<PLUGIN>_<KEY>" env vars
PLUGIN_NAMES = (
    "bgnow",
    "rawbg",
    "direction",
    "ar2",
    "simplealarms",
    "errorcodes",
    "iob",
    "cob",
    "boluswizardpreview",
    "basal",
    "timeago",
    "runtimestate",
)


def _split_words(v: Any) -> Any:
    if isinstance(v, str):
        return [part for part in re.split(r"[\s,]+", v) if part]
    return v


def coerce_setting(value: str) -> Any:
    """Env values arrive as strings; turn the obvious ones into bools/numbers."""
    lowered = value.strip().lower()
    if lowered in ("true", "on", "yes"):
        return True
    if lowered in ("false", "off", "no"):
        return False
    try:
        number = float(value)
    except ValueError:
        return value
    return int(number) if number.is_integer() and "." not in value else number


class Thresholds(BaseModel):
    bg_high: float = 260
    bg_target_top: float = 180
    bg_target_bottom: float = 80
    bg_low: float = 55

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MonitorSettings(BaseModel):
    units: str = UNITS_MGDL
    thresholds: Thresholds = Field(default_factory=Thresholds)

    alarm_urgent_high: bool = True
    alarm_urgent_high_mins: list[int] = Field(default_factory=lambda: [30, 60, 90, 120])
    alarm_high: bool = True
    alarm_high_mins: list[int] = Field(default_factory=lambda: [30, 60, 90, 120])
    alarm_low: bool = True
    alarm_low_mins: list[int] = Field(default_factory=lambda: [15, 30, 45, 60])
    alarm_urgent_low: bool = True
    alarm_urgent_low_mins: list[int] = Field(default_factory=lambda: [15, 30, 45])
    alarm_urgent_mins: list[int] = Field(default_factory=lambda: [30, 60, 90, 120])
    alarm_warn_mins: list[int] = Field(default_factory=lambda: [30, 60, 90, 120])

    alarm_timeago_warn: bool = True
    alarm_timeago_warn_mins: int = 15
    alarm_timeago_urgent: bool = True
    alarm_timeago_urgent_mins: int = 30

    alarm_types: list[str] = Field(default_factory=list)
    enable: list[str] = Field(default_factory=list)
    disable: list[str] = Field(default_factory=list)

    show_raw_bg: str = Field(default="never", alias="showRawbg")
    insulin_rounding: str = Field(default="generic", description="'generic' or 'medtronic' display rounding")
    extended_settings: dict[str, dict[str, Any]] = Field(default_factory=dict)
    retention_ms: int = Field(default=TWO_DAYS, ge=0)

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @field_validator("units", mode="before")
    @classmethod
    def normalize_units(cls, v: Any) -> str:
        if v and str(v).lower().startswith("mmol"):
            return UNITS_MMOL
        return UNITS_MGDL

    @field_validator(
        "alarm_urgent_high_mins",
        "alarm_high_mins",
        "alarm_low_mins",
        "alarm_urgent_low_mins",
        "alarm_urgent_mins",
        "alarm_warn_mins",
        "alarm_types",
        "enable",
        "disable",
        mode="before",
    )
    @classmethod
    def split_lists(cls, v: Any) -> Any:
        return _split_words(v)

    @field_validator("alarm_types")
    @classmethod
    def known_alarm_types(cls, v: list[str]) -> list[str]:
        return [t for t in v if t in ALARM_TYPE_PLUGINS]

    @field_validator("show_raw_bg", mode="before")
    @classmethod
    def normalize_show_raw(cls, v: Any) -> str:
        v = str(v or "never").lower()
        return v if v in ("never", "always", "noise") else "never"

    @model_validator(mode="after")
    def resolve(self) -> "MonitorSettings":
        self._convert_mmol_thresholds()
        self._verify_thresholds()
        self._resolve_features()
        return self

    def _convert_mmol_thresholds(self) -> None:
        t = self.thresholds
        if t.bg_high < 50:
            t.bg_high = mmol_to_mgdl(t.bg_high)
            t.bg_target_top = mmol_to_mgdl(t.bg_target_top)
            t.bg_target_bottom = mmol_to_mgdl(t.bg_target_bottom)
            t.bg_low = mmol_to_mgdl(t.bg_low)
            logger.info("Thresholds given in mmol/L converted to mg/dL", extra={"thresholds": t.model_dump()})

    def _verify_thresholds(self) -> None:
        t = self.thresholds
        if t.bg_target_bottom >= t.bg_target_top:
            logger.warning("bgTargetBottom must be below bgTargetTop, adjusting", extra={"thresholds": t.model_dump()})
            t.bg_target_bottom = t.bg_target_top - 1
        if t.bg_low >= t.bg_target_bottom:
            logger.warning("bgLow must be below bgTargetBottom, adjusting", extra={"thresholds": t.model_dump()})
            t.bg_low = t.bg_target_bottom - 1
        if t.bg_high <= t.bg_target_top:
            logger.warning("bgHigh must be above bgTargetTop, adjusting", extra={"thresholds": t.model_dump()})
            t.bg_high = t.bg_target_top + 1

    def _resolve_features(self) -> None:
        enabled = list(self.enable)
        if not self.alarm_types:
            self.alarm_types = ["predict"] if "ar2" in enabled else ["simple"]
        for alarm_type in self.alarm_types:
            enabled.append(ALARM_TYPE_PLUGINS[alarm_type])
        enabled.extend(DEFAULT_FEATURES)
        resolved: list[str] = []
        for feature in enabled:
            if feature not in resolved and feature not in self.disable:
                resolved.append(feature)
        self.enable = resolved

    @property
    def is_mmol(self) -> bool:
        return self.units == UNITS_MMOL

    def is_enabled(self, feature: str | list[str]) -> bool:
        features = [feature] if isinstance(feature, str) else feature
        return any(f in self.enable for f in features)

    def plugin_settings(self, name: str) -> dict[str, Any]:
        return self.extended_settings.get(name, {})

    def is_alarm_event_enabled(self, notify: Any) -> bool:
        event_name = getattr(notify, "event_name", None)
        level = getattr(notify, "level", None)
        if event_name not in ("high", "low"):
            return True
        if event_name == "high":
            if level == Level.URGENT:
                return self.alarm_urgent_high
            return level == Level.WARN and self.alarm_high
        if level == Level.URGENT:
            return self.alarm_urgent_low
        return level == Level.WARN and self.alarm_low

    def snooze_mins_for_alarm_event(self, notify: Any) -> list[int]:
        event_name = getattr(notify, "event_name", None)
        level = getattr(notify, "level", None)
        if event_name == "high" and level == Level.URGENT and self.alarm_urgent_high:
            return self.alarm_urgent_high_mins
        if event_name == "high" and level == Level.WARN and self.alarm_high:
            return self.alarm_high_mins
        if event_name == "low" and level == Level.URGENT and self.alarm_urgent_low:
            return self.alarm_urgent_low_mins
        if event_name == "low" and level == Level.WARN and self.alarm_low:
            return self.alarm_low_mins
        if level == Level.URGENT:
            return self.alarm_urgent_mins
        if level == Level.WARN:
            return self.alarm_warn_mins
        return []

    def snooze_first_mins_for_alarm_event(self, notify: Any) -> int:
        snooze_times = self.snooze_mins_for_alarm_event(notify)
        return snooze_times[0] if snooze_times else 30


class NightscoutConfig(BaseModel):
    base_url: Optional[HttpUrl] = None
    api_secret: Optional[str] = Field(default=None)
    token: Optional[str] = Field(default=None)
    timeout_seconds: int = Field(default=10, ge=1)


class Settings(BaseModel):
    monitor: MonitorSettings = Field(default_factory=MonitorSettings)
    nightscout: NightscoutConfig = Field(default_factory=NightscoutConfig)


DEFAULT_CONFIG_PATH = Path(os.environ.get("GLUCOSENTRY_CONFIG", "config/config.json"))

# env var -> camelCase monitor setting
_MONITOR_ENV = {
    "DISPLAY_UNITS": "units",
    "ENABLE": "enable",
    "DISABLE": "disable",
    "ALARM_TYPES": "alarmTypes",
    "SHOW_RAWBG": "showRawbg",
    "INSULIN_ROUNDING": "insulinRounding",
    "ALARM_URGENT_HIGH": "alarmUrgentHigh",
    "ALARM_URGENT_HIGH_MINS": "alarmUrgentHighMins",
    "ALARM_HIGH": "alarmHigh",
    "ALARM_HIGH_MINS": "alarmHighMins",
    "ALARM_LOW": "alarmLow",
    "ALARM_LOW_MINS": "alarmLowMins",
    "ALARM_URGENT_LOW": "alarmUrgentLow",
    "ALARM_URGENT_LOW_MINS": "alarmUrgentLowMins",
    "ALARM_URGENT_MINS": "alarmUrgentMins",
    "ALARM_WARN_MINS": "alarmWarnMins",
    "ALARM_TIMEAGO_WARN": "alarmTimeagoWarn",
    "ALARM_TIMEAGO_WARN_MINS": "alarmTimeagoWarnMins",
    "ALARM_TIMEAGO_URGENT": "alarmTimeagoUrgent",
    "ALARM_TIMEAGO_URGENT_MINS": "alarmTimeagoUrgentMins",
}

_THRESHOLD_ENV = {
    "BG_HIGH": "bgHigh",
    "BG_TARGET_TOP": "bgTargetTop",
    "BG_TARGET_BOTTOM": "bgTargetBottom",
    "BG_LOW": "bgLow",
}


def _load_file_config(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with path.open("r", encoding="utf-8") as fh:
            return json.load(fh)
    except json.JSONDecodeError as exc:
        raise RuntimeError(f"Invalid JSON configuration at {path}") from exc


def _load_extended_env(environ: dict[str, str]) -> dict[str, dict[str, Any]]:
    extended: dict[str, dict[str, Any]] = {}
    for plugin in PLUGIN_NAMES:
        prefix = plugin.upper() + "_"
        for key, value in environ.items():
            if key.startswith(prefix) and len(key) > len(prefix):
                extended.setdefault(plugin, {})[key[len(prefix):].lower()] = coerce_setting(value)
    return extended


def _load_env(environ: Optional[dict[str, str]] = None) -> dict[str, Any]:
    environ = dict(os.environ if environ is None else environ)
    env_config: dict[str, Any] = {}

    base_url = environ.get("NIGHTSCOUT_BASE_URL") or environ.get("NIGHTSCOUT_URL")
    if base_url:
        env_config.setdefault("nightscout", {})["base_url"] = base_url

    api_secret = environ.get("NIGHTSCOUT_API_SECRET") or environ.get("API_SECRET")
    if api_secret:
        env_config.setdefault("nightscout", {})["api_secret"] = api_secret

    token = environ.get("NIGHTSCOUT_TOKEN")
    if token:
        env_config.setdefault("nightscout", {})["token"] = token

    timeout = environ.get("NIGHTSCOUT_TIMEOUT_SECONDS")
    if timeout:
        env_config.setdefault("nightscout", {})["timeout_seconds"] = int(timeout)

    for env_key, field in _MONITOR_ENV.items():
        if environ.get(env_key):
            env_config.setdefault("monitor", {})[field] = environ[env_key]

    for env_key, field in _THRESHOLD_ENV.items():
        if environ.get(env_key):
            env_config.setdefault("monitor", {}).setdefault("thresholds", {})[field] = float(environ[env_key])

    extended = _load_extended_env(environ)
    if extended:
        env_config.setdefault("monitor", {})["extendedSettings"] = extended

    return env_config


def merge_settings(env_config: dict[str, Any], file_config: dict[str, Any]) -> dict[str, Any]:
    merged: dict[str, Any] = {}
    merged["nightscout"] = {**file_config.get("nightscout", {}), **env_config.get("nightscout", {})}

    file_monitor = file_config.get("monitor", {})
    env_monitor = env_config.get("monitor", {})
    monitor = {**file_monitor, **env_monitor}
    monitor["thresholds"] = {**file_monitor.get("thresholds", {}), **env_monitor.get("thresholds", {})}
    extended = {plugin: dict(values) for plugin, values in file_monitor.get("extendedSettings", {}).items()}
    for plugin, values in env_monitor.get("extendedSettings", {}).items():
        extended.setdefault(plugin, {}).update(values)
    monitor["extendedSettings"] = extended
    merged["monitor"] = monitor
    return merged


def load_settings(environ: Optional[dict[str, str]] = None, config_path: Optional[Path] = None) -> Settings:
    env_config = _load_env(environ)
    file_config = _load_file_config(config_path or DEFAULT_CONFIG_PATH)
    merged = merge_settings(env_config=env_config, file_config=file_config)
    try:
        return Settings.model_validate(merged)
    except ValidationError as exc:
        raise RuntimeError(f"Configuration error: {exc}") from exc


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()


__all__ = ["MonitorSettings", "NightscoutConfig", "Settings", "Thresholds", "get_settings", "load_settings"]
