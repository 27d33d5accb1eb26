import logging
from datetime import datetime, timezone
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

_WARNED_ZONES: set[str] = set()


def normalize_timezone_name(name: Optional[str]) -> Optional[str]:
    if not name:
        return None
    # Loop uploads "ETC/GMT+1" which zoneinfo rejects
    if name.startswith("ETC"):
        name = "Etc" + name[3:]
    return name


def get_zone(name: Optional[str]) -> Optional[ZoneInfo]:
    """
    Returns the ZoneInfo for a profile timezone, or None when the profile
    does not declare one (or declares one we cannot resolve).
    """
    name = normalize_timezone_name(name)
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        if name not in _WARNED_ZONES:
            _WARNED_ZONES.add(name)
            logger.warning("Unknown profile timezone, using process local time", extra={"timezone": name})
        return None


def seconds_since_midnight(mills: int, tz: Optional[ZoneInfo] = None) -> int:
    """
    Seconds elapsed since local midnight for an epoch-ms instant. Without a
    zone the process local time is used.
    """
    utc_dt = datetime.fromtimestamp(mills / 1000, tz=timezone.utc)
    local_dt = utc_dt.astimezone(tz) if tz else utc_dt.astimezone()
    return local_dt.hour * 3600 + local_dt.minute * 60 + local_dt.second


def parse_timestamp_ms(value: Any) -> Optional[int]:
    """
    Accepts epoch ms (int/float/numeric string), datetimes, or ISO-8601
    strings. Naive values are treated as UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip()
        try:
            return int(float(text))
        except ValueError:
            pass
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            logger.warning("Unparseable timestamp", extra={"value": str(value)[:64]})
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def iso_from_ms(mills: int) -> str:
    return datetime.fromtimestamp(mills / 1000, tz=timezone.utc).isoformat().replace("+00:00", "Z")
