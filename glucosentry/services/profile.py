import json
import logging
import time as _time
from typing import Any, Callable, Hashable, Optional, Sequence

from pydantic import ValidationError

from glucosentry.core.constants import UNITS_MGDL, UNITS_MMOL
from glucosentry.models.properties import TempBasalResult
from glucosentry.models.records import ProfileRecord, ProfileSegmentSet, Treatment
from glucosentry.services.record_store import sort_by_mills
from glucosentry.utils.timezone import get_zone, normalize_timezone_name, parse_timestamp_ms, seconds_since_midnight
from glucosentry.utils.times import MS_PER_MINUTE, hours, mins, now_ms
from glucosentry.utils.units import round_half_up

logger = logging.getLogger(__name__)

CACHE_TTL_MS = 5000
SWITCH_SUFFIX = "@@@@@"
LEGACY_START_DATE = "1980-01-01"
VALUE_FIELDS = ("dia", "carbs_hr", "delay", "sens", "carbratio", "basal", "target_low", "target_high")

MISSING = object()


def _monotonic_ms() -> float:
    return _time.monotonic() * 1000


class TimedCache:
    """Small TTL map. Stored ``None`` values are cache hits too."""

    _PURGE_ABOVE = 2048

    def __init__(self, ttl_ms: int = CACHE_TTL_MS, clock: Optional[Callable[[], float]] = None) -> None:
        self.ttl_ms = ttl_ms
        self._clock = clock or _monotonic_ms
        self._entries: dict[Hashable, tuple[float, Any]] = {}

    def get(self, key: Hashable, default: Any = MISSING) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return default
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return default
        return value

    def put(self, key: Hashable, value: Any) -> Any:
        now = self._clock()
        if len(self._entries) > self._PURGE_ABOVE:
            self._entries = {k: v for k, v in self._entries.items() if v[0] > now}
        self._entries[key] = (now + self.ttl_ms, value)
        return value

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class TempBasalCache:
    """Remembers the last matched temp basal so nearby lookups skip the search."""

    def __init__(self) -> None:
        self._treatment: Optional[Treatment] = None

    def lookup(self, time: int) -> Optional[Treatment]:
        t = self._treatment
        if t is not None and t.endmills is not None and t.mills <= time < t.endmills:
            return t
        return None

    def remember(self, treatment: Treatment) -> None:
        self._treatment = treatment

    def invalidate(self) -> None:
        self._treatment = None


def time_string_to_seconds(value: str) -> int:
    parts = str(value).split(":")
    hours_part = int(parts[0]) if parts and parts[0] else 0
    minutes_part = int(parts[1]) if len(parts) > 1 and parts[1] else 0
    return hours_part * 3600 + minutes_part * 60


def convert_to_profile_store(profile: dict[str, Any]) -> dict[str, Any]:
    """Wraps a legacy single profile into a store with one 'Default' entry."""
    if profile.get("defaultProfile"):
        return profile
    return {
        "defaultProfile": "Default",
        "startDate": profile.get("startDate") or LEGACY_START_DATE,
        "store": {"Default": profile},
        "units": profile.get("units"),
        "convertedOnTheFly": True,
    }


def preprocess_segments(segments: ProfileSegmentSet) -> ProfileSegmentSet:
    for field in VALUE_FIELDS:
        value = getattr(segments, field)
        if isinstance(value, list):
            for segment in value:
                if segment.time:
                    segment.timeAsSeconds = time_string_to_seconds(segment.time)
    return segments


def _minute(time: int) -> int:
    return int(round_half_up(time / MS_PER_MINUTE)) * MS_PER_MINUTE


class ProfileResolver:
    """
    Point-in-time lookups over the user's therapy profiles.

    Lookups are cached for ``cache_ttl_ms`` keyed by the containing minute;
    ``update_treatments`` drops every cache.
    """

    def __init__(
        self,
        profiles: Optional[Sequence[dict[str, Any] | ProfileRecord]] = None,
        cache_ttl_ms: int = CACHE_TTL_MS,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.data: list[ProfileRecord] = []
        self.profile_treatments: list[Treatment] = []
        self.temp_basal_treatments: list[Treatment] = []
        self.combobolus_treatments: list[Treatment] = []
        self._cache = TimedCache(cache_ttl_ms, clock)
        self._temp_basal_cache = TempBasalCache()
        self._warned_no_timezone = False
        if profiles:
            self.load_data(profiles)

    def clear(self) -> None:
        self._cache.clear()
        self._temp_basal_cache.invalidate()
        self.data = []

    def load_data(self, profiles: Sequence[dict[str, Any] | ProfileRecord]) -> None:
        self.clear()
        records: list[ProfileRecord] = []
        for raw in profiles:
            try:
                record = self._to_record(raw)
            except ValidationError as exc:
                logger.warning("Skipping invalid profile document", extra={"error": str(exc)})
                continue
            records.append(record)
        self.data = sort_by_mills(records)
        self._warned_no_timezone = False

    @staticmethod
    def _to_record(raw: dict[str, Any] | ProfileRecord) -> ProfileRecord:
        if isinstance(raw, ProfileRecord):
            record = raw.model_copy(deep=True)
        else:
            record = ProfileRecord.model_validate(convert_to_profile_store(dict(raw)))
        for segments in record.store.values():
            preprocess_segments(segments)
        mills = parse_timestamp_ms(record.startDate)
        record.mills = mills if mills is not None else now_ms()
        return record

    def has_data(self) -> bool:
        return bool(self.data)

    def profile_from_time(self, time: int) -> Optional[ProfileRecord]:
        if not self.data:
            return None
        current: Optional[ProfileRecord] = None
        for record in self.data:
            if record.mills <= time:
                current = record
        return current or self.data[0]

    def get_value_by_time(self, time: Optional[int], value_type: str, profile_name: Optional[str] = None) -> Optional[float]:
        if time is None:
            time = now_ms()
        key = ("value", _minute(time), value_type, profile_name)
        cached = self._cache.get(key)
        if cached is not MISSING:
            return cached

        percentage, timeshift = 100.0, 0.0
        # an explicitly named profile is read as stored
        active = self.active_profile_treatment_to_time(time) if profile_name is None else None
        if active is not None and active.CircadianPercentageProfile:
            percentage = active.percentage if active.percentage is not None else 100.0
            timeshift = active.timeshift or 0.0

        lookup_time = int(time + hours(timeshift).msecs)
        segments = self.get_current_profile(lookup_time, profile_name)
        raw = getattr(segments, value_type, None) if segments is not None else None

        result: Optional[float]
        if raw is None:
            result = None
        elif isinstance(raw, list):
            tz = get_zone(segments.timezone)
            if tz is None and not self._warned_no_timezone:
                self._warned_no_timezone = True
                logger.warning(
                    "Profile declares no usable timezone, time-of-day lookups use the process local zone",
                    extra={"timezone": segments.timezone},
                )
            seconds = seconds_since_midnight(_minute(lookup_time), tz)
            result = None
            for segment in raw:
                if segment.timeAsSeconds is not None and seconds >= segment.timeAsSeconds:
                    result = float(segment.value)
        else:
            result = float(raw)

        if result is not None and percentage > 0 and percentage != 100:
            if value_type in ("sens", "carbratio"):
                result = result * 100 / percentage
            elif value_type == "basal":
                result = result * percentage / 100

        return self._cache.put(key, result)

    def get_current_profile(self, time: Optional[int] = None, profile_name: Optional[str] = None) -> Optional[ProfileSegmentSet]:
        if time is None:
            time = now_ms()
        key = ("profile", _minute(time), profile_name)
        cached = self._cache.get(key)
        if cached is not MISSING:
            return cached

        record = self.profile_from_time(time)
        segments = None
        if record is not None:
            name = profile_name or self.active_profile_to_time(time)
            segments = record.store.get(name) if name else None
        return self._cache.put(key, segments)

    def active_profile_to_time(self, time: Optional[int] = None) -> Optional[str]:
        if not self.has_data():
            return None
        if time is None:
            time = now_ms()
        record = self.profile_from_time(time)
        name = record.defaultProfile
        treatment = self.active_profile_treatment_to_time(time)
        if treatment is not None:
            switch_key = self._switch_store_key(treatment)
            if switch_key in record.store:
                name = switch_key
        return name

    @staticmethod
    def _switch_store_key(treatment: Treatment) -> Optional[str]:
        if treatment.profileJson and treatment.profile:
            return f"{treatment.profile}{SWITCH_SUFFIX}{treatment.mills}"
        return treatment.profile

    def active_profile_treatment_to_time(self, time: int) -> Optional[Treatment]:
        key = ("treatment", _minute(time))
        cached = self._cache.get(key)
        if cached is not MISSING:
            return cached

        record = self.profile_from_time(time)
        if record is None:
            return None

        found: Optional[Treatment] = None
        for treatment in self.profile_treatments:
            if time >= treatment.mills and treatment.mills >= record.mills:
                duration = mins(treatment.duration or 0).msecs
                if duration != 0 and time < treatment.mills + duration:
                    found = treatment
                elif duration == 0:
                    found = treatment

        if found is not None and found.profileJson:
            self._inject_switch_profile(record, found)
        return self._cache.put(key, found)

    def _inject_switch_profile(self, record: ProfileRecord, treatment: Treatment) -> None:
        store_key = self._switch_store_key(treatment)
        if store_key in record.store:
            return
        try:
            segments = ProfileSegmentSet.model_validate(json.loads(treatment.profileJson))
        except (ValueError, ValidationError) as exc:
            logger.warning(
                "Profile switch carries an unreadable profileJson",
                extra={"profile": treatment.profile, "mills": treatment.mills, "error": str(exc)},
            )
            return
        record.store[store_key] = preprocess_segments(segments)

    @staticmethod
    def profile_switch_name(name: Optional[str]) -> Optional[str]:
        if not name:
            return name
        return name.split(SWITCH_SUFFIX)[0]

    def update_treatments(
        self,
        profile_treatments: Optional[Sequence[Treatment]] = None,
        tempbasal_treatments: Optional[Sequence[Treatment]] = None,
        combobolus_treatments: Optional[Sequence[Treatment]] = None,
    ) -> None:
        self.profile_treatments = sort_by_mills(profile_treatments or [])

        seen: set[int] = set()
        temp_basals: list[Treatment] = []
        for treatment in tempbasal_treatments or []:
            if treatment.mills in seen:
                continue
            seen.add(treatment.mills)
            endmills = treatment.mills + int(mins(treatment.duration or 0).msecs)
            temp_basals.append(treatment.model_copy(update={"endmills": endmills}))
        self.temp_basal_treatments = sort_by_mills(temp_basals)

        self.combobolus_treatments = sort_by_mills(combobolus_treatments or [])
        self._cache.clear()
        self._temp_basal_cache.invalidate()

    def temp_basal_treatment(self, time: int) -> Optional[Treatment]:
        hit = self._temp_basal_cache.lookup(time)
        if hit is not None:
            return hit

        treatments = self.temp_basal_treatments
        low, high = 0, len(treatments) - 1
        while low <= high:
            mid = (low + high) // 2
            candidate = treatments[mid]
            if candidate.mills <= time < candidate.endmills:
                self._temp_basal_cache.remember(candidate)
                return candidate
            if time < candidate.mills:
                high = mid - 1
            else:
                low = mid + 1
        return None

    def combo_bolus_treatment(self, time: int) -> Optional[Treatment]:
        for treatment in self.combobolus_treatments:
            duration = mins(treatment.duration or 0).msecs
            if treatment.mills < time < treatment.mills + duration:
                return treatment
        return None

    def get_temp_basal(self, time: int, profile_name: Optional[str] = None) -> TempBasalResult:
        key = ("tempbasal", _minute(time), profile_name)
        cached = self._cache.get(key)
        if cached is not MISSING:
            return cached

        basal = self.get_basal(time, profile_name)
        tempbasal = basal
        treatment = self.temp_basal_treatment(time)
        combo = self.combo_bolus_treatment(time)

        if treatment is not None and treatment.absolute is not None and (treatment.duration or 0) > 0:
            tempbasal = treatment.absolute
        elif treatment is not None and treatment.percent and basal is not None:
            tempbasal = basal * (100 + treatment.percent) / 100

        combobolusbasal = combo.relative if combo is not None and combo.relative else 0.0
        result = TempBasalResult(
            basal=basal,
            treatment=treatment,
            combobolustreatment=combo,
            tempbasal=tempbasal,
            combobolusbasal=combobolusbasal,
            totalbasal=tempbasal + combobolusbasal if tempbasal is not None else None,
        )
        return self._cache.put(key, result)

    def get_units(self, profile_name: Optional[str] = None) -> str:
        segments = self.get_current_profile(None, profile_name)
        units = segments.units if segments is not None else None
        if not units and self.data:
            units = self.profile_from_time(now_ms()).units
        if units and "mmol" in str(units).lower():
            return UNITS_MMOL
        return UNITS_MGDL

    def get_timezone(self, profile_name: Optional[str] = None) -> Optional[str]:
        segments = self.get_current_profile(None, profile_name)
        return normalize_timezone_name(segments.timezone if segments is not None else None)

    def list_basal_profiles(self) -> list[str]:
        if not self.has_data():
            return []
        current = self.active_profile_to_time()
        record = self.profile_from_time(now_ms())
        names = [current] if current else []
        for name in record.store:
            if name != current and SWITCH_SUFFIX not in name:
                names.append(name)
        return names

    def get_dia(self, time: Optional[int] = None, profile_name: Optional[str] = None) -> Optional[float]:
        return self.get_value_by_time(time, "dia", profile_name)

    def get_sensitivity(self, time: Optional[int] = None, profile_name: Optional[str] = None) -> Optional[float]:
        return self.get_value_by_time(time, "sens", profile_name)

    def get_carb_ratio(self, time: Optional[int] = None, profile_name: Optional[str] = None) -> Optional[float]:
        return self.get_value_by_time(time, "carbratio", profile_name)

    def get_carb_absorption_rate(self, time: Optional[int] = None, profile_name: Optional[str] = None) -> Optional[float]:
        return self.get_value_by_time(time, "carbs_hr", profile_name)

    def get_low_bg_target(self, time: Optional[int] = None, profile_name: Optional[str] = None) -> Optional[float]:
        return self.get_value_by_time(time, "target_low", profile_name)

    def get_high_bg_target(self, time: Optional[int] = None, profile_name: Optional[str] = None) -> Optional[float]:
        return self.get_value_by_time(time, "target_high", profile_name)

    def get_basal(self, time: Optional[int] = None, profile_name: Optional[str] = None) -> Optional[float]:
        return self.get_value_by_time(time, "basal", profile_name)
