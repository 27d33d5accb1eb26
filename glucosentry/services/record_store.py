"""
Canonical in-memory state of one Nightscout site.

Incoming payloads are either full snapshots or deltas. Time-series kinds
(glucose, meter, calibration, device status) are reconciled by ``mills``;
treatments and food by ``_id`` plus an optional ``action`` tag. After every
receive the treatment list is split into the derived views used by the
plugins (temp basals, profile switches, temp targets...).
"""
import logging
from operator import attrgetter
from typing import Any, Iterable, Optional, Sequence, TypeVar

from glucosentry.core.constants import (
    DEVICE_STATUS_FIELDS,
    DEVICE_STATUS_HISTORY,
    MMOL_TO_MGDL,
    TWO_DAYS,
    UNITS_MGDL,
    UNITS_MMOL,
)
from glucosentry.models.records import (
    Calibration,
    DeviceStatus,
    Food,
    GlucoseReading,
    InboundPayload,
    MeterReading,
    Record,
    Treatment,
)
from glucosentry.utils.times import mins, msecs, now_ms

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=Record)

# Below this a temp target cannot be a realistic mg/dL value
MMOL_TARGET_HEURISTIC = 20


def sort_by_mills(records: Iterable[R]) -> list[R]:
    return sorted(records, key=attrgetter("mills"))


def merge_data_update(
    is_delta: bool,
    cached: Optional[Sequence[R]],
    received: Optional[Sequence[R]],
    max_age: Optional[int] = None,
    now: Optional[int] = None,
) -> list[R]:
    if received is None or (is_delta and not received):
        return list(cached or [])
    if not is_delta:
        return list(received)

    now = now_ms() if now is None else now
    cutoff = now - (max_age or TWO_DAYS)
    retained = [record for record in (cached or []) if record.mills > cutoff]
    known_mills = {record.mills for record in retained}

    updates: dict[int, R] = {}
    new: list[R] = []
    for record in received:
        if record.mills in known_mills:
            updates.setdefault(record.mills, record)
        else:
            new.append(record)

    merged = [updates.get(record.mills, record) for record in retained]
    return sort_by_mills(merged + new)


def _index_of_id(records: Sequence[Record], record_id: Optional[str]) -> int:
    if not record_id:
        return -1
    for index, record in enumerate(records):
        if record.id == record_id:
            return index
    return -1


def merge_treatment_update(
    is_delta: bool,
    cached: Optional[Sequence[R]],
    received: Optional[Sequence[R]],
) -> list[R]:
    if received is None or (is_delta and not received):
        return list(cached or [])
    if not is_delta:
        return list(received)

    merged = list(cached or [])
    for record in received:
        action = getattr(record, "action", None)
        index = _index_of_id(merged, record.id)

        if not action:
            if index >= 0:
                merged[index] = record
            else:
                merged.append(record)
            continue

        if index < 0:
            logger.debug("Delta action for unknown record ignored", extra={"action": action, "id": record.id})
            continue

        if action == "remove":
            del merged[index]
        elif action == "update":
            merged[index] = record.model_copy(update={"action": None})
        else:
            logger.warning("Unsupported delta action", extra={"action": action, "id": record.id})

    return sort_by_mills(merged)


def _cut_if_in_interval(base: Treatment, end: Treatment) -> None:
    if not base.duration:
        return
    base_end = base.mills + mins(base.duration).msecs
    if base.mills < end.mills < base_end:
        base.duration = msecs(end.mills - base.mills).mins
        if end.profile:
            base.cuttedby = end.profile
            end.cutting = base.profile


def process_durations(treatments: Sequence[Treatment], keep_zero_duration: bool = False) -> list[Treatment]:
    """
    Truncates duration-bearing treatments at the first later end event or
    overlapping treatment that starts inside them. Durations only ever shrink.
    """
    seen: set[int] = set()
    unique: list[Treatment] = []
    for treatment in treatments:
        if treatment.mills in seen:
            continue
        seen.add(treatment.mills)
        unique.append(treatment)

    end_events = [t for t in unique if not t.duration]

    for treatment in unique:
        for end in end_events:
            _cut_if_in_interval(treatment, end)

    for treatment in unique:
        for other in unique:
            _cut_if_in_interval(treatment, other)

    if keep_zero_duration:
        return unique
    return [t for t in unique if t.duration]


def _below_heuristic(top: float, bottom: float) -> bool:
    return top < MMOL_TARGET_HEURISTIC or bottom < MMOL_TARGET_HEURISTIC


def convert_temp_target_units(treatments: Iterable[Treatment]) -> list[Treatment]:
    converted: list[Treatment] = []
    for treatment in treatments:
        t = treatment.model_copy(deep=True)
        # only targets carrying both bounds are considered
        if t.targetTop and t.targetBottom:
            # HEURISTIC: uploaders mis-tag mmol targets as mg/dl, so any target under 20
            # is read as mmol/L. A genuine mg/dL target below 20 would be misconverted.
            # Do not change without product sign-off.
            if t.units == UNITS_MMOL or _below_heuristic(t.targetTop, t.targetBottom):
                t.targetTop = t.targetTop * MMOL_TO_MGDL
                t.targetBottom = t.targetBottom * MMOL_TO_MGDL
                t.units = UNITS_MGDL
        converted.append(t)
    return converted


class RecordStore:
    def __init__(self, retention_ms: int = TWO_DAYS) -> None:
        self.retention_ms = retention_ms
        self.sgvs: list[GlucoseReading] = []
        self.mbgs: list[MeterReading] = []
        self.cals: list[Calibration] = []
        self.treatments: list[Treatment] = []
        self.food: list[Food] = []
        self.devicestatus: list[DeviceStatus] = []
        self.profiles: list[dict[str, Any]] = []
        self.dbstats: dict[str, Any] = {}
        self.last_updated: int = 0

        self.sitechange_treatments: list[Treatment] = []
        self.insulinchange_treatments: list[Treatment] = []
        self.battery_treatments: list[Treatment] = []
        self.sensor_treatments: list[Treatment] = []
        self.combobolus_treatments: list[Treatment] = []
        self.profile_treatments: list[Treatment] = []
        self.tempbasal_treatments: list[Treatment] = []
        self.temp_target_treatments: list[Treatment] = []

    def receive(self, payload: InboundPayload, now: Optional[int] = None) -> None:
        now = now_ms() if now is None else now
        delta = payload.delta

        self.sgvs = merge_data_update(delta, self.sgvs, payload.sgvs, self.retention_ms, now)
        self.mbgs = merge_data_update(delta, self.mbgs, payload.mbgs, self.retention_ms, now)
        self.cals = merge_data_update(delta, self.cals, payload.cals, self.retention_ms, now)
        self.devicestatus = merge_data_update(delta, self.devicestatus, payload.devicestatus, self.retention_ms, now)

        self.treatments = merge_treatment_update(delta, self.treatments, payload.treatments)
        self.food = merge_treatment_update(delta, self.food, payload.food)

        if payload.profiles:
            self.profiles = list(payload.profiles)

        if payload.dbstats and payload.dbstats.get("dataSize"):
            self.dbstats = dict(payload.dbstats)

        self.process_treatments()
        self.last_updated = payload.last_updated or now
        logger.debug(
            "Payload merged",
            extra={"delta": delta, "sgvs": len(self.sgvs), "treatments": len(self.treatments)},
        )

    def process_treatments(self, preserve_original: bool = False) -> None:
        treatments = self.treatments

        def contains(event_type: str) -> list[Treatment]:
            found = [t for t in treatments if t.eventType and event_type in t.eventType]
            if preserve_original:
                found = [t.model_copy(deep=True) for t in found]
            return sort_by_mills(found)

        def exact(event_type: str) -> list[Treatment]:
            found = [t for t in treatments if t.eventType == event_type]
            if preserve_original:
                found = [t.model_copy(deep=True) for t in found]
            return sort_by_mills(found)

        self.sitechange_treatments = contains("Site Change")
        self.insulinchange_treatments = contains("Insulin Change")
        self.battery_treatments = contains("Pump Battery Change")
        self.sensor_treatments = contains("Sensor")
        self.combobolus_treatments = exact("Combo Bolus")

        self.profile_treatments = process_durations(exact("Profile Switch"), keep_zero_duration=True)
        self.tempbasal_treatments = process_durations(contains("Temp Basal"), keep_zero_duration=False)
        self.temp_target_treatments = process_durations(
            convert_temp_target_units(contains("Temporary Target")), keep_zero_duration=False
        )

    def recent_device_status(self, time: int) -> list[DeviceStatus]:
        """Latest few statuses per (device, sub-document) pair at ``time``."""
        by_pair: dict[tuple[str, str], list[DeviceStatus]] = {}
        for status in self.devicestatus:
            if status.mills > time:
                continue
            for field in DEVICE_STATUS_FIELDS:
                if getattr(status, field) is not None:
                    by_pair.setdefault((status.device or "", field), []).append(status)

        recent: dict[Any, DeviceStatus] = {}
        for statuses in by_pair.values():
            for status in sort_by_mills(statuses)[-DEVICE_STATUS_HISTORY:]:
                recent[status.id or ("obj", id(status))] = status
        return sort_by_mills(recent.values())

    def last_calibration(self) -> Optional[Calibration]:
        return self.cals[-1] if self.cals else None
