from typing import Optional

from glucosentry.core.constants import BG_SENSOR_ERROR_MAX
from glucosentry.models.properties import BgNowResult, Bucket, DeltaResult, PillInfo
from glucosentry.models.records import GlucoseReading
from glucosentry.services.plugins.base import PROPERTIES_AND_PILL, Plugin
from glucosentry.utils.times import MS_PER_MINUTE, mins
from glucosentry.utils.units import format_number, round_half_up

BUCKET_COUNT = 4
BUCKET_MINS = 5
BUCKET_OFFSET = int(mins(2.5).msecs)
# Beyond this gap the previous bucket is extrapolated back to 5 minutes
INTERPOLATE_AFTER_MINS = 9


def _not_error(entry: GlucoseReading) -> bool:
    return entry.mgdl is not None and entry.mgdl > BG_SENSOR_ERROR_MAX


def _is_error(entry: GlucoseReading) -> bool:
    return not entry.mgdl or entry.mgdl < BG_SENSOR_ERROR_MAX


def analyze_bucket(bucket: Bucket) -> Bucket:
    if not bucket.sgvs:
        bucket.is_empty = True
        return bucket

    valid = [sgv for sgv in bucket.sgvs if _not_error(sgv)]
    bucket.is_empty = False
    bucket.errors = [sgv for sgv in bucket.sgvs if _is_error(sgv)]
    if valid:
        most_recent = max(valid, key=lambda sgv: sgv.mills)
        bucket.mean = sum(sgv.mgdl for sgv in valid) / len(valid)
        bucket.last = most_recent.mgdl
        bucket.mills = most_recent.mills
    return bucket


def fill_buckets(sbx, bucket_count: int = BUCKET_COUNT, bucket_mins: int = BUCKET_MINS) -> list[Bucket]:
    bucket_msecs = bucket_mins * MS_PER_MINUTE
    last_sgv_mills = sbx.last_sgv_mills()
    if last_sgv_mills is None:
        return [Bucket(index=i, from_mills=0, to_mills=0) for i in range(bucket_count)]

    buckets = []
    for index in range(bucket_count):
        from_mills = last_sgv_mills - BUCKET_OFFSET - index * bucket_msecs
        buckets.append(Bucket(index=index, from_mills=from_mills, to_mills=from_mills + bucket_msecs))

    for sgv in reversed(sbx.data.sgvs):
        if sgv.mills > sbx.time:
            continue
        for bucket in buckets:
            if bucket.from_mills <= sgv.mills <= bucket.to_mills:
                sbx.scale_entry(sgv)
                bucket.sgvs.append(sgv)
                break

    return [analyze_bucket(b) for b in buckets]


def most_recent_bucket(buckets: list[Bucket]) -> Optional[Bucket]:
    for bucket in buckets:
        if not bucket.is_empty:
            return bucket
    return None


def previous_bucket(recent: Optional[Bucket], buckets: list[Bucket]) -> Optional[Bucket]:
    if recent is None or recent.mills is None:
        return None
    for bucket in buckets:
        if not bucket.is_empty and bucket.mills is not None and bucket.mills < recent.mills:
            return bucket
    return None


def calc_delta(recent: Optional[BgNowResult], previous: Optional[BgNowResult], sbx) -> Optional[DeltaResult]:
    if recent is None or previous is None:
        return None
    if recent.mean is None or previous.mean is None or recent.mills is None or previous.mills is None:
        return None

    absolute = recent.mean - previous.mean
    elapsed_mins = (recent.mills - previous.mills) / MS_PER_MINUTE
    interpolated = elapsed_mins > INTERPOLATE_AFTER_MINS
    if interpolated:
        mean_5_mins_ago = recent.mean - (recent.mean - previous.mean) / elapsed_mins * 5
    else:
        mean_5_mins_ago = previous.mean

    mgdl = int(round_half_up(recent.mean - mean_5_mins_ago))
    if sbx.settings.is_mmol:
        scaled = sbx.round_bg_to_display_format(sbx.scale_mgdl(recent.mean) - sbx.scale_mgdl(mean_5_mins_ago))
    else:
        scaled = mgdl

    display = ("+" if scaled >= 0 else "") + format_number(scaled)
    if isinstance(previous, Bucket):
        previous = previous.summary()

    return DeltaResult(
        absolute=absolute,
        elapsed_mins=elapsed_mins,
        interpolated=interpolated,
        mean5_mins_ago=mean_5_mins_ago,
        mgdl=mgdl,
        scaled=scaled,
        display=display,
        previous=previous,
        times={"recent": recent.mills, "previous": previous.mills},
    )


class BgNowPlugin(Plugin):
    name = "bgnow"
    label = "BG Now"
    plugin_type = "pill-primary"
    capabilities = PROPERTIES_AND_PILL

    def set_properties(self, sbx) -> None:
        buckets = fill_buckets(sbx)
        recent = most_recent_bucket(buckets)
        previous = previous_bucket(recent, buckets)
        delta = calc_delta(recent, previous, sbx)

        sbx.offer_property("bgnow", lambda: recent.summary() if recent is not None else None)
        sbx.offer_property("delta", lambda: delta)
        sbx.offer_property("buckets", lambda: buckets)

    def update_visualisation(self, sbx) -> Optional[PillInfo]:
        delta: Optional[DeltaResult] = sbx.properties.get("delta")
        if delta is None:
            return PillInfo(label="BG Delta", value="", pill_class="delta")

        display = delta.display
        info = []
        if delta.interpolated:
            display += " *"
            info.append({"label": "Elapsed Time", "value": f"{int(round_half_up(delta.elapsed_mins))} mins"})
            absolute = sbx.round_bg_to_display_format(sbx.scale_mgdl(delta.absolute))
            info.append({"label": "Absolute Delta", "value": f"{format_number(absolute)} {sbx.units_label}"})
            interpolated = sbx.round_bg_to_display_format(sbx.scale_mgdl(delta.mean5_mins_ago))
            info.append({"label": "Interpolated", "value": f"{format_number(interpolated)} {sbx.units_label}"})

        return PillInfo(label="BG Delta", value=f"{display} {sbx.units_label}", info=info, pill_class="delta")
