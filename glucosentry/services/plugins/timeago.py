import logging
from typing import Callable, NamedTuple, Optional

from glucosentry.models.levels import Level
from glucosentry.models.properties import PillInfo, TimeAgoResult
from glucosentry.models.records import Record
from glucosentry.services.plugins.base import ALL_HOOKS, Plugin
from glucosentry.utils.times import MS_PER_DAY, MS_PER_HOUR, MS_PER_MINUTE, MS_PER_WEEK, mins
from glucosentry.utils.units import round_half_up

logger = logging.getLogger(__name__)

GROUP = "Time Ago"
FUTURE_TOLERANCE = int(mins(5).msecs)


class AgoDisplay(NamedTuple):
    value: Optional[int]
    label: str
    short_label: str


def _less_than(limit: int, divisor: int, label: str, short_label: str) -> Callable[[int], Optional[AgoDisplay]]:
    def resolve(time_since: int) -> Optional[AgoDisplay]:
        if time_since < limit:
            return AgoDisplay(max(1, int(round_half_up(time_since / divisor))), label, short_label)
        return None

    return resolve


_RESOLVERS = (
    _less_than(2 * MS_PER_MINUTE, MS_PER_MINUTE, "min ago", "m"),
    _less_than(MS_PER_HOUR, MS_PER_MINUTE, "mins ago", "m"),
    _less_than(2 * MS_PER_HOUR, MS_PER_HOUR, "hour ago", "h"),
    _less_than(MS_PER_DAY, MS_PER_HOUR, "hours ago", "h"),
    _less_than(2 * MS_PER_DAY, MS_PER_DAY, "day ago", "d"),
    _less_than(MS_PER_WEEK, MS_PER_DAY, "days ago", "d"),
)


def calc_display(entry: Optional[Record], time: Optional[int]) -> AgoDisplay:
    if entry is None or not entry.mills or not time:
        return AgoDisplay(None, "time ago", "ago")
    if entry.mills - FUTURE_TOLERANCE > time:
        return AgoDisplay(None, "in the future", "future")
    if entry.mills > time:
        return AgoDisplay(1, "min ago", "m")

    time_since = time - entry.mills
    for resolver in _RESOLVERS:
        display = resolver(time_since)
        if display is not None:
            return display
    return AgoDisplay(None, "long ago", "ago")


def check_status(sbx) -> str:
    last = sbx.last_sgv_entry()
    if last is None:
        return "current"
    settings = sbx.settings

    def is_stale(minutes: int) -> bool:
        return sbx.time - last.mills > mins(minutes).msecs

    if settings.alarm_timeago_urgent and is_stale(settings.alarm_timeago_urgent_mins):
        return "urgent"
    if settings.alarm_timeago_warn and is_stale(settings.alarm_timeago_warn_mins):
        return "warn"
    return "current"


class TimeAgoPlugin(Plugin):
    name = "timeago"
    label = "Timeago"
    plugin_type = "pill-status"
    capabilities = ALL_HOOKS

    def set_properties(self, sbx) -> None:
        sbx.offer_property("timeago", lambda: self._result(sbx))

    def _result(self, sbx) -> Optional[TimeAgoResult]:
        last = sbx.last_sgv_entry()
        if last is None:
            return None
        display = calc_display(last, sbx.time)
        text = f"{display.value} {display.label}" if display.value is not None else display.label
        return TimeAgoResult(
            status=check_status(sbx),
            value=display.value,
            label=display.label,
            ago_mills=sbx.time - last.mills,
            display=text,
            display_line=f"Last received: {text}",
        )

    def check_notifications(self, sbx) -> None:
        if not sbx.extended_settings.get("enable_alerts"):
            return
        last = sbx.last_sgv_entry()
        if last is None or last.mills >= sbx.time:
            return

        status = check_status(sbx)
        if status == "current":
            return

        display = calc_display(last, sbx.time)
        level = Level.URGENT if status == "urgent" else Level.WARN
        lines = [f"Last received: {display.value} {display.label}", *sbx.prepare_default_lines()]
        sbx.notifications.request_notify(
            level=level,
            title="Stale data, check rig?",
            message="\n".join(lines),
            event_name=self.name,
            plugin=self.name,
            group=GROUP,
            pushover_sound="echo",
            debug=display._asdict(),
        )

    def update_visualisation(self, sbx) -> Optional[PillInfo]:
        last = sbx.last_sgv_entry()
        if last is None:
            return None
        if sbx.in_retro_mode:
            return PillInfo(label="RETRO", value="", pill_class="current")
        display = calc_display(last, sbx.time)
        value = str(display.value) if display.value is not None else ""
        return PillInfo(label=display.label, value=value, pill_class=check_status(sbx))
