"""
The per-cycle evaluation context handed to every plugin.

A sandbox pins the evaluation time (possibly in the past when replaying),
exposes the record store, profile resolver and settings, and owns the
write-once property bag plugins publish into.
"""
import copy
import logging
import math
from typing import Any, Callable, Optional, Sequence, TypeVar

from glucosentry.core.constants import BG_DISPLAY_HIGH, BG_DISPLAY_LOW, FIFTEEN_MINUTES
from glucosentry.core.settings import MonitorSettings
from glucosentry.models.records import GlucoseReading, Record
from glucosentry.services.profile import ProfileResolver
from glucosentry.services.record_store import RecordStore
from glucosentry.utils.times import now_ms
from glucosentry.utils.units import format_number, mgdl_to_mmol, mmol_to_mgdl, round_half_up

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R", bound=Record)


class NullNotifications:
    """Used when a sandbox is built without an alarm engine; requests are dropped."""

    def request_notify(self, **kwargs: Any) -> None:
        logger.debug("Notification dropped, no alarm engine attached", extra={"title": kwargs.get("title")})

    def request_snooze(self, **kwargs: Any) -> None:
        logger.debug("Snooze dropped, no alarm engine attached", extra={"title": kwargs.get("title")})


class Sandbox:
    def __init__(
        self,
        time: Optional[int],
        data: RecordStore,
        settings: MonitorSettings,
        profile: Optional[ProfileResolver] = None,
        notifications: Any = None,
        runtime_state: str = "loaded",
        in_retro_mode: bool = False,
    ) -> None:
        self.time = now_ms() if time is None else time
        self.data = data
        self.settings = settings
        self.profile = profile or ProfileResolver()
        self.notifications = notifications or NullNotifications()
        self.runtime_state = runtime_state
        self.in_retro_mode = in_retro_mode
        self.properties: dict[str, Any] = {}
        self.extended_settings: dict[str, Any] = {}

    def reset(self) -> None:
        self.properties = {}

    def with_extended_settings(self, plugin: Any) -> "Sandbox":
        """Shallow view for one plugin; the property bag stays shared."""
        view = copy.copy(self)
        view.extended_settings = dict(self.settings.plugin_settings(plugin.name))
        return view

    def offer_property(self, name: str, setter: Callable[[], Optional[T]]) -> None:
        if name in self.properties:
            return
        value = setter()
        if value:
            self.properties[name] = value

    # entries

    def is_current(self, entry: Optional[Record]) -> bool:
        return entry is not None and self.time - entry.mills <= FIFTEEN_MINUTES

    def entry_mills(self, entry: Optional[Record]) -> Optional[int]:
        return entry.mills if entry is not None else None

    def last_entry(self, entries: Optional[Sequence[R]]) -> Optional[R]:
        for entry in reversed(entries or []):
            if entry.mills <= self.time:
                return entry
        return None

    def last_n_entries(self, entries: Sequence[R], n: int) -> list[R]:
        """Most recent first."""
        eligible = [entry for entry in entries if entry.mills <= self.time]
        return list(reversed(eligible[-n:]))

    def prev_entry(self, entries: Sequence[R]) -> Optional[R]:
        last_two = self.last_n_entries(entries, 2)
        return last_two[1] if len(last_two) > 1 else None

    def last_sgv_entry(self) -> Optional[GlucoseReading]:
        return self.last_entry(self.data.sgvs)

    def last_sgv_mgdl(self) -> Optional[float]:
        last = self.last_sgv_entry()
        return last.mgdl if last is not None else None

    def last_sgv_mills(self) -> Optional[int]:
        return self.entry_mills(self.last_sgv_entry())

    def last_scaled_sgv(self) -> Optional[float]:
        last = self.last_sgv_entry()
        return self.scale_entry(last) if last is not None else None

    def last_display_sgv(self) -> str:
        last = self.last_sgv_entry()
        return self.display_bg(last) if last is not None else "?"

    # units and display

    @property
    def units_label(self) -> str:
        return "mmol/L" if self.settings.is_mmol else "mg/dl"

    def scale_entry(self, entry: GlucoseReading) -> Optional[float]:
        if entry.scaled is None:
            mmol = getattr(entry, "mmol", None)
            if self.settings.is_mmol:
                if mmol:
                    entry.scaled = float(mmol)
                elif entry.mgdl is not None:
                    entry.scaled = mgdl_to_mmol(entry.mgdl)
            else:
                if entry.mgdl:
                    entry.scaled = entry.mgdl
                elif mmol:
                    entry.scaled = mmol_to_mgdl(float(mmol))
        return entry.scaled

    def scale_mgdl(self, mgdl: Optional[float]) -> Optional[float]:
        if mgdl is None:
            return None
        if self.settings.is_mmol and mgdl:
            return mgdl_to_mmol(mgdl)
        return float(mgdl)

    def display_bg(self, entry: GlucoseReading) -> str:
        if entry.mgdl == BG_DISPLAY_LOW:
            return "LOW"
        if entry.mgdl == BG_DISPLAY_HIGH:
            return "HIGH"
        return format_number(self.scale_entry(entry))

    def round_bg_to_display_format(self, bg: float) -> float:
        if self.settings.is_mmol:
            return round_half_up(bg, 1)
        return round_half_up(bg)

    def round_insulin_for_display_format(self, insulin: float) -> str:
        if insulin == 0:
            return "0"
        if self.settings.insulin_rounding == "medtronic":
            denominator = 0.05 if insulin <= 0.5 else 0.1
            digits = 2 if insulin <= 0.5 else 1
            return f"{math.floor(insulin / denominator) * denominator:.{digits}f}"
        return f"{math.floor(insulin / 0.01) * 0.01:.2f}"

    # messages

    def build_bg_now_line(self) -> str:
        line = "BG Now: " + self.last_display_sgv()
        delta = self.properties.get("delta")
        if delta is not None and delta.display:
            line += " " + delta.display
        direction = self.properties.get("direction")
        if direction is not None and direction.label:
            line += " " + direction.label
        return line + " " + self.units_label

    def property_line(self, name: str) -> Optional[str]:
        prop = self.properties.get(name)
        return getattr(prop, "display_line", None) if prop is not None else None

    def append_property_line(self, name: str, lines: Optional[list[str]] = None) -> list[str]:
        lines = lines if lines is not None else []
        line = self.property_line(name)
        if line:
            lines.append(line)
        return lines

    def prepare_default_lines(self) -> list[str]:
        lines = [self.build_bg_now_line()]
        for name in ("rawbg", "ar2", "bwp", "iob", "cob"):
            self.append_property_line(name, lines)
        return lines

    def build_default_message(self) -> str:
        return "\n".join(self.prepare_default_lines())
