"""
Bolus wizard preview: what a correction bolus would look like right now.

The estimate is driven by the current BG, insulin on board and the profile's
sensitivity and targets. Positive estimates above the ``warn`` extended
setting raise a "time to bolus?" notification; enough IOB to bring a high BG
back into range snoozes the high alarms instead.
"""
import logging
from typing import Any, Optional

from glucosentry.core.constants import BG_SENSOR_ERROR_MAX
from glucosentry.models.levels import Level, to_display
from glucosentry.models.properties import BolusWizardResult, IobResult, PillInfo, TempBasalAdjustment
from glucosentry.services.plugins.base import ALL_HOOKS, Plugin
from glucosentry.utils.times import mins
from glucosentry.utils.units import format_number, round_half_up

logger = logging.getLogger(__name__)

DEFAULT_SNOOZE_BWP = 0.10
DEFAULT_WARN_BWP = 0.50
DEFAULT_URGENT_BWP = 1.00
DEFAULT_SNOOZE_MINS = 10


def _number(value: Any, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number or default


def prepare_settings(sbx) -> dict[str, float]:
    ext = sbx.extended_settings
    return {
        "snooze": _number(ext.get("snooze"), DEFAULT_SNOOZE_BWP),
        "warn": _number(ext.get("warn"), DEFAULT_WARN_BWP),
        "urgent": _number(ext.get("urgent"), DEFAULT_URGENT_BWP),
        "snooze_length": mins(_number(ext.get("snooze_mins"), DEFAULT_SNOOZE_MINS)).msecs,
    }


def has_required_info(sbx) -> bool:
    profile = sbx.profile
    if profile is None or not profile.has_data():
        logger.warning("For the BolusWizardPreview plugin to function you need a treatment profile")
        return False
    if (
        not profile.get_sensitivity(sbx.time)
        or not profile.get_high_bg_target(sbx.time)
        or not profile.get_low_bg_target(sbx.time)
    ):
        logger.warning(
            "For the BolusWizardPreview plugin to function your treatment profile must have "
            "sens, target_high and target_low fields"
        )
        return False
    if "iob" not in sbx.properties:
        logger.warning("For the BolusWizardPreview plugin to function the IOB plugin must be enabled")
        return False
    last = sbx.last_sgv_entry()
    if last is None or (last.mgdl or 0) < BG_SENSOR_ERROR_MAX or not sbx.is_current(last):
        return False
    return True


def calc(sbx) -> BolusWizardResult:
    profile = sbx.profile
    scaled = sbx.last_scaled_sgv() or 0.0
    iob_prop: Optional[IobResult] = sbx.properties.get("iob")
    iob = (iob_prop.iob if iob_prop is not None else None) or 0.0

    sens = profile.get_sensitivity(sbx.time)
    target_high = profile.get_high_bg_target(sbx.time)
    target_low = profile.get_low_bg_target(sbx.time)

    effect = iob * sens
    outcome = scaled - effect
    bolus_estimate = 0.0
    aim_target = None
    aim_target_string = None

    if outcome > target_high:
        bolus_estimate = (outcome - target_high) / sens
        aim_target = target_high
        aim_target_string = "above high"
    if outcome < target_low:
        bolus_estimate = -abs(outcome - target_low) / sens
        aim_target = target_low
        aim_target_string = "below low"

    adjustment = None
    basal = profile.get_basal(sbx.time)
    if bolus_estimate != 0 and basal:
        # percent of the scheduled basal that delivers the estimate over 30/60 minutes
        adjustment = TempBasalAdjustment(
            thirtymin=int(round_half_up((basal / 2 + bolus_estimate) / (basal / 2) * 100)),
            onehour=int(round_half_up((basal + bolus_estimate) / basal * 100)),
        )

    bolus_estimate_display = sbx.round_insulin_for_display_format(bolus_estimate)
    return BolusWizardResult(
        bg=scaled,
        iob=iob,
        effect=effect,
        effect_display=format_number(sbx.round_bg_to_display_format(effect)),
        outcome=outcome,
        outcome_display=format_number(sbx.round_bg_to_display_format(outcome)),
        bolus_estimate=bolus_estimate,
        bolus_estimate_display=bolus_estimate_display,
        aim_target=aim_target,
        aim_target_string=aim_target_string,
        scaled_target_low=target_low,
        scaled_target_high=target_high,
        temp_basal_adjustment=adjustment,
        display_line=f"BWP: {bolus_estimate_display}U",
    )


class BolusWizardPreviewPlugin(Plugin):
    name = "boluswizardpreview"
    label = "Bolus Wizard Preview"
    plugin_type = "pill-minor"
    capabilities = ALL_HOOKS

    def set_properties(self, sbx) -> None:
        sbx.offer_property("bwp", lambda: calc(sbx) if has_required_info(sbx) else None)

    def check_notifications(self, sbx) -> None:
        results: Optional[BolusWizardResult] = sbx.properties.get("bwp")
        if results is None:
            return
        if results.bg < (results.scaled_target_high or 0):
            return

        settings = prepare_settings(sbx)
        debug = results.model_dump()
        top = sbx.scale_mgdl(sbx.settings.thresholds.bg_target_top)
        if results.bg > top and results.bolus_estimate < settings["snooze"]:
            sbx.notifications.request_snooze(
                level=Level.URGENT,
                length_mills=int(settings["snooze_length"]),
                title="Snoozing high alarm since there is enough IOB",
                message=f"BG Now: {format_number(results.bg)}, IOB: {results.iob:.2f}U, "
                f"BWP: {results.bolus_estimate_display}U",
                debug=debug,
            )
        elif results.bolus_estimate > settings["warn"]:
            level = Level.URGENT if results.bolus_estimate > settings["urgent"] else Level.WARN
            sbx.notifications.request_notify(
                level=level,
                title=f"{to_display(level)}, Check BG, time to bolus?",
                message=sbx.build_default_message(),
                event_name="bwp",
                pushover_sound="updown" if level == Level.URGENT else "bike",
                plugin=self.name,
                debug=debug,
            )

    def update_visualisation(self, sbx) -> Optional[PillInfo]:
        prop: Optional[BolusWizardResult] = sbx.properties.get("bwp")
        if prop is None:
            return None

        info = [
            {"label": "Insulin on Board", "value": f"{sbx.round_insulin_for_display_format(prop.iob)}U"},
            {"label": "Sensitivity", "value": f"-{format_number(sbx.profile.get_sensitivity(sbx.time))} {sbx.units_label}/U"},
            {"label": "Expected effect", "value": f"-{prop.effect_display} {sbx.units_label}"},
            {"label": "Expected outcome", "value": f"{prop.outcome_display} {sbx.units_label}"},
        ]
        if prop.temp_basal_adjustment is not None:
            info.append({"label": "30m temp basal", "value": f"{prop.temp_basal_adjustment.thirtymin}%"})
            info.append({"label": "1h temp basal", "value": f"{prop.temp_basal_adjustment.onehour}%"})

        return PillInfo(label="BWP", value=f"{prop.bolus_estimate_display}U", info=info)
