from dataclasses import dataclass

from glucosentry.utils.times import MS_PER_MINUTE


@dataclass(frozen=True)
class InsulinEffect:
    iob_contrib: float = 0.0
    activity_contrib: float = 0.0


class InsulinCurves:
    """
    Bilinear/quadratic bolus decay. Minutes are stretched by 3/dia so every
    DIA maps onto the same 180 minute reference curve peaking at 75 minutes.
    """

    PEAK = 75
    END = 180
    DEFAULT_DIA = 3.0

    # Second segment coefficients, a*x^2 + b*x + c with x = (minAgo - peak) / 5
    _A = 0.001323
    _B = -0.054233
    _C = 0.55556
    # The quadratic bottoms out (slightly below zero) here; the tail is flat zero
    _VERTEX = -_B / (2 * _A)
    # First segment value at the peak; the second segment starts a hair above it
    _PEAK_IOB = 1 - 0.001852 * 16 * 16 + 0.001852 * 16

    @classmethod
    def scaled_minutes_ago(cls, elapsed_ms: float, dia: float) -> float:
        scale_factor = 3.0 / dia
        return scale_factor * elapsed_ms / MS_PER_MINUTE

    @classmethod
    def iob_fraction(cls, min_ago: float) -> float:
        if min_ago < 0:
            return 1.0
        if min_ago < cls.PEAK:
            x1 = min_ago / 5 + 1
            return 1 - 0.001852 * x1 * x1 + 0.001852 * x1
        if min_ago < cls.END:
            x2 = (min_ago - cls.PEAK) / 5
            if x2 >= cls._VERTEX:
                return 0.0
            return max(0.0, min(cls._PEAK_IOB, cls._A * x2 * x2 + cls._B * x2 + cls._C))
        return 0.0

    @classmethod
    def activity_fraction(cls, min_ago: float, dia: float) -> float:
        """BG effect per unit of insulin per unit of sensitivity, per minute."""
        if min_ago < 0:
            return 0.0
        if min_ago < cls.PEAK:
            return (2 / dia / 60 / cls.PEAK) * min_ago
        if min_ago < cls.END:
            return 2 / dia / 60 - (min_ago - cls.PEAK) * 2 / dia / 60 / (cls.END - cls.PEAK)
        return 0.0

    @classmethod
    def treatment_effect(cls, insulin: float, elapsed_ms: float, dia: float, sens: float) -> InsulinEffect:
        if not insulin:
            return InsulinEffect()
        min_ago = cls.scaled_minutes_ago(elapsed_ms, dia)
        return InsulinEffect(
            iob_contrib=insulin * cls.iob_fraction(min_ago),
            activity_contrib=sens * insulin * cls.activity_fraction(min_ago, dia),
        )


@dataclass(frozen=True)
class CarbDecay:
    initial_carbs: float
    decayed_by: int
    is_decaying: int
    carb_time: int


class CarbCurves:
    """Linear carb absorption with a fixed onset delay."""

    DELAY_MINUTES = 20
    # Insulin activity -> delayed carbs conversion ("liver buffering")
    LIVER_SENS_RATIO = 8

    @classmethod
    def decay(cls, carbs: float, carb_time: int, carbs_hr: float, last_decayed_by: int, time: int) -> CarbDecay:
        carbs_min = carbs_hr / 60
        minutes_left = (last_decayed_by - carb_time) / MS_PER_MINUTE
        # whole minutes only, fractional minutes are dropped
        offset_minutes = int(max(cls.DELAY_MINUTES, minutes_left) + carbs / carbs_min)
        decayed_by = carb_time + offset_minutes * MS_PER_MINUTE

        start_decay = carb_time + cls.DELAY_MINUTES * MS_PER_MINUTE
        is_decaying = 1 if (time < last_decayed_by or time > start_decay) else 0

        initial_carbs: float = int(carbs)
        if minutes_left >= cls.DELAY_MINUTES:
            initial_carbs += minutes_left * carbs_min

        return CarbDecay(
            initial_carbs=initial_carbs,
            decayed_by=decayed_by,
            is_decaying=is_decaying,
            carb_time=carb_time,
        )
