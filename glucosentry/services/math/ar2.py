import math
from dataclasses import dataclass
from typing import Optional

from glucosentry.models.properties import ForecastPoint
from glucosentry.utils.times import mins
from glucosentry.utils.units import round_half_up

BG_REF = 140
BG_MIN = 36
BG_MAX = 400
AR = (-0.723, 1.716)

# Cone widening per 5 minute step; deliberately not linear in the step index
CONE_STEPS = (0.020, 0.041, 0.061, 0.081, 0.099, 0.116, 0.132, 0.146, 0.159, 0.171, 0.182, 0.192, 0.201)

ALARM_STEPS = 6
STEP_MS = int(mins(5).msecs)
POINT_OFFSET_MS = 2000
CONE_UPPER_OFFSET_MS = 4000
LOSS_REFERENCE = 120


@dataclass
class AR2State:
    forecast_time: int
    prev: float
    curr: float

    @classmethod
    def seed(cls, forecast_time: int, mean_now: float, mean_5_mins_ago: float) -> "AR2State":
        return cls(
            forecast_time=forecast_time,
            prev=math.log(mean_5_mins_ago / BG_REF),
            curr=math.log(mean_now / BG_REF),
        )

    def step(self) -> "AR2State":
        return AR2State(
            forecast_time=self.forecast_time + STEP_MS,
            prev=self.curr,
            curr=AR[0] * self.prev + AR[1] * self.curr,
        )

    def point(self, offset: int = POINT_OFFSET_MS, cone_factor: float = 0.0, color: str = "cyan") -> ForecastPoint:
        mgdl = int(round_half_up(BG_REF * math.exp(self.curr + cone_factor)))
        return ForecastPoint(
            mills=self.forecast_time + offset,
            mgdl=max(BG_MIN, min(BG_MAX, mgdl)),
            color=color,
        )


def predict(state: AR2State, steps: int = ALARM_STEPS) -> list[ForecastPoint]:
    points: list[ForecastPoint] = []
    for _ in range(steps):
        state = state.step()
        points.append(state.point())
    return points


def average_loss(points: list[ForecastPoint]) -> float:
    if len(points) < 2:
        return 0.0
    total = sum(math.log10(p.mgdl / LOSS_REFERENCE) ** 2 for p in points)
    # Thresholds are calibrated against the n-1 divisor
    size = min(len(points) - 1, ALARM_STEPS)
    return total / size


def cone(state: AR2State, cone_factor: Optional[float] = 2.0, color: str = "cyan") -> list[ForecastPoint]:
    cone_factor = 2.0 if cone_factor is None else cone_factor
    points: list[ForecastPoint] = []
    for step in CONE_STEPS:
        state = state.step()
        if cone_factor > 0:
            points.append(state.point(POINT_OFFSET_MS, -cone_factor * step, color))
        points.append(state.point(CONE_UPPER_OFFSET_MS, cone_factor * step, color))
    return points
