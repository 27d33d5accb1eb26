"""
Derived values published by plugins into the per-cycle property bag.

Fields are snake_case in Python and dump as camelCase (``displayLine``,
``mean5MinsAgo``...) for the renderer.
"""
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from glucosentry.models.levels import Level
from glucosentry.models.records import Calibration, GlucoseReading, Treatment


class PropertyModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class IobResult(PropertyModel):
    iob: Optional[float] = None
    activity: Optional[float] = None
    basaliob: Optional[float] = None
    source: Optional[str] = None
    device: Optional[str] = None
    mills: Optional[int] = None
    last_bolus: Optional[Treatment] = None
    treatment_iob: Optional[float] = None
    display: Optional[str] = None
    display_line: Optional[str] = None


class CobResult(PropertyModel):
    cob: Optional[float] = None
    decayed_by: Optional[int] = None
    is_decaying: Optional[int] = None
    carbs_hr: Optional[float] = None
    raw_carb_impact: Optional[float] = None
    last_carbs: Optional[Treatment] = None
    source: Optional[str] = None
    device: Optional[str] = None
    mills: Optional[int] = None
    treatment_cob: Optional["CobResult"] = None
    display: Optional[float] = None
    display_line: Optional[str] = None


class BgNowResult(PropertyModel):
    mean: Optional[float] = None
    last: Optional[float] = None
    mills: Optional[int] = None
    is_empty: bool = False
    sgvs: list[GlucoseReading] = Field(default_factory=list)
    errors: list[GlucoseReading] = Field(default_factory=list)


class Bucket(BgNowResult):
    index: int
    from_mills: int
    to_mills: int
    is_empty: bool = True

    def summary(self) -> BgNowResult:
        return BgNowResult(
            mean=self.mean,
            last=self.last,
            mills=self.mills,
            is_empty=self.is_empty,
            sgvs=self.sgvs,
            errors=self.errors,
        )


class DeltaResult(PropertyModel):
    absolute: float
    elapsed_mins: float
    interpolated: bool
    mean5_mins_ago: float
    mgdl: int
    scaled: float
    display: str
    previous: BgNowResult
    times: dict[str, Optional[int]] = Field(default_factory=dict)


class ForecastPoint(PropertyModel):
    mills: int
    mgdl: int
    color: str = "cyan"
    type: str = "forecast"


class Ar2Forecast(PropertyModel):
    predicted: list[ForecastPoint] = Field(default_factory=list)
    avg_loss: float = 0.0


class Ar2Result(PropertyModel):
    forecast: Ar2Forecast
    level: Optional[Level] = None
    event_name: str = ""
    display_line: Optional[str] = None


class RawBgResult(PropertyModel):
    mgdl: float
    noise_label: str
    sgv: Optional[GlucoseReading] = None
    cal: Optional[Calibration] = None
    display_line: Optional[str] = None


class DirectionResult(PropertyModel):
    value: Optional[str] = None
    label: str
    entity: str


class TimeAgoResult(PropertyModel):
    status: str
    value: Optional[int] = None
    label: str
    ago_mills: Optional[int] = None
    display: str
    display_line: Optional[str] = None


class TempBasalAdjustment(PropertyModel):
    thirtymin: int
    onehour: int


class BolusWizardResult(PropertyModel):
    bg: float
    iob: float
    effect: float
    effect_display: str
    outcome: float
    outcome_display: str
    bolus_estimate: float
    bolus_estimate_display: str
    aim_target: Optional[float] = None
    aim_target_string: Optional[str] = None
    scaled_target_low: Optional[float] = None
    scaled_target_high: Optional[float] = None
    temp_basal_adjustment: Optional[TempBasalAdjustment] = None
    display_line: Optional[str] = None


class TempBasalResult(PropertyModel):
    basal: Optional[float] = None
    treatment: Optional[Treatment] = None
    combobolustreatment: Optional[Treatment] = None
    tempbasal: Optional[float] = None
    combobolusbasal: float = 0.0
    totalbasal: Optional[float] = None
    display_line: Optional[str] = None


class RuntimeStateResult(PropertyModel):
    state: str


class PillInfo(PropertyModel):
    """What a plugin wants shown in its status pill; rendering is external."""

    label: str
    value: str
    info: list[dict[str, Any]] = Field(default_factory=list)
    pill_class: Optional[str] = None
