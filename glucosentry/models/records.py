from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from glucosentry.utils.timezone import parse_timestamp_ms

# Fields Nightscout documents use for their timestamp, in order of preference
_TIMESTAMP_FIELDS = ("date", "created_at", "sysTime", "dateString", "timestamp")


class Record(BaseModel):
    """Base for every time-stamped document; unknown upload fields are kept."""

    id: Optional[str] = Field(default=None, alias="_id")
    mills: int = 0

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    @model_validator(mode="before")
    @classmethod
    def derive_mills(cls, data: Any) -> Any:
        if not isinstance(data, dict) or data.get("mills") is not None:
            return data
        for key in _TIMESTAMP_FIELDS:
            mills = parse_timestamp_ms(data.get(key))
            if mills is not None:
                return {**data, "mills": mills}
        return data

    @field_validator("id", mode="before")
    @classmethod
    def stringify_id(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        return str(v)


class GlucoseReading(Record):
    mgdl: Optional[float] = None
    direction: Optional[str] = None
    noise: Optional[int] = None
    filtered: Optional[float] = None
    unfiltered: Optional[float] = None
    device: Optional[str] = None
    type: Optional[str] = None
    # Unit-converted value, attached once on first display
    scaled: Optional[float] = None

    @model_validator(mode="before")
    @classmethod
    def sgv_as_mgdl(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("mgdl") is None and data.get("sgv") is not None:
            return {**data, "mgdl": data["sgv"]}
        return data


class MeterReading(Record):
    mgdl: Optional[float] = None
    device: Optional[str] = None
    scaled: Optional[float] = None

    @model_validator(mode="before")
    @classmethod
    def mbg_as_mgdl(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("mgdl") is None and data.get("mbg") is not None:
            return {**data, "mgdl": data["mbg"]}
        return data


class Calibration(Record):
    slope: Optional[float] = None
    intercept: Optional[float] = None
    scale: Optional[float] = None
    device: Optional[str] = None


class Treatment(Record):
    eventType: Optional[str] = None
    # Minutes
    duration: Optional[float] = None
    insulin: Optional[float] = None
    carbs: Optional[float] = None
    glucose: Optional[float] = None
    profile: Optional[str] = None
    percent: Optional[float] = None
    absolute: Optional[float] = None
    relative: Optional[float] = None
    units: Optional[str] = None
    targetTop: Optional[float] = None
    targetBottom: Optional[float] = None
    profileJson: Optional[str] = None
    CircadianPercentageProfile: Optional[bool] = None
    percentage: Optional[float] = None
    timeshift: Optional[float] = None
    notes: Optional[str] = None
    enteredBy: Optional[str] = None
    # Delta protocol: "update" / "remove"
    action: Optional[str] = None
    endmills: Optional[int] = None
    cuttedby: Optional[str] = None
    cutting: Optional[str] = None


class DeviceStatus(Record):
    device: Optional[str] = None
    uploader: Optional[dict[str, Any]] = None
    pump: Optional[dict[str, Any]] = None
    openaps: Optional[dict[str, Any]] = None
    loop: Optional[dict[str, Any]] = None
    xdripjs: Optional[dict[str, Any]] = None
    connect: Optional[Any] = None


class Food(Record):
    name: Optional[str] = None
    carbs: Optional[float] = None
    action: Optional[str] = None


class ProfileSegment(BaseModel):
    time: str = "00:00"
    value: float
    timeAsSeconds: Optional[int] = None

    model_config = ConfigDict(extra="allow")


ProfileValue = Union[float, list[ProfileSegment], None]


class ProfileSegmentSet(BaseModel):
    dia: ProfileValue = None
    carbs_hr: ProfileValue = None
    delay: ProfileValue = None
    sens: ProfileValue = None
    carbratio: ProfileValue = None
    basal: ProfileValue = None
    target_low: ProfileValue = None
    target_high: ProfileValue = None
    timezone: Optional[str] = None
    units: Optional[str] = None

    model_config = ConfigDict(extra="allow")


class ProfileRecord(BaseModel):
    id: Optional[str] = Field(default=None, alias="_id")
    defaultProfile: Optional[str] = None
    startDate: Optional[str] = None
    mills: int = 0
    units: Optional[str] = None
    store: dict[str, ProfileSegmentSet] = Field(default_factory=dict)

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    @field_validator("id", mode="before")
    @classmethod
    def stringify_id(cls, v: Any) -> Optional[str]:
        return None if v is None else str(v)


class InboundPayload(BaseModel):
    """One message from the transport: either a full snapshot or a delta."""

    delta: bool = False
    sgvs: Optional[list[GlucoseReading]] = None
    mbgs: Optional[list[MeterReading]] = None
    cals: Optional[list[Calibration]] = None
    treatments: Optional[list[Treatment]] = None
    food: Optional[list[Food]] = None
    devicestatus: Optional[list[DeviceStatus]] = None
    profiles: Optional[list[dict[str, Any]]] = None
    dbstats: Optional[dict[str, Any]] = None
    last_updated: Optional[int] = Field(default=None, alias="lastUpdated")

    model_config = ConfigDict(populate_by_name=True)
