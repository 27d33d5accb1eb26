"""
Central location for constant values and tables used across the monitor.
"""
from glucosentry.utils.times import days, mins

# mg/dL per mmol/L of glucose (molar mass / 10)
MMOL_TO_MGDL = 18.018018018

TWO_DAYS = int(days(2).msecs)
FIVE_MINUTES = int(mins(5).msecs)
TEN_MINUTES = int(mins(10).msecs)
FIFTEEN_MINUTES = int(mins(15).msecs)
THIRTY_MINUTES = int(mins(30).msecs)

UNITS_MGDL = "mg/dl"
UNITS_MMOL = "mmol"

# CGM sentinel readings
BG_SENSOR_ERROR_MAX = 39
BG_DISPLAY_LOW = 39
BG_DISPLAY_HIGH = 401

# Device status sub-documents that carry independently timestamped data
DEVICE_STATUS_FIELDS = ("uploader", "pump", "openaps", "loop", "xdripjs")
DEVICE_STATUS_HISTORY = 10

# Features that are on unless explicitly disabled
DEFAULT_FEATURES = (
    "bgnow",
    "delta",
    "direction",
    "timeago",
    "errorcodes",
    "iob",
    "cob",
    "basal",
    "runtimestate",
)

ALARM_TYPE_PLUGINS = {
    "predict": "ar2",
    "simple": "simplealarms",
}
