import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from glucosentry.core.settings import MonitorSettings  # noqa: E402

# 2023-11-14T22:13:20Z
NOW = 1_700_000_000_000
MIDNIGHT = NOW - 80_000_000
MINUTE = 60_000


class ManualClock:
    def __init__(self, now: int) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


def profile_doc(**values):
    store = {
        "dia": 3,
        "sens": [{"time": "00:00", "value": 90}, {"time": "12:00", "value": 60}],
        "carbratio": 10,
        "carbs_hr": 30,
        "basal": [{"time": "00:00", "value": 1.0}, {"time": "06:00", "value": 0.8}],
        "target_low": 100,
        "target_high": 120,
        "timezone": "UTC",
        "units": "mg/dl",
    }
    store.update(values)
    return {
        "_id": "profile-1",
        "defaultProfile": "Default",
        "startDate": "2023-01-01T00:00:00Z",
        "store": {"Default": store},
    }


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    return ManualClock(NOW)


@pytest.fixture
def make_settings():
    def factory(**overrides):
        return MonitorSettings(**overrides)

    return factory
