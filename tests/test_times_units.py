from zoneinfo import ZoneInfo

import pytest

from conftest import NOW
from glucosentry.core.constants import TWO_DAYS
from glucosentry.utils.times import days, hours, mins, msecs, secs, weeks
from glucosentry.utils.timezone import (
    get_zone,
    iso_from_ms,
    normalize_timezone_name,
    parse_timestamp_ms,
    seconds_since_midnight,
)
from glucosentry.utils.units import format_number, mgdl_to_mmol, mmol_to_mgdl, round_half_up, to_fixed


def test_spans_convert_between_scales():
    assert mins(5).msecs == 300_000
    assert hours(1).mins == 60
    assert days(2).msecs == TWO_DAYS
    assert weeks(1).days == 7
    assert secs(90).mins == 1.5
    assert msecs(1500).secs == 1.5


def test_round_half_up_rounds_halves_upwards():
    assert round_half_up(2.5) == 3
    assert round_half_up(3.5) == 4
    assert round_half_up(-2.5) == -2
    assert round_half_up(1.25, 1) == 1.3


def test_unit_conversion():
    assert mgdl_to_mmol(180) == 10.0
    assert mmol_to_mgdl(10) == 180
    assert mmol_to_mgdl(5.5) == 99


def test_number_formatting():
    assert format_number(100.0) == "100"
    assert format_number(5.5) == "5.5"
    assert format_number(None) == "?"
    assert to_fixed(0) == "0"
    assert to_fixed(1.234) == "1.23"
    assert to_fixed(-0.001) == "0.00"


def test_timezone_names_are_normalised():
    assert normalize_timezone_name("ETC/GMT+1") == "Etc/GMT+1"
    assert normalize_timezone_name(None) is None
    assert get_zone("Not/AZone") is None
    assert get_zone("Europe/Madrid") == ZoneInfo("Europe/Madrid")


def test_seconds_since_midnight_uses_zone():
    assert seconds_since_midnight(NOW, ZoneInfo("UTC")) == 22 * 3600 + 13 * 60 + 20
    # Madrid is UTC+1 in November
    assert seconds_since_midnight(NOW, ZoneInfo("Europe/Madrid")) == 23 * 3600 + 13 * 60 + 20


@pytest.mark.parametrize(
    "value",
    [NOW, float(NOW), str(NOW), "2023-11-14T22:13:20Z", "2023-11-14T22:13:20.000+00:00", "2023-11-14T22:13:20"],
)
def test_parse_timestamp_ms_accepts_common_shapes(value):
    assert parse_timestamp_ms(value) == NOW


def test_parse_timestamp_ms_rejects_garbage():
    assert parse_timestamp_ms("yesterday-ish") is None
    assert parse_timestamp_ms(None) is None
    assert parse_timestamp_ms(True) is None


def test_iso_from_ms():
    assert iso_from_ms(NOW) == "2023-11-14T22:13:20Z"
