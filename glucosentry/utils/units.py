import math
from typing import Optional

from glucosentry.core.constants import MMOL_TO_MGDL


def round_half_up(value: float, digits: int = 0) -> float:
    """Rounds .5 away from the floor like the dashboard does, not to even."""
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def mgdl_to_mmol(mgdl: float) -> float:
    return round_half_up(mgdl / MMOL_TO_MGDL, 1)


def mmol_to_mgdl(mmol: float) -> int:
    return int(round_half_up(mmol * MMOL_TO_MGDL))


def format_number(value: Optional[float]) -> str:
    """Whole numbers print without a decimal part, like BG values on the dashboard."""
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return "?"
    if float(value).is_integer():
        return str(int(value))
    return str(value)


def to_fixed(value: Optional[float], digits: int = 2) -> str:
    """Formats insulin-style values; zero renders as '0' and negative zero is dropped."""
    if value is None:
        return "0"
    if value == 0:
        return "0"
    fixed = f"{value:.{digits}f}"
    if fixed == "-" + "0." + "0" * digits:
        return fixed[1:]
    return fixed
