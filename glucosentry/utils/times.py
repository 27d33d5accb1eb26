"""
Time span helpers. Everything internal is epoch milliseconds; these convert
human quantities (minutes, hours, days) into that scale and back.
"""
import time
from dataclasses import dataclass

MS_PER_SECOND = 1000
MS_PER_MINUTE = 60 * MS_PER_SECOND
MS_PER_HOUR = 60 * MS_PER_MINUTE
MS_PER_DAY = 24 * MS_PER_HOUR
MS_PER_WEEK = 7 * MS_PER_DAY


@dataclass(frozen=True)
class Span:
    msecs: float

    @property
    def secs(self) -> float:
        return self.msecs / MS_PER_SECOND

    @property
    def mins(self) -> float:
        return self.msecs / MS_PER_MINUTE

    @property
    def hours(self) -> float:
        return self.msecs / MS_PER_HOUR

    @property
    def days(self) -> float:
        return self.msecs / MS_PER_DAY


def weeks(value: float) -> Span:
    return Span(value * MS_PER_WEEK)


def days(value: float) -> Span:
    return Span(value * MS_PER_DAY)


def hours(value: float) -> Span:
    return Span(value * MS_PER_HOUR)


def mins(value: float) -> Span:
    return Span(value * MS_PER_MINUTE)


def secs(value: float) -> Span:
    return Span(value * MS_PER_SECOND)


def msecs(value: float) -> Span:
    return Span(value)


def now_ms() -> int:
    return int(time.time() * 1000)
