from enum import IntEnum


class Level(IntEnum):
    URGENT = 2
    WARN = 1
    INFO = 0
    LOW = -1
    LOWEST = -2
    NONE = -3

    @property
    def display(self) -> str:
        return _DISPLAY.get(self, "Unknown")

    @property
    def is_alarm(self) -> bool:
        return self in (Level.WARN, Level.URGENT)


_DISPLAY = {
    Level.URGENT: "Urgent",
    Level.WARN: "Warning",
    Level.INFO: "Info",
    Level.LOW: "Low",
    Level.LOWEST: "Lowest",
    Level.NONE: "None",
}


def to_display(level) -> str:
    try:
        return Level(level).display
    except ValueError:
        return "Unknown"
