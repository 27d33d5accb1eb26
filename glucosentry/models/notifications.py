from typing import Any, Optional

from pydantic import BaseModel, Field

from glucosentry.core.constants import THIRTY_MINUTES
from glucosentry.models.levels import Level

DEFAULT_GROUP = "default"


class Notify(BaseModel):
    """A plugin's request to raise something this cycle. Checked by the alarm engine."""

    level: Optional[Level] = None
    title: Optional[str] = None
    message: Optional[str] = None
    group: str = DEFAULT_GROUP
    plugin: Optional[str] = None
    event_name: Optional[str] = None
    pushover_sound: Optional[str] = None
    is_announcement: bool = False
    debug: Optional[dict[str, Any]] = None


class Snooze(BaseModel):
    level: Optional[Level] = None
    title: Optional[str] = None
    message: Optional[str] = None
    group: str = DEFAULT_GROUP
    length_mills: Optional[int] = None
    debug: Optional[dict[str, Any]] = None


class Alarm(BaseModel):
    level: Level
    group: str = DEFAULT_GROUP
    label: str
    last_ack_time: int = 0
    silence_time: int = THIRTY_MINUTES
    last_emit_time: Optional[int] = None


class AlarmEvent(BaseModel):
    level: Level
    title: str
    message: str
    group: str = DEFAULT_GROUP
    clear: bool = False
    plugin: Optional[str] = None
    event_name: Optional[str] = None
    pushover_sound: Optional[str] = None
    is_announcement: bool = False
    debug: Optional[dict[str, Any]] = None
    emitted_at: Optional[int] = Field(default=None, description="Epoch ms the engine emitted this event")
