# models.py
import enum
from dataclasses import dataclass
from typing import NamedTuple, Optional


@dataclass(frozen=True)
class ActivitySignal:
    name: str
    start_time: Optional[int] = None  # epoch seconds; None when the platform sent no timestamp


@dataclass(frozen=True)
class PresenceSignal:
    """What a user is doing right now. ``activity=None`` means not playing."""

    user_id: int
    activity: Optional[ActivitySignal] = None

    @classmethod
    def idle(cls, user_id: int) -> "PresenceSignal":
        return cls(user_id=user_id)

    @classmethod
    def playing(cls, user_id: int, name: str, start_time: Optional[int] = None) -> "PresenceSignal":
        return cls(user_id=user_id, activity=ActivitySignal(name=name, start_time=start_time))


@dataclass(frozen=True)
class LiveSession:
    user_id: int
    activity_id: int
    activity_name: str
    start_time: int


class SummaryEntry(NamedTuple):
    name: str
    total_seconds: int


class Transition(enum.Enum):
    IGNORED = "ignored"      # idle and still idle
    OPENED = "opened"
    UNCHANGED = "unchanged"  # repeated signal for the live session
    SWITCHED = "switched"
    CLOSED = "closed"
