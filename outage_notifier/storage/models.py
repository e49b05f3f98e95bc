"""Data models for addresses, schedules and subscribers"""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple


class ScheduleDay(str, Enum):
    """Which published day a schedule belongs to"""
    TODAY = "today"
    TOMORROW = "tomorrow"


@dataclass(frozen=True)
class Address:
    """A monitored address; location fields are passed to the fetcher verbatim"""
    key: str
    name: str
    city: str
    street: str
    house_num: str


def _to_minutes(value: str) -> int:
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


@dataclass(frozen=True)
class TimeInterval:
    """Half-open outage interval [start, end) as 'HH:MM' strings"""
    start: str
    end: str
    
    def __post_init__(self):
        if self.start_minutes >= self.end_minutes:
            raise ValueError(f"Interval start must precede end: {self.start}-{self.end}")
    
    @property
    def start_minutes(self) -> int:
        return _to_minutes(self.start)
    
    @property
    def end_minutes(self) -> int:
        return _to_minutes(self.end)
    
    def to_pair(self) -> Tuple[str, str]:
        return (self.start, self.end)
    
    @classmethod
    def from_pair(cls, pair) -> "TimeInterval":
        return cls(start=pair[0], end=pair[1])
    
    def __str__(self):
        return f"{self.start}-{self.end}"


@dataclass
class GroupSchedule:
    """Cached schedule of a group plus the epoch second it was last verified"""
    group_name: str
    intervals: List[TimeInterval]
    last_checked: int


@dataclass
class AddressBinding:
    """
    Address to group mapping with its two freshness clocks.
    
    group_last_checked ages the binding itself, schedule_last_checked
    ages the cached schedule of the bound group (None if nothing cached).
    """
    address_key: str
    group_name: Optional[str] = None
    group_last_checked: int = 0
    schedule_last_checked: Optional[int] = None


@dataclass
class User:
    """A chat user and their subscription"""
    user_id: int
    display_name: str
    subscribed_address_key: Optional[str] = None


@dataclass
class RawProbe:
    """Fetcher output: group name plus ordered (slot label, status tag) pairs"""
    group_name: str
    slots: List[Tuple[str, str]] = field(default_factory=list)


@dataclass
class ProbeResult:
    """Normalized result of probing one address"""
    address_key: str
    group_name: str
    intervals: List[TimeInterval]
    day: ScheduleDay = ScheduleDay.TODAY
