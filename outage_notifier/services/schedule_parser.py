"""Conversion of raw per-slot outage markers into merged outage intervals"""
import re
from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Tuple

from ..storage.models import TimeInterval
from ..utils.logger import setup_logger

logger = setup_logger(__name__)

TAG_NO_OUTAGE = "cell-non-scheduled"
TAG_FULL = "cell-scheduled"
TAG_FIRST_HALF = "cell-first-half"
TAG_SECOND_HALF = "cell-second-half"

KNOWN_TAGS = (TAG_NO_OUTAGE, TAG_FULL, TAG_FIRST_HALF, TAG_SECOND_HALF)

MINUTES_PER_DAY = 24 * 60

_SLOT_LABEL_RE = re.compile(r"^\s*(\d{1,2})(?::00)?\s*[-–—]\s*(\d{1,2})(?::00)?\s*$")


class ScheduleLayoutError(ValueError):
    """Raised when the source page no longer looks the way it is expected to"""


def format_minutes(total: int) -> str:
    """Format minutes since midnight as 'HH:MM' ('24:00' allowed as an end)"""
    return f"{total // 60:02d}:{total % 60:02d}"


def parse_slot_label(label: str) -> Tuple[int, int]:
    """
    Parse a slot label such as '14-15' into start and end minutes.
    
    Args:
        label: Slot label from the schedule table header
    
    Returns:
        (start_minutes, end_minutes)
    
    Raises:
        ScheduleLayoutError: If the label cannot be decoded
    """
    match = _SLOT_LABEL_RE.match(label or "")
    if not match:
        raise ScheduleLayoutError(f"Unrecognized slot label: '{label}'")
    
    start_hour, end_hour = int(match.group(1)), int(match.group(2))
    if not (0 <= start_hour < end_hour <= 24):
        raise ScheduleLayoutError(f"Slot label out of range: '{label}'")
    
    return start_hour * 60, end_hour * 60


def _resolve_tag(tag: str) -> Optional[str]:
    """Return the first recognized status tag in a class list"""
    for token in (tag or "").split():
        if token in KNOWN_TAGS:
            return token
    return None


def decode_slot(label: str, tag: str) -> Optional[TimeInterval]:
    """
    Decode one (slot label, status tag) pair.
    
    Unknown tags are treated as no outage.
    
    Returns:
        The outage interval covered by the slot, or None
    """
    start, end = parse_slot_label(label)
    status = _resolve_tag(tag)
    
    if status is None:
        logger.debug(f"Unknown status tag '{tag}' for slot {label}, treating as no outage")
        return None
    if status == TAG_NO_OUTAGE:
        return None
    
    middle = start + (end - start) // 2
    if status == TAG_FULL:
        return TimeInterval(format_minutes(start), format_minutes(end))
    if status == TAG_FIRST_HALF:
        return TimeInterval(format_minutes(start), format_minutes(middle))
    return TimeInterval(format_minutes(middle), format_minutes(end))


def extract_intervals(slots: Iterable[Tuple[str, str]]) -> List[TimeInterval]:
    """Decode every slot, dropping those without an outage"""
    intervals = []
    for label, tag in slots:
        interval = decode_slot(label, tag)
        if interval is not None:
            intervals.append(interval)
    return intervals


def merge_intervals(intervals: Sequence[TimeInterval]) -> List[TimeInterval]:
    """
    Sort intervals by start and merge touching neighbours in one pass.
    
    Two intervals are merged only when the previous end equals the next start.
    
    Args:
        intervals: Intervals in any order
    
    Returns:
        Sorted, merged intervals
    """
    merged: List[TimeInterval] = []
    for interval in sorted(intervals, key=lambda i: (i.start_minutes, i.end_minutes)):
        if merged and merged[-1].end_minutes == interval.start_minutes:
            merged[-1] = TimeInterval(merged[-1].start, interval.end)
        else:
            merged.append(interval)
    return merged


def normalize_schedule(slots: Iterable[Tuple[str, str]]) -> List[TimeInterval]:
    """
    Turn raw (slot label, status tag) pairs into canonical outage intervals.
    
    Raises:
        ScheduleLayoutError: If any slot label is malformed
    """
    return merge_intervals(extract_intervals(slots))


def find_upcoming_shutdowns(
    intervals: Sequence[TimeInterval],
    now: datetime,
    start_offset: int,
    end_offset: int,
    day_offset: int = 0
) -> List[TimeInterval]:
    """
    Find outages starting inside the warning window [now + start_offset, now + end_offset).
    
    Args:
        intervals: Schedule intervals of one day
        now: Current local wall-clock time, truncated to the minute
        start_offset: Window start in minutes from now (inclusive)
        end_offset: Window end in minutes from now (exclusive)
        day_offset: 1 when the intervals belong to the next day
    
    Returns:
        Intervals whose start lies in the window, in schedule order
    """
    now_minutes = now.hour * 60 + now.minute
    window_start = now_minutes + start_offset
    window_end = now_minutes + end_offset
    
    upcoming = []
    for interval in intervals:
        start = interval.start_minutes + day_offset * MINUTES_PER_DAY
        if window_start <= start < window_end:
            upcoming.append(interval)
    return upcoming
