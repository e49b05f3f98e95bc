from __future__ import annotations

from datetime import datetime

import pytest

from outage_notifier.services.schedule_parser import (
    ScheduleLayoutError,
    decode_slot,
    find_upcoming_shutdowns,
    merge_intervals,
    normalize_schedule,
    parse_slot_label,
)
from outage_notifier.storage.models import TimeInterval

from helpers import intervals


def test_merge_joins_touching_intervals() -> None:
    merged = merge_intervals(intervals(("10:00", "10:30"), ("10:30", "11:00"), ("14:00", "14:30")))

    assert merged == intervals(("10:00", "11:00"), ("14:00", "14:30"))


def test_merge_is_idempotent() -> None:
    once = merge_intervals(intervals(("08:00", "09:00"), ("09:00", "09:30"), ("12:00", "13:00")))

    assert merge_intervals(once) == once


def test_merge_keeps_gaps_and_sorts() -> None:
    merged = merge_intervals(intervals(("14:00", "15:00"), ("10:00", "11:00"), ("11:30", "12:00")))

    assert merged == intervals(("10:00", "11:00"), ("11:30", "12:00"), ("14:00", "15:00"))


def test_normalize_decodes_every_tag() -> None:
    slots = [
        ("9-10", "cell-non-scheduled"),
        ("10-11", "cell-second-half"),
        ("11-12", "cell-scheduled"),
        ("12-13", "cell-first-half"),
        ("13-14", "cell-non-scheduled"),
        ("23-24", "cell-scheduled"),
    ]

    result = normalize_schedule(slots)

    assert result == intervals(("10:30", "12:30"), ("23:00", "24:00"))


def test_normalized_output_is_sorted_and_fully_merged() -> None:
    slots = [(f"{hour}-{hour + 1}", "cell-scheduled" if hour % 3 else "cell-first-half") for hour in range(24)]

    result = normalize_schedule(slots)

    starts = [interval.start_minutes for interval in result]
    assert starts == sorted(starts)
    for previous, current in zip(result, result[1:]):
        assert previous.end_minutes < current.start_minutes


def test_unknown_tag_is_treated_as_no_outage() -> None:
    assert decode_slot("14-15", "cell-something-new") is None
    assert normalize_schedule([("14-15", "cell-maybe"), ("15-16", "cell-scheduled")]) == intervals(
        ("15:00", "16:00")
    )


def test_tag_is_read_from_a_class_list() -> None:
    assert decode_slot("14-15", "highlight cell-second-half") == TimeInterval("14:30", "15:00")


@pytest.mark.parametrize("label", ["", "14", "14-", "abc", "15-14", "23-25", "14:30-15"])
def test_malformed_slot_label_fails_whole_extraction(label: str) -> None:
    with pytest.raises(ScheduleLayoutError):
        normalize_schedule([("10-11", "cell-scheduled"), (label, "cell-non-scheduled")])


def test_slot_label_variants() -> None:
    assert parse_slot_label("0-1") == (0, 60)
    assert parse_slot_label("09 – 10") == (540, 600)
    assert parse_slot_label("23:00-24:00") == (1380, 1440)


@pytest.mark.parametrize(
    "start, expected",
    [("14:29", False), ("14:30", True), ("14:39", True), ("14:40", False)],
)
def test_warning_window_boundaries(start: str, expected: bool) -> None:
    now = datetime(2024, 5, 1, 14, 0)
    interval = TimeInterval(start, "15:30")

    upcoming = find_upcoming_shutdowns([interval], now, 30, 40)

    assert (interval in upcoming) is expected


def test_warning_window_ignores_seconds() -> None:
    now = datetime(2024, 5, 1, 14, 0, 59)

    upcoming = find_upcoming_shutdowns(intervals(("14:30", "15:00")), now, 30, 40)

    assert upcoming == intervals(("14:30", "15:00"))


def test_warning_window_reaches_into_next_day() -> None:
    now = datetime(2024, 5, 1, 23, 45)
    tomorrow = intervals(("00:00", "01:00"), ("00:15", "00:30"), ("00:25", "01:00"))

    upcoming = find_upcoming_shutdowns(tomorrow, now, 30, 40, day_offset=1)

    assert upcoming == intervals(("00:15", "00:30"))
