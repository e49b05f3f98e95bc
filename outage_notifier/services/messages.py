"""Formatting of the messages sent to users"""
from typing import Iterable, List, Optional, Sequence

from ..storage.models import Address, ScheduleDay, TimeInterval

DAY_LABELS = {
    ScheduleDay.TODAY: "today",
    ScheduleDay.TOMORROW: "tomorrow",
}


def format_intervals(intervals: Sequence[TimeInterval]) -> str:
    """Format intervals as a bullet list"""
    if not intervals:
        return "✅ No outages scheduled"
    return "\n".join(f"• {interval.start} - {interval.end}" for interval in intervals)


def format_schedule_changed(group_name: str, intervals: Sequence[TimeInterval], day: ScheduleDay) -> str:
    """Message broadcast to every subscriber of a group whose schedule changed"""
    lines = [
        f"⚡ **Outage schedule changed** for group {group_name} ({DAY_LABELS[day]})",
        format_intervals(intervals),
    ]
    return "\n".join(lines)


def format_current_schedule(
    address: Address,
    group_name: str,
    intervals: Sequence[TimeInterval],
    day: ScheduleDay
) -> str:
    """Reply to a requester when a fresh probe found no change"""
    lines = [
        f"📋 **{address.name}** (group {group_name}), {DAY_LABELS[day]}: no changes",
        format_intervals(intervals),
    ]
    return "\n".join(lines)


def format_cached_schedule(
    address: Address,
    group_name: Optional[str],
    today: Optional[Sequence[TimeInterval]],
    tomorrow: Optional[Sequence[TimeInterval]] = None
) -> str:
    """Schedule from the store, as shown by the schedule and subscribe commands"""
    if not group_name or today is None:
        return f"ℹ️ No schedule is cached for **{address.name}** yet."
    
    lines = [
        f"📋 **{address.name}** (group {group_name})",
        "**Today:**",
        format_intervals(today),
    ]
    if tomorrow is not None:
        lines.append("**Tomorrow:**")
        lines.append(format_intervals(tomorrow))
    return "\n".join(lines)


def format_warning(address: Address, interval: TimeInterval, day: ScheduleDay = ScheduleDay.TODAY) -> str:
    """Pre-outage warning"""
    when = "" if day == ScheduleDay.TODAY else " (tomorrow)"
    return (
        f"⚠️ **Power outage soon** at **{address.name}**\n"
        f"Scheduled: {interval.start} - {interval.end}{when}"
    )


def format_check_failed(address: Address, day: ScheduleDay, reason: str) -> str:
    """Reply to a requester whose forced check failed"""
    return (
        f"❌ Could not check the {DAY_LABELS[day]} schedule for **{address.name}**: {reason}\n"
        f"The cached schedule may be out of date. Please try again later."
    )


def format_not_published(address: Address) -> str:
    return f"🕓 Tomorrow's schedule for **{address.name}** is not published yet."


def format_batch_summary(
    total: int,
    succeeded: int,
    failed: int,
    skipped: int,
    abandoned: int,
    completed: bool
) -> str:
    """Reply to a requester of a check of every address"""
    header = "✅ **Check finished**" if completed else "⏳ **Check still running, partial results**"
    lines = [
        header,
        f"Addresses: {total}",
        f"Probed: {succeeded}",
        f"Served by an earlier probe of the same group: {skipped}",
    ]
    if failed:
        lines.append(f"Failed: {failed}")
    if abandoned:
        lines.append(f"Not started (probe pool busy): {abandoned}")
    return "\n".join(lines)


def format_address_list(addresses: Iterable[Address], subscribed_key: Optional[str] = None) -> str:
    lines: List[str] = ["🏠 **Monitored addresses**"]
    for address in addresses:
        marker = " ⭐" if address.key == subscribed_key else ""
        lines.append(f"`{address.key}`: {address.name}{marker}")
    return "\n".join(lines)
