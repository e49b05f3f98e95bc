"""Reconciliation of probe results with the store and change fan-out"""
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional, Protocol

from ..storage.database import Database
from ..storage.models import Address, GroupSchedule, ProbeResult, ScheduleDay
from ..utils.logger import setup_logger
from ..utils.timezone import now_local, now_timestamp
from . import messages

logger = setup_logger(__name__)


class Notifier(Protocol):
    """Notification channel used for direct messages"""
    
    async def send_with_retry(self, user_id: int, text: str) -> bool:
        ...


@dataclass
class DispatchOutcome:
    """What reconciling one probe result did to the store"""
    result: ProbeResult
    previous: Optional[GroupSchedule]
    changed: bool
    cleared_flags: int = 0


@dataclass
class DeliveryReport:
    """Per-recipient delivery counts of one dispatch"""
    sent: int = 0
    failed: int = 0
    requester_notified: bool = False


def schedule_date(day: ScheduleDay, timezone: str) -> date:
    """Local calendar date a schedule day refers to"""
    today = now_local(timezone).date()
    return today + timedelta(days=1) if day == ScheduleDay.TOMORROW else today


class ChangeDispatcher:
    """Persists probe results and tells affected users about changes"""
    
    def __init__(self, database: Database, notifier: Notifier, timezone: str = "Europe/Kyiv"):
        """
        Initialize change dispatcher
        
        Args:
            database: Database instance
            notifier: Channel used to message users
            timezone: Local timezone of the schedules
        """
        self.database = database
        self.notifier = notifier
        self.timezone = timezone
    
    def reconcile(self, result: ProbeResult, checked_at: Optional[int] = None) -> DispatchOutcome:
        """
        Store a fresh probe result
        
        The probed address is always rebound to the resolved group and the
        group schedule is always rewritten with a fresh timestamp. Warned flags
        of the group are cleared when the schedule changed. Store errors
        propagate.
        
        Args:
            result: Normalized probe result
            checked_at: Epoch seconds to record, defaults to now
        
        Returns:
            DispatchOutcome describing the change
        """
        checked_at = now_timestamp() if checked_at is None else checked_at
        
        self.database.update_binding(result.address_key, result.group_name, checked_at)
        previous = self.database.get_group_schedule(result.group_name, result.day)
        changed = previous is None or previous.intervals != result.intervals
        self.database.save_group_schedule(result.group_name, result.intervals, result.day, checked_at)
        
        cleared = 0
        if changed:
            if result.day == ScheduleDay.TODAY:
                cleared = self.database.clear_warned_flags_for_group(result.group_name)
            else:
                tomorrow = schedule_date(ScheduleDay.TOMORROW, self.timezone).isoformat()
                cleared = self.database.clear_warned_flags_for_group(result.group_name, tomorrow)
            logger.info(
                f"Schedule of group {result.group_name} ({result.day.value}) changed: "
                f"{len(result.intervals)} interval(s), {cleared} warned flag(s) cleared"
            )
        else:
            logger.debug(f"Schedule of group {result.group_name} ({result.day.value}) unchanged")
        
        return DispatchOutcome(result=result, previous=previous, changed=changed, cleared_flags=cleared)
    
    async def notify(
        self,
        outcome: DispatchOutcome,
        address: Address,
        requester_id: Optional[int] = None
    ) -> DeliveryReport:
        """
        Deliver the outcome of one probe
        
        On change every user bound to the group hears about it, the requester
        last and directly. Without a change only the requester gets an echo of
        the current schedule. A failure for one recipient never stops the rest.
        
        Args:
            outcome: Result of reconcile()
            address: Address that was probed
            requester_id: User who forced the check, if any
        
        Returns:
            DeliveryReport with per-recipient counts
        """
        report = DeliveryReport()
        result = outcome.result
        
        if outcome.changed:
            text = messages.format_schedule_changed(result.group_name, result.intervals, result.day)
            recipients = [
                user.user_id for user in self.database.get_users_for_group(result.group_name)
                if user.user_id != requester_id
            ]
            for user_id in recipients:
                if await self._deliver(user_id, text):
                    report.sent += 1
                else:
                    report.failed += 1
            logger.info(
                f"Change of group {result.group_name} sent to {report.sent}/{len(recipients)} subscriber(s)"
            )
        else:
            text = messages.format_current_schedule(address, result.group_name, result.intervals, result.day)
        
        if requester_id is not None:
            report.requester_notified = await self._deliver(requester_id, text)
            if report.requester_notified:
                report.sent += 1
            else:
                report.failed += 1
        
        return report
    
    async def _deliver(self, user_id: int, text: str) -> bool:
        try:
            return await self.notifier.send_with_retry(user_id, text)
        except Exception as e:
            logger.error(f"Error notifying user {user_id}: {e}")
            return False
