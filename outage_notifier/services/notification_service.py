"""Warning service for outages that are about to start"""
from datetime import date, datetime, time as dt_time, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from ..storage.database import LAST_ROLLOVER_KEY, Database
from ..storage.models import Address, ScheduleDay, TimeInterval
from ..utils.health import TransportHealth
from ..utils.logger import setup_logger
from ..utils.timezone import in_window, now_local
from . import messages
from .change_dispatcher import Notifier
from .schedule_parser import MINUTES_PER_DAY, find_upcoming_shutdowns

logger = setup_logger(__name__)


def outage_key(day_date: date, interval: TimeInterval) -> str:
    """Identity of one outage start used by warned flags"""
    return f"{day_date.isoformat()} {interval.start}"


class NotificationService:
    """Service for warning subscribers shortly before an outage starts"""
    
    def __init__(
        self,
        database: Database,
        notifier: Notifier,
        addresses: Sequence[Address],
        health: TransportHealth,
        timezone: str = "Europe/Kyiv",
        warn_start_minutes: int = 30,
        warn_end_minutes: int = 40,
        rollover_window_start: dt_time = dt_time(0, 0),
        rollover_window_end: dt_time = dt_time(0, 30)
    ):
        """
        Initialize notification service
        
        Args:
            database: Database instance
            notifier: Channel used to message users
            addresses: Monitored addresses
            health: Transport health; sweeps are skipped while unhealthy
            timezone: Local timezone of the schedules
            warn_start_minutes: Window start, minutes ahead of now (inclusive)
            warn_end_minutes: Window end, minutes ahead of now (exclusive)
            rollover_window_start: Start of the post-midnight rollover window
            rollover_window_end: End of the post-midnight rollover window
        """
        self.database = database
        self.notifier = notifier
        self.addresses = list(addresses)
        self.health = health
        self.timezone = timezone
        self.warn_start_minutes = warn_start_minutes
        self.warn_end_minutes = warn_end_minutes
        self.rollover_window_start = rollover_window_start
        self.rollover_window_end = rollover_window_end
    
    async def check_and_notify(self, now: Optional[datetime] = None) -> int:
        """
        Warn every subscriber about outages starting inside the warning window
        
        Each (user, address, outage start) is claimed in the store before the
        message goes out, so it is warned at most once. A send that fails
        releases the claim for a later sweep.
        
        Args:
            now: Local wall-clock time, defaults to the current time
        
        Returns:
            Number of warnings sent
        """
        if not self.health.is_healthy:
            logger.warning("Notification transport is unhealthy, skipping warning sweep")
            return 0
        
        now = (now or now_local(self.timezone)).replace(second=0, microsecond=0)
        upcoming_by_group: Dict[str, List[Tuple[date, TimeInterval, ScheduleDay]]] = {}
        sent = 0
        
        for address in self.addresses:
            group_name = self.database.get_group_for_address(address.key)
            if not group_name:
                continue
            
            users = self.database.get_users_for_address(address.key)
            if not users:
                continue
            
            if group_name not in upcoming_by_group:
                upcoming_by_group[group_name] = self._get_upcoming(group_name, now)
            
            for day_date, interval, day in upcoming_by_group[group_name]:
                key = outage_key(day_date, interval)
                text = messages.format_warning(address, interval, day)
                
                for user in users:
                    if not self.database.try_mark_warned(user.user_id, address.key, key):
                        continue
                    
                    if await self._send(user.user_id, text):
                        sent += 1
                        logger.info(f"Warned user {user.user_id} about outage at {address.key} ({key})")
                    else:
                        self.database.unmark_warned(user.user_id, address.key, key)
                        logger.warning(
                            f"Could not warn user {user.user_id} about outage at {address.key} ({key}), "
                            f"will retry on the next sweep"
                        )
        
        if sent:
            logger.info(f"Warning sweep sent {sent} warning(s)")
        return sent
    
    def _get_upcoming(self, group_name: str, now: datetime) -> List[Tuple[date, TimeInterval, ScheduleDay]]:
        """
        Get outages of a group starting inside the warning window
        
        When the window reaches past midnight the staged next-day schedule is
        checked as well. Inside the rollover window, before the rollover ran
        for today, the staged schedule is the one for today.
        """
        upcoming = []
        rolled_over = self._rolled_over(now)
        
        # Until the rollover runs the live table still holds yesterday
        today_table = ScheduleDay.TODAY if rolled_over else ScheduleDay.TOMORROW
        schedule = self.database.get_group_schedule(group_name, today_table)
        if schedule:
            for interval in find_upcoming_shutdowns(
                schedule.intervals, now, self.warn_start_minutes, self.warn_end_minutes
            ):
                upcoming.append((now.date(), interval, ScheduleDay.TODAY))
        
        now_minutes = now.hour * 60 + now.minute
        if rolled_over and now_minutes + self.warn_end_minutes > MINUTES_PER_DAY:
            staged = self.database.get_group_schedule(group_name, ScheduleDay.TOMORROW)
            if staged:
                for interval in find_upcoming_shutdowns(
                    staged.intervals, now, self.warn_start_minutes, self.warn_end_minutes, day_offset=1
                ):
                    upcoming.append((now.date() + timedelta(days=1), interval, ScheduleDay.TOMORROW))
        
        return upcoming
    
    def _rolled_over(self, now: datetime) -> bool:
        """Whether the live table already holds the schedules of now's date"""
        if not in_window(now, self.rollover_window_start, self.rollover_window_end):
            return True
        return self.database.get_state(LAST_ROLLOVER_KEY) == now.date().isoformat()
    
    async def _send(self, user_id: int, text: str) -> bool:
        try:
            return await self.notifier.send_with_retry(user_id, text)
        except Exception as e:
            logger.error(f"Error sending warning to user {user_id}: {e}")
            return False
