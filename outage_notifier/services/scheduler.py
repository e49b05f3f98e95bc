"""Periodic cycles and on-demand checks funneled through one job queue"""
import asyncio
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, Sequence, Set

from ..config import MonitorSettings
from ..storage.database import LAST_ROLLOVER_KEY, Database
from ..storage.models import Address, ScheduleDay
from ..utils.fault_isolation import run_guarded
from ..utils.health import TransportHealth
from ..utils.logger import setup_logger
from ..utils.timezone import in_window, now_local
from .check_runner import CheckJob, CheckRunner
from .notification_service import NotificationService

logger = setup_logger(__name__)

FULL_CHECK = "full-check"
NEXT_DAY_LOOKAHEAD = "next-day-lookahead"


class CycleScheduler:
    """
    Drives the full check, warning sweep, next-day lookahead and midnight
    rollover cycles.
    
    Every probe-bearing job, scheduled or forced, goes through one bounded
    queue drained by a single consumer. Submissions to a full queue are
    rejected. The warning sweep and the rollover only touch the store and
    run outside the queue.
    """
    
    def __init__(
        self,
        runner: CheckRunner,
        warnings: NotificationService,
        database: Database,
        health: TransportHealth,
        settings: MonitorSettings,
        addresses: Sequence[Address],
        ping: Optional[Callable[[], Awaitable[bool]]] = None
    ):
        """
        Initialize cycle scheduler
        
        Args:
            runner: Executes queued jobs
            warnings: Warning tracker run by the sweep
            database: Database instance
            health: Transport health shared with the notifier
            settings: Monitoring settings
            addresses: Monitored addresses
            ping: Lightweight transport probe used to recover health
        """
        self.runner = runner
        self.warnings = warnings
        self.database = database
        self.health = health
        self.settings = settings
        self.address_keys = {address.key for address in addresses}
        self.ping = ping
        self.running = False
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=settings.task_queue_size)
        self._pending: Set[str] = set()
        self._tasks: List[asyncio.Task] = []
    
    # Job submission
    
    def submit(self, job: CheckJob) -> bool:
        """
        Put a job on the queue without waiting
        
        Scheduled (non-forced) jobs are not queued twice while one with the
        same name is still waiting.
        
        Returns:
            True if the job was accepted
        """
        if not job.forced and job.name in self._pending:
            logger.debug(f"Job '{job.name}' is already queued, not adding it again")
            return False
        
        try:
            self._queue.put_nowait(job)
        except asyncio.QueueFull:
            logger.warning(f"Job queue is full ({self._queue.maxsize}), rejecting '{job.name}'")
            return False
        
        if not job.forced:
            self._pending.add(job.name)
        logger.debug(f"Queued job '{job.name}' ({self._queue.qsize()} waiting)")
        return True
    
    def schedule_full_check(self) -> bool:
        """Queue a cache-respecting check of every address"""
        return self.submit(CheckJob(name=FULL_CHECK))
    
    def schedule_next_day_lookahead(self, now: Optional[datetime] = None) -> bool:
        """Queue a check of tomorrow's schedules, only inside the lookahead window"""
        now = now or now_local(self.settings.timezone)
        if not in_window(now, self.settings.lookahead_window_start, self.settings.lookahead_window_end):
            return False
        return self.submit(CheckJob(name=NEXT_DAY_LOOKAHEAD, day=ScheduleDay.TOMORROW))
    
    def force_check_address(self, address_key: str, requester_id: Optional[int] = None) -> bool:
        """Queue a forced check of one address; the result reaches the requester as a message"""
        if address_key not in self.address_keys:
            logger.warning(f"Forced check requested for unknown address '{address_key}'")
            return False
        return self.submit(CheckJob(
            name=f"force-check:{address_key}",
            address_keys=(address_key,),
            forced=True,
            requester_id=requester_id
        ))
    
    def force_check_all(self, requester_id: Optional[int] = None) -> bool:
        """Queue a forced check of every address; the requester gets a summary"""
        return self.submit(CheckJob(name="force-check-all", forced=True, requester_id=requester_id))
    
    def force_check_next_day(self, address_key: str, requester_id: Optional[int] = None) -> bool:
        """Queue a forced check of tomorrow's schedule for one address"""
        if address_key not in self.address_keys:
            logger.warning(f"Next day check requested for unknown address '{address_key}'")
            return False
        return self.submit(CheckJob(
            name=f"force-next-day:{address_key}",
            day=ScheduleDay.TOMORROW,
            address_keys=(address_key,),
            forced=True,
            requester_id=requester_id
        ))
    
    # Store-only cycles
    
    async def run_warning_sweep(self, now: Optional[datetime] = None) -> int:
        """Warn about upcoming outages, promoting tomorrow's schedules first when due"""
        now = now or now_local(self.settings.timezone)
        self.run_midnight_rollover(now)
        return await self.warnings.check_and_notify(now)
    
    def run_midnight_rollover(self, now: Optional[datetime] = None) -> bool:
        """
        Promote staged next-day schedules, once per local date, inside the rollover window
        
        Returns:
            True if the rollover ran
        """
        now = now or now_local(self.settings.timezone)
        if not in_window(now, self.settings.rollover_window_start, self.settings.rollover_window_end):
            return False
        
        today = now.date().isoformat()
        if self.database.get_state(LAST_ROLLOVER_KEY) == today:
            return False
        
        promoted = self.database.promote_next_day_schedules(today)
        logger.info(f"Midnight rollover for {today}: promoted {promoted} next day schedule(s)")
        
        # Groups without a staged schedule were expired and need a fresh probe
        self.schedule_full_check()
        return True
    
    async def check_transport_health(self) -> bool:
        """Try to clear the unhealthy flag with a lightweight transport probe"""
        if self.health.is_healthy:
            return True
        if self.ping is None:
            return False
        
        if await self.ping():
            self.health.mark_healthy()
            return True
        
        logger.warning("Notification transport is still unhealthy")
        return False
    
    # Loops
    
    def start(self, cycles: bool = True):
        """
        Start the queue consumer and the periodic cycles
        
        Args:
            cycles: False starts only the consumer, so jobs run only when submitted
        """
        self.running = True
        s = self.settings
        logger.info("Starting cycle scheduler")
        
        self._tasks = [asyncio.create_task(self._consume())]
        if not cycles:
            return
        
        self._tasks += [
            asyncio.create_task(self._every(
                "full check", s.full_check_interval_minutes * 60, self._full_check_tick
            )),
            asyncio.create_task(self._every(
                "warning sweep", s.warning_sweep_interval_minutes * 60, self.run_warning_sweep
            )),
            asyncio.create_task(self._every(
                "next day lookahead", s.lookahead_interval_minutes * 60, self._lookahead_tick
            )),
            asyncio.create_task(self._every(
                "midnight rollover", s.rollover_interval_minutes * 60, self._rollover_tick
            )),
            asyncio.create_task(self._every(
                "transport health", s.health_check_interval_seconds, self.check_transport_health,
                run_immediately=False
            )),
        ]
    
    async def stop(self):
        """Stop every loop; a job that is being run is cancelled with it"""
        self.running = False
        logger.info("Stopping cycle scheduler")
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
    
    async def join(self):
        """Wait until every queued job has been run"""
        await self._queue.join()
    
    async def _consume(self):
        while True:
            job = await self._queue.get()
            self._pending.discard(job.name)
            try:
                await run_guarded(f"check '{job.name}'", lambda: self.runner.run_job(job), self.health)
            finally:
                self._queue.task_done()
    
    async def _every(
        self,
        name: str,
        interval_seconds: float,
        func: Callable[[], Awaitable[object]],
        run_immediately: bool = True
    ):
        if not run_immediately:
            await asyncio.sleep(interval_seconds)
        while self.running:
            await run_guarded(name, func, self.health)
            await asyncio.sleep(interval_seconds)
    
    async def _full_check_tick(self):
        self.schedule_full_check()
    
    async def _lookahead_tick(self):
        self.schedule_next_day_lookahead()
    
    async def _rollover_tick(self):
        self.run_midnight_rollover()
