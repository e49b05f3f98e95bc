"""Execution of one probe batch: selection, dedup, probing and dispatch"""
import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set, Tuple

from ..config import MonitorSettings
from ..storage.database import Database
from ..storage.models import Address, AddressBinding, ScheduleDay
from ..utils.health import FailureTracker
from ..utils.logger import setup_logger
from ..utils.timezone import now_timestamp
from . import messages
from .change_dispatcher import ChangeDispatcher, Notifier
from .group_cache import GroupLedger, is_binding_trusted, select_addresses_for_check
from .probe_pool import AdmissionTimeoutError, ProbePool
from .schedule_fetcher import ProbeError, ScheduleNotPublishedError
from .schedule_parser import ScheduleLayoutError

logger = setup_logger(__name__)


@dataclass(frozen=True)
class CheckJob:
    """
    One unit of probe-bearing work submitted to the scheduler queue.
    
    address_keys of None means every monitored address. Forced jobs ignore
    cache horizons and failure cooldowns.
    """
    name: str
    day: ScheduleDay = ScheduleDay.TODAY
    address_keys: Optional[Tuple[str, ...]] = None
    forced: bool = False
    requester_id: Optional[int] = None
    
    @property
    def is_single_address(self) -> bool:
        return self.address_keys is not None and len(self.address_keys) == 1


class Countdown:
    """Completion latch that every unit of a batch decrements exactly once"""
    
    def __init__(self, count: int):
        self._remaining = count
        self._done = asyncio.Event()
        if count <= 0:
            self._done.set()
    
    @property
    def remaining(self) -> int:
        return self._remaining
    
    def count_down(self):
        if self._remaining > 0:
            self._remaining -= 1
            if self._remaining == 0:
                self._done.set()
    
    async def wait(self, timeout: float) -> bool:
        """Wait for every unit, returning False if the timeout expired first"""
        try:
            await asyncio.wait_for(self._done.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False


@dataclass
class BatchReport:
    """Outcome of one job"""
    job: CheckJob
    total: int = 0
    cached: int = 0
    cooling_down: int = 0
    probed: List[str] = field(default_factory=list)
    deduplicated: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    abandoned: List[str] = field(default_factory=list)
    not_published: List[str] = field(default_factory=list)
    changed_groups: Set[str] = field(default_factory=set)
    completed: bool = True


class CheckRunner:
    """Runs check jobs against the probe pool"""
    
    def __init__(
        self,
        database: Database,
        pool: ProbePool,
        dispatcher: ChangeDispatcher,
        notifier: Notifier,
        addresses: Sequence[Address],
        failures: FailureTracker,
        settings: MonitorSettings
    ):
        """
        Initialize check runner
        
        Args:
            database: Database instance
            pool: Admission-controlled probe pool
            dispatcher: Store reconciliation and change fan-out
            notifier: Channel for replies to requesters
            addresses: Monitored addresses
            failures: Per-address failure counters
            settings: Monitoring settings
        """
        self.database = database
        self.pool = pool
        self.dispatcher = dispatcher
        self.notifier = notifier
        self.addresses: Dict[str, Address] = {address.key: address for address in addresses}
        self.failures = failures
        self.settings = settings
        self._units: Set[asyncio.Task] = set()
    
    async def run_job(self, job: CheckJob) -> BatchReport:
        """
        Run one job and wait for it with the batch timeout
        
        Units still running when the timeout expires keep running; the report
        then has completed=False.
        """
        report = BatchReport(job=job)
        now_ts = now_timestamp()
        
        keys = job.address_keys if job.address_keys is not None else list(self.addresses)
        bindings = [b for b in self.database.get_bindings(keys, job.day) if b.address_key in self.addresses]
        report.total = len(bindings)
        
        eligible = self._select(job, bindings, now_ts, report)
        logger.info(
            f"Check '{job.name}' ({job.day.value}): {len(eligible)}/{report.total} address(es) to probe, "
            f"{report.cached} cached, {report.cooling_down} cooling down"
        )
        
        countdown = Countdown(len(eligible))
        ledger = GroupLedger()
        for binding in eligible:
            task = asyncio.create_task(self._run_unit(job, binding, ledger, countdown, report, now_ts))
            self._units.add(task)
            task.add_done_callback(self._units.discard)
        
        report.completed = await countdown.wait(self.settings.batch_timeout_seconds)
        if report.completed:
            logger.info(
                f"Check '{job.name}' finished: {len(report.probed)} probed, "
                f"{len(report.deduplicated)} deduplicated, {len(report.failed)} failed, "
                f"{len(report.abandoned)} abandoned, {len(report.changed_groups)} group(s) changed"
            )
        else:
            logger.warning(
                f"Check '{job.name}' did not finish within {self.settings.batch_timeout_seconds}s, "
                f"{countdown.remaining} unit(s) still running"
            )
        
        if job.requester_id is not None and not job.is_single_address:
            await self._reply(job.requester_id, messages.format_batch_summary(
                total=report.total,
                succeeded=len(report.probed),
                failed=len(report.failed),
                skipped=len(report.deduplicated) + report.cached,
                abandoned=len(report.abandoned),
                completed=report.completed
            ))
        return report
    
    def _select(
        self,
        job: CheckJob,
        bindings: List[AddressBinding],
        now_ts: int,
        report: BatchReport
    ) -> List[AddressBinding]:
        if job.forced:
            return list(bindings)
        
        selected = select_addresses_for_check(
            bindings, now_ts, self.settings.reverify_seconds, self.settings.cache_seconds
        )
        report.cached = len(bindings) - len(selected)
        
        eligible = []
        for binding in selected:
            if self.failures.in_cooldown(binding.address_key):
                report.cooling_down += 1
                logger.debug(f"Skipping {binding.address_key}, address is cooling down after failures")
                continue
            eligible.append(binding)
        return eligible
    
    async def _run_unit(
        self,
        job: CheckJob,
        binding: AddressBinding,
        ledger: GroupLedger,
        countdown: Countdown,
        report: BatchReport,
        now_ts: int
    ):
        """Probe one address unless its group was already resolved in this batch"""
        address = self.addresses[binding.address_key]
        requester_id = job.requester_id if job.is_single_address else None
        trusted = is_binding_trusted(binding, now_ts, self.settings.reverify_seconds)
        claimed: Optional[str] = None
        
        try:
            if trusted:
                if not await ledger.acquire(binding.group_name):
                    self.database.touch_binding(address.key)
                    report.deduplicated.append(address.key)
                    logger.debug(f"Group {binding.group_name} already resolved, skipping {address.key}")
                    return
                claimed = binding.group_name
            
            result = await self.pool.probe(address, job.day)
            outcome = self.dispatcher.reconcile(result)
            
            if claimed is not None:
                ledger.release(claimed, result.group_name)
                claimed = None
            else:
                ledger.mark_resolved(result.group_name)
            
            self.failures.record_success(address.key)
            report.probed.append(address.key)
            if outcome.changed:
                report.changed_groups.add(result.group_name)
            
            await self.dispatcher.notify(outcome, address, requester_id)
        
        except AdmissionTimeoutError as e:
            report.abandoned.append(address.key)
            logger.warning(f"Abandoned {address.key} for this cycle: {e}")
            await self._reply_failure(requester_id, address, job, "the probe pool is busy")
        
        except ScheduleLayoutError as e:
            report.failed.append(address.key)
            logger.critical(f"SCHEDULE LAYOUT CHANGED: cannot read the schedule for {address.key}: {e}")
            self.failures.record_failure(address.key, f"layout error: {e}")
            await self._reply_failure(requester_id, address, job, "the schedule page could not be read")
        
        except ScheduleNotPublishedError:
            report.not_published.append(address.key)
            logger.info(f"{job.day.value.capitalize()} schedule for {address.key} is not published yet")
            if requester_id is not None:
                await self._reply(requester_id, messages.format_not_published(address))
        
        except ProbeError as e:
            report.failed.append(address.key)
            self.failures.record_failure(address.key, str(e))
            await self._reply_failure(requester_id, address, job, "the schedule source is not responding")
        
        except Exception as e:
            report.failed.append(address.key)
            logger.error(f"Error checking {address.key}: {e}", exc_info=True)
            self.failures.record_failure(address.key, f"{type(e).__name__}: {e}")
            await self._reply_failure(requester_id, address, job, "an internal error occurred")
        
        finally:
            if claimed is not None:
                ledger.release(claimed, None)
            countdown.count_down()
    
    async def _reply_failure(self, requester_id: Optional[int], address: Address, job: CheckJob, reason: str):
        if requester_id is not None:
            await self._reply(requester_id, messages.format_check_failed(address, job.day, reason))
    
    async def _reply(self, user_id: int, text: str):
        try:
            await self.notifier.send_with_retry(user_id, text)
        except Exception as e:
            logger.error(f"Error replying to user {user_id}: {e}")
