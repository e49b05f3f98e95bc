"""Bounded, admission-controlled execution of schedule probes"""
import asyncio
import time
from concurrent.futures import ThreadPoolExecutor

from ..storage.models import Address, ProbeResult, ScheduleDay
from ..utils.logger import setup_logger
from .schedule_fetcher import ProbeError, ScheduleFetcher
from .schedule_parser import normalize_schedule

logger = setup_logger(__name__)


class AdmissionTimeoutError(Exception):
    """No probe slot became free within the admission timeout"""


class ProbePool:
    """
    Runs synchronous fetcher probes on a fixed-size thread pool.
    
    A semaphore of the same size admits callers; a caller that cannot get a
    slot within admission_timeout seconds gets AdmissionTimeoutError. Once
    admitted, a probe runs to completion or failure.
    """
    
    def __init__(
        self,
        fetcher: ScheduleFetcher,
        size: int = 3,
        admission_timeout: float = 900,
        retries: int = 2,
        retry_delay: float = 5
    ):
        """
        Initialize probe pool
        
        Args:
            fetcher: Fetcher used for every probe
            size: Maximum number of simultaneous probes
            admission_timeout: Seconds to wait for a free slot
            retries: Extra attempts after a transient ProbeError
            retry_delay: Fixed delay between attempts in seconds
        """
        self.fetcher = fetcher
        self.size = size
        self.admission_timeout = admission_timeout
        self.retries = retries
        self.retry_delay = retry_delay
        self._semaphore = asyncio.Semaphore(size)
        self._executor = ThreadPoolExecutor(max_workers=size, thread_name_prefix="probe")
    
    async def probe(self, address: Address, day: ScheduleDay = ScheduleDay.TODAY) -> ProbeResult:
        """
        Probe one address once a slot is free
        
        Raises:
            AdmissionTimeoutError: If no slot was free in time
            ProbeError: If every attempt failed transiently
            ScheduleLayoutError: If the source layout is not recognized
            ScheduleNotPublishedError: If the requested day is not published
        """
        try:
            await asyncio.wait_for(self._semaphore.acquire(), timeout=self.admission_timeout)
        except asyncio.TimeoutError:
            raise AdmissionTimeoutError(
                f"No probe slot for {address.key} within {self.admission_timeout}s"
            )
        
        try:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(self._executor, self._probe_with_retry, address, day)
        finally:
            self._semaphore.release()
    
    def _probe_with_retry(self, address: Address, day: ScheduleDay) -> ProbeResult:
        """Runs in a worker thread"""
        attempts = self.retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return self._probe_once(address, day)
            except ProbeError as e:
                if attempt == attempts:
                    raise
                logger.warning(
                    f"Probe of {address.key} failed (attempt {attempt}/{attempts}): {e}. "
                    f"Retrying in {self.retry_delay}s..."
                )
                time.sleep(self.retry_delay)
    
    def _probe_once(self, address: Address, day: ScheduleDay) -> ProbeResult:
        session = self.fetcher.open_session()
        try:
            raw = self.fetcher.probe(session, address, day)
        finally:
            try:
                self.fetcher.close_session(session)
            except Exception as e:
                logger.warning(f"Error closing probe session for {address.key}: {e}")
        
        intervals = normalize_schedule(raw.slots)
        logger.debug(f"Probe of {address.key} ({day.value}): group {raw.group_name}, {len(intervals)} interval(s)")
        return ProbeResult(
            address_key=address.key,
            group_name=raw.group_name,
            intervals=intervals,
            day=day
        )
    
    def shutdown(self):
        """Stop accepting work; probes already running finish in the background"""
        self._executor.shutdown(wait=False)
