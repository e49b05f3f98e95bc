"""Configuration loading and validation"""
import os
from dataclasses import dataclass
from datetime import time
from typing import List

from dotenv import load_dotenv

from .storage.models import Address
from .utils.address_loader import load_addresses
from .utils.logger import setup_logger
from .utils.timezone import get_timezone, parse_hhmm

logger = setup_logger(__name__)

# Load environment variables from .env file
load_dotenv()

MAX_PROBE_POOL_SIZE = 16


@dataclass(frozen=True)
class MonitorSettings:
    """Validated tunables of the monitoring core"""
    timezone: str = "Europe/Kyiv"
    probe_pool_size: int = 3
    admission_timeout_seconds: int = 900
    batch_timeout_seconds: int = 1800
    probe_retries: int = 2
    probe_retry_delay_seconds: int = 5
    group_reverify_days: int = 7
    schedule_cache_minutes: int = 25
    warning_window_start_minutes: int = 30
    warning_window_end_minutes: int = 40
    full_check_interval_minutes: int = 30
    warning_sweep_interval_minutes: int = 5
    lookahead_window_start: time = time(20, 0)
    lookahead_window_end: time = time(23, 59)
    lookahead_interval_minutes: int = 60
    rollover_window_start: time = time(0, 0)
    rollover_window_end: time = time(0, 30)
    rollover_interval_minutes: int = 5
    task_queue_size: int = 16
    notify_max_retries: int = 3
    transport_failure_threshold: int = 3
    health_check_interval_seconds: int = 60
    failure_alert_threshold: int = 3
    failure_cooldown_base_minutes: int = 30
    failure_cooldown_max_minutes: int = 360
    
    @property
    def reverify_seconds(self) -> int:
        return self.group_reverify_days * 24 * 60 * 60
    
    @property
    def cache_seconds(self) -> int:
        return self.schedule_cache_minutes * 60
    
    def validate(self):
        """
        Reject inconsistent settings
        
        Raises:
            ValueError: On the first invalid value
        """
        get_timezone(self.timezone)
        
        if not 1 <= self.probe_pool_size <= MAX_PROBE_POOL_SIZE:
            raise ValueError(f"PROBE_POOL_SIZE must be between 1 and {MAX_PROBE_POOL_SIZE}")
        
        positive = {
            "ADMISSION_TIMEOUT_SECONDS": self.admission_timeout_seconds,
            "BATCH_TIMEOUT_SECONDS": self.batch_timeout_seconds,
            "GROUP_REVERIFY_DAYS": self.group_reverify_days,
            "SCHEDULE_CACHE_MINUTES": self.schedule_cache_minutes,
            "FULL_CHECK_INTERVAL_MINUTES": self.full_check_interval_minutes,
            "WARNING_SWEEP_INTERVAL_MINUTES": self.warning_sweep_interval_minutes,
            "LOOKAHEAD_INTERVAL_MINUTES": self.lookahead_interval_minutes,
            "ROLLOVER_INTERVAL_MINUTES": self.rollover_interval_minutes,
            "TASK_QUEUE_SIZE": self.task_queue_size,
            "NOTIFY_MAX_RETRIES": self.notify_max_retries,
            "TRANSPORT_FAILURE_THRESHOLD": self.transport_failure_threshold,
            "HEALTH_CHECK_INTERVAL_SECONDS": self.health_check_interval_seconds,
            "FAILURE_ALERT_THRESHOLD": self.failure_alert_threshold,
            "FAILURE_COOLDOWN_BASE_MINUTES": self.failure_cooldown_base_minutes,
        }
        for key, value in positive.items():
            if value < 1:
                raise ValueError(f"{key} must be at least 1")
        
        if self.probe_retries < 0 or self.probe_retry_delay_seconds < 0:
            raise ValueError("PROBE_RETRIES and PROBE_RETRY_DELAY_SECONDS must be non-negative")
        
        if self.batch_timeout_seconds < self.admission_timeout_seconds:
            raise ValueError("BATCH_TIMEOUT_SECONDS must not be shorter than ADMISSION_TIMEOUT_SECONDS")
        
        if self.failure_cooldown_max_minutes < self.failure_cooldown_base_minutes:
            raise ValueError("FAILURE_COOLDOWN_MAX_MINUTES must not be lower than FAILURE_COOLDOWN_BASE_MINUTES")
        
        start, end = self.warning_window_start_minutes, self.warning_window_end_minutes
        if start < 0 or end <= start:
            raise ValueError(
                "WARNING_WINDOW_START_MINUTES must be non-negative and lower than WARNING_WINDOW_END_MINUTES"
            )
        
        # Every outage start has to fall inside the window on at least one sweep
        if end - start <= self.warning_sweep_interval_minutes:
            raise ValueError(
                f"Warning window ({end - start} min) must be wider than "
                f"WARNING_SWEEP_INTERVAL_MINUTES ({self.warning_sweep_interval_minutes} min)"
            )
        
        rollover_length = _window_minutes(self.rollover_window_start, self.rollover_window_end)
        if rollover_length <= self.rollover_interval_minutes:
            raise ValueError("Rollover window must be longer than ROLLOVER_INTERVAL_MINUTES")
        
        lookahead_length = _window_minutes(self.lookahead_window_start, self.lookahead_window_end)
        if lookahead_length <= 0:
            raise ValueError("Lookahead window must not be empty")


def _window_minutes(start: time, end: time) -> int:
    """Length of a possibly midnight-wrapping window in minutes"""
    length = (end.hour * 60 + end.minute) - (start.hour * 60 + start.minute)
    if length < 0:
        length += 24 * 60
    return length


class Config:
    """Application configuration"""
    
    def __init__(self):
        """Load and validate configuration"""
        # Discord configuration
        self.discord_bot_token = self._get_required("DISCORD_BOT_TOKEN")
        self.command_prefix = os.getenv("DISCORD_COMMAND_PREFIX", "!")
        
        # Storage
        self.database_path = os.getenv("DATABASE_PATH", "data/bot.db")
        
        # Schedule source
        self.fetcher_url = os.getenv("FETCHER_URL", "https://www.dtek-kem.com.ua/ua/shutdowns")
        self.fetcher_timeout = self._get_int("FETCHER_TIMEOUT_SECONDS", 30)
        
        # Monitored addresses
        self.addresses_file = os.getenv("ADDRESSES_FILE", "addresses.txt")
        self.addresses: List[Address] = load_addresses(self.addresses_file)
        
        self.settings = MonitorSettings(
            timezone=os.getenv("TIMEZONE", "Europe/Kyiv"),
            probe_pool_size=self._get_int("PROBE_POOL_SIZE", 3),
            admission_timeout_seconds=self._get_int("ADMISSION_TIMEOUT_SECONDS", 900),
            batch_timeout_seconds=self._get_int("BATCH_TIMEOUT_SECONDS", 1800),
            probe_retries=self._get_int("PROBE_RETRIES", 2),
            probe_retry_delay_seconds=self._get_int("PROBE_RETRY_DELAY_SECONDS", 5),
            group_reverify_days=self._get_int("GROUP_REVERIFY_DAYS", 7),
            schedule_cache_minutes=self._get_int("SCHEDULE_CACHE_MINUTES", 25),
            warning_window_start_minutes=self._get_int("WARNING_WINDOW_START_MINUTES", 30),
            warning_window_end_minutes=self._get_int("WARNING_WINDOW_END_MINUTES", 40),
            full_check_interval_minutes=self._get_int("FULL_CHECK_INTERVAL_MINUTES", 30),
            warning_sweep_interval_minutes=self._get_int("WARNING_SWEEP_INTERVAL_MINUTES", 5),
            lookahead_window_start=self._get_time("LOOKAHEAD_WINDOW_START", "20:00"),
            lookahead_window_end=self._get_time("LOOKAHEAD_WINDOW_END", "23:59"),
            lookahead_interval_minutes=self._get_int("LOOKAHEAD_INTERVAL_MINUTES", 60),
            rollover_window_start=self._get_time("ROLLOVER_WINDOW_START", "00:00"),
            rollover_window_end=self._get_time("ROLLOVER_WINDOW_END", "00:30"),
            rollover_interval_minutes=self._get_int("ROLLOVER_INTERVAL_MINUTES", 5),
            task_queue_size=self._get_int("TASK_QUEUE_SIZE", 16),
            notify_max_retries=self._get_int("NOTIFY_MAX_RETRIES", 3),
            transport_failure_threshold=self._get_int("TRANSPORT_FAILURE_THRESHOLD", 3),
            health_check_interval_seconds=self._get_int("HEALTH_CHECK_INTERVAL_SECONDS", 60),
            failure_alert_threshold=self._get_int("FAILURE_ALERT_THRESHOLD", 3),
            failure_cooldown_base_minutes=self._get_int("FAILURE_COOLDOWN_BASE_MINUTES", 30),
            failure_cooldown_max_minutes=self._get_int("FAILURE_COOLDOWN_MAX_MINUTES", 360),
        )
        
        self._validate()
        logger.info("Configuration loaded successfully")
    
    def _get_required(self, key: str) -> str:
        """Get required environment variable"""
        value = os.getenv(key)
        if not value:
            raise ValueError(f"Required environment variable {key} is not set")
        return value
    
    def _get_int(self, key: str, default: int) -> int:
        """Get integer environment variable"""
        value = os.getenv(key)
        if value is None or not value.strip():
            return default
        try:
            return int(value)
        except ValueError:
            raise ValueError(f"{key} must be an integer, got '{value}'")
    
    def _get_time(self, key: str, default: str) -> time:
        """Get HH:MM environment variable"""
        value = os.getenv(key, default)
        try:
            return parse_hhmm(value)
        except ValueError as e:
            raise ValueError(f"{key}: {e}")
    
    def _validate(self):
        """Validate configuration values"""
        if not self.command_prefix:
            raise ValueError("DISCORD_COMMAND_PREFIX must not be empty")
        
        if not self.fetcher_url.startswith(("http://", "https://")):
            raise ValueError("FETCHER_URL must be an http(s) URL")
        
        if self.fetcher_timeout < 1:
            raise ValueError("FETCHER_TIMEOUT_SECONDS must be at least 1 second")
        
        self.settings.validate()
        
        s = self.settings
        logger.info(f"Monitoring {len(self.addresses)} address(es) in timezone {s.timezone}")
        logger.info(
            f"Probe pool: {s.probe_pool_size} worker(s), admission timeout {s.admission_timeout_seconds}s, "
            f"batch timeout {s.batch_timeout_seconds}s"
        )
        logger.info(
            f"Full check every {s.full_check_interval_minutes} min, "
            f"warning sweep every {s.warning_sweep_interval_minutes} min"
        )
        logger.info(
            f"Warning window: {s.warning_window_start_minutes}-{s.warning_window_end_minutes} min ahead"
        )
