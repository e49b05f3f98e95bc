"""Process-lifetime health state for the transport and monitored addresses"""
import threading
import time
from typing import Callable, Dict, Optional

from .logger import setup_logger

logger = setup_logger(__name__)


class TransportHealth:
    """Tracks whether the notification transport is currently usable"""
    
    def __init__(self, failure_threshold: int = 3):
        """
        Initialize transport health
        
        Args:
            failure_threshold: Consecutive send failures that mark the transport unhealthy
        """
        self.failure_threshold = failure_threshold
        self._lock = threading.Lock()
        self._healthy = True
        self._consecutive_failures = 0
    
    @property
    def is_healthy(self) -> bool:
        with self._lock:
            return self._healthy
    
    def record_success(self):
        with self._lock:
            self._consecutive_failures = 0
    
    def record_failure(self):
        with self._lock:
            self._consecutive_failures += 1
            reached = self._consecutive_failures >= self.failure_threshold
        if reached:
            self.mark_unhealthy(f"{self.failure_threshold} consecutive send failures")
    
    def mark_unhealthy(self, reason: str):
        with self._lock:
            was_healthy = self._healthy
            self._healthy = False
        if was_healthy:
            logger.error(f"Notification transport marked unhealthy: {reason}")
    
    def mark_healthy(self):
        with self._lock:
            was_healthy = self._healthy
            self._healthy = True
            self._consecutive_failures = 0
        if not was_healthy:
            logger.info("Notification transport recovered")


class FailureTracker:
    """
    Consecutive probe failures per address.
    
    Once an address reaches the alert threshold it is put in an exponential
    cooldown: base * 2 ** (failures - threshold) minutes, capped at max.
    Scheduled cycles skip addresses in cooldown; a success clears everything.
    """
    
    def __init__(
        self,
        alert_threshold: int = 3,
        cooldown_base_minutes: int = 30,
        cooldown_max_minutes: int = 360,
        clock: Callable[[], float] = time.time
    ):
        self.alert_threshold = alert_threshold
        self.cooldown_base = cooldown_base_minutes * 60
        self.cooldown_max = cooldown_max_minutes * 60
        self._clock = clock
        self._lock = threading.Lock()
        self._failures: Dict[str, int] = {}
        self._cooldown_until: Dict[str, float] = {}
    
    def record_failure(self, address_key: str, reason: str = "") -> int:
        """
        Count a failed probe for an address
        
        Returns:
            Number of consecutive failures, including this one
        """
        with self._lock:
            count = self._failures.get(address_key, 0) + 1
            self._failures[address_key] = count
            cooldown = None
            if count >= self.alert_threshold:
                cooldown = min(
                    self.cooldown_base * 2 ** (count - self.alert_threshold),
                    self.cooldown_max
                )
                self._cooldown_until[address_key] = self._clock() + cooldown
        
        if cooldown is not None:
            logger.error(
                f"Address {address_key} failed {count} times in a row "
                f"({reason}); pausing scheduled checks for {int(cooldown // 60)} minutes"
            )
        else:
            logger.warning(f"Address {address_key} failed ({count} in a row): {reason}")
        return count
    
    def record_success(self, address_key: str):
        with self._lock:
            self._failures.pop(address_key, None)
            self._cooldown_until.pop(address_key, None)
    
    def failures(self, address_key: str) -> int:
        with self._lock:
            return self._failures.get(address_key, 0)
    
    def cooldown_remaining(self, address_key: str) -> Optional[float]:
        """Seconds left in the address's cooldown, or None if it is not cooling down"""
        with self._lock:
            until = self._cooldown_until.get(address_key)
        if until is None:
            return None
        remaining = until - self._clock()
        return remaining if remaining > 0 else None
    
    def in_cooldown(self, address_key: str) -> bool:
        return self.cooldown_remaining(address_key) is not None
