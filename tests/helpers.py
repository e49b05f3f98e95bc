from __future__ import annotations

import threading
import time
from typing import Iterable, Optional, Union

from outage_notifier.config import MonitorSettings
from outage_notifier.services.change_dispatcher import ChangeDispatcher
from outage_notifier.services.check_runner import CheckRunner
from outage_notifier.services.probe_pool import ProbePool
from outage_notifier.storage.database import Database
from outage_notifier.storage.models import Address, RawProbe, ScheduleDay, TimeInterval
from outage_notifier.utils.health import FailureTracker


def make_address(key: str) -> Address:
    return Address(key=key, name=f"Address {key}", city="Kyiv", street="Khreshchatyk", house_num=key)


def full_hours(group: str, *hours: int) -> RawProbe:
    """Raw probe with a full-hour outage in every given hour"""
    return RawProbe(
        group_name=group,
        slots=[(f"{hour}-{hour + 1}", "cell-scheduled") for hour in hours],
    )


def intervals(*pairs: tuple[str, str]) -> list[TimeInterval]:
    return [TimeInterval(start, end) for start, end in pairs]


def make_settings(**overrides) -> MonitorSettings:
    values = dict(
        probe_pool_size=3,
        admission_timeout_seconds=5,
        batch_timeout_seconds=10,
        probe_retries=0,
        probe_retry_delay_seconds=0,
    )
    values.update(overrides)
    return MonitorSettings(**values)


def make_database(tmp_path, addresses: Iterable[Address]) -> Database:
    database = Database(str(tmp_path / "bot.db"))
    database.sync_addresses(list(addresses))
    return database


def subscribe(database: Database, user_id: int, address_key: str) -> None:
    database.register_user(user_id, f"user{user_id}")
    database.set_user_address(user_id, address_key)


class FakeFetcher:
    def __init__(self, responses: Optional[dict[str, Union[RawProbe, Exception]]] = None, delay: float = 0.0) -> None:
        self.responses = dict(responses or {})
        self.delay = delay
        self.calls: list[tuple[str, ScheduleDay]] = []
        self.opened = 0
        self.closed = 0
        self._lock = threading.Lock()

    def open_session(self) -> object:
        with self._lock:
            self.opened += 1
        return object()

    def probe(self, session, address: Address, day: ScheduleDay) -> RawProbe:
        with self._lock:
            self.calls.append((address.key, day))
        if self.delay:
            time.sleep(self.delay)
        response = self.responses[address.key]
        if isinstance(response, Exception):
            raise response
        return response

    def close_session(self, session) -> None:
        with self._lock:
            self.closed += 1

    def probed_keys(self) -> list[str]:
        return [key for key, _ in self.calls]


class FakeNotifier:
    def __init__(self, failing: Iterable[int] = ()) -> None:
        self.sent: list[tuple[int, str]] = []
        self.attempts: list[int] = []
        self.failing = set(failing)

    async def send_with_retry(self, user_id: int, text: str) -> bool:
        self.attempts.append(user_id)
        if user_id in self.failing:
            return False
        self.sent.append((user_id, text))
        return True

    def messages_for(self, user_id: int) -> list[str]:
        return [text for uid, text in self.sent if uid == user_id]


def build_runner(
    database: Database,
    fetcher: FakeFetcher,
    notifier: FakeNotifier,
    addresses: Iterable[Address],
    settings: Optional[MonitorSettings] = None,
    failures: Optional[FailureTracker] = None,
) -> CheckRunner:
    """Must be called from a running event loop"""
    settings = settings or make_settings()
    pool = ProbePool(
        fetcher,
        size=settings.probe_pool_size,
        admission_timeout=settings.admission_timeout_seconds,
        retries=settings.probe_retries,
        retry_delay=settings.probe_retry_delay_seconds,
    )
    dispatcher = ChangeDispatcher(database, notifier, settings.timezone)
    return CheckRunner(
        database=database,
        pool=pool,
        dispatcher=dispatcher,
        notifier=notifier,
        addresses=list(addresses),
        failures=failures or FailureTracker(),
        settings=settings,
    )
