from __future__ import annotations

import asyncio
from datetime import datetime

from outage_notifier.services.check_runner import CheckJob
from outage_notifier.services.scheduler import CycleScheduler
from outage_notifier.storage.database import LAST_ROLLOVER_KEY
from outage_notifier.storage.models import ScheduleDay
from outage_notifier.utils.health import TransportHealth

from helpers import intervals, make_address, make_database, make_settings

ADDRESSES = [make_address("a"), make_address("b")]


class RecordingRunner:
    def __init__(self, fail_on: set[str] | None = None) -> None:
        self.jobs: list[CheckJob] = []
        self.fail_on = fail_on or set()

    async def run_job(self, job: CheckJob) -> None:
        self.jobs.append(job)
        if job.name in self.fail_on:
            raise RuntimeError("boom")


class RecordingWarnings:
    def __init__(self) -> None:
        self.sweeps = 0

    async def check_and_notify(self, now=None) -> int:
        self.sweeps += 1
        return 0


def _scheduler(database, runner=None, health=None, ping=None, **settings) -> CycleScheduler:
    return CycleScheduler(
        runner=runner or RecordingRunner(),
        warnings=RecordingWarnings(),
        database=database,
        health=health or TransportHealth(),
        settings=make_settings(**settings),
        addresses=ADDRESSES,
        ping=ping,
    )


def test_full_queue_rejects_submissions(tmp_path) -> None:
    database = make_database(tmp_path, ADDRESSES)

    async def scenario() -> list[bool]:
        scheduler = _scheduler(database, task_queue_size=2)
        return [
            scheduler.force_check_address("a", 1),
            scheduler.force_check_all(1),
            scheduler.force_check_next_day("b", 1),
        ]

    assert asyncio.run(scenario()) == [True, True, False]


def test_unknown_address_is_rejected(tmp_path) -> None:
    database = make_database(tmp_path, ADDRESSES)

    async def scenario() -> tuple[bool, bool]:
        scheduler = _scheduler(database)
        return scheduler.force_check_address("zzz", 1), scheduler.force_check_next_day("zzz", 1)

    assert asyncio.run(scenario()) == (False, False)


def test_scheduled_full_check_is_queued_once(tmp_path) -> None:
    database = make_database(tmp_path, ADDRESSES)
    runner = RecordingRunner()

    async def scenario() -> tuple[bool, bool, bool]:
        scheduler = _scheduler(database, runner=runner)
        first = scheduler.schedule_full_check()
        duplicate = scheduler.schedule_full_check()
        scheduler.start(cycles=False)
        await scheduler.join()
        after_run = scheduler.schedule_full_check()
        await scheduler.stop()
        return first, duplicate, after_run

    assert asyncio.run(scenario()) == (True, False, True)


def test_consumer_survives_failing_job(tmp_path) -> None:
    database = make_database(tmp_path, ADDRESSES)
    runner = RecordingRunner(fail_on={"force-check-all"})

    async def scenario() -> None:
        scheduler = _scheduler(database, runner=runner)
        scheduler.force_check_all(1)
        scheduler.force_check_address("a", 1)
        scheduler.start(cycles=False)
        await scheduler.join()
        await scheduler.stop()

    asyncio.run(scenario())

    names = [job.name for job in runner.jobs]
    assert "force-check-all" in names
    assert "force-check:a" in names


def test_lookahead_runs_only_inside_window(tmp_path) -> None:
    database = make_database(tmp_path, ADDRESSES)

    async def scenario() -> tuple[bool, bool]:
        scheduler = _scheduler(database)
        outside = scheduler.schedule_next_day_lookahead(datetime(2024, 5, 1, 15, 0))
        inside = scheduler.schedule_next_day_lookahead(datetime(2024, 5, 1, 21, 30))
        return outside, inside

    assert asyncio.run(scenario()) == (False, True)


def test_lookahead_job_targets_tomorrow(tmp_path) -> None:
    database = make_database(tmp_path, ADDRESSES)
    runner = RecordingRunner()

    async def scenario() -> None:
        scheduler = _scheduler(database, runner=runner)
        scheduler.schedule_next_day_lookahead(datetime(2024, 5, 1, 20, 0))
        scheduler.start(cycles=False)
        await scheduler.join()
        await scheduler.stop()

    asyncio.run(scenario())

    lookahead = [job for job in runner.jobs if job.name == "next-day-lookahead"]
    assert lookahead and lookahead[0].day == ScheduleDay.TOMORROW
    assert lookahead[0].forced is False


def test_rollover_runs_once_per_date_inside_window(tmp_path) -> None:
    database = make_database(tmp_path, ADDRESSES)
    database.save_group_schedule("G1", intervals(("10:00", "11:00")))
    database.save_group_schedule("G1", intervals(("12:00", "13:00")), ScheduleDay.TOMORROW)

    async def scenario() -> list[bool]:
        scheduler = _scheduler(database)
        return [
            scheduler.run_midnight_rollover(datetime(2024, 5, 1, 23, 55)),
            scheduler.run_midnight_rollover(datetime(2024, 5, 2, 0, 5)),
            scheduler.run_midnight_rollover(datetime(2024, 5, 2, 0, 10)),
        ]

    assert asyncio.run(scenario()) == [False, True, False]
    assert database.get_group_schedule("G1").intervals == intervals(("12:00", "13:00"))
    assert database.get_state(LAST_ROLLOVER_KEY) == "2024-05-02"


def test_health_recovers_after_successful_ping(tmp_path) -> None:
    database = make_database(tmp_path, ADDRESSES)
    health = TransportHealth()
    health.mark_unhealthy("test")
    answers = [False, True]

    async def ping() -> bool:
        return answers.pop(0)

    async def scenario() -> tuple[bool, bool]:
        scheduler = _scheduler(database, health=health, ping=ping)
        return await scheduler.check_transport_health(), await scheduler.check_transport_health()

    assert asyncio.run(scenario()) == (False, True)
    assert health.is_healthy is True


def test_loops_start_and_stop(tmp_path) -> None:
    database = make_database(tmp_path, ADDRESSES)
    runner = RecordingRunner()
    warnings = RecordingWarnings()

    async def scenario() -> None:
        scheduler = CycleScheduler(
            runner=runner,
            warnings=warnings,
            database=database,
            health=TransportHealth(),
            settings=make_settings(),
            addresses=ADDRESSES,
        )
        scheduler.start()
        await asyncio.sleep(0.05)
        await scheduler.stop()

    asyncio.run(scenario())

    assert warnings.sweeps == 1
    assert [job.name for job in runner.jobs][:1] == ["full-check"]


def test_warning_sweep_promotes_staged_schedules_first(tmp_path) -> None:
    database = make_database(tmp_path, ADDRESSES)
    database.save_group_schedule("G1", intervals(("00:35", "01:00")))
    database.save_group_schedule("G1", [], ScheduleDay.TOMORROW)
    database.set_state(LAST_ROLLOVER_KEY, "2024-05-01")

    async def scenario() -> CycleScheduler:
        scheduler = _scheduler(database)
        await scheduler.run_warning_sweep(datetime(2024, 5, 2, 0, 1))
        return scheduler

    scheduler = asyncio.run(scenario())

    assert scheduler.warnings.sweeps == 1
    assert database.get_state(LAST_ROLLOVER_KEY) == "2024-05-02"
    assert database.get_group_schedule("G1").intervals == []
