from __future__ import annotations

import asyncio

from outage_notifier.services.change_dispatcher import ChangeDispatcher
from outage_notifier.storage.models import ProbeResult, ScheduleDay

from helpers import FakeNotifier, intervals, make_address, make_database, subscribe

ADDRESSES = [make_address("a"), make_address("b"), make_address("c")]


def _setup(tmp_path, failing=()):
    database = make_database(tmp_path, ADDRESSES)
    database.update_binding("a", "G1")
    database.update_binding("b", "G1")
    database.update_binding("c", "G2")
    subscribe(database, 1, "a")
    subscribe(database, 2, "b")
    subscribe(database, 3, "c")
    notifier = FakeNotifier(failing=failing)
    return database, notifier, ChangeDispatcher(database, notifier)


def test_first_schedule_counts_as_change_and_reaches_the_group(tmp_path) -> None:
    database, notifier, dispatcher = _setup(tmp_path)
    result = ProbeResult("a", "G1", intervals(("18:00", "20:00")))

    outcome = dispatcher.reconcile(result, checked_at=500)
    report = asyncio.run(dispatcher.notify(outcome, ADDRESSES[0]))

    assert outcome.changed is True
    assert outcome.previous is None
    assert report.sent == 2
    assert {uid for uid, _ in notifier.sent} == {1, 2}
    assert "18:00 - 20:00" in notifier.messages_for(1)[0]
    assert database.get_group_schedule("G1").last_checked == 500


def test_unchanged_schedule_only_refreshes_timestamp(tmp_path) -> None:
    database, notifier, dispatcher = _setup(tmp_path)
    database.save_group_schedule("G1", intervals(("18:00", "20:00")), checked_at=100)
    database.try_mark_warned(1, "a", "2024-05-01 18:00")

    outcome = dispatcher.reconcile(ProbeResult("a", "G1", intervals(("18:00", "20:00"))), checked_at=900)
    asyncio.run(dispatcher.notify(outcome, ADDRESSES[0]))

    assert outcome.changed is False
    assert outcome.cleared_flags == 0
    assert notifier.sent == []
    assert database.get_group_schedule("G1").last_checked == 900
    assert database.is_warned(1, "a", "2024-05-01 18:00") is True


def test_change_clears_warned_flags_of_the_group_only(tmp_path) -> None:
    database, notifier, dispatcher = _setup(tmp_path)
    database.save_group_schedule("G1", intervals(("18:00", "20:00")))
    database.try_mark_warned(1, "a", "2024-05-01 18:00")
    database.try_mark_warned(2, "b", "2024-05-01 18:00")
    database.try_mark_warned(3, "c", "2024-05-01 18:00")

    outcome = dispatcher.reconcile(ProbeResult("a", "G1", intervals(("19:00", "20:00"))))

    assert outcome.changed is True
    assert outcome.cleared_flags == 2
    assert database.is_warned(3, "c", "2024-05-01 18:00") is True


def test_requester_gets_exactly_one_reply_on_change(tmp_path) -> None:
    database, notifier, dispatcher = _setup(tmp_path)

    outcome = dispatcher.reconcile(ProbeResult("a", "G1", intervals(("08:00", "09:00"))))
    asyncio.run(dispatcher.notify(outcome, ADDRESSES[0], requester_id=1))

    assert len(notifier.messages_for(1)) == 1
    assert len(notifier.messages_for(2)) == 1
    # Requester is answered after the broadcast
    assert notifier.sent[-1][0] == 1


def test_requester_gets_echo_when_unchanged(tmp_path) -> None:
    database, notifier, dispatcher = _setup(tmp_path)
    database.save_group_schedule("G1", intervals(("08:00", "09:00")))

    outcome = dispatcher.reconcile(ProbeResult("a", "G1", intervals(("08:00", "09:00"))))
    asyncio.run(dispatcher.notify(outcome, ADDRESSES[0], requester_id=42))

    assert [uid for uid, _ in notifier.sent] == [42]
    assert "no changes" in notifier.messages_for(42)[0]


def test_failed_recipient_does_not_stop_fan_out(tmp_path) -> None:
    database, notifier, dispatcher = _setup(tmp_path, failing=[1])

    outcome = dispatcher.reconcile(ProbeResult("a", "G1", intervals(("08:00", "09:00"))))
    report = asyncio.run(dispatcher.notify(outcome, ADDRESSES[0]))

    assert notifier.attempts == [1, 2]
    assert report.sent == 1
    assert report.failed == 1


def test_probe_rebinds_address_to_new_group(tmp_path) -> None:
    database, notifier, dispatcher = _setup(tmp_path)

    dispatcher.reconcile(ProbeResult("b", "G2", intervals(("08:00", "09:00"))), checked_at=700)

    assert database.get_group_for_address("b") == "G2"
    assert database.get_bindings(["b"])[0].group_last_checked == 700


def test_next_day_result_is_staged(tmp_path) -> None:
    database, notifier, dispatcher = _setup(tmp_path)
    database.save_group_schedule("G1", intervals(("08:00", "09:00")))

    outcome = dispatcher.reconcile(
        ProbeResult("a", "G1", intervals(("10:00", "11:00")), day=ScheduleDay.TOMORROW)
    )

    assert outcome.changed is True
    assert database.get_group_schedule("G1").intervals == intervals(("08:00", "09:00"))
    assert database.get_group_schedule("G1", ScheduleDay.TOMORROW).intervals == intervals(("10:00", "11:00"))
