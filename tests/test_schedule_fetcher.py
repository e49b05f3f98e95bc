from __future__ import annotations

import pytest
import requests

from outage_notifier.services.schedule_fetcher import (
    DtekScheduleFetcher,
    ProbeError,
    ScheduleNotPublishedError,
    clean_group_name,
    parse_schedule_page,
)
from outage_notifier.services.schedule_parser import ScheduleLayoutError, normalize_schedule
from outage_notifier.storage.models import ScheduleDay

from helpers import intervals, make_address


def _table(active: bool, tags: list[str]) -> str:
    headers = "".join(f'<th scope="col"><div>{h}-{h + 1}</div></th>' for h in range(len(tags)))
    cells = "".join(f'<td class="{tag}"></td>' for tag in tags)
    css = "discon-fact-table active" if active else "discon-fact-table"
    return (
        f'<div class="{css}"><table>'
        f'<thead><tr><th>Time</th>{headers}</tr></thead>'
        f'<tbody><tr><td>Row</td>{cells}</tr></tbody>'
        f'</table></div>'
    )


def _page(*tables: str, group: str = "Черга 3.1") -> str:
    return (
        '<html><head><meta name="csrf-token" content="tok"></head><body>'
        f'<div id="group-name">Your group: <span>{group}</span></div>'
        f'{"".join(tables)}</body></html>'
    )


TODAY = ["cell-non-scheduled", "cell-scheduled", "cell-second-half"]
TOMORROW = ["cell-first-half", "cell-non-scheduled", "cell-non-scheduled"]


def test_today_is_read_from_active_table() -> None:
    raw = parse_schedule_page(_page(_table(True, TODAY), _table(False, TOMORROW)))

    assert raw.group_name == "3.1"
    assert raw.slots == [("0-1", "cell-non-scheduled"), ("1-2", "cell-scheduled"), ("2-3", "cell-second-half")]
    assert normalize_schedule(raw.slots) == intervals(("01:00", "02:00"), ("02:30", "03:00"))


def test_tomorrow_is_read_from_inactive_table() -> None:
    raw = parse_schedule_page(_page(_table(True, TODAY), _table(False, TOMORROW)), ScheduleDay.TOMORROW)

    assert normalize_schedule(raw.slots) == intervals(("00:00", "00:30"))


def test_missing_tomorrow_table_is_not_published() -> None:
    with pytest.raises(ScheduleNotPublishedError):
        parse_schedule_page(_page(_table(True, TODAY)), ScheduleDay.TOMORROW)


def test_missing_group_is_a_layout_error() -> None:
    html = f"<html><body>{_table(True, TODAY)}</body></html>"

    with pytest.raises(ScheduleLayoutError):
        parse_schedule_page(html)


def test_header_and_cell_count_mismatch_is_a_layout_error() -> None:
    broken = _table(True, TODAY).replace('<td class="cell-scheduled"></td>', "")

    with pytest.raises(ScheduleLayoutError):
        parse_schedule_page(_page(broken))


def test_missing_tables_is_a_layout_error() -> None:
    with pytest.raises(ScheduleLayoutError):
        parse_schedule_page(_page())


def test_clean_group_name() -> None:
    assert clean_group_name("Черга 5.2") == "5.2"
    assert clean_group_name("  5.2 ") == "5.2"


class FakeResponse:
    def __init__(self, text: str, status: int = 200) -> None:
        self.text = text
        self.status = status

    def raise_for_status(self) -> None:
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} error")


class FakeSession:
    def __init__(self, post_response: FakeResponse) -> None:
        self.post_response = post_response
        self.posted: list[dict] = []

    def post(self, url: str, data: dict, timeout: int) -> FakeResponse:
        self.posted.append(data)
        return self.post_response


def test_probe_posts_address_form() -> None:
    fetcher = DtekScheduleFetcher("https://example.test/shutdowns")
    session = FakeSession(FakeResponse(_page(_table(True, TODAY))))

    raw = fetcher.probe(session, make_address("a"), ScheduleDay.TODAY)

    assert raw.group_name == "3.1"
    assert session.posted == [{"city": "Kyiv", "street": "Khreshchatyk", "house_num": "a"}]


def test_probe_wraps_http_errors() -> None:
    fetcher = DtekScheduleFetcher("https://example.test/shutdowns")
    session = FakeSession(FakeResponse("", status=503))

    with pytest.raises(ProbeError):
        fetcher.probe(session, make_address("a"), ScheduleDay.TODAY)
