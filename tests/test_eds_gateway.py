"""
Tests for EDSGateway routing: every mutation must reach the calendar the
event was listed from, even when the same iCal UID lives on both calendars.

The per-calendar EDSCalendarClient objects are replaced with in-memory
stand-ins, so no EDS daemon is needed (the typelibs still are).
"""

import pytest

gi = pytest.importorskip("gi")
try:
    gi.require_version("EDataServer", "1.2")
    gi.require_version("ECal", "2.0")
    gi.require_version("ICalGLib", "3.0")
except ValueError:
    pytest.skip("EDS typelibs not installed", allow_module_level=True)
from gi.repository import ICalGLib

from busy_block_sync.eds_client import EDSGateway
from busy_block_sync.models import CalendarEvent
from busy_block_sync.models import GatewayError
from busy_block_sync.sync.utils import compute_window
from tests.fake_gateway import NOW
from tests.fake_gateway import SOURCE_CAL_ID
from tests.fake_gateway import TARGET_CAL_ID
from tests.fake_gateway import at

SHARED_UID = "invite-uid@example.com"


def _vevent(uid: str, summary: str) -> str:
    return (
        "BEGIN:VEVENT\r\n"
        f"UID:{uid}\r\n"
        f"SUMMARY:{summary}\r\n"
        "DTSTAMP:20260224T000000Z\r\n"
        "DTSTART:20260303T090000Z\r\n"
        "DTEND:20260303T100000Z\r\n"
        "END:VEVENT\r\n"
    )


class InMemoryClient:
    """Duck-typed EDSCalendarClient holding VEVENT strings by UID."""

    def __init__(self, calendar_id: str, log: list):
        self.calendar_id = calendar_id
        self.objects: dict[str, str] = {}
        self.log = log

    def get_events_in_range(self, start, end):
        return list(self.objects.values())

    def get_event(self, uid):
        text = self.objects.get(uid)
        return ICalGLib.Component.new_from_string(text) if text else None

    def modify_event(self, component):
        self.objects[component.get_uid()] = component.as_ical_string()
        self.log.append(("modify", self.calendar_id, component.get_uid()))

    def remove_event(self, uid):
        del self.objects[uid]
        self.log.append(("remove", self.calendar_id, uid))


@pytest.fixture
def calls():
    return []


@pytest.fixture
def eds_gateway(calls):
    gateway = EDSGateway(registry=None)
    for calendar_id in (SOURCE_CAL_ID, TARGET_CAL_ID):
        client = InMemoryClient(calendar_id, calls)
        client.objects[SHARED_UID] = _vevent(SHARED_UID, "Busy")
        gateway._clients[calendar_id] = client
    return gateway


def _list_both(gateway):
    window = compute_window(NOW, 7)
    # Same order as the one-way pass: target first, then source
    [target_event] = gateway.list_events(TARGET_CAL_ID, *window)
    [source_event] = gateway.list_events(SOURCE_CAL_ID, *window)
    return target_event, source_event


def test_listed_events_carry_their_calendar(eds_gateway):
    target_event, source_event = _list_both(eds_gateway)
    assert target_event.id == source_event.id == SHARED_UID
    assert target_event.calendar_id == TARGET_CAL_ID
    assert source_event.calendar_id == SOURCE_CAL_ID


def test_delete_of_shared_uid_stays_on_its_calendar(eds_gateway, calls):
    target_event, _ = _list_both(eds_gateway)

    eds_gateway.delete_event(target_event)

    assert calls == [("remove", TARGET_CAL_ID, SHARED_UID)]
    assert SHARED_UID in eds_gateway._clients[SOURCE_CAL_ID].objects


def test_update_of_shared_uid_stays_on_its_calendar(eds_gateway, calls):
    target_event, _ = _list_both(eds_gateway)

    eds_gateway.set_time(target_event, at(4, 13), at(4, 14))

    assert calls == [("modify", TARGET_CAL_ID, SHARED_UID)]
    assert (target_event.start, target_event.end) == (at(4, 13), at(4, 14))


def test_event_without_calendar_is_refused(eds_gateway, calls):
    stray = CalendarEvent(id=SHARED_UID, title="Busy", start=at(3, 9), end=at(3, 10))

    with pytest.raises(GatewayError):
        eds_gateway.delete_event(stray)

    assert calls == []
