"""
Unit tests for the ICalGLib helpers in busy_block_sync.ical.

Components are built from bare VEVENT / VCALENDAR strings and read back
through the same helpers the EDS gateway uses.
"""

from datetime import date
from datetime import timedelta

import pytest

gi = pytest.importorskip("gi")
try:
    gi.require_version("ICalGLib", "3.0")
except ValueError:
    pytest.skip("ICalGLib typelib not installed", allow_module_level=True)
from gi.repository import ICalGLib

from busy_block_sync.ical import build_block_component
from busy_block_sync.ical import components_to_events
from busy_block_sync.ical import is_not_found_error
from busy_block_sync.ical import series_uid
from busy_block_sync.ical import set_component_description
from busy_block_sync.ical import set_component_time
from busy_block_sync.ical import vevent_to_event
from busy_block_sync.models import Visibility
from busy_block_sync.sync.keys import build_block_description
from busy_block_sync.sync.keys import extract_source_id
from busy_block_sync.sync.utils import compute_window
from tests.fake_gateway import NOW
from tests.fake_gateway import at

_DTSTAMP = "20260224T000000Z"


def _vevent(uid: str, lines: list[str], summary: str = "Dentist") -> str:
    parts = ["BEGIN:VEVENT", f"UID:{uid}", f"SUMMARY:{summary}", f"DTSTAMP:{_DTSTAMP}"]
    parts.extend(lines)
    parts.append("END:VEVENT")
    return "\r\n".join(parts) + "\r\n"


def _vcalendar(*vevents: str) -> str:
    return "BEGIN:VCALENDAR\r\nVERSION:2.0\r\n" + "".join(vevents) + "END:VCALENDAR\r\n"


def _component(text: str) -> ICalGLib.Component:
    return ICalGLib.Component.new_from_string(text)


# ---------------------------------------------------------------------------
# VEVENT → CalendarEvent
# ---------------------------------------------------------------------------


class TestVeventToEvent:
    def test_utc_times(self):
        comp = _component(_vevent("E1", ["DTSTART:20260303T090000Z", "DTEND:20260303T100000Z"]))
        event = vevent_to_event(comp)
        assert event.id == "E1"
        assert event.title == "Dentist"
        assert (event.start, event.end) == (at(3, 9), at(3, 10))

    def test_duration_instead_of_dtend(self):
        comp = _component(_vevent("E2", ["DTSTART:20260303T090000Z", "DURATION:PT90M"]))
        event = vevent_to_event(comp)
        assert event.end == at(3, 10, 30)

    def test_all_day_event_spans_one_day(self):
        comp = _component(_vevent("E3", ["DTSTART;VALUE=DATE:20260303"]))
        event = vevent_to_event(comp)
        assert event.start.date() == date(2026, 3, 3)
        assert event.end - event.start == timedelta(days=1)
        assert event.start.tzinfo is not None

    def test_flags(self):
        comp = _component(
            _vevent(
                "E4",
                [
                    "DTSTART:20260303T090000Z",
                    "DTEND:20260303T100000Z",
                    "STATUS:CANCELLED",
                    "TRANSP:TRANSPARENT",
                    "CLASS:CONFIDENTIAL",
                ],
            )
        )
        event = vevent_to_event(comp)
        assert event.cancelled
        assert event.transparent
        assert event.visibility is Visibility.PRIVATE

    def test_plain_event_defaults(self):
        comp = _component(_vevent("E5", ["DTSTART:20260303T090000Z", "DTEND:20260303T100000Z"]))
        event = vevent_to_event(comp)
        assert not event.cancelled
        assert not event.transparent
        assert event.visibility is Visibility.PUBLIC
        assert event.description == ""


# ---------------------------------------------------------------------------
# Window filtering and recurrence expansion
# ---------------------------------------------------------------------------


class TestComponentsToEvents:
    def test_single_events_filtered_and_sorted(self):
        window = compute_window(NOW, 7)
        objects = [
            _vevent("LATE", ["DTSTART:20260305T090000Z", "DTEND:20260305T100000Z"]),
            _vevent("EARLY", ["DTSTART:20260303T090000Z", "DTEND:20260303T100000Z"]),
            _vevent("GONE", ["DTSTART:20260220T090000Z", "DTEND:20260220T100000Z"]),
        ]
        events = components_to_events(objects, *window)
        assert [e.id for e in events] == ["EARLY", "LATE"]

    def test_series_expansion_honours_exdate_and_overrides(self):
        window = compute_window(NOW, 7)
        master = _vevent(
            "SERIES",
            [
                "DTSTART:20260302T090000Z",
                "DTEND:20260302T100000Z",
                "RRULE:FREQ=DAILY;COUNT=5",
                "EXDATE:20260304T090000Z",
            ],
            summary="Standup",
        )
        moved = _vevent(
            "SERIES",
            [
                "RECURRENCE-ID:20260303T090000Z",
                "DTSTART:20260303T150000Z",
                "DTEND:20260303T160000Z",
            ],
            summary="Standup (moved)",
        )

        events = components_to_events([_vcalendar(master, moved)], *window)

        assert [(e.start, e.end) for e in events] == [
            (at(2, 9), at(2, 10)),
            (at(3, 15), at(3, 16)),
            (at(5, 9), at(5, 10)),
            (at(6, 9), at(6, 10)),
        ]
        assert events[0].id == "SERIES::20260302T090000Z"
        assert events[1].id == "SERIES::20260303T090000Z"
        # Every instance has its own key but addresses the same EDS object
        assert len({e.id for e in events}) == 4
        assert {series_uid(e.id) for e in events} == {"SERIES"}

    def test_series_stops_at_window_end(self):
        window = compute_window(NOW, 2)
        master = _vevent(
            "DAILY",
            ["DTSTART:20260301T090000Z", "DTEND:20260301T100000Z", "RRULE:FREQ=DAILY"],
        )
        events = components_to_events([master], *window)
        assert [e.start for e in events] == [at(2, 9), at(3, 9)]


# ---------------------------------------------------------------------------
# Busy-block construction and mutation
# ---------------------------------------------------------------------------


class TestBlockComponent:
    def test_build_block(self):
        description = build_block_description("#busy-sync", "S1")
        comp = build_block_component("BLOCK1", "Busy", at(3, 9), at(3, 10), description)

        event = vevent_to_event(comp)
        assert event.id == "BLOCK1"
        assert event.title == "Busy"
        assert (event.start, event.end) == (at(3, 9), at(3, 10))
        assert event.visibility is Visibility.PRIVATE
        assert not event.transparent
        assert extract_source_id(event.description) == "S1"

    def test_move_block(self):
        comp = build_block_component("BLOCK2", "Busy", at(3, 9), at(3, 10))
        set_component_time(comp, at(4, 13), at(4, 14, 30))
        event = vevent_to_event(comp)
        assert (event.start, event.end) == (at(4, 13), at(4, 14, 30))

    def test_clear_description(self):
        comp = build_block_component("BLOCK3", "Busy", at(3, 9), at(3, 10), "#busy-block-sync")
        set_component_description(comp, "")
        assert vevent_to_event(comp).description == ""


def test_not_found_detection_from_message():
    assert is_not_found_error(RuntimeError("Object not found"))
    assert not is_not_found_error(RuntimeError("Permission denied"))
