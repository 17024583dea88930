"""
ICalGLib helpers: component inspection, conversion and block construction.
"""

import logging
import re
from dataclasses import replace
from datetime import date
from datetime import datetime
from datetime import timedelta
from datetime import timezone
from datetime import tzinfo
from zoneinfo import ZoneInfo
from zoneinfo import ZoneInfoNotFoundError

import gi

gi.require_version("GLib", "2.0")
gi.require_version("ICalGLib", "3.0")
from gi.repository import GLib
from gi.repository import ICalGLib

from busy_block_sync.models import CalendarEvent
from busy_block_sync.models import Visibility

_logger = logging.getLogger(__name__)

# Regex to extract excluded dates from EXDATE;VALUE=DATE lines — used when
# get_exdate() returns null_time for date-only values (a known silent
# failure in some libical-glib builds).
_EXDATE_DATE_RE = re.compile(r"^EXDATE;VALUE=DATE[^:\n]*:(\d{8})", re.MULTILINE)

# E_CAL_CLIENT_ERROR_OBJECT_NOT_FOUND = 1  (from e-cal-client-error-quark)
_EDS_NOT_FOUND_CODE = 1
_EDS_CLIENT_ERROR_DOMAIN = "e-cal-client-error-quark"

# The M365 backend (e-m365-error-quark) embeds the Exchange EWS error name in the
# message string rather than mapping it to a fixed quark code.
_M365_ERROR_DOMAIN = "e-m365-error-quark"
_M365_NOT_FOUND_MSG = "ErrorItemNotFound"

# Upper bound on RecurIterator steps per series; long-running daily series
# that started years ago still reach the window well within it.
_MAX_RECUR_ITERATIONS = 10000

INSTANCE_SEPARATOR = "::"


def is_not_found_error(e: Exception) -> bool:
    """Return True when EDS reports that a calendar object does not exist.

    Covers both the generic EDS client quark (e-cal-client-error-quark code 1)
    and the M365 backend quark (e-m365-error-quark, which embeds the Exchange
    error name "ErrorItemNotFound" in the message text).
    """
    if isinstance(e, GLib.Error):
        domain = e.domain or ""
        if e.code == _EDS_NOT_FOUND_CODE and _EDS_CLIENT_ERROR_DOMAIN in domain:
            return True
        if _M365_ERROR_DOMAIN in domain and _M365_NOT_FOUND_MSG in (e.message or ""):
            return True
    return "object not found" in str(e).lower()


def parse_component(obj) -> ICalGLib.Component:
    """Handle both string and native Component objects from EDS API."""
    if isinstance(obj, str):
        return ICalGLib.Component.new_from_string(obj)
    return obj


def first_vevent(comp: ICalGLib.Component) -> ICalGLib.Component | None:
    """Return the VEVENT itself, or the first VEVENT inside a VCALENDAR."""
    if comp.isa() == ICalGLib.ComponentKind.VCALENDAR_COMPONENT:
        return comp.get_first_component(ICalGLib.ComponentKind.VEVENT_COMPONENT)
    if comp.isa() == ICalGLib.ComponentKind.VEVENT_COMPONENT:
        return comp
    return None


def iter_vevents(comp: ICalGLib.Component):
    """Yield every VEVENT in a component (itself, or children of a VCALENDAR)."""
    if comp.isa() == ICalGLib.ComponentKind.VCALENDAR_COMPONENT:
        event = comp.get_first_component(ICalGLib.ComponentKind.VEVENT_COMPONENT)
        while event:
            yield event
            event = comp.get_next_component(ICalGLib.ComponentKind.VEVENT_COMPONENT)
    elif comp.isa() == ICalGLib.ComponentKind.VEVENT_COMPONENT:
        yield comp


def is_event_cancelled(vevent: ICalGLib.Component) -> bool:
    """Return True if the event's STATUS is CANCELLED.

    Cancelled events no longer block time and are not mirrored.
    """
    status_prop = vevent.get_first_property(ICalGLib.PropertyKind.STATUS_PROPERTY)
    if not status_prop:
        return False
    try:
        return status_prop.get_status() == ICalGLib.PropertyStatus.CANCELLED
    except (AttributeError, TypeError):
        val = status_prop.get_value_as_string() or ""
        return val.strip().upper() == "CANCELLED"


def is_free_time(vevent: ICalGLib.Component) -> bool:
    """Return True if the event is transparent (does not block time).

    The iCal default (no TRANSP property) is OPAQUE, which blocks time.
    """
    transp_prop = vevent.get_first_property(ICalGLib.PropertyKind.TRANSP_PROPERTY)
    if not transp_prop:
        return False  # Default is OPAQUE — event blocks time
    try:
        return transp_prop.get_transp() == ICalGLib.PropertyTransp.TRANSPARENT
    except (AttributeError, TypeError):
        val = transp_prop.get_value_as_string() or ""
        return val.strip().upper() == "TRANSPARENT"


def get_visibility(vevent: ICalGLib.Component) -> Visibility:
    class_prop = vevent.get_first_property(ICalGLib.PropertyKind.CLASS_PROPERTY)
    if not class_prop:
        return Visibility.PUBLIC
    val = (class_prop.get_value_as_string() or "").strip().upper()
    return Visibility.PRIVATE if val in ("PRIVATE", "CONFIDENTIAL") else Visibility.PUBLIC


# ---------------------------------------------------------------------------
# Time conversion
# ---------------------------------------------------------------------------


def _local_tz() -> tzinfo:
    return datetime.now().astimezone().tzinfo


def _prop_tzid(prop) -> str | None:
    """TZID parameter of a DTSTART/DTEND/EXDATE/RECURRENCE-ID property, if any."""
    if prop is None:
        return None
    param = prop.get_first_parameter(ICalGLib.ParameterKind.TZID_PARAMETER)
    return param.get_tzid() if param else None


def resolve_tz(t: ICalGLib.Time, tzid: str | None) -> tzinfo:
    """Pick the tzinfo for an iCal time: UTC, its TZID, or local time.

    Floating times and TZIDs unknown to zoneinfo (e.g. Windows zone names
    from Exchange) fall back to the local zone.
    """
    if t.is_utc():
        return timezone.utc
    tzid = tzid or t.get_tzid()
    if tzid:
        try:
            return ZoneInfo(tzid)
        except (ZoneInfoNotFoundError, ValueError):
            _logger.debug("Unknown TZID %r, using local time", tzid)
    return _local_tz()


def ical_time_to_datetime(t: ICalGLib.Time, tz: tzinfo) -> datetime:
    """Convert an ICalGLib.Time into an aware datetime in ``tz``.

    All-day (date-only) values map to midnight.
    """
    if t.is_date():
        return datetime.combine(
            date(t.get_year(), t.get_month(), t.get_day()), datetime.min.time(), tzinfo=tz
        )
    return datetime(
        t.get_year(),
        t.get_month(),
        t.get_day(),
        t.get_hour(),
        t.get_minute(),
        t.get_second(),
        tzinfo=tz,
    )


def format_utc(dt: datetime) -> str:
    """Format an aware datetime as an iCal UTC timestamp (YYYYMMDDTHHMMSSZ)."""
    return dt.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def _floating_copy(t: ICalGLib.Time) -> ICalGLib.Time:
    """Timezone-free copy of ``t`` for RecurIterator.

    RecurIterator.new() may raise when DTSTART carries a TZID missing from
    libical's built-in database; a floating copy always works and the zone
    is re-applied on conversion.
    """
    stamp = f"{t.get_year():04d}{t.get_month():02d}{t.get_day():02d}"
    if not t.is_date():
        stamp += f"T{t.get_hour():02d}{t.get_minute():02d}{t.get_second():02d}"
    return ICalGLib.Time.new_from_string(stamp)


def _event_times(vevent: ICalGLib.Component) -> tuple[datetime, datetime, tzinfo]:
    """Start, end and the start's tzinfo for a VEVENT."""
    dts_prop = vevent.get_first_property(ICalGLib.PropertyKind.DTSTART_PROPERTY)
    dts = vevent.get_dtstart()
    tz = resolve_tz(dts, _prop_tzid(dts_prop))
    start = ical_time_to_datetime(dts, tz)

    dte_prop = vevent.get_first_property(ICalGLib.PropertyKind.DTEND_PROPERTY)
    dur_prop = vevent.get_first_property(ICalGLib.PropertyKind.DURATION_PROPERTY)
    if dte_prop:
        dte = dte_prop.get_dtend()
        end = ical_time_to_datetime(dte, resolve_tz(dte, _prop_tzid(dte_prop)))
    elif dur_prop:
        end = start + timedelta(seconds=dur_prop.get_duration().as_int())
    elif dts.is_date():
        end = start + timedelta(days=1)
    else:
        end = start
    return start, end, tz


def vevent_to_event(vevent: ICalGLib.Component) -> CalendarEvent:
    """Convert one (non-expanded) VEVENT into a CalendarEvent."""
    start, end, _ = _event_times(vevent)
    return CalendarEvent(
        id=vevent.get_uid(),
        title=vevent.get_summary() or "",
        start=start,
        end=end,
        description=vevent.get_description() or "",
        visibility=get_visibility(vevent),
        transparent=is_free_time(vevent),
        cancelled=is_event_cancelled(vevent),
    )


# ---------------------------------------------------------------------------
# Recurrence expansion
# ---------------------------------------------------------------------------


def _recurrence_id_stamp(vevent: ICalGLib.Component) -> str | None:
    rid_prop = vevent.get_first_property(ICalGLib.PropertyKind.RECURRENCEID_PROPERTY)
    if not rid_prop:
        return None
    rid = rid_prop.get_recurrenceid()
    return format_utc(ical_time_to_datetime(rid, resolve_tz(rid, _prop_tzid(rid_prop))))


def _collect_exdates(vevent: ICalGLib.Component, tz: tzinfo) -> tuple[set[str], set[date]]:
    """Excluded occurrences as (UTC stamps, whole excluded dates)."""
    stamps: set[str] = set()
    dates: set[date] = set()
    prop = vevent.get_first_property(ICalGLib.PropertyKind.EXDATE_PROPERTY)
    while prop:
        t = prop.get_exdate()
        if t and not t.is_null_time():
            if t.is_date():
                dates.add(date(t.get_year(), t.get_month(), t.get_day()))
            else:
                # A floating EXDATE is in the series' own zone.
                tzid = _prop_tzid(prop)
                ex_tz = resolve_tz(t, tzid) if (t.is_utc() or tzid) else tz
                stamps.add(format_utc(ical_time_to_datetime(t, ex_tz)))
        prop = vevent.get_next_property(ICalGLib.PropertyKind.EXDATE_PROPERTY)

    if not dates:
        for m in _EXDATE_DATE_RE.finditer(vevent.as_ical_string() or ""):
            dates.add(datetime.strptime(m.group(1), "%Y%m%d").date())
    return stamps, dates


def instance_id(uid: str, start: datetime) -> str:
    return f"{uid}{INSTANCE_SEPARATOR}{format_utc(start)}"


def series_uid(event_id: str) -> str:
    """The EDS object UID addressed by an event or expanded-instance ID."""
    return event_id.split(INSTANCE_SEPARATOR, 1)[0]


def expand_series(
    vevent: ICalGLib.Component,
    window_start: datetime,
    window_end: datetime,
    overridden: set[str] | frozenset = frozenset(),
) -> list[CalendarEvent]:
    """Expand a recurring master VEVENT into instances overlapping the window.

    Occurrences excluded by EXDATE, and those replaced by a detached
    RECURRENCE-ID exception (``overridden`` UTC stamps), are skipped.
    """
    base = vevent_to_event(vevent)
    duration = base.end - base.start
    _, _, tz = _event_times(vevent)
    ex_stamps, ex_dates = _collect_exdates(vevent, tz)

    rrule_prop = vevent.get_first_property(ICalGLib.PropertyKind.RRULE_PROPERTY)
    iterator = ICalGLib.RecurIterator.new(
        rrule_prop.get_rrule(), _floating_copy(vevent.get_dtstart())
    )

    instances = []
    for _ in range(_MAX_RECUR_ITERATIONS):
        occ = iterator.next()
        if occ is None or occ.is_null_time():
            break
        occ_start = ical_time_to_datetime(occ, tz)
        if occ_start > window_end:
            break
        occ_end = occ_start + duration
        if occ_end < window_start:
            continue
        stamp = format_utc(occ_start)
        if stamp in ex_stamps or occ_start.date() in ex_dates or stamp in overridden:
            continue
        instances.append(
            replace(base, id=instance_id(base.id, occ_start), start=occ_start, end=occ_end)
        )
    else:
        _logger.warning("Series %s hit the expansion limit; later instances ignored", base.id)
    return instances


def components_to_events(
    objects: list, window_start: datetime, window_end: datetime
) -> list[CalendarEvent]:
    """Convert EDS objects into window-overlapping events, expanding series.

    The result is sorted by start time; ties keep provider order.
    """
    vevents = [v for obj in objects for v in iter_vevents(parse_component(obj))]

    # Detached exceptions first, so their masters skip the replaced slots.
    overridden: dict[str, set[str]] = {}
    events: list[CalendarEvent] = []
    for vevent in vevents:
        stamp = _recurrence_id_stamp(vevent)
        if stamp is None:
            continue
        overridden.setdefault(vevent.get_uid(), set()).add(stamp)
        event = vevent_to_event(vevent)
        events.append(replace(event, id=f"{event.id}{INSTANCE_SEPARATOR}{stamp}"))

    for vevent in vevents:
        if _recurrence_id_stamp(vevent) is not None:
            continue
        if vevent.get_first_property(ICalGLib.PropertyKind.RRULE_PROPERTY):
            events.extend(
                expand_series(
                    vevent, window_start, window_end, overridden.get(vevent.get_uid(), set())
                )
            )
        else:
            events.append(vevent_to_event(vevent))

    in_window = [e for e in events if e.overlaps(window_start, window_end)]
    in_window.sort(key=lambda e: e.start)
    return in_window


# ---------------------------------------------------------------------------
# Block construction and mutation
# ---------------------------------------------------------------------------


def _remove_all_properties(component: ICalGLib.Component, prop_kind: ICalGLib.PropertyKind):
    """Remove all instances of a specific property from a component."""
    prop = component.get_first_property(prop_kind)
    while prop:
        component.remove_property(prop)
        prop = component.get_first_property(prop_kind)


def build_block_component(
    uid: str,
    title: str,
    start: datetime,
    end: datetime,
    description: str = "",
    visibility: Visibility = Visibility.PRIVATE,
) -> ICalGLib.Component:
    """Build an opaque VEVENT for a busy block."""
    lines = [
        "BEGIN:VEVENT",
        f"UID:{uid}",
        f"DTSTAMP:{format_utc(datetime.now(timezone.utc))}",
        f"DTSTART:{format_utc(start)}",
        f"DTEND:{format_utc(end)}",
        "TRANSP:OPAQUE",
        "END:VEVENT",
    ]
    comp = ICalGLib.Component.new_from_string("\r\n".join(lines) + "\r\n")
    # set_summary/set_description take care of iCal TEXT escaping.
    comp.set_summary(title)
    set_component_description(comp, description)
    set_component_visibility(comp, visibility)
    return comp


def set_component_description(vevent: ICalGLib.Component, text: str):
    _remove_all_properties(vevent, ICalGLib.PropertyKind.DESCRIPTION_PROPERTY)
    if text:
        vevent.set_description(text)


def set_component_visibility(vevent: ICalGLib.Component, visibility: Visibility):
    # CLASS:PRIVATE is honoured by both Exchange/M365 ("Private Appointment")
    # and Google Calendar ("Private" visibility).
    _remove_all_properties(vevent, ICalGLib.PropertyKind.CLASS_PROPERTY)
    value = "PRIVATE" if visibility is Visibility.PRIVATE else "PUBLIC"
    vevent.add_property(ICalGLib.Property.new_from_string(f"CLASS:{value}"))


def set_component_time(vevent: ICalGLib.Component, start: datetime, end: datetime):
    for kind in (
        ICalGLib.PropertyKind.DTSTART_PROPERTY,
        ICalGLib.PropertyKind.DTEND_PROPERTY,
        ICalGLib.PropertyKind.DURATION_PROPERTY,
    ):
        _remove_all_properties(vevent, kind)
    vevent.add_property(ICalGLib.Property.new_from_string(f"DTSTART:{format_utc(start)}"))
    vevent.add_property(ICalGLib.Property.new_from_string(f"DTEND:{format_utc(end)}"))
