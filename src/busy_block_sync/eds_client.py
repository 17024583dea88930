"""
Evolution Data Server calendar connectivity wrapper.
"""

import logging
import uuid
from dataclasses import replace
from datetime import datetime
from datetime import timedelta
from typing import Optional, Tuple

import gi
gi.require_version('EDataServer', '1.2')
gi.require_version('ECal', '2.0')
gi.require_version('ICalGLib', '3.0')
from gi.repository import EDataServer, ECal, ICalGLib, GLib

from .ical import build_block_component
from .ical import components_to_events
from .ical import first_vevent
from .ical import format_utc
from .ical import is_not_found_error
from .ical import series_uid
from .ical import set_component_description
from .ical import set_component_time
from .ical import set_component_visibility
from .models import CalendarEvent
from .models import ConfigurationError
from .models import EventNotFoundError
from .models import GatewayError
from .models import Visibility

logger = logging.getLogger(__name__)


def get_calendar_display_info(calendar_uid: str) -> Tuple[str, str, str]:
    """
    Get human-readable information about a calendar.

    Returns:
        Tuple of (display_name, account_name, uid)
    """
    try:
        registry = EDataServer.SourceRegistry.new_sync(None)
        source = registry.ref_source(calendar_uid)

        if not source:
            return ("Unknown Calendar", "", calendar_uid)

        display_name = source.get_display_name() or "Unnamed Calendar"

        # Get parent account information
        parent_uid = source.get_parent()
        if parent_uid:
            parent_source = registry.ref_source(parent_uid)
            if parent_source:
                account_name = parent_source.get_display_name() or ""
            else:
                account_name = ""
        else:
            account_name = ""

        return (display_name, account_name, calendar_uid)
    except Exception as e:
        return (f"Error: {e}", "", calendar_uid)


def _gateway_error(action: str, e: GLib.Error) -> GatewayError:
    """Map a GLib.Error from EDS onto the gateway exception hierarchy."""
    if is_not_found_error(e):
        return EventNotFoundError(f"{action}: object not found ({e.message})")
    return GatewayError(f"{action}: {e.message}")


class EDSCalendarClient:
    """Wrapper for Evolution Data Server calendar operations."""

    def __init__(self, registry: EDataServer.SourceRegistry, calendar_uid: str):
        self.registry = registry
        self.calendar_uid = calendar_uid
        self.client: Optional[ECal.Client] = None

    def connect(self, timeout: int = 10):
        """Connect to the specified calendar in EDS."""
        source = self.registry.ref_source(self.calendar_uid)
        if not source:
            raise ConfigurationError(
                f"Calendar with UID '{self.calendar_uid}' not found in EDS"
            )

        try:
            self.client = ECal.Client.connect_sync(
                source,
                ECal.ClientSourceType.EVENTS,
                timeout,
                None
            )
        except GLib.Error as e:
            raise GatewayError(
                f"Failed to connect to calendar {self.calendar_uid}: {e.message}"
            )

    def _require_client(self) -> ECal.Client:
        if not self.client:
            raise GatewayError("Client not connected")
        return self.client

    def get_events_in_range(self, start: datetime, end: datetime) -> list:
        """Retrieve the raw objects with an occurrence in [start, end]."""
        client = self._require_client()
        # occur-in-time-range? treats the end as exclusive; widen by a second
        # on both sides and let the caller apply the inclusive filter.
        sexp = (
            f'(occur-in-time-range? '
            f'(make-time "{format_utc(start - timedelta(seconds=1))}") '
            f'(make-time "{format_utc(end + timedelta(seconds=1))}"))'
        )
        try:
            _, objects = client.get_object_list_sync(sexp, None)
            return objects
        except GLib.Error as e:
            raise GatewayError(f"Failed to fetch events: {e.message}")

    def create_event(self, component: ICalGLib.Component) -> Optional[str]:
        """Create a new event in the calendar."""
        client = self._require_client()
        try:
            success, out_uid = client.create_object_sync(
                component,
                ECal.OperationFlags.NONE,
                None
            )
        except GLib.Error as e:
            raise _gateway_error("Failed to create event", e)
        if not success:
            raise GatewayError("Failed to create event")
        return out_uid

    def modify_event(self, component: ICalGLib.Component):
        """Modify an existing event in the calendar."""
        client = self._require_client()
        try:
            success = client.modify_object_sync(
                component,
                ECal.ObjModType.THIS,
                ECal.OperationFlags.NONE,
                None
            )
        except GLib.Error as e:
            raise _gateway_error("Failed to modify event", e)
        if not success:
            raise GatewayError("Failed to modify event")

    def remove_event(self, uid: str):
        """Remove an event from the calendar."""
        client = self._require_client()
        try:
            success = client.remove_object_sync(
                uid,
                None,  # rid (recurrence-id)
                ECal.ObjModType.THIS,
                ECal.OperationFlags.NONE,
                None  # cancellable
            )
        except GLib.Error as e:
            raise _gateway_error(f"Failed to remove event {uid}", e)
        if not success:
            raise GatewayError(f"Failed to remove event {uid}")

    def get_event(self, uid: str) -> Optional[ICalGLib.Component]:
        """Retrieve a single event by UID."""
        client = self._require_client()
        try:
            success, icalcomp = client.get_object_sync(uid, None, None)
        except GLib.Error as e:
            if is_not_found_error(e):
                return None
            raise GatewayError(f"Failed to fetch event {uid}: {e.message}")
        if success and icalcomp:
            # Handle both string and Component returns
            if isinstance(icalcomp, str):
                return ICalGLib.Component.new_from_string(icalcomp)
            return icalcomp
        return None


class EDSGateway:
    """CalendarGateway over Evolution Data Server.

    One EDSCalendarClient is opened lazily per calendar UID.  Recurring
    series are expanded into per-occurrence events with IDs of the form
    ``<uid>::<UTC start>``; mutators address the underlying object UID, so
    they are meant for the single (non-recurring) blocks this tool creates.

    Every returned event carries the UID of the calendar it was read from
    (or created in), and mutators only ever act on that calendar: the same
    iCal UID may legitimately exist on both calendars, e.g. an invite sent
    to both addresses.
    """

    def __init__(self, registry: EDataServer.SourceRegistry):
        self.registry = registry
        self._clients: dict[str, EDSCalendarClient] = {}

    @classmethod
    def connect(cls) -> "EDSGateway":
        try:
            registry = EDataServer.SourceRegistry.new_sync(None)
        except GLib.Error as e:
            raise GatewayError(f"EDS registry unreachable: {e.message}")
        return cls(registry)

    def client_for(self, calendar_id: str) -> EDSCalendarClient:
        client = self._clients.get(calendar_id)
        if client is None:
            client = EDSCalendarClient(self.registry, calendar_id)
            client.connect()
            self._clients[calendar_id] = client
        return client

    def _owner_client(self, event: CalendarEvent) -> EDSCalendarClient:
        if not event.calendar_id:
            raise GatewayError(f"Event {event.id} was not obtained through this gateway")
        return self.client_for(event.calendar_id)

    def list_events(self, calendar_id: str, start: datetime, end: datetime) -> list[CalendarEvent]:
        objects = self.client_for(calendar_id).get_events_in_range(start, end)
        events = [
            replace(event, calendar_id=calendar_id)
            for event in components_to_events(objects, start, end)
        ]
        logger.debug("Listed %d event(s) from %s", len(events), calendar_id)
        return events

    def create_event(
        self,
        calendar_id: str,
        title: str,
        start: datetime,
        end: datetime,
        description: str = "",
        visibility: Visibility = Visibility.PRIVATE,
    ) -> CalendarEvent:
        uid = str(uuid.uuid4())
        component = build_block_component(uid, title, start, end, description, visibility)
        # Use the UID assigned by the server if it returns one
        actual_uid = self.client_for(calendar_id).create_event(component) or uid
        return CalendarEvent(
            id=actual_uid,
            title=title,
            start=start,
            end=end,
            description=description,
            visibility=visibility,
            calendar_id=calendar_id,
        )

    def _modify(self, event: CalendarEvent, mutate):
        client = self._owner_client(event)
        uid = series_uid(event.id)
        component = client.get_event(uid)
        if component is None:
            raise EventNotFoundError(f"Event {uid} not found")
        vevent = first_vevent(component)
        if vevent is None:
            raise GatewayError(f"Event {uid} has no VEVENT")
        mutate(vevent)
        client.modify_event(component)

    def set_description(self, event: CalendarEvent, text: str) -> None:
        self._modify(event, lambda vevent: set_component_description(vevent, text))
        event.description = text

    def set_visibility(self, event: CalendarEvent, visibility: Visibility) -> None:
        self._modify(event, lambda vevent: set_component_visibility(vevent, visibility))
        event.visibility = visibility

    def set_time(self, event: CalendarEvent, start: datetime, end: datetime) -> None:
        self._modify(event, lambda vevent: set_component_time(vevent, start, end))
        event.start = start
        event.end = end

    def delete_event(self, event: CalendarEvent) -> None:
        self._owner_client(event).remove_event(series_uid(event.id))
