"""
Calendar gateway contract consumed by the sync core.
"""

from datetime import datetime
from typing import Protocol

from busy_block_sync.models import CalendarEvent
from busy_block_sync.models import Visibility


class CalendarGateway(Protocol):
    """Small CRUD surface over a calendar provider.

    Contract relied on by the reconciler:

    - ``list_events`` returns every event overlapping ``[start, end]``
      *inclusively* (an event starting exactly at ``end`` or ending exactly
      at ``start`` is returned), ordered by start time ascending with ties
      kept in provider order.
    - Recurring series are expanded by the gateway into one
      ``CalendarEvent`` per occurrence inside the range.  The sync core has
      no recurrence handling of its own and treats every returned instance
      as an independent event.
    - Every failing call raises ``GatewayError``.  Mutating or deleting an
      event that no longer exists raises ``EventNotFoundError``.
    - Every returned or created event carries its owning ``calendar_id``;
      mutators act on that calendar only, even when the same event ID
      exists on another calendar.
    - Mutators update the passed ``CalendarEvent`` in place on success.
    """

    def list_events(
        self, calendar_id: str, start: datetime, end: datetime
    ) -> list[CalendarEvent]: ...

    def create_event(
        self,
        calendar_id: str,
        title: str,
        start: datetime,
        end: datetime,
        description: str = "",
        visibility: Visibility = Visibility.PRIVATE,
    ) -> CalendarEvent: ...

    def set_description(self, event: CalendarEvent, text: str) -> None: ...

    def set_visibility(self, event: CalendarEvent, visibility: Visibility) -> None: ...

    def set_time(self, event: CalendarEvent, start: datetime, end: datetime) -> None: ...

    def delete_event(self, event: CalendarEvent) -> None: ...
