"""
Match-key derivation for pairing source events with managed blocks.
"""

import re
from datetime import datetime
from datetime import timedelta
from datetime import timezone
from typing import Union

from ..models import CalendarEvent
from ..models import MalformedMetadataError
from ..models import MatchStrategy

TimeKey = tuple[int, int]
MatchKey = Union[TimeKey, str]

SOURCE_ID_LABEL = "Source Event ID"

# The ID runs to the end of the line (provider IDs may contain spaces); an
# empty or whitespace-only ID is treated as absent.
_SOURCE_ID_RE = re.compile(rf"{SOURCE_ID_LABEL}:[ \t]*([^\r\n]*\S)")

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_MILLISECOND = timedelta(milliseconds=1)


def to_millis(dt: datetime) -> int:
    """Exact epoch milliseconds for a timezone-aware datetime."""
    if dt.tzinfo is None or dt.utcoffset() is None:
        raise ValueError(f"Naive datetime cannot be used as a match key: {dt!r}")
    return (dt - _EPOCH) // _MILLISECOND


def time_key(event: CalendarEvent) -> TimeKey:
    return (to_millis(event.start), to_millis(event.end))


def format_source_marker(source_id: str) -> str:
    return f"{SOURCE_ID_LABEL}: {source_id}"


def build_block_description(sync_tag: str, source_id: str) -> str:
    """Description text for an identity-strategy block: tag line + ID marker."""
    return f"{sync_tag}\n{format_source_marker(source_id)}"


def extract_source_id(description: str | None) -> str | None:
    """Return the embedded source event ID, or None if absent or malformed."""
    if not description:
        return None
    m = _SOURCE_ID_RE.search(description)
    return m.group(1).strip() if m else None


def parse_source_id(description: str | None) -> str:
    """Like extract_source_id(), but raise MalformedMetadataError on failure."""
    source_id = extract_source_id(description)
    if source_id is None:
        raise MalformedMetadataError(
            f"No '{SOURCE_ID_LABEL}: <id>' marker in description {description!r}"
        )
    return source_id


def source_key(event: CalendarEvent, strategy: MatchStrategy) -> MatchKey:
    """Key of a source-calendar event."""
    if strategy is MatchStrategy.IDENTITY:
        if not event.id:
            raise ValueError(f"Source event without provider ID: {event.title!r}")
        return event.id
    return time_key(event)


def block_key(block: CalendarEvent, strategy: MatchStrategy) -> MatchKey:
    """Key of a managed block on the target calendar.

    Under the identity strategy this raises MalformedMetadataError for
    blocks without an embedded ID; the classifier sorts those out as
    orphans before any key is needed downstream.
    """
    if strategy is MatchStrategy.IDENTITY:
        return parse_source_id(block.description)
    return time_key(block)
