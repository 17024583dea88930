"""
Target-calendar classification — which events belong to us.
"""

from dataclasses import dataclass
from dataclasses import field
from datetime import datetime

from ..models import CalendarEvent
from ..models import MalformedMetadataError
from ..models import MatchStrategy
from ..models import SyncConfig
from .keys import parse_source_id


@dataclass
class Classification:
    managed: list[CalendarEvent] = field(default_factory=list)
    orphans: list[CalendarEvent] = field(default_factory=list)


def is_managed_block(event: CalendarEvent, config: SyncConfig) -> bool:
    """Check if an event was created by this tool under the active strategy.

    Time strategy recognises blocks by their sentinel title, identity
    strategy by the sync tag in the description.
    """
    if config.strategy is MatchStrategy.IDENTITY:
        return config.sync_tag in (event.description or "")
    return event.title == config.block_title


def classify(
    target_events: list[CalendarEvent],
    window_start: datetime,
    window_end: datetime,
    config: SyncConfig,
) -> Classification:
    """Split target events into managed blocks and orphans.

    Events outside the window or not recognised as managed are dropped and
    must never be touched.  Under the identity strategy a recognised block
    without a parsable source ID is an orphan: the caller deletes it
    instead of carrying it into the diff.  Input order is preserved.
    """
    result = Classification()
    for event in target_events:
        if not event.overlaps(window_start, window_end):
            continue
        if not is_managed_block(event, config):
            continue
        if config.strategy is MatchStrategy.IDENTITY:
            try:
                parse_source_id(event.description)
            except MalformedMetadataError:
                result.orphans.append(event)
                continue
        result.managed.append(event)
    return result
