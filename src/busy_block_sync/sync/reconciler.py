"""
Diff/apply engine — converge managed blocks to the source events.
"""

from ..gateway import CalendarGateway
from ..models import CalendarEvent
from ..models import MatchStrategy
from ..models import SyncConfig
from ..models import SyncStats
from ..models import Visibility
from .keys import MatchKey
from .keys import build_block_description
from .keys import source_key
from .keys import to_millis
from .utils import apply_mutation
from .utils import delete_block
from .utils import describe_event


def _should_skip_source(event: CalendarEvent, config: SyncConfig, logger) -> bool:
    """Source events that must not produce a busy block."""
    # A block of ours showing up on the source side (overlapping calendars,
    # or a shared account) would otherwise be mirrored back as a new block.
    # Recognised by tag under both strategies; a sentinel title alone is not enough.
    if config.sync_tag and config.sync_tag in (event.description or ""):
        logger.debug(f"Skipping managed event in source: {describe_event(event)}")
        return True
    if event.cancelled:
        logger.debug(f"Skipping cancelled event: {describe_event(event)}")
        return True
    if event.transparent:
        logger.debug(f"Skipping free-time event: {describe_event(event)}")
        return True
    return False


def _times_differ(block: CalendarEvent, source: CalendarEvent) -> bool:
    return (to_millis(block.start), to_millis(block.end)) != (
        to_millis(source.start),
        to_millis(source.end),
    )


def _process_create(
    config: SyncConfig,
    stats: SyncStats,
    logger,
    source: CalendarEvent,
    gateway: CalendarGateway,
):
    """Create a missing block on the target calendar for a source event."""
    description = config.sync_tag
    if config.strategy is MatchStrategy.IDENTITY:
        description = build_block_description(config.sync_tag, source.id)

    def _create():
        created = gateway.create_event(
            config.target_calendar_id,
            config.block_title,
            source.start,
            source.end,
            description=description,
            visibility=Visibility.PRIVATE,
        )
        logger.debug(f"Created block {created.id} for source {source.id}")

    if apply_mutation(config, stats, logger, "create", source, _create):
        stats.created += 1


def _process_update(
    config: SyncConfig,
    stats: SyncStats,
    logger,
    source: CalendarEvent,
    block: CalendarEvent,
    gateway: CalendarGateway,
):
    """Move an identity-matched block to the source event's current slot."""

    def _update():
        gateway.set_time(block, source.start, source.end)
        gateway.set_description(block, build_block_description(config.sync_tag, source.id))

    if apply_mutation(config, stats, logger, "update", block, _update):
        stats.updated += 1
        logger.debug(f"Moved block {block.id} to match source {describe_event(source)}")


def reconcile(
    source_events: list[CalendarEvent],
    kept: dict[MatchKey, CalendarEvent],
    gateway: CalendarGateway,
    config: SyncConfig,
    stats: SyncStats,
    logger,
) -> SyncStats:
    """Create, update and delete managed blocks so they mirror ``source_events``.

    ``kept`` is the deduplicated key → block map for the target window; it
    is not modified.  Blocks whose key no source event claims are deleted
    as expired once every source event has been processed.
    """
    remaining = dict(kept)
    claimed: set[MatchKey] = set()

    for source in source_events:
        if _should_skip_source(source, config, logger):
            stats.skipped += 1
            continue

        key = source_key(source, config.strategy)

        # Several source events can share a key (identical slots, or one
        # series instance reported twice); the first one owns the block.
        if key in claimed:
            logger.debug(f"Key already claimed, skipping source {describe_event(source)}")
            continue
        claimed.add(key)

        block = remaining.pop(key, None)
        if block is None:
            _process_create(config, stats, logger, source, gateway)
        elif config.strategy is MatchStrategy.IDENTITY and _times_differ(block, source):
            _process_update(config, stats, logger, source, block, gateway)

    if remaining:
        logger.info(f"Removing {len(remaining)} expired block(s)...")
    for block in remaining.values():
        if delete_block(config, stats, logger, gateway, block, "expired"):
            stats.deleted += 1

    return stats
