"""
Source→Target one-way busy-block pass.
"""

from datetime import datetime
from functools import partial
from typing import Iterable

from ..gateway import CalendarGateway
from ..models import CalendarEvent
from ..models import CalendarSyncError
from ..models import SyncConfig
from ..models import SyncStats
from .classifier import classify
from .dedupe import dedupe
from .keys import block_key
from .reconciler import reconcile
from .utils import delete_block


def _remove_orphans(config, stats, logger, gateway, orphans):
    """Delete identity-strategy blocks whose source ID cannot be recovered."""
    if orphans:
        logger.info(f"Removing {len(orphans)} orphaned block(s) without a source ID...")
    for block in orphans:
        if delete_block(config, stats, logger, gateway, block, "orphaned"):
            stats.orphans += 1


def _remove_duplicates(config, stats, logger, gateway, duplicates):
    """Delete every managed block beyond the first one seen for its key."""
    if duplicates:
        logger.info(f"Removing {len(duplicates)} duplicate block(s)...")
    for block in duplicates:
        if delete_block(config, stats, logger, gateway, block, "duplicate"):
            stats.duplicates += 1


def run_one_way_to_target(
    config: SyncConfig,
    stats: SyncStats,
    logger,
    gateway: CalendarGateway,
    window_start: datetime,
    window_end: datetime,
    cleared: Iterable[CalendarEvent] = (),
):
    """Execute one reconciliation pass (source → target) over the window.

    ``cleared`` are blocks a preceding clear removed; they are treated as
    absent even if the listing still returns them (a dry-run refresh).
    """
    try:
        # Both calendars are read before anything is mutated, so an
        # unreadable calendar fails the run with the target untouched.
        logger.info("Fetching target events...")
        target_events = gateway.list_events(config.target_calendar_id, window_start, window_end)
        gone = {block.id for block in cleared}
        if gone:
            target_events = [e for e in target_events if e.id not in gone]
        logger.info("Fetching source events...")
        source_events = gateway.list_events(config.source_calendar_id, window_start, window_end)

        classification = classify(target_events, window_start, window_end, config)
        logger.info(
            f"Found {len(classification.managed)} managed block(s) among "
            f"{len(target_events)} target events"
        )
        _remove_orphans(config, stats, logger, gateway, classification.orphans)

        result = dedupe(
            classification.managed, partial(block_key, strategy=config.strategy)
        )
        _remove_duplicates(config, stats, logger, gateway, result.removed)

        logger.info(f"Processing {len(source_events)} source events...")
        reconcile(source_events, result.kept, gateway, config, stats, logger)

        logger.info(
            f"Sync complete: {stats.created} created, {stats.updated} updated, "
            f"{stats.deleted} expired, {stats.duplicates} duplicate(s) and "
            f"{stats.orphans} orphan(s) removed, {stats.errors} error(s)"
        )

    except CalendarSyncError as e:
        logger.error(f"Sync failed: {e}")
        raise
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        raise
