"""
Clear operation — remove managed blocks from the target calendar.
"""

from datetime import datetime

from ..gateway import CalendarGateway
from ..models import CalendarEvent
from ..models import SyncConfig
from ..models import SyncStats
from .classifier import classify
from .utils import delete_block


def perform_clear(
    config: SyncConfig,
    stats: SyncStats,
    logger,
    gateway: CalendarGateway,
    window_start: datetime,
    window_end: datetime,
) -> list[CalendarEvent]:
    """Delete every managed block (orphans included) in the window, leaving other events untouched.

    Returns the blocks removed (or, in dry run, that would have been), so a
    refresh can run its pass as though they were already gone.
    """
    logger.warning("CLEAR MODE: Removing managed blocks from target calendar...")

    target_events = gateway.list_events(config.target_calendar_id, window_start, window_end)
    classification = classify(target_events, window_start, window_end, config)
    to_delete = classification.managed + classification.orphans

    if not to_delete:
        logger.info("No managed blocks found - target calendar is clean")
        return []

    logger.info(f"Found {len(to_delete)} managed block(s) in the window")
    cleared = []
    for block in to_delete:
        if delete_block(config, stats, logger, gateway, block, "managed"):
            stats.deleted += 1
            cleared.append(block)

    if config.dry_run:
        logger.info(f"[DRY RUN] Would remove {stats.deleted} managed block(s)")
    else:
        logger.info(f"Clear complete: Removed {stats.deleted} managed block(s) (other events preserved)")
    return cleared
