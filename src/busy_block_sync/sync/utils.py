"""
Stateless helpers shared by the sync passes.
"""

import logging
from datetime import datetime
from datetime import timedelta
from typing import Callable

from ..gateway import CalendarGateway
from ..models import CalendarEvent
from ..models import EventNotFoundError
from ..models import GatewayError
from ..models import SyncConfig
from ..models import SyncStats

_logger = logging.getLogger(__name__)


def compute_window(now: datetime, look_ahead_days: int) -> tuple[datetime, datetime]:
    """Return the forward-looking [now, now + N days] reconciliation window."""
    return now, now + timedelta(days=look_ahead_days)


def describe_event(event: CalendarEvent) -> str:
    """Short human-readable label for log lines."""
    span = f"{event.start.isoformat()} → {event.end.isoformat()}"
    return f"{event.id or '<new>'} [{span}]"


def apply_mutation(
    config: SyncConfig,
    stats: SyncStats,
    logger,
    action: str,
    event: CalendarEvent,
    operation: Callable[[], object],
) -> bool:
    """Run one gateway mutation, honouring dry-run and the error policy.

    Returns True when the mutation was applied (or would have been, in dry
    run).  A GatewayError is recorded in ``stats`` and False is returned,
    unless ``config.stop_on_error`` is set, in which case it propagates and
    aborts the run.
    """
    if config.dry_run:
        logger.info(f"[DRY RUN] Would {action.upper()} {describe_event(event)}")
        return True

    try:
        operation()
    except GatewayError as e:
        if config.stop_on_error:
            raise
        logger.error(f"Failed to {action} {describe_event(event)}: {e}")
        stats.record_failure(action, event, e)
        return False
    return True


def delete_block(
    config: SyncConfig,
    stats: SyncStats,
    logger,
    gateway: CalendarGateway,
    block: CalendarEvent,
    reason: str,
) -> bool:
    """Delete a managed block; an already-deleted block is a silent no-op.

    Returns True only when the block was actually removed by this call.
    """
    already_gone = False

    def _delete():
        nonlocal already_gone
        try:
            gateway.delete_event(block)
        except EventNotFoundError:
            already_gone = True

    applied = apply_mutation(config, stats, logger, "delete", block, _delete)
    if already_gone:
        _logger.debug("Block %s already gone, nothing to delete", block.id)
        return False

    if applied:
        logger.debug(f"Deleted {reason} block {describe_event(block)}")
    return applied
