"""
BusyBlockSynchronizer — thin orchestrator that delegates to sync submodules.
"""

import logging
from datetime import datetime
from datetime import timezone

from busy_block_sync.db import StateDatabase
from busy_block_sync.gateway import CalendarGateway
from busy_block_sync.models import SyncConfig
from busy_block_sync.models import SyncStats
from busy_block_sync.sync.refresh import perform_clear
from busy_block_sync.sync.to_target import run_one_way_to_target
from busy_block_sync.sync.utils import compute_window


class BusyBlockSynchronizer:
    """Main synchronization engine."""

    def __init__(
        self,
        config: SyncConfig,
        gateway: CalendarGateway | None = None,
        now: datetime | None = None,
    ):
        self.config = config
        self.gateway = gateway
        self.now = now
        self.logger = logging.getLogger(__name__)
        self.stats = SyncStats()

    def _mode(self) -> str:
        if self.config.clear:
            return "clear"
        if self.config.refresh:
            return "refresh"
        return "sync"

    def _connect_gateway(self) -> CalendarGateway:
        if self.gateway is None:
            # Imported lazily so the core runs without the EDS typelibs.
            from busy_block_sync.eds_client import EDSGateway

            self.logger.info("Connecting to Evolution Data Server...")
            self.gateway = EDSGateway.connect()
        return self.gateway

    def run(self) -> SyncStats:
        """Execute one reconciliation run under the run lock."""
        now = self.now or datetime.now(timezone.utc)
        window_start, window_end = compute_window(now, self.config.look_ahead_days)
        mode = self._mode()

        with StateDatabase(
            self.config.state_db_path,
            self.config.source_calendar_id,
            self.config.target_calendar_id,
        ) as state_db:
            run_id = state_db.begin_run(self.config.strategy.value, mode, self.config.dry_run)
            self.logger.info(
                f"Window: {window_start:%Y-%m-%d %H:%M} → {window_end:%Y-%m-%d %H:%M} "
                f"({self.config.strategy.value} matching)"
            )

            try:
                gateway = self._connect_gateway()
                args = (self.config, self.stats, self.logger, gateway, window_start, window_end)

                cleared = []
                if mode in ("clear", "refresh"):
                    cleared = perform_clear(*args)
                if mode in ("sync", "refresh"):
                    run_one_way_to_target(*args, cleared=cleared)
            except BaseException as e:
                state_db.finish_run(run_id, self.stats, "failed", str(e) or type(e).__name__)
                raise

            status = "ok" if self.stats.errors == 0 else "partial"
            state_db.finish_run(run_id, self.stats, status)

        return self.stats
