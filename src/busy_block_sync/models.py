"""
Pure data models — no EDS or sqlite imports.
"""

from dataclasses import dataclass
from dataclasses import field
from datetime import datetime
from enum import Enum
from pathlib import Path

DEFAULT_STATE_DB = Path.home() / ".local/share/busy-block-sync-state.db"
DEFAULT_CONFIG = Path.home() / ".config/busy-block-sync.conf"

DEFAULT_BLOCK_TITLE = "Busy"
DEFAULT_SYNC_TAG = "#busy-block-sync"
DEFAULT_LOOK_AHEAD_DAYS = 30


class CalendarSyncError(Exception):
    """Base exception for calendar sync errors."""

    pass


class ConfigurationError(CalendarSyncError):
    """Invalid configuration, or a calendar ID that does not resolve."""

    pass


class GatewayError(CalendarSyncError):
    """A calendar provider call (list/create/update/delete) failed."""

    pass


class EventNotFoundError(GatewayError):
    """The provider reports that the addressed event no longer exists."""

    pass


class MalformedMetadataError(CalendarSyncError):
    """A managed block's description does not carry a parsable source event ID."""

    pass


class SyncAlreadyRunningError(CalendarSyncError):
    """Another sync run holds the run lock."""

    pass


class MatchStrategy(str, Enum):
    """How source events are paired with managed blocks."""

    TIME = "time"  # exact (start, end) tuple
    IDENTITY = "identity"  # source event ID embedded in the block description


class Visibility(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"


@dataclass
class CalendarEvent:
    """A single event instance as read from (or written to) a calendar."""

    id: str | None
    title: str
    start: datetime
    end: datetime
    description: str = ""
    visibility: Visibility = Visibility.PUBLIC
    transparent: bool = False  # free time, does not block the slot
    cancelled: bool = False
    # calendar the event was listed from or created in; set by the gateway
    calendar_id: str | None = None

    def overlaps(self, window_start: datetime, window_end: datetime) -> bool:
        """Inclusive overlap: events touching either window boundary count."""
        return self.start <= window_end and self.end >= window_start


@dataclass(frozen=True)
class SyncConfig:
    """Configuration for one reconciliation run."""

    source_calendar_id: str
    target_calendar_id: str
    state_db_path: Path = DEFAULT_STATE_DB
    look_ahead_days: int = DEFAULT_LOOK_AHEAD_DAYS
    block_title: str = DEFAULT_BLOCK_TITLE
    sync_tag: str = DEFAULT_SYNC_TAG
    strategy: MatchStrategy = MatchStrategy.TIME
    dry_run: bool = False
    verbose: bool = False
    stop_on_error: bool = False  # abort the run on the first failed mutation
    refresh: bool = False
    clear: bool = False
    yes: bool = False  # Auto-confirm without prompting

    def __post_init__(self):
        if not self.source_calendar_id or not self.target_calendar_id:
            raise ConfigurationError("Source and target calendar IDs must both be set")
        if self.source_calendar_id == self.target_calendar_id:
            raise ConfigurationError(
                f"Source and target calendar are the same: {self.source_calendar_id}"
            )
        if self.look_ahead_days < 1:
            raise ConfigurationError(
                f"look_ahead_days must be at least 1, got {self.look_ahead_days}"
            )
        if not self.block_title:
            raise ConfigurationError("block_title must not be empty")
        if self.strategy is MatchStrategy.IDENTITY and not self.sync_tag:
            raise ConfigurationError("sync_tag is required for the identity match strategy")


@dataclass
class FailedOperation:
    """One gateway mutation that failed during a run."""

    action: str
    event_id: str | None
    message: str


@dataclass
class SyncStats:
    """Statistics for sync operation."""

    created: int = 0
    updated: int = 0
    deleted: int = 0
    duplicates: int = 0
    orphans: int = 0
    skipped: int = 0
    errors: int = 0
    failures: list[FailedOperation] = field(default_factory=list)

    def record_failure(self, action: str, event: CalendarEvent, error: Exception):
        self.errors += 1
        self.failures.append(FailedOperation(action, event.id, str(error)))
