"""
Shared pytest fixtures.
"""

import logging

import pytest

from busy_block_sync.models import MatchStrategy
from busy_block_sync.models import SyncConfig
from busy_block_sync.models import SyncStats
from busy_block_sync.sync.utils import compute_window
from tests.fake_gateway import NOW
from tests.fake_gateway import SOURCE_CAL_ID
from tests.fake_gateway import TARGET_CAL_ID
from tests.fake_gateway import FakeCalendarGateway


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "test_state.db"


@pytest.fixture
def gateway():
    return FakeCalendarGateway()


@pytest.fixture
def sync_config(db_path):
    return SyncConfig(
        source_calendar_id=SOURCE_CAL_ID,
        target_calendar_id=TARGET_CAL_ID,
        state_db_path=db_path,
        look_ahead_days=7,
    )


@pytest.fixture
def identity_config(db_path):
    return SyncConfig(
        source_calendar_id=SOURCE_CAL_ID,
        target_calendar_id=TARGET_CAL_ID,
        state_db_path=db_path,
        look_ahead_days=7,
        strategy=MatchStrategy.IDENTITY,
        sync_tag="#busy-sync",
    )


@pytest.fixture
def window():
    return compute_window(NOW, 7)


@pytest.fixture
def sync_logger():
    return logging.getLogger("test_sync")


@pytest.fixture
def sync_stats():
    return SyncStats()
