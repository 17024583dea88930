"""
Unit tests for the diff/apply engine.

The reconciler is fed a pre-built key → block map, exactly as the one-way
pass hands it over after classification and deduplication.
"""

from dataclasses import replace

import pytest

from busy_block_sync.models import GatewayError
from busy_block_sync.models import SyncStats
from busy_block_sync.models import Visibility
from busy_block_sync.sync.keys import build_block_description
from busy_block_sync.sync.keys import extract_source_id
from busy_block_sync.sync.keys import time_key
from busy_block_sync.sync.reconciler import reconcile
from tests.fake_gateway import SOURCE_CAL_ID
from tests.fake_gateway import TARGET_CAL_ID
from tests.fake_gateway import at
from tests.fake_gateway import make_event


def _seed_block(gateway, start, end=None, description="#busy-block-sync"):
    return gateway.add(TARGET_CAL_ID, make_event(start, end, title="Busy", description=description))


class TestTimeStrategy:
    def test_creates_missing_blocks(self, gateway, sync_config, sync_stats, sync_logger):
        sources = [
            gateway.add(SOURCE_CAL_ID, make_event(at(3, 9))),
            gateway.add(SOURCE_CAL_ID, make_event(at(3, 14))),
        ]

        reconcile(sources, {}, gateway, sync_config, sync_stats, sync_logger)

        assert sync_stats.created == 2
        created = gateway.events(TARGET_CAL_ID)
        assert [(e.start, e.end) for e in created] == [(at(3, 9), at(3, 10)), (at(3, 14), at(3, 15))]
        for block in created:
            assert block.title == "Busy"
            assert block.visibility is Visibility.PRIVATE
            # Source details never leak onto the target
            assert "Dentist" not in block.description

    def test_present_block_is_left_alone(self, gateway, sync_config, sync_stats, sync_logger):
        source = gateway.add(SOURCE_CAL_ID, make_event(at(3, 9)))
        block = _seed_block(gateway, at(3, 9))

        reconcile([source], {time_key(block): block}, gateway, sync_config, sync_stats, sync_logger)

        assert (sync_stats.created, sync_stats.updated, sync_stats.deleted) == (0, 0, 0)
        assert gateway.creates == [] and gateway.updates == [] and gateway.deletes == []

    def test_unclaimed_block_expires(self, gateway, sync_config, sync_stats, sync_logger):
        block = _seed_block(gateway, at(3, 9))

        reconcile([], {time_key(block): block}, gateway, sync_config, sync_stats, sync_logger)

        assert sync_stats.deleted == 1
        assert gateway.deletes == [block.id]

    def test_moved_source_is_delete_plus_create(self, gateway, sync_config, sync_stats, sync_logger):
        """Time matching cannot see a move: the old block goes, a new one appears."""
        block = _seed_block(gateway, at(3, 9))
        moved = gateway.add(SOURCE_CAL_ID, make_event(at(3, 11)))

        reconcile([moved], {time_key(block): block}, gateway, sync_config, sync_stats, sync_logger)

        assert (sync_stats.created, sync_stats.updated, sync_stats.deleted) == (1, 0, 1)

    def test_identical_source_slots_share_one_block(
        self, gateway, sync_config, sync_stats, sync_logger
    ):
        sources = [
            gateway.add(SOURCE_CAL_ID, make_event(at(3, 9), title="Dentist")),
            gateway.add(SOURCE_CAL_ID, make_event(at(3, 9), title="School run")),
        ]

        reconcile(sources, {}, gateway, sync_config, sync_stats, sync_logger)

        assert sync_stats.created == 1
        assert len(gateway.events(TARGET_CAL_ID)) == 1

    def test_kept_map_is_not_modified(self, gateway, sync_config, sync_stats, sync_logger):
        block = _seed_block(gateway, at(3, 9))
        kept = {time_key(block): block}
        reconcile([], kept, gateway, sync_config, sync_stats, sync_logger)
        assert list(kept) == [time_key(block)]


class TestSkippedSources:
    @pytest.mark.parametrize(
        "flags",
        [{"cancelled": True}, {"transparent": True}, {"description": "#busy-block-sync"}],
    )
    def test_not_mirrored(self, gateway, sync_config, sync_stats, sync_logger, flags):
        source = gateway.add(SOURCE_CAL_ID, make_event(at(3, 9), **flags))

        reconcile([source], {}, gateway, sync_config, sync_stats, sync_logger)

        assert sync_stats.created == 0
        assert sync_stats.skipped == 1

    def test_source_titled_like_sentinel_is_still_mirrored(
        self, gateway, sync_config, sync_stats, sync_logger
    ):
        source = gateway.add(SOURCE_CAL_ID, make_event(at(3, 9), title="Busy"))
        reconcile([source], {}, gateway, sync_config, sync_stats, sync_logger)
        assert sync_stats.created == 1


class TestIdentityStrategy:
    def test_create_embeds_source_id(self, gateway, identity_config, sync_stats, sync_logger):
        source = gateway.add(SOURCE_CAL_ID, make_event(at(3, 9), event_id="S1"))

        reconcile([source], {}, gateway, identity_config, sync_stats, sync_logger)

        [block] = gateway.events(TARGET_CAL_ID)
        assert "#busy-sync" in block.description
        assert extract_source_id(block.description) == "S1"

    def test_moved_source_updates_block_in_place(
        self, gateway, identity_config, sync_stats, sync_logger
    ):
        block = _seed_block(
            gateway, at(3, 9), description=build_block_description("#busy-sync", "S1")
        )
        moved = gateway.add(SOURCE_CAL_ID, make_event(at(4, 16), at(4, 17), event_id="S1"))

        reconcile([moved], {"S1": block}, gateway, identity_config, sync_stats, sync_logger)

        assert (sync_stats.created, sync_stats.updated, sync_stats.deleted) == (0, 1, 0)
        [stored] = gateway.events(TARGET_CAL_ID)
        assert stored.id == block.id
        assert (stored.start, stored.end) == (at(4, 16), at(4, 17))
        assert extract_source_id(stored.description) == "S1"

    def test_unchanged_block_is_not_updated(
        self, gateway, identity_config, sync_stats, sync_logger
    ):
        block = _seed_block(
            gateway, at(3, 9), description=build_block_description("#busy-sync", "S1")
        )
        source = gateway.add(SOURCE_CAL_ID, make_event(at(3, 9), event_id="S1"))

        reconcile([source], {"S1": block}, gateway, identity_config, sync_stats, sync_logger)

        assert sync_stats.updated == 0
        assert gateway.updates == []

    def test_same_instant_in_other_zone_is_not_a_move(
        self, gateway, identity_config, sync_stats, sync_logger
    ):
        from zoneinfo import ZoneInfo

        block = _seed_block(
            gateway, at(3, 9), description=build_block_description("#busy-sync", "S1")
        )
        tokyo = ZoneInfo("Asia/Tokyo")
        source = make_event(
            at(3, 9).astimezone(tokyo), at(3, 10).astimezone(tokyo), event_id="S1"
        )

        reconcile([source], {"S1": block}, gateway, identity_config, sync_stats, sync_logger)

        assert sync_stats.updated == 0


class TestErrorHandling:
    def test_failure_is_recorded_and_run_continues(
        self, gateway, sync_config, sync_stats, sync_logger
    ):
        stuck = _seed_block(gateway, at(3, 9))
        gone = _seed_block(gateway, at(3, 11))
        gateway.fail_ids.add(stuck.id)
        source = gateway.add(SOURCE_CAL_ID, make_event(at(3, 14)))
        kept = {time_key(stuck): stuck, time_key(gone): gone}

        reconcile([source], kept, gateway, sync_config, sync_stats, sync_logger)

        assert sync_stats.created == 1
        assert sync_stats.deleted == 1
        assert sync_stats.errors == 1
        [failure] = sync_stats.failures
        assert failure.action == "delete"
        assert failure.event_id == stuck.id

    def test_stop_on_error_aborts(self, gateway, sync_config, sync_logger):
        config = replace(sync_config, stop_on_error=True)
        gateway.fail_create = True
        sources = [gateway.add(SOURCE_CAL_ID, make_event(at(3, 9)))]

        with pytest.raises(GatewayError):
            reconcile(sources, {}, gateway, config, SyncStats(), sync_logger)

    def test_already_deleted_block_is_a_noop(self, gateway, sync_config, sync_stats, sync_logger):
        block = _seed_block(gateway, at(3, 9))
        gateway.remove(TARGET_CAL_ID, block.id)

        reconcile([], {time_key(block): block}, gateway, sync_config, sync_stats, sync_logger)

        assert sync_stats.deleted == 0
        assert sync_stats.errors == 0


class TestDryRun:
    def test_nothing_reaches_the_gateway(self, gateway, sync_config, sync_stats, sync_logger):
        config = replace(sync_config, dry_run=True)
        block = _seed_block(gateway, at(3, 9))
        source = gateway.add(SOURCE_CAL_ID, make_event(at(3, 14)))

        reconcile([source], {time_key(block): block}, gateway, config, sync_stats, sync_logger)

        assert (sync_stats.created, sync_stats.deleted) == (1, 1)
        assert gateway.creates == [] and gateway.deletes == []
        assert len(gateway.events(TARGET_CAL_ID)) == 1
