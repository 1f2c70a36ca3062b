"""Tests for block-range planning, chunking and cursor persistence."""

from unittest.mock import Mock

import pytest

from pipeline.event_indexer import EventIndexer, IndexMetrics
from pipeline.scheduler import BlockRangeScheduler, get_cursor, set_cursor


@pytest.fixture
def scheduler(test_config, registry):
    return BlockRangeScheduler(test_config, registry)


def test_plan_first_run_starts_from_recent_history(scheduler):
    """With no cursor the first range starts 100k blocks back in catch-up mode."""
    plan = scheduler.plan(head=250_000, cursor=None)

    assert plan.from_block == 150_000
    assert plan.to_block == 154_999
    assert plan.realtime is False
    assert plan.jumped_ahead is False


def test_plan_first_run_on_young_chain(scheduler):
    """Young chains start at block 1."""
    plan = scheduler.plan(head=50, cursor=None)

    assert (plan.from_block, plan.to_block) == (1, 50)


def test_plan_realtime_mode(scheduler):
    """A gap within the threshold uses the small batch."""
    plan = scheduler.plan(head=10_150, cursor=10_000)

    assert plan.realtime is True
    assert plan.batch_size == 100
    assert (plan.from_block, plan.to_block) == (10_001, 10_100)


def test_plan_realtime_threshold_is_inclusive(scheduler):
    """A gap of exactly 200 is still realtime."""
    assert scheduler.plan(head=10_200, cursor=10_000).realtime is True
    assert scheduler.plan(head=10_201, cursor=10_000).realtime is False


def test_plan_catchup_mode(scheduler):
    """A larger gap uses the catch-up batch."""
    plan = scheduler.plan(head=100_000, cursor=10_000)

    assert plan.realtime is False
    assert (plan.from_block, plan.to_block) == (10_001, 15_000)


def test_plan_jumps_ahead_on_huge_gap(scheduler):
    """Gaps beyond 500k blocks skip to recent history."""
    plan = scheduler.plan(head=1_000_000, cursor=100)

    assert plan.jumped_ahead is True
    assert plan.from_block == 900_000
    assert plan.to_block == 904_999


def test_plan_up_to_date(scheduler):
    """Nothing to do when the cursor is at the head."""
    plan = scheduler.plan(head=500, cursor=500)

    assert plan.has_work is False
    assert plan.block_count == 0


def test_split_range_is_inclusive(test_config, registry):
    """Chunks cover the range exactly once."""
    test_config.max_block_range = 10
    chunks = BlockRangeScheduler(test_config, registry).split_range(1, 25)

    assert chunks == [(1, 10), (11, 20), (21, 25)]


def test_split_range_single_block(scheduler):
    assert scheduler.split_range(7, 7) == [(7, 7)]


def test_cursor_never_decreases(db):
    """Cursor writes are monotonic."""
    assert get_cursor("polygon") is None
    set_cursor("polygon", 500)
    assert set_cursor("polygon", 300) == 500
    assert get_cursor("polygon") == 500
    set_cursor("polygon", 800)
    assert get_cursor("polygon") == 800


def test_run_once_realtime_scenario(db, test_config, registry, main_chain, remote_chain):
    """Cursor at head-150 indexes the next 100 blocks and advances the cursor."""
    main_chain.head = 10_150
    remote_chain.head = 600
    set_cursor("polygon", 10_000)
    set_cursor("base", 600)

    summary = BlockRangeScheduler(test_config, registry).run_once()

    assert summary.failed_chains == []
    assert summary.plans["polygon"].realtime is True
    assert get_cursor("polygon") == 10_100
    assert get_cursor("base") == 600


def test_run_once_jump_ahead_scenario(db, test_config, registry, main_chain):
    """A huge gap moves the cursor forward before indexing."""
    main_chain.head = 1_000_000
    set_cursor("polygon", 100)
    set_cursor("base", 500)

    BlockRangeScheduler(test_config, registry).run_once()

    assert main_chain.get_logs_calls[0][0] == 900_000
    assert get_cursor("polygon") == 904_999


def test_secondary_chain_cursor_advances(db, test_config, registry, remote_chain):
    """Secondary chains are scheduled even though they carry no indexed events."""
    remote_chain.head = 150
    set_cursor("polygon", 1000)

    BlockRangeScheduler(test_config, registry).run_once()

    assert get_cursor("base") == 150


def test_cursor_written_once_per_span(db, test_config, registry, main_chain):
    """Multi-chunk spans persist the cursor after the last chunk only."""
    test_config.max_block_range = 1000
    indexer = Mock(spec=EventIndexer)
    indexer.index_chunk.return_value = IndexMetrics()
    scheduler = BlockRangeScheduler(test_config, registry, indexer=indexer)

    scheduler.index_span(main_chain.handle, 1, 5000)

    assert indexer.index_chunk.call_count == 5
    assert get_cursor("polygon") == 5000


def test_chunk_failure_keeps_cursor(db, test_config, registry, main_chain):
    """A failing chunk leaves the cursor where it was and isolates the chain."""
    test_config.max_block_range = 1000
    main_chain.head = 20_000
    set_cursor("polygon", 10_000)
    set_cursor("base", 500)

    indexer = Mock(spec=EventIndexer)
    indexer.index_chunk.side_effect = [IndexMetrics(), RuntimeError("rpc down")]
    scheduler = BlockRangeScheduler(test_config, registry, indexer=indexer)

    summary = scheduler.run_once()

    assert summary.failed_chains == ["polygon"]
    assert get_cursor("polygon") == 10_000


def test_failing_head_read_does_not_stop_other_chains(db, test_config, registry, main_chain, remote_chain):
    """One chain's RPC failure is logged and the pass continues."""
    main_chain.client.get_latest_block.side_effect = RuntimeError("timeout")
    remote_chain.head = 50

    summary = BlockRangeScheduler(test_config, registry).run_once()

    assert summary.failed_chains == ["polygon"]
    assert get_cursor("base") == 50


def test_backfill_does_not_lower_cursor(db, scheduler):
    """Backfilling an old range keeps the newer cursor."""
    set_cursor("polygon", 900)

    scheduler.backfill("polygon", 10, 20)

    assert get_cursor("polygon") == 900


def test_backfill_rejects_bad_input(db, scheduler):
    with pytest.raises(ValueError):
        scheduler.backfill("polygon", 20, 10)
    with pytest.raises(ValueError):
        scheduler.backfill("ethereum", 1, 2)


def test_plan_small_gap_indexes_to_head(scheduler):
    """Head 1000 with cursor 950 indexes [951, 1000] in realtime mode."""
    plan = scheduler.plan(head=1000, cursor=950)

    assert (plan.from_block, plan.to_block) == (951, 1000)
    assert plan.batch_size <= 100


def test_jump_ahead_cursor_set_before_indexing(db, test_config, registry, main_chain):
    """The jumped cursor is persisted even if indexing the new range fails."""
    main_chain.head = 1_000_000
    set_cursor("polygon", 100)
    indexer = Mock(spec=EventIndexer)
    indexer.index_chunk.side_effect = RuntimeError("rpc down")

    BlockRangeScheduler(test_config, registry, indexer=indexer).run_once()

    assert get_cursor("polygon") == 899_999


def test_plan_gap_at_jump_limit_does_not_jump(scheduler):
    """A gap of exactly 500,000 continues from the cursor."""
    plan = scheduler.plan(head=500_100, cursor=100)

    assert plan.jumped_ahead is False
    assert plan.from_block == 101
    assert plan.to_block == 5_100
