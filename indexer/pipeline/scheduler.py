"""Block-range scheduler - decides what each chain indexes next and drives the event indexer.

Chains are processed one after another. The donation counters written by the
event indexer are incremental, so per-campaign writes must stay serialized;
running chains concurrently would need a per-campaign lock first.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from config import Config
from db.models import IndexerState
from db.session import get_session
from eth.registry import ChainHandle, ChainRegistry
from log import get_logger
from pipeline.event_indexer import EventIndexer, IndexMetrics

logger = get_logger(__name__)


def get_cursor(chain: str) -> Optional[int]:
    """Last indexed block for a chain, or None if it was never indexed."""
    with get_session() as session:
        state = session.get(IndexerState, chain)
        return None if state is None else int(state.last_indexed_block)


def set_cursor(chain: str, block_number: int) -> int:
    """Upsert the cursor. The stored value never moves backwards.

    Returns:
        The cursor value after the update
    """
    with get_session() as session:
        state = session.get(IndexerState, chain)
        if state is None:
            session.add(IndexerState(chain=chain, last_indexed_block=block_number))
            return block_number

        if block_number < state.last_indexed_block:
            logger.warning(
                f"{chain}: refusing to move cursor back from {state.last_indexed_block} to {block_number}"
            )
            return int(state.last_indexed_block)

        state.last_indexed_block = block_number
        state.updated_at = datetime.utcnow()
        return block_number


@dataclass(frozen=True)
class RangePlan:
    """Next range for one chain."""

    head: int
    cursor: Optional[int]
    from_block: int
    to_block: int
    batch_size: int
    realtime: bool
    jumped_ahead: bool = False

    @property
    def gap(self) -> Optional[int]:
        return None if self.cursor is None else self.head - self.cursor

    @property
    def has_work(self) -> bool:
        return self.from_block <= self.to_block

    @property
    def block_count(self) -> int:
        return max(0, self.to_block - self.from_block + 1)


@dataclass
class PassSummary:
    """Outcome of one scheduler pass over all chains."""

    plans: Dict[str, RangePlan] = field(default_factory=dict)
    metrics: IndexMetrics = field(default_factory=IndexMetrics)
    failed_chains: List[str] = field(default_factory=list)
    blocks_processed: int = 0
    duration_seconds: float = 0.0

    @property
    def realtime_chains(self) -> int:
        return sum(1 for plan in self.plans.values() if plan.realtime)


class BlockRangeScheduler:
    """Per-chain range planning, chunked indexing and cursor persistence."""

    def __init__(self, config: Config, registry: ChainRegistry, indexer: Optional[EventIndexer] = None):
        self.config = config
        self.registry = registry
        self.indexer = indexer or EventIndexer(config)

    def plan(self, head: int, cursor: Optional[int]) -> RangePlan:
        """Choose mode, batch size and range from the chain head and the stored cursor."""
        jumped_ahead = False
        realtime = False

        if cursor is None:
            # First-time indexing starts from recent history
            from_block = max(1, head - self.config.recent_history_blocks)
        else:
            gap = head - cursor
            realtime = gap <= self.config.realtime_threshold
            if gap > self.config.max_acceptable_gap:
                from_block = max(1, head - self.config.recent_history_blocks)
                jumped_ahead = True
            else:
                from_block = cursor + 1

        batch_size = self.config.realtime_batch_size if realtime else self.config.catchup_batch_size
        to_block = min(head, from_block + batch_size - 1)

        return RangePlan(
            head=head,
            cursor=cursor,
            from_block=from_block,
            to_block=to_block,
            batch_size=batch_size,
            realtime=realtime,
            jumped_ahead=jumped_ahead,
        )

    def split_range(self, from_block: int, to_block: int) -> List[tuple[int, int]]:
        """Split an inclusive range into sequential chunks of at most max_block_range blocks."""
        step = self.config.max_block_range
        return [
            (start, min(start + step - 1, to_block))
            for start in range(from_block, to_block + 1, step)
        ]

    def index_span(self, handle: ChainHandle, from_block: int, to_block: int) -> IndexMetrics:
        """Index an inclusive span chunk by chunk, then persist the cursor once.

        A failure in any chunk propagates before the cursor is written, so the
        whole span (including chunks already committed) is replayed next time.
        """
        metrics = IndexMetrics()
        chunks = self.split_range(from_block, to_block)
        if len(chunks) > 1:
            logger.info(
                f"{handle.name}: large block range detected, {len(chunks)} chunks "
                f"of up to {self.config.max_block_range} blocks"
            )

        for chunk_from, chunk_to in chunks:
            metrics.add(self.indexer.index_chunk(handle, chunk_from, chunk_to))

        set_cursor(handle.name, to_block)

        if metrics.total_events:
            logger.info(
                f"Completed indexing for {handle.name} {from_block}-{to_block}: "
                f"{metrics.campaigns} campaign, {metrics.donations} donation, "
                f"{metrics.withdrawals} withdrawal events in {metrics.processing_time_ms}ms"
            )
        else:
            logger.debug(f"Completed indexing for {handle.name} {from_block}-{to_block}: no events")
        return metrics

    def run_chain(self, handle: ChainHandle) -> tuple[RangePlan, IndexMetrics]:
        """Plan and index the next range for one chain."""
        head = handle.client.get_latest_block()
        cursor = get_cursor(handle.name)
        plan = self.plan(head, cursor)

        if plan.jumped_ahead:
            logger.warning(
                f"{handle.name}: gap too large ({plan.gap} blocks). "
                f"Jumping ahead from block {plan.cursor + 1} to {plan.from_block}"
            )
            set_cursor(handle.name, plan.from_block - 1)
        elif cursor is None:
            logger.info(f"{handle.name}: first-time indexing, starting from block {plan.from_block}")

        if not plan.has_work:
            logger.debug(f"{handle.name}: no new blocks to index")
            return plan, IndexMetrics()

        logger.debug(
            f"{handle.name}: {'REALTIME' if plan.realtime else 'CATCHUP'} mode, "
            f"last indexed: {cursor if cursor is not None else 'none'}, current: {head}, "
            f"indexing {plan.from_block}-{plan.to_block} ({plan.block_count} blocks)"
        )
        return plan, self.index_span(handle, plan.from_block, plan.to_block)

    def run_once(self) -> PassSummary:
        """One pass over every available chain; a failing chain does not stop the others."""
        summary = PassSummary()
        start = time.monotonic()

        for handle in self.registry.available():
            try:
                plan, metrics = self.run_chain(handle)
            except Exception as e:
                summary.failed_chains.append(handle.name)
                summary.metrics.errors += 1
                logger.error(f"Error processing {handle.name}: {e}", exc_info=True)
                continue

            summary.plans[handle.name] = plan
            summary.metrics.add(metrics)
            summary.blocks_processed += plan.block_count

        summary.duration_seconds = time.monotonic() - start
        logger.info(
            f"Indexing completed: processed {summary.blocks_processed} blocks across "
            f"{len(summary.plans)} networks in {summary.duration_seconds:.2f}s "
            f"({summary.realtime_chains} in realtime mode, {summary.metrics.total_events} events found)"
        )
        return summary

    def backfill(self, chain: str, from_block: int, to_block: int) -> IndexMetrics:
        """Index an explicit range. The cursor only moves if the range ends past it."""
        handle = self.registry.get(chain)
        if handle is None:
            raise ValueError(f"Chain {chain} is not available")
        if from_block > to_block:
            raise ValueError("from_block must be <= to_block")

        logger.info(f"Backfilling {chain} blocks {from_block} to {to_block}")
        return self.index_span(handle, from_block, to_block)
