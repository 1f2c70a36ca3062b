"""Event indexer - applies one chain's contract events for a block range to the mirror.

Each log category (campaign lifecycle, donations, withdrawals) is written in
its own transaction. A failure in one category rolls back that category only;
categories already committed in the same pass stay committed and the error is
re-raised so the caller does not advance the cursor.
"""

import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List

from config import Config
from db.session import get_session
from eth.contract import OnChainCampaign
from eth.decoder import decode_event
from eth.registry import ChainHandle
from eth.topics import CAMPAIGN_EVENTS, DONATION_EVENTS, WITHDRAWAL_EVENTS, get_event_topic
from log import get_logger
from services.state_updater import (
    apply_campaign_created,
    apply_campaign_edited,
    apply_campaign_ended,
    apply_donation_made,
    apply_withdrawal_processed,
    apply_withdrawal_requested,
)

logger = get_logger(__name__)


@dataclass
class IndexMetrics:
    """Counters for one indexing run."""

    campaigns: int = 0
    donations: int = 0
    withdrawals: int = 0
    errors: int = 0
    processing_time_ms: int = 0

    @property
    def total_events(self) -> int:
        return self.campaigns + self.donations + self.withdrawals

    def add(self, other: "IndexMetrics") -> None:
        self.campaigns += other.campaigns
        self.donations += other.donations
        self.withdrawals += other.withdrawals
        self.errors += other.errors
        self.processing_time_ms += other.processing_time_ms


class EventIndexer:
    """Indexer for the main-chain crowdfunding contract events."""

    def __init__(self, config: Config):
        """Initialize event indexer.

        Args:
            config: Configuration object
        """
        self.config = config
        self.decimals = config.stable_token_decimals
        self.read_batch_size = config.campaign_read_batch_size

    def index_chunk(self, handle: ChainHandle, from_block: int, to_block: int) -> IndexMetrics:
        """Index every event category in [from_block, to_block].

        Args:
            handle: Chain to index
            from_block: Starting block number
            to_block: Ending block number (inclusive)

        Returns:
            Metrics for the chunk

        Raises:
            Exception: The first category failure, after that category rolled back
        """
        metrics = IndexMetrics()
        if not handle.is_main:
            # Secondary chains only forward aggregate totals to the main chain
            logger.debug(f"Skipping event indexing for non-main chain {handle.name}")
            return metrics

        logger.debug(f"Processing chunk for {handle.name} from block {from_block} to {to_block}")
        start = time.monotonic()

        metrics.campaigns = self.index_campaign_events(handle, from_block, to_block)
        metrics.donations = self.index_donation_events(handle, from_block, to_block)
        metrics.withdrawals = self.index_withdrawal_events(handle, from_block, to_block)

        metrics.processing_time_ms = int((time.monotonic() - start) * 1000)
        return metrics

    def fetch_events(
        self,
        handle: ChainHandle,
        event_name: str,
        from_block: int,
        to_block: int,
    ) -> List[Dict[str, Any]]:
        """Fetch and decode one event type, ordered by block and log index."""
        logs = handle.client.get_logs(
            address=handle.contract.address,
            from_block=from_block,
            to_block=to_block,
            topics=[get_event_topic(event_name)],
        )

        events = []
        for log in logs:
            decoded = decode_event(log)
            if decoded is None or decoded["event_name"] != event_name:
                logger.warning(f"Failed to decode {event_name} log in tx {log.get('transactionHash')}")
                continue
            events.append(decoded)

        events.sort(key=lambda e: (e["block_number"], e["log_index"]))
        return events

    def read_campaigns(self, handle: ChainHandle, campaign_ids: Iterable[int]) -> Dict[int, OnChainCampaign]:
        """Read current campaign structs, batched to bound concurrent RPC calls."""
        ids = sorted(set(campaign_ids))
        campaigns: Dict[int, OnChainCampaign] = {}
        if not ids:
            return campaigns

        with ThreadPoolExecutor(max_workers=self.read_batch_size) as executor:
            for i in range(0, len(ids), self.read_batch_size):
                batch = ids[i : i + self.read_batch_size]
                results = executor.map(handle.contract.read_campaign, batch)
                campaigns.update(zip(batch, results))

        return campaigns

    def index_campaign_events(self, handle: ChainHandle, from_block: int, to_block: int) -> int:
        """Index CampaignCreated / CampaignEdited / CampaignEnded in one transaction."""
        created, edited, ended = (
            self.fetch_events(handle, name, from_block, to_block) for name in CAMPAIGN_EVENTS
        )

        # Event payloads carry only ids; everything else is read back from the contract
        on_chain = self.read_campaigns(
            handle, [e["args"]["campaignId"] for e in created + edited]
        )

        try:
            with get_session() as session:
                for event in created:
                    campaign = on_chain.get(event["args"]["campaignId"])
                    if campaign is None:
                        logger.warning(f"Campaign data not found for ID {event['args']['campaignId']}")
                        continue
                    apply_campaign_created(session, handle.name, event, campaign, self.decimals)

                for event in edited:
                    campaign = on_chain.get(event["args"]["campaignId"])
                    if campaign is None:
                        logger.warning(
                            f"Campaign data not found for ID {event['args']['campaignId']} during edit"
                        )
                        continue
                    apply_campaign_edited(session, handle.name, event, campaign, self.decimals)

                for event in ended:
                    apply_campaign_ended(session, handle.name, event, self.decimals)
        except Exception as e:
            logger.error(
                f"Error indexing {handle.name} campaigns in blocks {from_block}-{to_block}: {e}",
                exc_info=True,
            )
            raise

        total = len(created) + len(edited) + len(ended)
        if total:
            logger.info(
                f"Indexed {len(created)} created, {len(edited)} edited, "
                f"{len(ended)} ended campaigns on {handle.name}"
            )
        return total

    def index_donation_events(self, handle: ChainHandle, from_block: int, to_block: int) -> int:
        """Index DonationMade in one transaction (incremental, not replay-safe)."""
        donations = self.fetch_events(handle, DONATION_EVENTS[0], from_block, to_block)

        try:
            with get_session() as session:
                for event in donations:
                    apply_donation_made(session, handle.name, event, self.decimals)
        except Exception as e:
            logger.error(
                f"Error indexing {handle.name} donations in blocks {from_block}-{to_block}: {e}",
                exc_info=True,
            )
            raise

        if donations:
            logger.info(f"Indexed {len(donations)} donations on {handle.name}")
        return len(donations)

    def index_withdrawal_events(self, handle: ChainHandle, from_block: int, to_block: int) -> int:
        """Index WithdrawalRequested / WithdrawalProcessed in one transaction."""
        requested, processed = (
            self.fetch_events(handle, name, from_block, to_block) for name in WITHDRAWAL_EVENTS
        )

        try:
            with get_session() as session:
                for event in requested:
                    apply_withdrawal_requested(session, handle.name, event, self.decimals)
                for event in processed:
                    apply_withdrawal_processed(session, handle.name, event)
        except Exception as e:
            logger.error(
                f"Error indexing {handle.name} withdrawals in blocks {from_block}-{to_block}: {e}",
                exc_info=True,
            )
            raise

        total = len(requested) + len(processed)
        if total:
            logger.info(
                f"Indexed {len(requested)} withdrawal requests, "
                f"{len(processed)} processed withdrawals on {handle.name}"
            )
        return total
