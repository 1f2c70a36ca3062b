"""Reconciler - heals drift between mirrored campaign totals and the contract."""

import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional, Tuple

from config import Config
from db.models import Campaign, ReconciliationLog
from db.session import get_session
from eth.contract import OnChainCampaign
from eth.registry import ChainRegistry
from log import get_logger

logger = get_logger(__name__)


@dataclass
class ReconciliationResult:
    """Aggregate counts of one reconciliation pass."""

    total: int = 0
    updated: int = 0
    matched: int = 0
    errors: int = 0


@dataclass(frozen=True)
class _MirroredCampaign:
    id: str
    amount_raised: Decimal
    ended: bool


class Reconciler:
    """Periodic campaign total reconciler."""

    def __init__(
        self,
        config: Config,
        registry: ChainRegistry,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize reconciler.

        Args:
            config: Configuration object
            registry: Chain registry (reads go to the main chain)
            sleep: Pause between batches
        """
        self.config = config
        self.registry = registry
        self.sleep = sleep
        self.threshold = config.reconciliation_threshold
        self.batch_size = config.reconciliation_batch_size
        self.last_reconciliation = 0.0
        self.reconciliation_interval = config.reconciliation_interval_seconds

    def should_reconcile(self) -> bool:
        """Check if reconciliation should run.

        Returns:
            True if reconciliation should run
        """
        now = time.time()
        if now - self.last_reconciliation >= self.reconciliation_interval:
            self.last_reconciliation = now
            return True
        return False

    def _load_campaigns(self) -> List[_MirroredCampaign]:
        with get_session() as session:
            rows = session.query(Campaign.id, Campaign.amount_raised, Campaign.ended).order_by(Campaign.id).all()
            return [
                _MirroredCampaign(id=row.id, amount_raised=Decimal(row.amount_raised or 0), ended=bool(row.ended))
                for row in rows
            ]

    def reconcile(self) -> ReconciliationResult:
        """Compare every mirrored campaign against the contract and heal discrepancies.

        Chain reads within a batch run concurrently; all writes are serialized.

        Returns:
            Aggregate counts {total, updated, matched, errors}
        """
        logger.info("Starting campaign reconciliation process")
        contract = self.registry.main().contract

        campaigns = self._load_campaigns()
        result = ReconciliationResult(total=len(campaigns))
        logger.info(f"Found {len(campaigns)} campaigns in database")

        batches = [campaigns[i : i + self.batch_size] for i in range(0, len(campaigns), self.batch_size)]

        with ThreadPoolExecutor(max_workers=self.config.reconciliation_concurrency) as executor:
            for batch_index, batch in enumerate(batches):
                logger.info(f"Processing batch {batch_index + 1}/{len(batches)} ({len(batch)} campaigns)")

                reads = list(executor.map(lambda c: self._read(contract, c), batch))
                for campaign, (on_chain, error) in zip(batch, reads):
                    if error is not None:
                        result.errors += 1
                        logger.error(f"Error reconciling campaign {campaign.id}: {error}")
                        continue
                    try:
                        if self.reconcile_campaign(campaign, on_chain):
                            result.updated += 1
                        else:
                            result.matched += 1
                    except Exception as e:
                        result.errors += 1
                        logger.error(f"Error reconciling campaign {campaign.id}: {e}", exc_info=True)

                # Small delay between batches to avoid rate limiting
                if batch_index < len(batches) - 1:
                    self.sleep(self.config.reconciliation_batch_delay_seconds)

        logger.info(
            f"Reconciliation completed: {result.updated} updated, "
            f"{result.matched} matched, {result.errors} errors"
        )
        return result

    @staticmethod
    def _read(contract, campaign: _MirroredCampaign) -> Tuple[Optional[OnChainCampaign], Optional[Exception]]:
        try:
            return contract.read_campaign(int(campaign.id)), None
        except Exception as e:
            return None, e

    def reconcile_campaign(self, campaign: _MirroredCampaign, on_chain: OnChainCampaign) -> bool:
        """Heal one campaign if it drifted beyond the threshold.

        Returns:
            True if the mirror was updated and a log row appended
        """
        chain_amount = on_chain.amount_raised(self.config.stable_token_decimals)
        discrepancy = abs(chain_amount - campaign.amount_raised)

        if discrepancy <= self.threshold:
            return False

        logger.info(
            f"Discrepancy found for campaign {campaign.id}: DB={campaign.amount_raised}, "
            f"Chain={chain_amount}, Diff={discrepancy}"
        )

        now = datetime.utcnow()
        with get_session() as session:
            row = session.get(Campaign, campaign.id)
            if row is None:
                raise LookupError(f"Campaign {campaign.id} disappeared during reconciliation")
            row.amount_raised = chain_amount
            row.ended = on_chain.ended
            row.updated_at = now
            row.last_reconciled = now
            session.add(
                ReconciliationLog(
                    campaign_id=campaign.id,
                    previous_value=campaign.amount_raised,
                    new_value=chain_amount,
                    discrepancy=discrepancy,
                    reconciled_at=now,
                )
            )
        return True
