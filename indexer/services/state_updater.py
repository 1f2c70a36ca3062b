"""State update service - applies decoded contract events to the mirror tables.

Campaign lifecycle handlers (created / edited / ended) and withdrawal requests
are safe to replay: they insert-if-absent or overwrite with absolute values.
Donation handling is incremental (``amount_raised += value``) and is NOT safe
to replay; the same DonationMade applied twice counts twice. Reconciliation
is what eventually heals that drift.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from db.models import Campaign, Donation, Transaction, Withdrawal
from db.status import InvalidStatusTransition, TransactionType, WithdrawalStatus
from eth.contract import STABLE_TOKEN_DECIMALS, OnChainCampaign, stable_to_decimal
from log import get_logger

logger = get_logger(__name__)


def _assign(obj: Any, **values: Any) -> bool:
    """Set attributes that differ; return True if anything changed."""
    changed = False
    for key, value in values.items():
        if getattr(obj, key) != value:
            setattr(obj, key, value)
            changed = True
    return changed


def record_transaction(
    session: Session,
    tx_type: TransactionType,
    user_address: str,
    chain: str,
    tx_hash: str,
    campaign_id: Optional[str] = None,
    amount: Optional[Decimal] = None,
    token: Optional[str] = None,
    target_chain: Optional[str] = None,
) -> None:
    """Append one row to the transactions audit table."""
    session.add(
        Transaction(
            type=tx_type,
            user_address=user_address,
            campaign_id=campaign_id,
            amount=amount,
            token=token,
            target_chain=target_chain,
            chain=chain,
            tx_hash=tx_hash,
        )
    )


def apply_campaign_created(
    session: Session,
    chain: str,
    event: Dict[str, Any],
    on_chain: OnChainCampaign,
    decimals: int = STABLE_TOKEN_DECIMALS,
) -> bool:
    """Apply CampaignCreated: insert the campaign if it is not mirrored yet.

    Args:
        session: Database session
        chain: Chain name the event came from
        event: Decoded event data
        on_chain: Current campaign struct read back from the contract
        decimals: Stable token decimals

    Returns:
        True if a new campaign row was inserted
    """
    args = event["args"]
    campaign_id = str(args["campaignId"])

    existing = session.get(Campaign, campaign_id)
    if existing is None:
        session.add(
            Campaign(
                id=campaign_id,
                name=on_chain.name,
                description=on_chain.description,
                target_amount=on_chain.target_amount(decimals),
                social_link=on_chain.social_link,
                image_id=str(on_chain.image_id),
                creator=on_chain.creator,
                ended=on_chain.ended,
                amount_raised=on_chain.amount_raised(decimals),
                chain=chain,
                tx_hash=event["tx_hash"],
            )
        )
        logger.info(f"Created campaign: {campaign_id}")
    else:
        logger.debug(f"Campaign already exists: {campaign_id}, skipping insert")

    record_transaction(
        session,
        TransactionType.CAMPAIGN_CREATED,
        user_address=args["creator"],
        chain=chain,
        tx_hash=event["tx_hash"],
        campaign_id=campaign_id,
    )
    session.flush()
    return existing is None


def apply_campaign_edited(
    session: Session,
    chain: str,
    event: Dict[str, Any],
    on_chain: OnChainCampaign,
    decimals: int = STABLE_TOKEN_DECIMALS,
) -> bool:
    """Apply CampaignEdited: overwrite editable fields with the on-chain values.

    Returns:
        True if the mirrored row changed
    """
    campaign_id = str(event["args"]["campaignId"])

    campaign = session.get(Campaign, campaign_id)
    if campaign is None:
        logger.warning(f"Campaign not found for edit: {campaign_id}")
        return False

    changed = _assign(
        campaign,
        name=on_chain.name,
        description=on_chain.description,
        target_amount=on_chain.target_amount(decimals),
        social_link=on_chain.social_link,
        image_id=str(on_chain.image_id),
    )
    if changed:
        campaign.updated_at = datetime.utcnow()

    record_transaction(
        session,
        TransactionType.CAMPAIGN_EDITED,
        user_address=on_chain.creator,
        chain=chain,
        tx_hash=event["tx_hash"],
        campaign_id=campaign_id,
    )
    session.flush()
    return changed


def apply_campaign_ended(
    session: Session,
    chain: str,
    event: Dict[str, Any],
    decimals: int = STABLE_TOKEN_DECIMALS,
) -> bool:
    """Apply CampaignEnded: mark ended and set the final raised amount.

    Returns:
        True if the mirrored row changed
    """
    args = event["args"]
    campaign_id = str(args["campaignId"])
    final_amount = stable_to_decimal(args["finalStableValue"], decimals)

    campaign = session.get(Campaign, campaign_id)
    if campaign is None:
        logger.warning(f"Campaign not found for end: {campaign_id}")
        return False

    changed = _assign(campaign, ended=True, amount_raised=final_amount)
    if changed:
        campaign.updated_at = datetime.utcnow()

    record_transaction(
        session,
        TransactionType.CAMPAIGN_ENDED,
        user_address=campaign.creator,
        chain=chain,
        tx_hash=event["tx_hash"],
        campaign_id=campaign_id,
        amount=final_amount,
    )
    session.flush()
    return changed


def apply_donation_made(
    session: Session,
    chain: str,
    event: Dict[str, Any],
    decimals: int = STABLE_TOKEN_DECIMALS,
) -> bool:
    """Apply DonationMade: append a donation row and increment amount_raised.

    Not idempotent: replaying the same event adds the amount again.

    Returns:
        True if the donation was applied
    """
    args = event["args"]
    campaign_id = str(args["campaignId"])
    donor = args["donor"]
    amount = stable_to_decimal(args["netUSDValue"], decimals)

    if session.get(Campaign, campaign_id) is None:
        logger.warning(f"Campaign not found for donation: {campaign_id}")
        return False

    session.add(
        Donation(
            campaign_id=campaign_id,
            donor=donor,
            amount=amount,
            chain=chain,
            tx_hash=event["tx_hash"],
        )
    )

    # Incremental update evaluated by the database
    session.query(Campaign).filter(Campaign.id == campaign_id).update(
        {
            Campaign.amount_raised: Campaign.amount_raised + amount,
            Campaign.updated_at: datetime.utcnow(),
        },
        synchronize_session=False,
    )

    record_transaction(
        session,
        TransactionType.DONATION,
        user_address=donor,
        chain=chain,
        tx_hash=event["tx_hash"],
        campaign_id=campaign_id,
        amount=amount,
    )
    session.flush()
    return True


def apply_withdrawal_requested(
    session: Session,
    chain: str,
    event: Dict[str, Any],
    decimals: int = STABLE_TOKEN_DECIMALS,
) -> bool:
    """Apply WithdrawalRequested: insert the request if its id is new.

    Returns:
        True if a new withdrawal row was inserted
    """
    args = event["args"]
    request_id = str(args["requestId"])
    amount = stable_to_decimal(args["amount"], decimals)
    token = args["token"]
    target_chain = str(args["targetChainId"])

    existing = session.get(Withdrawal, request_id)
    if existing is None:
        session.add(
            Withdrawal(
                id=request_id,
                user_address=args["requester"],
                amount=amount,
                token=token,
                target_chain=target_chain,
                status=WithdrawalStatus.REQUESTED,
                chain=chain,
                tx_hash=event["tx_hash"],
            )
        )
        logger.info(f"Withdrawal requested: {request_id} ({amount} to chain {target_chain})")
    else:
        logger.debug(f"Withdrawal request already exists: {request_id}")

    record_transaction(
        session,
        TransactionType.WITHDRAWAL_REQUESTED,
        user_address=args["requester"],
        chain=chain,
        tx_hash=event["tx_hash"],
        amount=amount,
        token=token,
        target_chain=target_chain,
    )
    session.flush()
    return existing is None


def apply_withdrawal_processed(session: Session, chain: str, event: Dict[str, Any]) -> bool:
    """Apply WithdrawalProcessed: Requested -> Processed, exactly once.

    Returns:
        True if the request transitioned
    """
    request_id = str(event["args"]["requestId"])

    withdrawal = session.get(Withdrawal, request_id)
    if withdrawal is None:
        logger.warning(f"Withdrawal request not found for processing: {request_id}")
        return False

    try:
        withdrawal.status = withdrawal.status.process()
    except InvalidStatusTransition:
        logger.debug(f"Withdrawal {request_id} already processed, skipping")
        return False

    withdrawal.processed_timestamp = datetime.utcnow()
    withdrawal.processed_tx_hash = event["tx_hash"]

    record_transaction(
        session,
        TransactionType.WITHDRAWAL_PROCESSED,
        user_address=withdrawal.user_address,
        chain=chain,
        tx_hash=event["tx_hash"],
        amount=withdrawal.amount,
        token=withdrawal.token,
        target_chain=withdrawal.target_chain,
    )
    session.flush()
    logger.info(f"Withdrawal processed: {request_id}")
    return True
