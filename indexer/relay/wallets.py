"""Deterministic per-campaign deposit wallets."""

import hashlib
import hmac
from dataclasses import dataclass, field

from eth_account import Account
from sqlalchemy.exc import IntegrityError
from web3 import Web3

from db.models import CampaignWallet
from db.session import get_session
from log import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class DerivedWallet:
    """Keypair derived for one campaign."""

    campaign_id: str
    address: str
    private_key: str = field(repr=False)


def derive_campaign_wallet(campaign_id, master_seed: str) -> DerivedWallet:
    """Derive the campaign's keypair as HMAC-SHA256(master_seed, "campaign-<id>").

    The same (campaign_id, master_seed) pair always yields the same key; the
    seed cannot be recovered from the derived key.

    Raises:
        ValueError: If master_seed is empty
    """
    if not master_seed:
        raise ValueError("Master seed is required for wallet generation")

    campaign_seed = hmac.new(
        master_seed.encode("utf-8"),
        f"campaign-{campaign_id}".encode("utf-8"),
        hashlib.sha256,
    ).digest()

    account = Account.from_key(campaign_seed)
    return DerivedWallet(
        campaign_id=str(campaign_id),
        address=account.address,
        private_key=Web3.to_hex(account.key),
    )


def get_or_create_campaign_wallet(campaign_id, master_seed: str) -> str:
    """Return the campaign's deposit address, creating its wallet row on first use."""
    campaign_id = str(campaign_id)

    with get_session() as session:
        existing = (
            session.query(CampaignWallet)
            .filter(CampaignWallet.campaign_id == campaign_id)
            .first()
        )
        if existing is not None:
            return existing.wallet_address

        wallet = derive_campaign_wallet(campaign_id, master_seed)
        try:
            session.add(
                CampaignWallet(
                    campaign_id=campaign_id,
                    wallet_address=wallet.address,
                    private_key=wallet.private_key,
                )
            )
            session.flush()
        except IntegrityError:
            # Created concurrently; the derived address is the same either way
            session.rollback()
            logger.debug(f"Wallet for campaign {campaign_id} already exists")
            return wallet.address

        logger.info(f"Created deposit wallet {wallet.address} for campaign {campaign_id}")
        return wallet.address
