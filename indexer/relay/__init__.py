"""Donation relay: deterministic deposit wallets and the relay that empties them into the contract."""

from relay.monitor import DonationRelay
from relay.wallets import DerivedWallet, derive_campaign_wallet, get_or_create_campaign_wallet

__all__ = [
    "DonationRelay",
    "DerivedWallet",
    "derive_campaign_wallet",
    "get_or_create_campaign_wallet",
]
