"""Autonomous donation relay - forwards funds found in campaign deposit wallets to the contract.

Per wallet the precedence is: resolve an existing pending donation first,
otherwise look at the balance and start a new one. That precedence is the
only thing keeping one relay flow per wallet; ticks must not overlap.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Optional

from eth_account import Account
from web3 import Web3

from config import Config
from db.models import CampaignWallet, DirectDonation
from db.status import DirectDonationStatus
from db.session import get_session
from eth.registry import ChainRegistry
from log import get_logger

logger = get_logger(__name__)

# Plain value transfer, used for the zero-value replacement
TRANSFER_GAS_LIMIT = 21000


@dataclass(frozen=True)
class WalletRecord:
    campaign_id: str
    wallet_address: str
    private_key: str = field(repr=False)


def _boost(value: int, percent: int) -> int:
    return value * percent // 100


def _short(tx_hash: str) -> str:
    return f"{tx_hash[:10]}..."


class DonationRelay:
    """Polls deposit wallets and relays funded balances into donate()."""

    def __init__(
        self,
        config: Config,
        registry: ChainRegistry,
        signer_factory: Callable[[str], Any] = Account.from_key,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the relay on the main chain.

        Args:
            config: Configuration object
            registry: Chain registry
            signer_factory: Builds a signing account from a stored private key
            sleep: Pause between ticks
        """
        self.config = config
        handle = registry.main()
        self.chain = handle.name
        self.client = handle.client
        self.contract = handle.contract
        self.signer_factory = signer_factory
        self.sleep = sleep

    # Loop

    def run(self, should_stop: Callable[[], bool] = lambda: False) -> None:
        """Fixed-interval polling loop; each tick runs to completion before the next."""
        logger.info(f"Starting direct donation monitor on {self.chain}")
        while not should_stop():
            try:
                self.tick()
            except Exception as e:
                logger.error(f"Error in wallet check cycle: {e}", exc_info=True)
            if not should_stop():
                self.sleep(self.config.relay_interval_seconds)
        logger.info("Direct donation monitor stopped")

    def tick(self) -> int:
        """Check every known campaign wallet once, sequentially.

        Returns:
            Number of wallets processed without error
        """
        wallets = self.load_wallets()
        if not wallets:
            logger.debug("No campaign wallets found")
            return 0

        logger.debug(f"Checking {len(wallets)} campaign wallets")
        processed = 0
        for wallet in wallets:
            try:
                self.process_wallet(wallet)
                processed += 1
            except Exception as e:
                logger.error(f"Error processing wallet {wallet.wallet_address}: {e}", exc_info=True)

        logger.debug("Wallet check cycle completed")
        return processed

    def load_wallets(self) -> list[WalletRecord]:
        with get_session() as session:
            rows = session.query(CampaignWallet).order_by(CampaignWallet.id).all()
            return [
                WalletRecord(
                    campaign_id=row.campaign_id,
                    wallet_address=row.wallet_address,
                    private_key=row.private_key,
                )
                for row in rows
            ]

    def process_wallet(self, wallet: WalletRecord) -> None:
        pending = self.find_pending(wallet.wallet_address)
        if pending is not None:
            self.handle_pending(pending, wallet)
            return
        self.check_balance_and_create(wallet)

    # Persistence helpers

    def find_pending(self, wallet_address: str) -> Optional[DirectDonation]:
        with get_session() as session:
            return (
                session.query(DirectDonation)
                .filter(
                    DirectDonation.wallet_address == wallet_address,
                    DirectDonation.status == DirectDonationStatus.PENDING,
                )
                .order_by(DirectDonation.id)
                .first()
            )

    def _update(self, donation_id: int, **values: Any) -> None:
        with get_session() as session:
            donation = session.get(DirectDonation, donation_id)
            if donation is None:
                raise LookupError(f"Direct donation {donation_id} not found")
            for key, value in values.items():
                setattr(donation, key, value)

    def _finish(self, donation_id: int, succeeded: Optional[bool] = None) -> DirectDonationStatus:
        """Move a pending donation to its terminal status."""
        with get_session() as session:
            donation = session.get(DirectDonation, donation_id)
            if donation is None:
                raise LookupError(f"Direct donation {donation_id} not found")
            if succeeded is None:
                donation.status = donation.status.fail()
            else:
                donation.status = donation.status.confirm(succeeded)
            donation.processed_at = datetime.utcnow()
            return donation.status

    # Pending resolution

    def handle_pending(self, donation: DirectDonation, wallet: WalletRecord) -> None:
        tx_hash = donation.contract_tx_hash

        if not tx_hash:
            if donation.tx_nonce is not None:
                # Submitted with this nonce but the hash was never recorded
                logger.warning(
                    f"Donation {donation.id} has nonce {donation.tx_nonce} but no transaction hash, "
                    f"skipping until it is recovered manually"
                )
                return
            # Created but never submitted
            self.send_donation(donation.id, wallet)
            return

        receipt = self.client.get_transaction_receipt(tx_hash)
        if receipt is not None:
            status = self._finish(donation.id, succeeded=receipt["status"] == 1)
            logger.info(f"Transaction {_short(tx_hash)} confirmed, donation {donation.id} {status.value}")
            return

        check_count = donation.check_count or 0
        if check_count < self.config.max_pending_checks:
            self._update(donation.id, check_count=check_count + 1)
            return

        logger.warning(f"Transaction {_short(tx_hash)} stuck after {check_count} checks, attempting replacement")
        nonce = donation.tx_nonce
        if nonce is None:
            tx = self.client.get_transaction(tx_hash)
            nonce = tx.get("nonce") if tx else None
        if nonce is None:
            logger.error(f"Could not retrieve nonce for transaction {tx_hash}")
            return

        self.replace_stuck_transaction(donation.id, wallet, int(nonce))

    def replace_stuck_transaction(self, donation_id: int, wallet: WalletRecord, nonce: int) -> Optional[str]:
        """Evict a stuck transaction with a zero-value self-transfer at the same nonce.

        Returns:
            Hash of the replacement, or None if it could not be sent
        """
        try:
            fee_data = self.client.get_fee_data()
            boost = self.config.replacement_boost_percent
            max_fee = _boost(fee_data.max_fee_per_gas or fee_data.gas_price, boost)
            priority_fee = _boost(fee_data.max_priority_fee_per_gas or fee_data.gas_price // 2, boost)

            signer = self.signer_factory(wallet.private_key)
            replacement = {
                "to": Web3.to_checksum_address(wallet.wallet_address),
                "value": 0,
                "nonce": nonce,
                "gas": TRANSFER_GAS_LIMIT,
                "maxFeePerGas": max_fee,
                "maxPriorityFeePerGas": priority_fee,
                "chainId": self.client.get_chain_id(),
            }
            signed = signer.sign_transaction(replacement)
            tx_hash = self.client.send_raw_transaction(signed.raw_transaction)
        except Exception as e:
            logger.error(f"Error replacing stuck transaction for donation {donation_id}: {e}", exc_info=True)
            return None

        logger.info(f"Sent replacement transaction {tx_hash} with nonce {nonce}")
        self._update(donation_id, contract_tx_hash=tx_hash, check_count=0)
        return tx_hash

    # New donations

    def check_balance_and_create(self, wallet: WalletRecord) -> Optional[int]:
        """Start a relay flow if the wallet holds at least the minimum donation.

        Returns:
            Id of the created donation row, or None
        """
        balance = self.client.get_balance(wallet.wallet_address)
        balance_native = Decimal(Web3.from_wei(balance, "ether"))
        logger.debug(f"Wallet {wallet.wallet_address} has balance: {balance_native}")

        if balance_native < self.config.min_donation_amount:
            return None

        logger.info(f"Sufficient balance ({balance_native}) found in wallet {wallet.wallet_address}")

        with get_session() as session:
            donation = DirectDonation(
                campaign_id=wallet.campaign_id,
                wallet_address=wallet.wallet_address,
                amount=balance_native,
                status=DirectDonationStatus.PENDING,
                source_tx_hash=f"balance-check-{int(time.time() * 1000)}",
                check_count=0,
            )
            session.add(donation)
            session.flush()
            donation_id = donation.id

        logger.info(f"Created new donation record with ID: {donation_id}")
        self.send_donation(donation_id, wallet)
        return donation_id

    def send_donation(self, donation_id: int, wallet: WalletRecord) -> Optional[str]:
        """Submit donate() with the wallet balance minus a gas reserve.

        Any failure marks the donation failed; there is no retry besides the
        stuck-transaction replacement.

        Returns:
            Transaction hash, or None if nothing was sent
        """
        try:
            balance = self.client.get_balance(wallet.wallet_address)
            if balance < Web3.to_wei(self.config.relay_balance_floor, "ether"):
                logger.debug(
                    f"Skipping donation {donation_id}: insufficient balance "
                    f"({Web3.from_wei(balance, 'ether')})"
                )
                return None

            signer = self.signer_factory(wallet.private_key)

            fee_data = self.client.get_fee_data()
            boost = self.config.gas_price_boost_percent
            max_fee = _boost(fee_data.max_fee_per_gas or fee_data.gas_price, boost)
            priority_fee = _boost(fee_data.max_priority_fee_per_gas or fee_data.gas_price // 2, boost)

            # Estimate with a small probe amount so estimation cannot fail on value
            gas_estimate = self.contract.estimate_donate_gas(
                int(wallet.campaign_id),
                wallet.wallet_address,
                Web3.to_wei(self.config.gas_probe_amount, "ether"),
            )
            gas_limit = _boost(gas_estimate, self.config.gas_limit_margin_percent)
            gas_cost = _boost(gas_limit * max_fee, self.config.gas_cost_buffer_percent)
            gas_reserve = max(gas_cost, Web3.to_wei(self.config.gas_reserve_min, "ether"))

            donation_value = balance - gas_reserve
            if donation_value <= 0:
                logger.warning(f"Donation {donation_id} has insufficient funds after gas reserve")
                self._finish(donation_id)
                return None

            # Nonce fetched explicitly so the replacement path can reuse it
            nonce = self.client.get_transaction_count(wallet.wallet_address)
            self._update(donation_id, tx_nonce=nonce)

            logger.info(
                f"Sending donation {donation_id}: {Web3.from_wei(donation_value, 'ether')} "
                f"to campaign {wallet.campaign_id}"
            )
            transaction = self.contract.build_donate_transaction(
                int(wallet.campaign_id),
                sender=wallet.wallet_address,
                value=donation_value,
                nonce=nonce,
                gas_limit=gas_limit,
                max_fee_per_gas=max_fee,
                max_priority_fee_per_gas=priority_fee,
                chain_id=self.client.get_chain_id(),
            )
            signed = signer.sign_transaction(transaction)
            tx_hash = self.client.send_raw_transaction(signed.raw_transaction)
        except Exception as e:
            logger.error(f"Error sending donation transaction for ID {donation_id}: {e}", exc_info=True)
            self._finish(donation_id)
            return None

        logger.info(f"Donation {donation_id} transaction sent: {tx_hash} with nonce {nonce}")
        try:
            self._update(donation_id, contract_tx_hash=tx_hash, check_count=0, tx_nonce=nonce)
        except Exception:
            # Already broadcast: leave the row pending for manual recovery
            logger.error(
                f"Donation {donation_id} broadcast as {tx_hash} (nonce {nonce}) but not recorded; "
                f"set contract_tx_hash manually",
                exc_info=True,
            )
            raise
        return tx_hash
