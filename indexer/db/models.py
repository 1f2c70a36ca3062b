"""SQLAlchemy ORM models for the mirror schema.

NOTE: These models map to EXISTING tables. The indexer does NOT create tables.
All tables must be created by the schema migrations before running the indexer.
"""

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

from db.status import DirectDonationStatus, TransactionType, WithdrawalStatus, enum_values

Base = declarative_base()

# Stable and native amounts, 8 decimal places
Amount = Numeric(24, 8)


def _status_column(enum_cls: type, name: str, default) -> Column:
    return Column(
        Enum(
            enum_cls,
            name=name,
            native_enum=False,
            length=50,
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
        default=default,
    )


class Campaign(Base):
    """Campaign mirror (maps to existing 'campaigns' table)."""

    __tablename__ = "campaigns"

    id = Column(String(255), primary_key=True)  # on-chain campaign id, decimal string
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    target_amount = Column(Amount, nullable=False)
    social_link = Column(Text, nullable=True)
    image_id = Column(String(255), nullable=True)
    creator = Column(String(255), nullable=False)
    ended = Column(Boolean, nullable=False, default=False)
    amount_raised = Column(Amount, nullable=False, default=0)
    chain = Column(String(50), nullable=False)
    tx_hash = Column(String(255), nullable=True)
    last_reconciled = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    donations = relationship("Donation", back_populates="campaign")


class Donation(Base):
    """Donation record (maps to existing 'donations' table).

    One row per DonationMade event; not unique on tx_hash.
    """

    __tablename__ = "donations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    campaign_id = Column(String(255), ForeignKey("campaigns.id"), nullable=False)
    donor = Column(String(255), nullable=False)
    amount = Column(Amount, nullable=False)
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)
    chain = Column(String(50), nullable=False)
    tx_hash = Column(String(255), nullable=False)

    campaign = relationship("Campaign", back_populates="donations")


class Transaction(Base):
    """Append-only audit of every mutating action (maps to 'transactions')."""

    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    type = Column(
        Enum(
            TransactionType,
            name="transaction_type",
            native_enum=False,
            length=50,
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )
    user_address = Column(String(255), nullable=False)
    campaign_id = Column(String(255), nullable=True)
    amount = Column(Amount, nullable=True)
    token = Column(String(255), nullable=True)
    target_chain = Column(String(50), nullable=True)
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)
    chain = Column(String(50), nullable=False)
    tx_hash = Column(String(255), nullable=False)


class Withdrawal(Base):
    """Withdrawal request (maps to existing 'withdrawals' table)."""

    __tablename__ = "withdrawals"

    id = Column(String(255), primary_key=True)  # on-chain request id
    user_address = Column(String(255), nullable=False)
    amount = Column(Amount, nullable=False)
    token = Column(String(255), nullable=False)
    target_chain = Column(String(50), nullable=False)
    status = _status_column(WithdrawalStatus, "withdrawal_status", WithdrawalStatus.REQUESTED)
    request_timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)
    processed_timestamp = Column(DateTime, nullable=True)
    chain = Column(String(50), nullable=False)
    tx_hash = Column(String(255), nullable=False)
    processed_tx_hash = Column(String(255), nullable=True)


class IndexerState(Base):
    """Per-chain cursor (maps to existing 'indexer_state' table)."""

    __tablename__ = "indexer_state"

    chain = Column(String(50), primary_key=True)
    last_indexed_block = Column(BigInteger, nullable=False, default=0)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class ReconciliationLog(Base):
    """Audit row for every healed campaign (maps to 'reconciliation_log')."""

    __tablename__ = "reconciliation_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    campaign_id = Column(String(255), ForeignKey("campaigns.id"), nullable=False)
    previous_value = Column(Amount, nullable=False)
    new_value = Column(Amount, nullable=False)
    discrepancy = Column(Amount, nullable=False)
    reconciled_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class CampaignWallet(Base):
    """Deterministic per-campaign deposit wallet (maps to 'campaign_wallets')."""

    __tablename__ = "campaign_wallets"
    __table_args__ = (
        UniqueConstraint("campaign_id", "wallet_address", name="unique_campaign_wallet"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    campaign_id = Column(String(255), ForeignKey("campaigns.id"), nullable=False)
    wallet_address = Column(String(42), nullable=False, unique=True, index=True)
    private_key = Column(String(66), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class DirectDonation(Base):
    """Relay flow for funds found in a campaign wallet (maps to 'direct_donations')."""

    __tablename__ = "direct_donations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    campaign_id = Column(String(255), ForeignKey("campaigns.id"), nullable=False)
    wallet_address = Column(String(42), nullable=False, index=True)
    amount = Column(Amount, nullable=False)
    status = _status_column(DirectDonationStatus, "direct_donation_status", DirectDonationStatus.PENDING)
    source_tx_hash = Column(String(66), nullable=False)
    contract_tx_hash = Column(String(66), nullable=True)
    check_count = Column(Integer, nullable=False, default=0)
    tx_nonce = Column(BigInteger, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    processed_at = Column(DateTime, nullable=True)
