"""Tests for state update logic."""

from decimal import Decimal

import pytest

from db.models import Campaign, Donation, Transaction, Withdrawal
from db.session import get_session
from db.status import TransactionType, WithdrawalStatus
from services.state_updater import (
    apply_campaign_created,
    apply_campaign_edited,
    apply_campaign_ended,
    apply_donation_made,
    apply_withdrawal_processed,
    apply_withdrawal_requested,
)
from conftest import CREATOR, DONOR, STABLE_TOKEN, on_chain_campaign, stable


def _event(name, tx_hash="0x" + "ab" * 32, **args):
    return {"event_name": name, "args": args, "block_number": 1, "tx_hash": tx_hash, "log_index": 0}


@pytest.fixture
def campaign(db):
    """A mirrored campaign with id 1."""
    with get_session() as session:
        apply_campaign_created(
            session,
            "polygon",
            _event("CampaignCreated", campaignId=1, creator=CREATOR),
            on_chain_campaign("Clean Water", target=1000),
        )
    return "1"


def test_campaign_created_state_update(db):
    """CampaignCreated inserts the campaign from the on-chain struct."""
    with get_session() as session:
        inserted = apply_campaign_created(
            session,
            "polygon",
            _event("CampaignCreated", campaignId=3, creator=CREATOR),
            on_chain_campaign("Schools", target=500, total="12.5"),
        )

    assert inserted is True
    with get_session() as session:
        campaign = session.get(Campaign, "3")
        assert campaign.name == "Schools"
        assert campaign.target_amount == Decimal("500")
        assert campaign.amount_raised == Decimal("12.5")
        assert campaign.creator == CREATOR
        assert campaign.ended is False
        assert campaign.chain == "polygon"
        assert campaign.image_id == "7"

        audit = session.query(Transaction).one()
        assert audit.type == TransactionType.CAMPAIGN_CREATED
        assert audit.campaign_id == "3"


def test_campaign_created_twice_keeps_one_row(campaign):
    """A second CampaignCreated for the same id does not insert again."""
    with get_session() as session:
        inserted = apply_campaign_created(
            session,
            "polygon",
            _event("CampaignCreated", campaignId=1, creator=CREATOR),
            on_chain_campaign("Renamed"),
        )

    assert inserted is False
    with get_session() as session:
        assert session.query(Campaign).count() == 1
        assert session.get(Campaign, "1").name == "Clean Water"


def test_campaign_edited_overwrites_fields(campaign):
    """CampaignEdited copies editable fields from the contract."""
    with get_session() as session:
        changed = apply_campaign_edited(
            session,
            "polygon",
            _event("CampaignEdited", campaignId=1),
            on_chain_campaign("Clean Water v2", target=2000, social_link="https://new.example.org"),
        )

    assert changed is True
    with get_session() as session:
        row = session.get(Campaign, "1")
        assert row.name == "Clean Water v2"
        assert row.target_amount == Decimal("2000")
        assert row.social_link == "https://new.example.org"


def test_campaign_edited_unknown_campaign_is_skipped(db):
    """Edits for campaigns that are not mirrored are ignored."""
    with get_session() as session:
        changed = apply_campaign_edited(
            session, "polygon", _event("CampaignEdited", campaignId=99), on_chain_campaign()
        )
        assert session.query(Transaction).count() == 0

    assert changed is False


def test_campaign_ended_sets_final_amount(campaign):
    """CampaignEnded marks the campaign ended with the final stable value."""
    with get_session() as session:
        apply_campaign_ended(
            session, "polygon", _event("CampaignEnded", campaignId=1, finalStableValue=stable("750.25"))
        )

    with get_session() as session:
        row = session.get(Campaign, "1")
        assert row.ended is True
        assert row.amount_raised == Decimal("750.25")


def test_donation_made_state_update(campaign):
    """DonationMade appends a donation and increments amount_raised."""
    with get_session() as session:
        apply_donation_made(
            session,
            "polygon",
            _event("DonationMade", campaignId=1, donor=DONOR, netUSDValue=stable("10.5")),
        )
        apply_donation_made(
            session,
            "polygon",
            _event("DonationMade", tx_hash="0x" + "cd" * 32, campaignId=1, donor=DONOR, netUSDValue=stable(4)),
        )

    with get_session() as session:
        assert session.get(Campaign, "1").amount_raised == Decimal("14.5")
        donations = session.query(Donation).order_by(Donation.id).all()
        assert [d.amount for d in donations] == [Decimal("10.5"), Decimal("4")]
        assert donations[0].donor == DONOR
        assert session.query(Transaction).filter(Transaction.type == TransactionType.DONATION).count() == 2


def test_donation_for_unknown_campaign_is_skipped(db):
    """Donations whose campaign is not mirrored are not recorded."""
    with get_session() as session:
        applied = apply_donation_made(
            session, "polygon", _event("DonationMade", campaignId=42, donor=DONOR, netUSDValue=stable(1))
        )

    assert applied is False
    with get_session() as session:
        assert session.query(Donation).count() == 0


def _withdrawal_args(request_id=9):
    return dict(requestId=request_id, requester=CREATOR, amount=stable(100), token=STABLE_TOKEN, targetChainId=8453)


def test_withdrawal_requested_then_processed(db):
    """A withdrawal goes Requested -> Processed."""
    with get_session() as session:
        assert apply_withdrawal_requested(session, "polygon", _event("WithdrawalRequested", **_withdrawal_args()))

    with get_session() as session:
        row = session.get(Withdrawal, "9")
        assert row.status == WithdrawalStatus.REQUESTED
        assert row.amount == Decimal("100")
        assert row.target_chain == "8453"
        assert row.processed_timestamp is None

    with get_session() as session:
        processed = apply_withdrawal_processed(
            session, "polygon", _event("WithdrawalProcessed", tx_hash="0x" + "ef" * 32, **_withdrawal_args())
        )

    assert processed is True
    with get_session() as session:
        row = session.get(Withdrawal, "9")
        assert row.status == WithdrawalStatus.PROCESSED
        assert row.processed_timestamp is not None
        assert row.processed_tx_hash == "0x" + "ef" * 32


def test_withdrawal_processed_twice_is_noop(db):
    """Processing an already processed withdrawal changes nothing."""
    with get_session() as session:
        apply_withdrawal_requested(session, "polygon", _event("WithdrawalRequested", **_withdrawal_args()))
        apply_withdrawal_processed(session, "polygon", _event("WithdrawalProcessed", **_withdrawal_args()))

    with get_session() as session:
        first_processed_at = session.get(Withdrawal, "9").processed_timestamp
        again = apply_withdrawal_processed(session, "polygon", _event("WithdrawalProcessed", **_withdrawal_args()))

    assert again is False
    with get_session() as session:
        assert session.get(Withdrawal, "9").processed_timestamp == first_processed_at
        assert (
            session.query(Transaction).filter(Transaction.type == TransactionType.WITHDRAWAL_PROCESSED).count() == 1
        )


def test_withdrawal_processed_for_unknown_request_is_skipped(db):
    """Processing without a mirrored request is ignored."""
    with get_session() as session:
        assert apply_withdrawal_processed(session, "polygon", _event("WithdrawalProcessed", **_withdrawal_args(77))) is False
