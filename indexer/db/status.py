"""Closed status enumerations for mirrored rows and their transition functions.

Status columns are only ever written through these transitions, never as
free-form strings.
"""

import enum


class InvalidStatusTransition(Exception):
    """Raised when a status change is not allowed from the current state."""

    def __init__(self, current: enum.Enum, action: str):
        super().__init__(f"Cannot {action} from status '{current.value}'")
        self.current = current
        self.action = action


class WithdrawalStatus(str, enum.Enum):
    """Lifecycle of a cross-chain withdrawal request."""

    REQUESTED = "Requested"
    PROCESSED = "Processed"

    def process(self) -> "WithdrawalStatus":
        """Requested -> Processed, exactly once."""
        if self is WithdrawalStatus.REQUESTED:
            return WithdrawalStatus.PROCESSED
        raise InvalidStatusTransition(self, "process withdrawal")


class DirectDonationStatus(str, enum.Enum):
    """Lifecycle of a relayed deposit-wallet donation."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not DirectDonationStatus.PENDING

    def confirm(self, succeeded: bool) -> "DirectDonationStatus":
        """Resolve a pending donation from its receipt status."""
        if self is not DirectDonationStatus.PENDING:
            raise InvalidStatusTransition(self, "confirm donation")
        return DirectDonationStatus.COMPLETED if succeeded else DirectDonationStatus.FAILED

    def fail(self) -> "DirectDonationStatus":
        """Pending -> failed when submission cannot proceed."""
        if self is not DirectDonationStatus.PENDING:
            raise InvalidStatusTransition(self, "fail donation")
        return DirectDonationStatus.FAILED


class TransactionType(str, enum.Enum):
    """Kinds of rows in the append-only transactions audit table."""

    CAMPAIGN_CREATED = "Campaign Created"
    CAMPAIGN_EDITED = "Campaign Edited"
    CAMPAIGN_ENDED = "Campaign Ended"
    DONATION = "Donation"
    WITHDRAWAL_REQUESTED = "Withdrawal Requested"
    WITHDRAWAL_PROCESSED = "Withdrawal Processed"


def enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Persist enum members by value rather than by name."""
    return [member.value for member in enum_cls]
