"""
Enumerations shared by the account and ledger models.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        USER: Wallet holder (default role)
        ADMIN: Platform operator with read access to aggregates and reconciliation
    """
    USER = "USER"
    ADMIN = "ADMIN"


class TransactionType(str, enum.Enum):
    """Ledger transaction type enumeration."""
    CREDIT = "CREDIT"  # Money entering the account (top-up, reversal)
    DEBIT = "DEBIT"  # Money leaving the account (claim payout)


class ReconciliationKind(str, enum.Enum):
    UNMATCHED_WEBHOOK = "UNMATCHED_WEBHOOK"  # Gateway collected money for an unknown phone
    FAILED_PAYOUT = "FAILED_PAYOUT"  # Debit committed, transfer failed, reversal not yet applied
    UNKNOWN_PAYOUT = "UNKNOWN_PAYOUT"  # Debit committed, transfer outcome unknown; an admin decides


class ReconciliationStatus(str, enum.Enum):
    OPEN = "OPEN"
    RETRYING = "RETRYING"
    RESOLVED = "RESOLVED"
    ABANDONED = "ABANDONED"  # Gave up, needs a human
