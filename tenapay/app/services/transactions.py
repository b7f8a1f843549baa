"""
Transaction Recorder.

Appends immutable ledger rows. No business-rule rejection lives here:
whether a movement is allowed is the caller's decision.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Union

from sqlalchemy import select, desc, func
from sqlalchemy.ext.asyncio import AsyncSession

from tenapay.app.core.exceptions import ValidationError
from tenapay.app.models.enums import TransactionType
from tenapay.app.models.transaction import Transaction
from tenapay.app.services.balance import Amount, to_money

REVERSAL_REFERENCE_PREFIX = "reversal:"

TOPUP_DESCRIPTION = "Premium payment received via Arifpay"
CLAIM_DESCRIPTION = "Health claim payout initiated"
REVERSAL_DESCRIPTION = "Claim payout reversal"


def reversal_reference(debit_id: str) -> str:
    return f"{REVERSAL_REFERENCE_PREFIX}{debit_id}"


@dataclass
class LedgerTotals:
    credits: Decimal
    debits: Decimal

    @property
    def net(self) -> Decimal:
        return self.credits - self.debits


async def record_transaction(
    db: AsyncSession,
    user_id: str,
    type: Union[TransactionType, str],
    amount: Amount,
    description: Optional[str] = None,
    reference: Optional[str] = None
) -> Transaction:
    """
    Append a transaction row to the ledger.

    Must run in the same unit of work as the matching adjust_balance call.
    Flushes (so the id is available and constraints fire) but does not commit.

    Raises:
        ValidationError: on a non-positive amount or unknown type
        IntegrityError: (from flush) on a duplicate (user_id, type, reference)
    """
    try:
        txn_type = TransactionType(type)
    except ValueError:
        raise ValidationError(f"Unknown transaction type: {type}")

    amount = to_money(amount)
    if amount <= 0:
        raise ValidationError("Transaction amount must be positive", details={"amount": str(amount)})

    txn = Transaction(
        user_id=user_id,
        type=txn_type,
        amount=amount,
        description=description,
        reference=reference
    )
    db.add(txn)
    await db.flush()
    return txn


async def find_by_reference(
    db: AsyncSession,
    user_id: str,
    type: TransactionType,
    reference: str
) -> Optional[Transaction]:
    """Look up the transaction previously recorded for an idempotency reference."""
    result = await db.execute(
        select(Transaction).where(
            Transaction.user_id == user_id,
            Transaction.type == type,
            Transaction.reference == reference
        )
    )
    return result.scalar_one_or_none()


async def list_transactions(
    db: AsyncSession,
    user_id: str,
    limit: int = 50,
    offset: int = 0
) -> List[Transaction]:
    """List an account's transactions, newest first."""
    result = await db.execute(
        select(Transaction)
        .where(Transaction.user_id == user_id)
        .order_by(desc(Transaction.created_at))
        .offset(offset)
        .limit(limit)
    )
    return result.scalars().all()


async def ledger_totals(db: AsyncSession, user_id: str) -> LedgerTotals:
    """Sum CREDIT and DEBIT amounts recorded for one account."""
    result = await db.execute(
        select(Transaction.type, func.sum(Transaction.amount))
        .where(Transaction.user_id == user_id)
        .group_by(Transaction.type)
    )
    sums = {row[0]: to_money(row[1] or 0) for row in result.all()}
    return LedgerTotals(
        credits=sums.get(TransactionType.CREDIT, Decimal("0.00")),
        debits=sums.get(TransactionType.DEBIT, Decimal("0.00")),
    )
