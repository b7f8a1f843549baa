"""
Ledger Service (Domain Logic).

Couples the Balance Mutator and the Transaction Recorder into a single
unit of work so the balance and its transaction trail never diverge.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tenapay.app.models.enums import TransactionType
from tenapay.app.models.transaction import Transaction
from tenapay.app.services.balance import Amount, adjust_balance, to_money
from tenapay.app.services.transactions import find_by_reference, record_transaction

logger = logging.getLogger(__name__)


class DuplicateReferenceError(Exception):
    """A transaction with the same (account, type, reference) is already committed."""

    def __init__(self, reference: str, existing: Optional[Transaction] = None):
        self.reference = reference
        self.existing = existing
        super().__init__(f"Reference {reference} already recorded")


@dataclass
class LedgerPosting:
    transaction: Transaction
    balance: Decimal


class LedgerService:

    @staticmethod
    async def credit(
        db: AsyncSession,
        user_id: str,
        amount: Amount,
        description: str,
        reference: Optional[str] = None
    ) -> LedgerPosting:
        """
        Increment the balance and record a CREDIT, committed together.

        Raises:
            DuplicateReferenceError: if 'reference' was already credited
                (the increment is rolled back with the failed insert)
        """
        return await LedgerService._post(
            db, user_id, TransactionType.CREDIT, to_money(amount), description, reference
        )

    @staticmethod
    async def debit(
        db: AsyncSession,
        user_id: str,
        amount: Amount,
        description: str,
        reference: Optional[str] = None
    ) -> LedgerPosting:
        """
        Decrement the balance and record a DEBIT, committed together.

        Raises:
            InsufficientFundsError: if the atomic decrement is rejected
        """
        return await LedgerService._post(
            db, user_id, TransactionType.DEBIT, to_money(amount), description, reference
        )

    @staticmethod
    async def _post(
        db: AsyncSession,
        user_id: str,
        type: TransactionType,
        amount: Decimal,
        description: str,
        reference: Optional[str]
    ) -> LedgerPosting:
        delta = amount if type == TransactionType.CREDIT else -amount
        try:
            new_balance = await adjust_balance(db, user_id, delta)
            txn = await record_transaction(db, user_id, type, amount, description, reference)
            await db.commit()
        except IntegrityError:
            await db.rollback()
            if reference is not None:
                existing = await find_by_reference(db, user_id, type, reference)
                if existing is not None:
                    raise DuplicateReferenceError(reference, existing)
            raise
        except Exception:
            await db.rollback()
            raise

        logger.info(
            "Ledger %s %s on account %s (txn=%s, balance=%s)",
            type.value, amount, user_id, txn.id, new_balance
        )
        return LedgerPosting(transaction=txn, balance=new_balance)
