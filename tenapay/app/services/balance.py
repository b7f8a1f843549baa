"""
Balance mutation service.

The only code path allowed to change User.balance.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Union

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tenapay.app.core.exceptions import (
    AccountNotFoundError,
    InsufficientFundsError,
    ValidationError,
)
from tenapay.app.models.user import User

CENT = Decimal("0.01")

Amount = Union[Decimal, int, float, str]


def to_money(value: Amount) -> Decimal:
    """Normalize a numeric input to a 2-place Decimal."""
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (ArithmeticError, ValueError):
        raise ValidationError("Amount must be a number", details={"amount": str(value)})
    if not amount.is_finite():
        raise ValidationError("Amount must be a finite number", details={"amount": str(value)})
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


async def get_balance(db: AsyncSession, account_id: str) -> Decimal:
    """
    Read the current committed balance.

    Advisory only: the value may be stale by the time the caller acts on it.

    Raises:
        AccountNotFoundError: if the account does not exist
    """
    result = await db.execute(select(User.balance).where(User.id == account_id))
    balance = result.scalar_one_or_none()
    if balance is None:
        raise AccountNotFoundError("id", account_id)
    return to_money(balance)


async def adjust_balance(db: AsyncSession, account_id: str, delta: Amount) -> Decimal:
    """
    Atomically apply a signed delta to an account balance.

    Runs a single conditional UPDATE ("add delta where balance + delta >= 0")
    so concurrent claims can never lose an update or overdraw the account.
    Flushes within the caller's transaction; the caller commits.

    Args:
        db: Database session (unit of work owned by caller)
        account_id: Account to mutate
        delta: Positive to credit, negative to debit

    Returns:
        The post-mutation balance

    Raises:
        ValidationError: if delta is zero
        AccountNotFoundError: if the account does not exist
        InsufficientFundsError: if a debit would make the balance negative
    """
    delta = to_money(delta)
    if delta == 0:
        raise ValidationError("Balance adjustment must be non-zero")

    stmt = (
        update(User)
        .where(User.id == account_id, User.balance + delta >= 0)
        .values(balance=User.balance + delta)
        .returning(User.balance)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    new_balance = result.scalar_one_or_none()

    if new_balance is None:
        # No row matched: either unknown account or the condition failed
        current = await db.execute(select(User.balance).where(User.id == account_id))
        balance = current.scalar_one_or_none()
        if balance is None:
            raise AccountNotFoundError("id", account_id)
        raise InsufficientFundsError(balance=to_money(balance), requested=-delta)

    return to_money(new_balance)
