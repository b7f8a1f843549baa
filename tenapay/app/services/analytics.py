"""
Analytics Service.

Read-only aggregates over wallets and the ledger for the admin
dashboard and the daily report.
"""

from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func

from tenapay.app.core.exceptions import ResourceNotFoundError
from tenapay.app.models.enums import TransactionType
from tenapay.app.models.transaction import Transaction
from tenapay.app.models.user import User
from tenapay.app.schemas.admin import PlatformOverview, UserDetail
from tenapay.app.services.balance import to_money
from tenapay.app.services.transactions import REVERSAL_REFERENCE_PREFIX, ledger_totals


class AnalyticsService:

    @staticmethod
    async def get_platform_overview(db: AsyncSession) -> PlatformOverview:
        """Totals across the fund."""
        total_users = (await db.execute(select(func.count(User.id)))).scalar() or 0
        total_balance = (await db.execute(select(func.sum(User.balance)))).scalar() or 0

        # Reversal credits are returned claims, not premiums
        is_reversal = Transaction.reference.like(f"{REVERSAL_REFERENCE_PREFIX}%")

        collected = (await db.execute(
            select(func.sum(Transaction.amount)).where(
                Transaction.type == TransactionType.CREDIT,
                (Transaction.reference.is_(None)) | (~is_reversal)
            )
        )).scalar() or 0

        reversed_total = (await db.execute(
            select(func.sum(Transaction.amount)).where(
                Transaction.type == TransactionType.CREDIT,
                is_reversal
            )
        )).scalar() or 0

        debited = (await db.execute(
            select(func.sum(Transaction.amount)).where(Transaction.type == TransactionType.DEBIT)
        )).scalar() or 0

        return PlatformOverview(
            total_users=total_users,
            total_collected=to_money(collected),
            total_claimed=to_money(debited) - to_money(reversed_total),
            total_reversed=to_money(reversed_total),
            total_balance=to_money(total_balance),
        )

    @staticmethod
    async def get_user_detail(db: AsyncSession, user_id: str) -> UserDetail:
        user = (await db.execute(select(User).where(User.id == user_id))).scalar_one_or_none()
        if user is None:
            raise ResourceNotFoundError("User", user_id)

        totals = await ledger_totals(db, user_id)
        count = (await db.execute(
            select(func.count(Transaction.id)).where(Transaction.user_id == user_id)
        )).scalar() or 0

        return UserDetail(
            id=user.id,
            email=user.email,
            phone=user.phone,
            role=user.role,
            is_active=user.is_active,
            balance=to_money(user.balance),
            total_credits=totals.credits,
            total_debits=totals.debits,
            net_flow=totals.net,
            transaction_count=count,
            created_at=user.created_at,
        )

    @staticmethod
    async def get_daily_volume(db: AsyncSession, since) -> dict:
        """CREDIT/DEBIT totals and counts recorded since 'since'."""
        result = await db.execute(
            select(Transaction.type, func.count(Transaction.id), func.sum(Transaction.amount))
            .where(Transaction.created_at >= since)
            .group_by(Transaction.type)
        )
        volume = {
            TransactionType.CREDIT: {"count": 0, "amount": Decimal("0.00")},
            TransactionType.DEBIT: {"count": 0, "amount": Decimal("0.00")},
        }
        for txn_type, count, amount in result.all():
            volume[txn_type] = {"count": count, "amount": to_money(amount or 0)}
        return volume
