"""
Reconciliation Service.

Detects balance/transaction divergence and repairs money movements that
could not complete: reversals of failed claim payouts and webhooks for
accounts that did not exist yet.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select, func, desc
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tenapay.app.core.config import settings
from tenapay.app.core.exceptions import LedgerDivergenceError, ResourceNotFoundError
from tenapay.app.models.enums import (
    ReconciliationKind,
    ReconciliationStatus,
    TransactionType,
)
from tenapay.app.models.reconciliation_item import ReconciliationItem
from tenapay.app.models.transaction import Transaction
from tenapay.app.models.user import User
from tenapay.app.services.audit import AuditAction, log_event
from tenapay.app.services.balance import Amount, to_money
from tenapay.app.services.ledger import DuplicateReferenceError, LedgerService
from tenapay.app.services.transactions import (
    REVERSAL_DESCRIPTION,
    TOPUP_DESCRIPTION,
    ledger_totals,
    reversal_reference,
)

logger = logging.getLogger(__name__)

PENDING_STATUSES = (ReconciliationStatus.OPEN, ReconciliationStatus.RETRYING)


@dataclass
class LedgerCheck:
    user_id: str
    balance: Decimal
    credits: Decimal
    debits: Decimal

    @property
    def expected(self) -> Decimal:
        return self.credits - self.debits

    @property
    def consistent(self) -> bool:
        return self.balance == self.expected


# --- Divergence detection ---

async def check_account(db: AsyncSession, user_id: str) -> LedgerCheck:
    """Compare one account's balance with the sum of its transactions."""
    result = await db.execute(select(User.balance).where(User.id == user_id))
    balance = result.scalar_one_or_none()
    if balance is None:
        raise ResourceNotFoundError("Account", user_id)

    totals = await ledger_totals(db, user_id)
    return LedgerCheck(
        user_id=user_id,
        balance=to_money(balance),
        credits=totals.credits,
        debits=totals.debits,
    )


def assert_consistent(check: LedgerCheck) -> LedgerCheck:
    if not check.consistent:
        raise LedgerDivergenceError(check.user_id, check.balance, check.expected)
    return check


async def scan_ledger(db: AsyncSession) -> List[LedgerCheck]:
    """
    Check every account. Divergent accounts are logged at ERROR level
    and returned alongside the consistent ones.
    """
    balances = (await db.execute(select(User.id, User.balance))).all()
    sums = (await db.execute(
        select(Transaction.user_id, Transaction.type, func.sum(Transaction.amount))
        .group_by(Transaction.user_id, Transaction.type)
    )).all()

    per_account: Dict[str, Dict[TransactionType, Decimal]] = {}
    for user_id, txn_type, total in sums:
        per_account.setdefault(user_id, {})[txn_type] = to_money(total or 0)

    checks = []
    for user_id, balance in balances:
        totals = per_account.get(user_id, {})
        check = LedgerCheck(
            user_id=user_id,
            balance=to_money(balance),
            credits=totals.get(TransactionType.CREDIT, Decimal("0.00")),
            debits=totals.get(TransactionType.DEBIT, Decimal("0.00")),
        )
        if not check.consistent:
            logger.error(
                "Ledger divergence on account %s: balance=%s expected=%s",
                user_id, check.balance, check.expected
            )
        checks.append(check)
    return checks


# --- Reconciliation queue ---

async def enqueue(
    db: AsyncSession,
    kind: ReconciliationKind,
    reference: str,
    user_id: Optional[str] = None,
    amount: Optional[Amount] = None,
    payload: Optional[Dict[str, Any]] = None,
    error_message: Optional[str] = None
) -> ReconciliationItem:
    """
    Queue a money movement for follow-up. A pending item with the same
    kind and reference is reused, so redelivered events do not pile up.
    """
    result = await db.execute(
        select(ReconciliationItem).where(
            ReconciliationItem.kind == kind,
            ReconciliationItem.reference == reference,
            ReconciliationItem.status.in_(PENDING_STATUSES)
        )
    )
    existing = result.scalars().first()
    if existing is not None:
        return existing

    item = ReconciliationItem(
        kind=kind,
        reference=reference,
        user_id=user_id,
        amount=to_money(amount) if amount is not None else None,
        payload=payload,
        error_message=error_message,
        status=ReconciliationStatus.OPEN,
    )
    db.add(item)
    await db.commit()
    logger.warning("Reconciliation item queued: %s %s", kind.value, reference)
    return item


async def list_items(
    db: AsyncSession,
    status: Optional[ReconciliationStatus] = None,
    limit: int = 100
) -> List[ReconciliationItem]:
    query = select(ReconciliationItem).order_by(desc(ReconciliationItem.created_at), desc(ReconciliationItem.id))
    if status is not None:
        query = query.where(ReconciliationItem.status == status)
    result = await db.execute(query.limit(limit))
    return result.scalars().all()


async def get_item(db: AsyncSession, item_id: int) -> ReconciliationItem:
    item = await db.get(ReconciliationItem, item_id)
    if item is None:
        raise ResourceNotFoundError("Reconciliation item", item_id)
    return item


# --- Compensation ---

async def reverse_failed_payout(
    db: AsyncSession,
    user_id: str,
    debit_id: str,
    amount: Amount,
    reason: str = ""
) -> bool:
    """
    Restore a claim debit whose transfer permanently failed.

    Records a CREDIT "Claim payout reversal" referencing the debit, in its
    own unit of work. If that cannot commit, the reversal is queued for
    the sweeper instead.

    Returns:
        True if the balance has been restored (now or previously)
    """
    amount = to_money(amount)
    try:
        await LedgerService.credit(
            db, user_id, amount, REVERSAL_DESCRIPTION, reversal_reference(debit_id)
        )
    except DuplicateReferenceError:
        logger.info("Debit %s was already reversed", debit_id)
        return True
    except Exception as exc:
        logger.exception("Reversal of debit %s failed, queueing for retry", debit_id)
        try:
            item = await enqueue(
                db,
                ReconciliationKind.FAILED_PAYOUT,
                reference=debit_id,
                user_id=user_id,
                amount=amount,
                payload={"reason": reason},
                error_message=str(exc),
            )
            await log_event(
                db,
                AuditAction.CLAIM_REVERSAL_QUEUED,
                target_id=debit_id,
                meta={"user_id": user_id, "amount": str(amount), "queue_item": item.id}
            )
        except Exception:
            logger.critical(
                "Could not queue reversal for debit %s (account %s, amount %s)",
                debit_id, user_id, amount, exc_info=True
            )
        return False

    try:
        await log_event(
            db,
            AuditAction.CLAIM_PAYOUT_REVERSED,
            target_id=debit_id,
            meta={"user_id": user_id, "amount": str(amount), "reason": reason}
        )
    except Exception:
        await db.rollback()
        logger.exception("Audit write failed for reversal of debit %s", debit_id)

    logger.warning("Debit %s reversed: %s returned to account %s", debit_id, amount, user_id)
    return True


async def retry_item(db: AsyncSession, item_id: int) -> ReconciliationItem:
    """
    Re-attempt a queued item.

    FAILED_PAYOUT: apply the reversal credit.
    UNKNOWN_PAYOUT: same, once an admin has confirmed the transfer never
    happened. If it did, close the item with resolve_item instead.
    UNMATCHED_WEBHOOK: credit the account that now owns the phone, if any.
    All are idempotent through the transaction reference constraint.
    """
    item = await get_item(db, item_id)
    if item.status == ReconciliationStatus.RESOLVED:
        return item

    kind = item.kind
    reference = item.reference
    amount = item.amount
    user_id = item.user_id
    payload = dict(item.payload or {})
    error = None

    try:
        if kind in (ReconciliationKind.FAILED_PAYOUT, ReconciliationKind.UNKNOWN_PAYOUT):
            await LedgerService.credit(
                db, user_id, amount, REVERSAL_DESCRIPTION, reversal_reference(reference)
            )
        else:
            user_id = (await db.execute(
                select(User.id).where(User.phone == payload.get("phone"))
            )).scalar_one_or_none()
            if user_id is None:
                error = f"No account for phone {payload.get('phone')}"
            else:
                await LedgerService.credit(db, user_id, amount, TOPUP_DESCRIPTION, reference)
    except DuplicateReferenceError:
        logger.info("Reconciliation item %s was already applied", item_id)
    except Exception as exc:
        logger.exception("Retry of reconciliation item %s failed", item_id)
        error = str(exc)

    await db.refresh(item)
    now = datetime.now(timezone.utc)
    item.retry_count += 1
    item.last_retry_at = now
    if error is None:
        item.status = ReconciliationStatus.RESOLVED
        item.resolved_at = now
        item.user_id = user_id
        item.error_message = None
    else:
        item.error_message = error
        if item.retry_count >= settings.reconciliation_max_retries:
            item.status = ReconciliationStatus.ABANDONED
            logger.error("Reconciliation item %s abandoned after %d attempts", item_id, item.retry_count)
        else:
            item.status = ReconciliationStatus.RETRYING
    await db.commit()
    return item


async def resolve_item(db: AsyncSession, item_id: int, note: Optional[str] = None) -> ReconciliationItem:
    """Close an item that was settled by hand (e.g. refunded through the gateway)."""
    item = await get_item(db, item_id)
    item.status = ReconciliationStatus.RESOLVED
    item.resolved_at = datetime.now(timezone.utc)
    if note:
        item.payload = {**(item.payload or {}), "resolution_note": note}
    await db.commit()
    return item


async def sweep_open_items(session_factory: async_sessionmaker) -> int:
    """
    Retry every pending FAILED_PAYOUT item. Run on a schedule.

    Returns:
        Number of items resolved in this sweep
    """
    async with session_factory() as db:
        result = await db.execute(
            select(ReconciliationItem.id).where(
                ReconciliationItem.kind == ReconciliationKind.FAILED_PAYOUT,
                ReconciliationItem.status.in_(PENDING_STATUSES)
            )
        )
        item_ids = result.scalars().all()

        resolved = 0
        for item_id in item_ids:
            item = await retry_item(db, item_id)
            if item.status == ReconciliationStatus.RESOLVED:
                resolved += 1

    if item_ids:
        logger.info("Reconciliation sweep: %d/%d items resolved", resolved, len(item_ids))
    return resolved
