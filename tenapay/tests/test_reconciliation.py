"""
Reconciliation: divergence detection and the follow-up queue.
"""

import logging
from decimal import Decimal

import pytest
from sqlalchemy import update

from tenapay.app.core.config import settings
from tenapay.app.core.exceptions import LedgerDivergenceError, ResourceNotFoundError
from tenapay.app.models.enums import ReconciliationKind, ReconciliationStatus
from tenapay.app.models.user import User
from tenapay.app.services.balance import get_balance
from tenapay.app.services.ledger import LedgerService
from tenapay.app.services.reconciliation import (
    assert_consistent,
    check_account,
    enqueue,
    list_items,
    resolve_item,
    retry_item,
    reverse_failed_payout,
    scan_ledger,
    sweep_open_items,
)


@pytest.mark.asyncio
async def test_check_account_consistent(db_session, make_account):
    account = await make_account(balance=Decimal("120"))
    await LedgerService.debit(db_session, account.id, Decimal("20"), "Claim")

    check = await check_account(db_session, account.id)

    assert check.credits == Decimal("120.00")
    assert check.debits == Decimal("20.00")
    assert check.expected == check.balance == Decimal("100.00")
    assert assert_consistent(check) is check


@pytest.mark.asyncio
async def test_divergence_is_detected_and_logged(db_session, make_account, caplog):
    healthy = await make_account(balance=Decimal("10"))
    tampered = await make_account(balance=Decimal("10"))
    await db_session.execute(
        update(User).where(User.id == tampered.id).values(balance=Decimal("999.00"))
    )
    await db_session.commit()

    with caplog.at_level(logging.ERROR, logger="tenapay.app.services.reconciliation"):
        checks = await scan_ledger(db_session)

    divergent = [c for c in checks if not c.consistent]
    assert [c.user_id for c in divergent] == [tampered.id]
    assert healthy.id not in caplog.text
    assert tampered.id in caplog.text

    with pytest.raises(LedgerDivergenceError) as exc_info:
        assert_consistent(await check_account(db_session, tampered.id))
    assert exc_info.value.details["expected"] == "10.00"


@pytest.mark.asyncio
async def test_check_unknown_account(db_session):
    with pytest.raises(ResourceNotFoundError):
        await check_account(db_session, "missing")


@pytest.mark.asyncio
async def test_enqueue_reuses_pending_item(db_session):
    first = await enqueue(db_session, ReconciliationKind.UNMATCHED_WEBHOOK, "S-1", amount=Decimal("5"))
    second = await enqueue(db_session, ReconciliationKind.UNMATCHED_WEBHOOK, "S-1", amount=Decimal("5"))
    other_kind = await enqueue(db_session, ReconciliationKind.FAILED_PAYOUT, "S-1", amount=Decimal("5"))

    assert first.id == second.id
    assert other_kind.id != first.id
    assert len(await list_items(db_session)) == 2
    assert len(await list_items(db_session, status=ReconciliationStatus.RESOLVED)) == 0


@pytest.mark.asyncio
async def test_reversal_is_idempotent(db_session, make_account):
    account = await make_account(balance=Decimal("50"))
    posting = await LedgerService.debit(db_session, account.id, Decimal("50"), "Claim")
    debit_id = posting.transaction.id

    assert await reverse_failed_payout(db_session, account.id, debit_id, Decimal("50"), "timeout") is True
    assert await reverse_failed_payout(db_session, account.id, debit_id, Decimal("50"), "timeout") is True

    assert await get_balance(db_session, account.id) == Decimal("50.00")
    assert_consistent(await check_account(db_session, account.id))


@pytest.mark.asyncio
async def test_sweep_resolves_failed_payouts(session_factory, db_session, make_account):
    account = await make_account(balance=Decimal("100"))
    posting = await LedgerService.debit(db_session, account.id, Decimal("40"), "Claim")
    item = await enqueue(
        db_session, ReconciliationKind.FAILED_PAYOUT, posting.transaction.id,
        user_id=account.id, amount=Decimal("40")
    )
    # unmatched webhooks are left for an admin
    await enqueue(db_session, ReconciliationKind.UNMATCHED_WEBHOOK, "S-9", amount=Decimal("1"), payload={"phone": "251900000009"})
    item_id = item.id

    assert await sweep_open_items(session_factory) == 1

    resolved = await list_items(db_session, status=ReconciliationStatus.RESOLVED)
    assert [i.id for i in resolved] == [item_id]
    assert await get_balance(db_session, account.id) == Decimal("100.00")
    assert await sweep_open_items(session_factory) == 0


@pytest.mark.asyncio
async def test_item_is_abandoned_after_max_retries(db_session, monkeypatch):
    monkeypatch.setattr(settings, "reconciliation_max_retries", 2)
    item = await enqueue(
        db_session, ReconciliationKind.FAILED_PAYOUT, "debit-gone",
        user_id="deleted-account", amount=Decimal("10")
    )
    item_id = item.id

    item = await retry_item(db_session, item_id)
    assert item.status == ReconciliationStatus.RETRYING
    assert item.retry_count == 1
    assert "not found" in item.error_message

    item = await retry_item(db_session, item_id)
    assert item.status == ReconciliationStatus.ABANDONED
    assert item.retry_count == 2


@pytest.mark.asyncio
async def test_manual_resolution_keeps_note(db_session):
    item = await enqueue(db_session, ReconciliationKind.UNMATCHED_WEBHOOK, "S-2", payload={"phone": "251900000002"})

    item = await resolve_item(db_session, item.id, note="Refunded through the gateway")

    assert item.status == ReconciliationStatus.RESOLVED
    assert item.resolved_at is not None
    assert item.payload == {"phone": "251900000002", "resolution_note": "Refunded through the gateway"}
