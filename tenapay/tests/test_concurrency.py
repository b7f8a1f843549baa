"""
Concurrency Tests.

Each task runs in its own session/connection against a file-backed
SQLite database, so the conditional UPDATE and the reference constraint
are what keep the ledger correct, not the event loop.
"""

import asyncio
from decimal import Decimal

import pytest

from tenapay.app.core.exceptions import InsufficientFundsError
from tenapay.app.core.reliability import RetryPolicy
from tenapay.app.models.enums import TransactionType
from tenapay.app.services.balance import get_balance
from tenapay.app.services.ledger import LedgerService
from tenapay.app.services.notification_service import NotificationDispatcher
from tenapay.app.services.payouts import PayoutInitiator
from tenapay.app.services.reconciliation import scan_ledger
from tenapay.app.services.transactions import list_transactions
from tenapay.app.services.webhooks import WebhookIngestor

from conftest import FakeMailer, create_account


class SlowGateway:
    """Accepts every transfer after yielding to other tasks."""

    def __init__(self):
        self.sessions = []

    async def transfer(self, session_id, phone):
        await asyncio.sleep(0.01)
        self.sessions.append(session_id)
        return {"error": False, "data": {"sessionId": session_id}}


@pytest.fixture
def file_dispatcher(file_session_factory):
    return NotificationDispatcher(file_session_factory, mailer=FakeMailer())


async def run_claim(factory, initiator, account, amount):
    async with factory() as db:
        try:
            result = await initiator.request_claim(db, account.id, amount, account.phone)
            return result.new_balance
        except InsufficientFundsError:
            return None


@pytest.mark.asyncio
async def test_concurrent_claims_never_overdraw(file_session_factory, file_dispatcher):
    """10 concurrent claims of 30 against a balance of 100: exactly 3 succeed."""
    account = await create_account(file_session_factory, balance=Decimal("100"))
    gateway = SlowGateway()
    initiator = PayoutInitiator(gateway, file_dispatcher, RetryPolicy(max_attempts=0))

    results = await asyncio.gather(*[
        run_claim(file_session_factory, initiator, account, Decimal("30")) for _ in range(10)
    ])

    succeeded = [r for r in results if r is not None]
    assert len(succeeded) == 3
    assert all(balance >= 0 for balance in succeeded)
    assert len(gateway.sessions) == 3

    async with file_session_factory() as db:
        assert await get_balance(db, account.id) == Decimal("10.00")
        debits = [t for t in await list_transactions(db, account.id) if t.description != "Opening balance"]
        assert len(debits) == 3
        assert all(check.consistent for check in await scan_ledger(db))


@pytest.mark.asyncio
async def test_claims_exactly_matching_balance_all_succeed(file_session_factory, file_dispatcher):
    """10 concurrent claims of 10 against a balance of 100: all succeed, balance ends at 0."""
    account = await create_account(file_session_factory, balance=Decimal("100"))
    gateway = SlowGateway()
    initiator = PayoutInitiator(gateway, file_dispatcher, RetryPolicy(max_attempts=0))

    results = await asyncio.gather(*[
        run_claim(file_session_factory, initiator, account, Decimal("10")) for _ in range(10)
    ])

    assert None not in results
    assert sorted(results) == [Decimal(f"{n}.00") for n in range(0, 100, 10)]
    assert len(set(gateway.sessions)) == 10

    async with file_session_factory() as db:
        assert await get_balance(db, account.id) == Decimal("0.00")
        debits = [t for t in await list_transactions(db, account.id) if t.type == TransactionType.DEBIT]
        assert len(debits) == 10
        assert all(check.consistent for check in await scan_ledger(db))


@pytest.mark.asyncio
async def test_concurrent_credits_and_debits_lose_no_updates(file_session_factory):
    account = await create_account(file_session_factory, balance=Decimal("500"))

    async def credit(i):
        async with file_session_factory() as db:
            await LedgerService.credit(db, account.id, Decimal("10"), "Top-up", reference=f"topup-{i}")

    async def debit(i):
        async with file_session_factory() as db:
            await LedgerService.debit(db, account.id, Decimal("7"), "Claim")

    await asyncio.gather(*([credit(i) for i in range(15)] + [debit(i) for i in range(15)]))

    async with file_session_factory() as db:
        # 500 + 15 * 10 - 15 * 7
        assert await get_balance(db, account.id) == Decimal("545.00")
        assert all(check.consistent for check in await scan_ledger(db))


@pytest.mark.asyncio
async def test_concurrent_duplicate_webhooks_credit_once(file_session_factory, file_dispatcher):
    account = await create_account(file_session_factory)
    ingestor = WebhookIngestor(file_dispatcher)
    payload = {"sessionId": "ARIF-RACE", "phone": account.phone, "amount": "150", "status": "SUCCESS"}

    async def deliver():
        async with file_session_factory() as db:
            return await ingestor.ingest(db, dict(payload))

    acks = await asyncio.gather(*[deliver() for _ in range(5)])

    statuses = sorted(ack.status for ack in acks)
    assert statuses == ["credited", "duplicate", "duplicate", "duplicate", "duplicate"]

    async with file_session_factory() as db:
        assert await get_balance(db, account.id) == Decimal("150.00")
        assert len(await list_transactions(db, account.id)) == 1
