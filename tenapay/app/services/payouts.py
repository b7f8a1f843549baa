"""
Payout Initiator.

Drives a health claim from request to payout:

    RECEIVED -> FUNDS_CHECKED -> DEBITED -> TRANSFER_REQUESTED
        -> TRANSFER_CONFIRMED -> NOTIFIED
        -> TRANSFER_FAILED -> REVERSED -> NOTIFIED

The debit commits before the gateway is called; no database transaction
is held open across the network call.
"""

import asyncio
import enum
import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tenapay.app.core.config import settings
from tenapay.app.core.exceptions import (
    ExternalServiceError,
    InsufficientFundsError,
    ReconciliationRequiredError,
    ValidationError,
)
from tenapay.app.core.reliability import RetryPolicy
from tenapay.app.models.enums import ReconciliationKind
from tenapay.app.models.notification import NotificationType
from tenapay.app.models.transaction import Transaction
from tenapay.app.services.audit import AuditAction, log_event
from tenapay.app.services.balance import Amount, get_balance, to_money
from tenapay.app.services.gateway import GatewayClient
from tenapay.app.services.ledger import LedgerService
from tenapay.app.services.notification_service import NotificationDispatcher
from tenapay.app.services.reconciliation import enqueue, reverse_failed_payout
from tenapay.app.services.transactions import CLAIM_DESCRIPTION

logger = logging.getLogger(__name__)


class ClaimState(str, enum.Enum):
    RECEIVED = "RECEIVED"
    FUNDS_CHECKED = "FUNDS_CHECKED"
    DEBITED = "DEBITED"
    TRANSFER_REQUESTED = "TRANSFER_REQUESTED"
    TRANSFER_CONFIRMED = "TRANSFER_CONFIRMED"
    TRANSFER_FAILED = "TRANSFER_FAILED"
    TRANSFER_UNKNOWN = "TRANSFER_UNKNOWN"
    REVERSED = "REVERSED"
    NOTIFIED = "NOTIFIED"


@dataclass
class PayoutResult:
    transaction: Transaction
    confirmation: Dict[str, Any]
    new_balance: Decimal
    state: ClaimState = ClaimState.NOTIFIED
    history: list = field(default_factory=list)


def validate_claim(amount: Amount, phone: str) -> Decimal:
    amount = to_money(amount)
    if amount <= 0:
        raise ValidationError("Claim amount must be positive", details={"amount": str(amount)})
    if not phone or not re.fullmatch(settings.phone_pattern, phone):
        raise ValidationError(
            "Phone number must be in the format 251XXXXXXXXX",
            details={"phone": phone}
        )
    return amount


class PayoutInitiator:
    """
    Debits a claim and pays it out through the gateway.

    If the transfer fails after every retry the debit is compensated with
    a reversal credit, and the caller gets ReconciliationRequiredError.
    """

    def __init__(
        self,
        gateway: GatewayClient,
        dispatcher: NotificationDispatcher,
        retry_policy: Optional[RetryPolicy] = None,
        session_factory: Optional[async_sessionmaker] = None
    ):
        self.gateway = gateway
        self.dispatcher = dispatcher
        self.session_factory = session_factory or dispatcher.session_factory
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=settings.transfer_retry_attempts,
            backoff_delay=settings.transfer_retry_delay_seconds,
            retry_on=(ExternalServiceError,),
        )

    async def request_claim(
        self,
        db: AsyncSession,
        user_id: str,
        amount: Amount,
        phone: str
    ) -> PayoutResult:
        """
        Raises:
            ValidationError: bad amount or phone (nothing written)
            InsufficientFundsError: balance too low (nothing written)
            ReconciliationRequiredError: transfer failed, debit compensated or queued
            Anything else from the transfer path is re-raised after the debit is
            queued as UNKNOWN_PAYOUT
        """
        history = [ClaimState.RECEIVED]
        amount = validate_claim(amount, phone)

        # Advisory read; the conditional UPDATE below is the real guard
        balance = await get_balance(db, user_id)
        if balance < amount:
            logger.info("Claim rejected for %s: balance %s < %s", user_id, balance, amount)
            raise InsufficientFundsError(balance=balance, requested=amount)
        self._advance(history, ClaimState.FUNDS_CHECKED, user_id)

        posting = await LedgerService.debit(db, user_id, amount, CLAIM_DESCRIPTION)
        txn = posting.transaction
        debit_id = txn.id
        self._advance(history, ClaimState.DEBITED, user_id, debit_id)

        self._advance(history, ClaimState.TRANSFER_REQUESTED, user_id, debit_id)
        try:
            confirmation = await self.retry_policy.run(
                lambda: self.gateway.transfer(debit_id, phone),
                label=f"transfer {debit_id}"
            )
        except ExternalServiceError as exc:
            self._advance(history, ClaimState.TRANSFER_FAILED, user_id, debit_id)
            logger.error("Transfer for debit %s failed after retries: %s", debit_id, exc.message)
            raise await self._compensate(db, history, user_id, debit_id, amount, exc.message) from exc
        except BaseException as exc:
            # Outcome unknown: queued for an admin, never reversed automatically
            self._advance(history, ClaimState.TRANSFER_UNKNOWN, user_id, debit_id)
            await asyncio.shield(self._park_unknown(user_id, debit_id, amount, phone, exc))
            raise

        self._advance(history, ClaimState.TRANSFER_CONFIRMED, user_id, debit_id)

        await self.dispatcher.notify(
            user_id,
            NotificationType.CLAIM_PAID,
            "Claim Paid",
            f"Your claim of {amount} {settings.currency} has been sent to {phone}."
        )
        self._advance(history, ClaimState.NOTIFIED, user_id, debit_id)

        return PayoutResult(
            transaction=txn,
            confirmation=confirmation,
            new_balance=posting.balance,
            state=ClaimState.NOTIFIED,
            history=history,
        )

    async def _compensate(
        self,
        db: AsyncSession,
        history: list,
        user_id: str,
        debit_id: str,
        amount: Decimal,
        reason: str
    ) -> ReconciliationRequiredError:
        reversed_now = await reverse_failed_payout(db, user_id, debit_id, amount, reason)
        if reversed_now:
            self._advance(history, ClaimState.REVERSED, user_id, debit_id)
            message = f"Your claim of {amount} {settings.currency} could not be paid out. The amount was returned to your wallet."
        else:
            message = f"Your claim of {amount} {settings.currency} could not be paid out. The amount will be returned to your wallet shortly."

        await self.dispatcher.notify(user_id, NotificationType.CLAIM_REVERSED, "Claim Payout Failed", message)
        self._advance(history, ClaimState.NOTIFIED, user_id, debit_id)

        return ReconciliationRequiredError(debit_id, reversed=reversed_now, reason=reason)

    async def _park_unknown(
        self,
        user_id: str,
        debit_id: str,
        amount: Decimal,
        phone: str,
        exc: BaseException
    ) -> None:
        error = f"{type(exc).__name__}: {exc}"
        logger.error("Transfer for debit %s ended with an unexpected error: %s", debit_id, error)
        try:
            async with self.session_factory() as db:
                item = await enqueue(
                    db,
                    ReconciliationKind.UNKNOWN_PAYOUT,
                    reference=debit_id,
                    user_id=user_id,
                    amount=amount,
                    payload={"phone": phone},
                    error_message=error,
                )
                await log_event(
                    db,
                    AuditAction.CLAIM_PAYOUT_UNKNOWN,
                    target_id=debit_id,
                    meta={"user_id": user_id, "amount": str(amount), "error": error, "queue_item": item.id}
                )
        except Exception:
            logger.critical(
                "Could not record unknown payout for debit %s (account %s, amount %s)",
                debit_id, user_id, amount, exc_info=True
            )

    @staticmethod
    def _advance(history: list, state: ClaimState, user_id: str, debit_id: Optional[str] = None) -> None:
        history.append(state)
        logger.info("Claim %s for user %s -> %s", debit_id or "-", user_id, state.value)
