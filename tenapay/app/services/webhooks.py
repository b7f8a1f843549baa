"""
Webhook Ingestor.

Turns gateway payment callbacks into wallet credits, exactly once per
gateway session.
"""

import base64
import hashlib
import hmac
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional, Union

import pydantic
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tenapay.app.core.config import settings
from tenapay.app.core.exceptions import AccountNotFoundError, ValidationError, jsonable_errors
from tenapay.app.models.enums import ReconciliationKind, TransactionType
from tenapay.app.models.notification import NotificationType
from tenapay.app.models.user import User
from tenapay.app.schemas.payment import PaymentWebhookEvent
from tenapay.app.services.audit import AuditAction, log_event
from tenapay.app.services.balance import to_money
from tenapay.app.services.ledger import DuplicateReferenceError, LedgerService
from tenapay.app.services.notification_service import NotificationDispatcher
from tenapay.app.services.reconciliation import enqueue
from tenapay.app.services.transactions import TOPUP_DESCRIPTION, find_by_reference

logger = logging.getLogger(__name__)

SUCCESS_STATUS = "SUCCESS"


@dataclass
class AckResult:
    status: str  # credited | duplicate | ignored
    transaction_id: Optional[str] = None
    balance: Optional[Decimal] = None


def verify_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    """Check a base64 HMAC-SHA256 of the raw request body."""
    if not signature:
        return False
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode()
    return hmac.compare_digest(expected, signature)


def parse_event(payload: Union[PaymentWebhookEvent, Dict[str, Any]]) -> PaymentWebhookEvent:
    if isinstance(payload, PaymentWebhookEvent):
        return payload
    try:
        return PaymentWebhookEvent.model_validate(payload)
    except pydantic.ValidationError as exc:
        raise ValidationError(
            "Malformed payment webhook",
            details={"errors": jsonable_errors(exc.errors())}
        ) from exc


class WebhookIngestor:

    def __init__(self, dispatcher: NotificationDispatcher):
        self.dispatcher = dispatcher

    async def ingest(
        self,
        db: AsyncSession,
        payload: Union[PaymentWebhookEvent, Dict[str, Any]]
    ) -> AckResult:
        """
        Apply one payment callback.

        Redelivery of a session that was already credited is acknowledged
        as a duplicate without touching the balance, including when two
        deliveries race (the reference unique constraint decides).

        Raises:
            ValidationError: malformed payload
            AccountNotFoundError: no account owns the phone (queued for reconciliation)
        """
        event = parse_event(payload)

        if event.status != SUCCESS_STATUS:
            logger.info("Webhook %s ignored (status=%s)", event.sessionId, event.status)
            return AckResult(status="ignored")

        amount = to_money(event.amount)
        user_id = (await db.execute(
            select(User.id).where(User.phone == event.phone)
        )).scalar_one_or_none()

        if user_id is None:
            await self._park_unmatched(db, event, amount)
            raise AccountNotFoundError("phone", event.phone)

        existing = await find_by_reference(db, user_id, TransactionType.CREDIT, event.sessionId)
        if existing is not None:
            logger.info("Webhook %s already credited (txn=%s)", event.sessionId, existing.id)
            return AckResult(status="duplicate", transaction_id=existing.id)

        try:
            posting = await LedgerService.credit(
                db, user_id, amount, TOPUP_DESCRIPTION, reference=event.sessionId
            )
        except DuplicateReferenceError as exc:
            logger.info("Webhook %s credited concurrently, acknowledging duplicate", event.sessionId)
            return AckResult(
                status="duplicate",
                transaction_id=exc.existing.id if exc.existing is not None else None
            )

        await self.dispatcher.notify(
            user_id,
            NotificationType.PAYMENT_CREDITED,
            "Payment Received",
            f"{amount} {settings.currency} has been added to your TenaPay wallet."
        )

        return AckResult(
            status="credited",
            transaction_id=posting.transaction.id,
            balance=posting.balance
        )

    async def _park_unmatched(self, db: AsyncSession, event: PaymentWebhookEvent, amount: Decimal) -> None:
        logger.warning(
            "Webhook %s for unknown phone %s (%s), queued for reconciliation",
            event.sessionId, event.phone, amount
        )
        payload = {"phone": event.phone, "email": event.email, "amount": str(amount), "status": event.status}
        item = await enqueue(
            db,
            ReconciliationKind.UNMATCHED_WEBHOOK,
            reference=event.sessionId,
            amount=amount,
            payload=payload,
            error_message="No account for phone",
        )
        await log_event(
            db,
            AuditAction.WEBHOOK_UNMATCHED,
            target_id=event.sessionId,
            meta={**payload, "queue_item_id": item.id}
        )
