"""
Payment API endpoints.

Top-up checkout through the gateway and the gateway's payment callback.
"""

import json
import logging
import uuid

from fastapi import APIRouter, Depends, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tenapay.app.core.config import settings
from tenapay.app.core.dependencies import get_current_user, get_gateway_client, get_webhook_ingestor
from tenapay.app.core.exceptions import AuthenticationError, ValidationError
from tenapay.app.db.session import get_db
from tenapay.app.models.user import User
from tenapay.app.schemas.payment import CheckoutRequest, CheckoutResponse, WebhookAck
from tenapay.app.services.balance import to_money
from tenapay.app.services.gateway import GatewayClient
from tenapay.app.services.webhooks import WebhookIngestor, verify_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])

SIGNATURE_HEADER = "X-Arifpay-Signature"


@router.post("/checkout", response_model=CheckoutResponse)
async def create_checkout(
    checkout: CheckoutRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    gateway: GatewayClient = Depends(get_gateway_client)
):
    """
    Open a hosted checkout for a wallet top-up.

    The wallet is credited later, when the gateway posts the payment webhook.
    """
    user = (await db.execute(
        select(User).where(User.id == current_user["user_id"])
    )).scalar_one()

    total = sum((item.price * item.quantity for item in checkout.items), to_money(0))
    items = [
        {
            "name": item.name,
            "quantity": item.quantity,
            "price": float(item.price),
            "description": item.description,
            "image": item.image,
        }
        for item in checkout.items
    ]

    session = await gateway.create_checkout_session(
        phone=checkout.phone or user.phone,
        email=checkout.email or user.email,
        nonce=checkout.nonce or uuid.uuid4().hex,
        items=items,
        total_amount=to_money(total),
        lang=checkout.lang,
        payment_methods=checkout.payment_methods,
    )
    return CheckoutResponse(
        session_id=session.session_id,
        checkout_url=session.checkout_url,
        total_amount=session.total_amount
    )


@router.post("/webhook", response_model=WebhookAck)
async def payment_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    ingestor: WebhookIngestor = Depends(get_webhook_ingestor)
):
    """
    Gateway payment callback.

    200 for credited, duplicate and non-SUCCESS events; 404 when no account
    owns the phone (the payment is queued for reconciliation).
    """
    body = await request.body()

    if settings.gateway_webhook_secret:
        if not verify_signature(body, request.headers.get(SIGNATURE_HEADER), settings.gateway_webhook_secret):
            logger.warning("Rejected payment webhook with a bad signature")
            raise AuthenticationError("Invalid webhook signature")

    try:
        payload = json.loads(body)
    except ValueError:
        raise ValidationError("Webhook body must be JSON")
    if not isinstance(payload, dict):
        raise ValidationError("Webhook body must be a JSON object")

    ack = await ingestor.ingest(db, payload)
    return WebhookAck(
        ok=True,
        status=ack.status,
        transaction_id=ack.transaction_id,
        balance=ack.balance
    )
