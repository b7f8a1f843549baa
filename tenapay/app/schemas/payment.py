"""
Payment Pydantic schemas.

Checkout (top-up) requests and the gateway's payment webhook.
"""

from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field


class CheckoutItem(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    quantity: int = Field(default=1, gt=0)
    price: Decimal = Field(..., gt=0, description="Unit price in ETB")
    description: Optional[str] = None
    image: Optional[str] = None


class CheckoutRequest(BaseModel):
    """
    Schema for opening a top-up checkout.

    The charged total is the sum of price * quantity over the items.
    """
    items: List[CheckoutItem] = Field(..., min_length=1)
    phone: Optional[str] = Field(default=None, description="Payer phone (defaults to the account phone)")
    email: Optional[str] = Field(default=None, description="Payer email (defaults to the account email)")
    nonce: Optional[str] = Field(default=None, max_length=128, description="Client idempotency nonce")
    lang: str = "EN"
    payment_methods: Optional[List[str]] = None


class CheckoutResponse(BaseModel):
    session_id: str
    checkout_url: str
    total_amount: Decimal


class PaymentWebhookEvent(BaseModel):
    """
    Payment callback as posted by Arifpay.

    Field names follow the gateway's payload.
    """
    class Config:
        extra = "ignore"

    sessionId: str = Field(..., min_length=1, max_length=128)
    phone: str = Field(..., min_length=1)
    email: Optional[str] = None
    amount: Decimal = Field(..., gt=0)
    status: str


class WebhookAck(BaseModel):
    ok: bool = True
    status: str
    transaction_id: Optional[str] = None
    balance: Optional[Decimal] = None
