"""
Claim and transaction schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional
from tenapay.app.models.enums import TransactionType


class ClaimRequest(BaseModel):
    amount: Decimal = Field(..., gt=0, description="Claim amount in ETB")
    phone: str = Field(..., description="Telebirr phone to pay out to (251XXXXXXXXX)")


class TransactionResponse(BaseModel):
    class Config:
        from_attributes = True

    id: str
    type: TransactionType
    amount: Decimal
    description: Optional[str] = None
    reference: Optional[str] = None
    created_at: datetime


class ClaimPayoutData(BaseModel):
    transaction: TransactionResponse
    confirmation: Dict[str, Any]
    new_balance: Decimal


class ClaimResponse(BaseModel):
    success: bool = True
    message: str
    data: ClaimPayoutData
