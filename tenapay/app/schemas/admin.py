"""
Admin API Schema Definitions.

Pydantic schemas for platform aggregates, audits and reconciliation.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from tenapay.app.models.enums import ReconciliationKind, ReconciliationStatus, UserRole


class PlatformOverview(BaseModel):
    """Fund-level totals across every wallet."""
    total_users: int
    total_collected: Decimal = Field(..., description="Premiums credited (excluding reversals)")
    total_claimed: Decimal = Field(..., description="Claims paid out (net of reversals)")
    total_reversed: Decimal
    total_balance: Decimal = Field(..., description="Sum of all wallet balances (fund pool)")


class UserDetail(BaseModel):
    """Single account with its ledger totals."""
    id: str
    email: str
    phone: str
    role: UserRole
    is_active: bool
    balance: Decimal
    total_credits: Decimal
    total_debits: Decimal
    net_flow: Decimal
    transaction_count: int
    created_at: datetime


class AuditLogResponse(BaseModel):
    class Config:
        from_attributes = True

    id: int
    admin_id: Optional[str] = None
    action: str
    target_id: Optional[str] = None
    meta: Optional[Dict[str, Any]] = None
    created_at: datetime


class LedgerCheckResponse(BaseModel):
    user_id: str
    balance: Decimal
    credits: Decimal
    debits: Decimal
    expected: Decimal
    consistent: bool


class LedgerScanResponse(BaseModel):
    accounts_checked: int
    divergent: int
    divergences: List[LedgerCheckResponse]


class ReconciliationItemResponse(BaseModel):
    class Config:
        from_attributes = True

    id: int
    kind: ReconciliationKind
    status: ReconciliationStatus
    reference: Optional[str] = None
    user_id: Optional[str] = None
    amount: Optional[Decimal] = None
    payload: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    retry_count: int
    created_at: datetime
    last_retry_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None


class ResolveItemRequest(BaseModel):
    note: Optional[str] = Field(None, max_length=500, description="How the item was settled (for audit log)")
