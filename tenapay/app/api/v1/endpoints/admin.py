"""
Admin API Endpoints.

Fund aggregates, audit trail and reconciliation tooling (admin-only).
Every mutation is written to the audit log.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from tenapay.app.db.session import get_db
from tenapay.app.core.guards import require_admin
from tenapay.app.models.enums import ReconciliationStatus
from tenapay.app.schemas.admin import (
    AuditLogResponse, LedgerCheckResponse, LedgerScanResponse, PlatformOverview,
    ReconciliationItemResponse, ResolveItemRequest, UserDetail
)
from tenapay.app.services import reconciliation
from tenapay.app.services.analytics import AnalyticsService
from tenapay.app.services.audit import AuditAction, get_audit_trail, log_admin_action

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.get("/overview", response_model=PlatformOverview)
async def platform_overview(
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Users, premiums collected, claims paid and the fund pool."""
    return await AnalyticsService.get_platform_overview(db)


@router.get("/users/{user_id}", response_model=UserDetail)
async def user_detail(
    user_id: str,
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    return await AnalyticsService.get_user_detail(db, user_id)


@router.get("/audits", response_model=List[AuditLogResponse])
async def audit_trail(
    action: Optional[str] = Query(None, description="Filter by action"),
    target_id: Optional[str] = Query(None, description="Filter by target"),
    limit: int = Query(50, ge=1, le=500),
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    return await get_audit_trail(db, action=action, target_id=target_id, limit=limit)


@router.get("/reconciliation", response_model=LedgerScanResponse)
async def scan_ledger(
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Compare every balance with its transaction trail."""
    checks = await reconciliation.scan_ledger(db)
    divergences = [
        LedgerCheckResponse(
            user_id=check.user_id,
            balance=check.balance,
            credits=check.credits,
            debits=check.debits,
            expected=check.expected,
            consistent=check.consistent,
        )
        for check in checks if not check.consistent
    ]

    await log_admin_action(
        db,
        admin_id=admin["user_id"],
        action=AuditAction.LEDGER_SCANNED,
        meta={"accounts_checked": len(checks), "divergent": len(divergences)}
    )
    return LedgerScanResponse(
        accounts_checked=len(checks),
        divergent=len(divergences),
        divergences=divergences
    )


@router.get("/reconciliation/queue", response_model=List[ReconciliationItemResponse])
async def reconciliation_queue(
    item_status: Optional[ReconciliationStatus] = Query(None, alias="status"),
    limit: int = Query(100, ge=1, le=500),
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    return await reconciliation.list_items(db, status=item_status, limit=limit)


@router.post("/reconciliation/queue/{item_id}/retry", response_model=ReconciliationItemResponse)
async def retry_queue_item(
    item_id: int,
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Re-attempt a queued reversal or unmatched payment now."""
    item = await reconciliation.retry_item(db, item_id)
    response = ReconciliationItemResponse.model_validate(item)

    await log_admin_action(
        db,
        admin_id=admin["user_id"],
        action=AuditAction.RECONCILIATION_RETRIED,
        target_id=str(item_id),
        meta={"status": response.status.value, "error": response.error_message}
    )
    return response


@router.post("/reconciliation/queue/{item_id}/resolve", response_model=ReconciliationItemResponse)
async def resolve_queue_item(
    item_id: int,
    request: ResolveItemRequest,
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Close an item that was settled outside the system."""
    item = await reconciliation.resolve_item(db, item_id, note=request.note)
    response = ReconciliationItemResponse.model_validate(item)

    await log_admin_action(
        db,
        admin_id=admin["user_id"],
        action=AuditAction.RECONCILIATION_RESOLVED,
        target_id=str(item_id),
        meta={"note": request.note}
    )
    return response
