"""
Audit logging service for admin actions and ledger system events.

Provides a centralized, append-only trail for compliance and reconciliation.
"""

import logging
from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from tenapay.app.models.audit_log import AuditLog

logger = logging.getLogger(__name__)


# Audit event constants
class AuditAction:
    """Standardized audit action constants."""
    # Ledger system events (admin_id is None)
    CLAIM_PAYOUT_REVERSED = "CLAIM_PAYOUT_REVERSED"
    CLAIM_REVERSAL_QUEUED = "CLAIM_REVERSAL_QUEUED"
    CLAIM_PAYOUT_UNKNOWN = "CLAIM_PAYOUT_UNKNOWN"
    WEBHOOK_UNMATCHED = "WEBHOOK_UNMATCHED"

    # Admin actions
    RECONCILIATION_RETRIED = "RECONCILIATION_RETRIED"
    RECONCILIATION_RESOLVED = "RECONCILIATION_RESOLVED"
    LEDGER_SCANNED = "LEDGER_SCANNED"


async def log_event(
    db: AsyncSession,
    action: str,
    admin_id: Optional[str] = None,
    target_id: Optional[str] = None,
    meta: Optional[Dict[str, Any]] = None
) -> AuditLog:
    """
    Write an event to the audit log.

    Commits immediately; never call this inside an open ledger unit of work.

    Args:
        db: Database session
        action: Action being performed (use AuditAction constants)
        admin_id: ID of admin performing the action (None for system events)
        target_id: ID of the user, transaction or queue item acted upon
        meta: Additional context as JSON

    Returns:
        Created AuditLog instance
    """
    audit_log = AuditLog(
        admin_id=admin_id,
        action=action,
        target_id=target_id,
        meta=meta
    )

    db.add(audit_log)
    await db.commit()
    await db.refresh(audit_log)

    logger.info("Audit: %s by %s on %s", action, admin_id or "system", target_id)
    return audit_log


async def log_admin_action(
    db: AsyncSession,
    admin_id: str,
    action: str,
    target_id: Optional[str] = None,
    meta: Optional[Dict[str, Any]] = None
) -> AuditLog:
    """Log an action taken by an administrator."""
    return await log_event(
        db=db,
        action=action,
        admin_id=admin_id,
        target_id=target_id,
        meta=meta
    )


async def get_audit_trail(
    db: AsyncSession,
    action: Optional[str] = None,
    target_id: Optional[str] = None,
    limit: int = 50
) -> list[AuditLog]:
    """
    Retrieve audit trail with optional filtering, most recent first.
    """
    query = select(AuditLog).order_by(desc(AuditLog.created_at), desc(AuditLog.id))

    if action:
        query = query.where(AuditLog.action == action)

    if target_id:
        query = query.where(AuditLog.target_id == target_id)

    query = query.limit(limit)

    result = await db.execute(query)
    return result.scalars().all()
