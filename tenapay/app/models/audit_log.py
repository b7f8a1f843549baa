"""
Audit Log Database Model.

Append-only sink for privileged and money-moving system events.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from tenapay.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model for admin actions and ledger system events.

    Events logged:
    - RECONCILIATION_RETRIED / RECONCILIATION_RESOLVED (admin)
    - CLAIM_PAYOUT_REVERSED (system, admin_id is None)
    - WEBHOOK_UNMATCHED (system)
    """
    __tablename__ = "audit_logs"
    __mapper_args__ = {"eager_defaults": True}

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Who performed the action (None for system actions)
    admin_id = Column(String(36), index=True, nullable=True)

    action = Column(String(100), nullable=False, index=True)

    # What was acted upon (user id, transaction id, queue item id)
    target_id = Column(String(64), index=True, nullable=True)

    meta = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', admin={self.admin_id}, target={self.target_id})>"
