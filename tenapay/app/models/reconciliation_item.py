"""
Reconciliation Queue Model.

Dead-letter style record of money movements that need follow-up:
webhooks for unknown accounts and payout reversals that did not commit.
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, Enum, Numeric
from sqlalchemy.sql import func
from tenapay.app.db.session import Base
from tenapay.app.models.enums import ReconciliationKind, ReconciliationStatus


class ReconciliationItem(Base):
    """
    Reconciliation queue table.
    """
    __tablename__ = "reconciliation_queue"
    __mapper_args__ = {"eager_defaults": True}

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    kind = Column(Enum(ReconciliationKind), nullable=False, index=True)
    status = Column(Enum(ReconciliationStatus), default=ReconciliationStatus.OPEN, nullable=False, index=True)

    # Gateway session id or debit transaction id
    reference = Column(String(128), nullable=True, index=True)
    user_id = Column(String(36), nullable=True, index=True)
    amount = Column(Numeric(14, 2), nullable=True)

    payload = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)
    retry_count = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    last_retry_at = Column(DateTime(timezone=True), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<ReconciliationItem(id={self.id}, kind='{self.kind.value}', status='{self.status.value}')>"
