"""
Ledger Transaction database model.

Immutable, append-only audit trail of balance movements.
"""

import uuid

from sqlalchemy import (
    Column, String, ForeignKey, DateTime, Enum, Numeric, CheckConstraint, UniqueConstraint
)
from sqlalchemy.sql import func
from tenapay.app.db.session import Base
from tenapay.app.models.enums import TransactionType


class Transaction(Base):
    """
    Transaction model.

    Exactly one row per successful balance mutation, written in the same
    unit of work as the balance update. NO updates or deletions allowed.

    The id is also the idempotency key sent with outbound transfers.
    (user_id, type, reference) is unique so the same gateway session can
    never be credited twice and a debit can only be reversed once.
    """
    __tablename__ = "transactions"
    __mapper_args__ = {"eager_defaults": True}
    __table_args__ = (
        UniqueConstraint("user_id", "type", "reference", name="uq_transactions_user_type_reference"),
        CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)

    type = Column(Enum(TransactionType), nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    description = Column(String(255), nullable=True)
    reference = Column(String(128), nullable=True, index=True)

    # Timestamps (Immutable - no updated_at)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<Transaction(id={self.id}, type='{self.type.value}', amount={self.amount}, reference={self.reference})>"
