"""
User database model.

The User row doubles as the wallet Account: it carries the balance
that the ledger services mutate.
"""

import uuid

from sqlalchemy import Column, String, Boolean, DateTime, Enum, Numeric, CheckConstraint
from sqlalchemy.sql import func
from tenapay.app.db.session import Base
from tenapay.app.models.enums import UserRole


class User(Base):
    """
    User / Account model.

    Invariant: balance >= 0 at every committed state. The balance is only
    ever changed through services.balance.adjust_balance.
    """
    __tablename__ = "users"
    __mapper_args__ = {"eager_defaults": True}
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_users_balance_non_negative"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(255), unique=True, index=True, nullable=False)
    phone = Column(String(20), unique=True, index=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    role = Column(Enum(UserRole), default=UserRole.USER, nullable=False)

    # Wallet
    balance = Column(Numeric(14, 2), default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}', role='{self.role.value}', balance={self.balance})>"
