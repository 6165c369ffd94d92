"""CreditBalance model holding a user's prepaid credit account."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class CreditBalance(Base):
    """One row per user; mutated only through the credit ledger."""

    __tablename__ = "credit_balances"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, unique=True, index=True)
    credits_total = Column(Integer, nullable=False, default=0, server_default="0")
    credits_used = Column(Integer, nullable=False, default=0, server_default="0")
    bonus_credits = Column(Integer, nullable=False, default=0, server_default="0")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    user = relationship("User", back_populates="credit_balance")

    @hybrid_property
    def credits_available(self):
        return self.credits_total - self.credits_used
