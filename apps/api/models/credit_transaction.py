"""CreditTransaction model: immutable credit ledger entry."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, JSON, String, text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


TRANSACTION_TYPES = ("purchase", "usage", "refund", "bonus", "promo")
PROMO_ONLY = text("transaction_type = 'promo'")


class CreditTransaction(Base):
    """Append-only ledger entry; one per balance mutation."""

    __tablename__ = "credit_transactions"
    __table_args__ = (
        # One redemption per user per promo code.
        Index(
            "uq_credit_transactions_promo_redemption",
            "user_id",
            "reference_id",
            unique=True,
            postgresql_where=PROMO_ONLY,
            sqlite_where=PROMO_ONLY,
        ),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    transaction_type = Column(String, nullable=False, index=True)
    amount = Column(Integer, nullable=False)  # negative = usage
    credits_before = Column(Integer, nullable=False)
    credits_after = Column(Integer, nullable=False)
    feature = Column(String, nullable=True, index=True)
    description = Column(String, nullable=True)
    reference_id = Column(String, nullable=True, index=True)
    metadata_json = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    user = relationship("User", back_populates="credit_transactions")
