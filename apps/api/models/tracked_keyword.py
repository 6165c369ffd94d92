"""TrackedKeyword model: a saved scan target and its cached last result."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, JSON, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class TrackedKeyword(Base):
    """Saved keyword/brand pair; `last_results` doubles as the scan cache entry."""

    __tablename__ = "tracked_keywords"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    keyword = Column(String, nullable=False)
    brand_name = Column(String, nullable=False)
    brand_domain = Column(String, nullable=False)
    last_results = Column(JSON, nullable=True)
    last_checked_at = Column(DateTime(timezone=True), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    user = relationship("User", back_populates="tracked_keywords")
