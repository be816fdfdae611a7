"""
UnlockRecord: one carrier-billing transaction for one article.
transaction_id is the idempotency key: at most one row per transaction.
Rows are never deleted; refunds are a status transition on the same row.
"""
from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, Index, Integer, String

from app.db.base import Base
from app.db.time import utcnow


class UnlockStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class UnlockRecord(Base):
    __tablename__ = "unlock_records"
    __table_args__ = (
        Index("ix_unlock_records_msisdn_article", "msisdn", "article_id", "status"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    transaction_id = Column(String, unique=True, nullable=False)
    msisdn = Column(String, nullable=False, index=True)      # normalized, digits only
    article_id = Column(String, nullable=False)
    amount = Column(Integer, nullable=False)                 # minor units (cents)
    currency = Column(String, nullable=False, default="EUR")
    provider = Column(String, nullable=False)
    status = Column(String, nullable=False, default=UnlockStatus.PENDING.value)
    provider_reference = Column(String, nullable=True)
    failure_code = Column(String, nullable=True)
    refund_reason = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)
