"""
IdentificationSession: one in-flight identification attempt, keyed by an
unguessable correlation token that travels through the provider redirects.
"""
from enum import Enum

from sqlalchemy import Column, DateTime, Index, String

from app.db.base import Base
from app.db.time import utcnow


class SessionState(str, Enum):
    INITIATED = "INITIATED"
    AWAITING_CALLBACK = "AWAITING_CALLBACK"
    IDENTIFIED = "IDENTIFIED"
    PAYMENT_PENDING = "PAYMENT_PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"


# States the wall-clock deadline applies to. IDENTIFIED gets a fresh deadline for starting the charge.
EXPIRABLE_STATES = frozenset({SessionState.INITIATED, SessionState.AWAITING_CALLBACK, SessionState.IDENTIFIED})


class IdentificationSession(Base):
    __tablename__ = "identification_sessions"
    __table_args__ = (Index("ix_identification_sessions_expires_at", "expires_at"),)

    token = Column(String, primary_key=True)
    article_id = Column(String, nullable=False)
    article_slug = Column(String, nullable=False)
    return_url = Column(String, nullable=False)
    network_type = Column(String, nullable=False)
    carrier_code = Column(String, nullable=True)
    state = Column(String, nullable=False, default=SessionState.INITIATED.value)
    msisdn = Column(String, nullable=True)                  # set on IDENTIFIED
    transaction_id = Column(String, nullable=True, index=True)  # set on PAYMENT_PENDING
    failure_reason = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
