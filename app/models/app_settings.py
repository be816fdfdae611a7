from sqlalchemy import Column, DateTime, String

from app.db.base import Base, JSONType
from app.db.time import utcnow


class AppSetting(Base):
    """Key-value settings editable from admin (price overrides and the like)."""

    __tablename__ = "app_settings"

    key = Column(String, primary_key=True)
    value = Column(JSONType, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
