from uuid import uuid4

from sqlalchemy import Column, DateTime, Integer, String, Text

from app.db.base import Base
from app.db.time import utcnow


class Article(Base):
    """Read side of the content store: only what the paywall needs."""

    __tablename__ = "articles"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    slug = Column(String, unique=True, nullable=False, index=True)
    title = Column(String, nullable=False)
    teaser = Column(Text, nullable=True)
    content = Column(Text, nullable=True)
    status = Column(String, nullable=False, default="draft")  # draft / published / archived
    publish_date = Column(DateTime(timezone=True), nullable=True)
    unlock_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
