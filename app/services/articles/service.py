from datetime import datetime

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.core.errors import ArticleNotFound
from app.db.time import as_utc, utcnow
from app.models.article import Article

PUBLISHED = "published"


def is_publicly_readable(article: Article, now: datetime | None = None) -> bool:
    """Published and the publish date (if any) has passed."""
    if article.status != PUBLISHED:
        return False
    publish_date = as_utc(article.publish_date)
    return publish_date is None or publish_date <= (now or utcnow())


class ArticleService:
    """Read side of the content store."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def get_by_slug(self, slug: str) -> Article | None:
        return self.db.query(Article).filter(Article.slug == slug).one_or_none()

    def get_by_id(self, article_id: str) -> Article | None:
        return self.db.query(Article).filter(Article.id == article_id).one_or_none()

    def require_by_slug(self, slug: str) -> Article:
        article = self.get_by_slug(slug)
        if article is None:
            raise ArticleNotFound(f"slug={slug}")
        return article

    def require_by_id(self, article_id: str) -> Article:
        article = self.get_by_id(article_id)
        if article is None:
            raise ArticleNotFound(article_id=article_id)
        return article

    def increment_unlock_count(self, article_id: str, commit: bool = True) -> None:
        self.db.execute(
            update(Article)
            .where(Article.id == article_id)
            .values(unlock_count=Article.unlock_count + 1)
            .execution_options(synchronize_session=False)
        )
        if commit:
            self.db.commit()
