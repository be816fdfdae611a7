#!/usr/bin/env python3
"""
Create tables and (optionally) a demo article for local development.
Run from the project root: python -m scripts.init_db [--demo]
"""
import os
import sys

# project root on PYTHONPATH
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import app.models  # noqa: F401  (registers every table)
from app.db.base import Base
from app.db.session import SessionLocal, engine
from app.db.time import utcnow
from app.models.article import Article

DEMO_SLUG = "demo-article"


def main():
    Base.metadata.create_all(bind=engine)
    print("Tables created.")
    if "--demo" not in sys.argv:
        return
    db = SessionLocal()
    try:
        if db.query(Article).filter(Article.slug == DEMO_SLUG).one_or_none():
            print(f"Article '{DEMO_SLUG}' already exists.")
            return
        db.add(
            Article(
                slug=DEMO_SLUG,
                title="Demo article",
                teaser="The first paragraph is free.",
                content="The rest is unlocked through carrier billing.",
                status="published",
                publish_date=utcnow(),
            )
        )
        db.commit()
        print(f"Article '{DEMO_SLUG}' created: /articles/{DEMO_SLUG}/access")
    finally:
        db.close()


if __name__ == "__main__":
    main()
