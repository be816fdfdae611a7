"""
Shared fixtures: in-memory SQLite, fakeredis-backed stores, TestClient with dependency overrides.
Environment defaults must be set before anything imports app.core.config.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("CELERY_BROKER_URL", "redis://localhost:6379/15")
os.environ.setdefault("CELERY_RESULT_BACKEND", "redis://localhost:6379/15")
os.environ.setdefault("IDENTITY_COOKIE_SECRET", "test-cookie-secret-0123456789")
os.environ.setdefault("PROVIDER_SECRET", "test-provider-secret")
os.environ.setdefault("PROVIDER_MODE", "mock")
os.environ.setdefault("PUBLIC_BASE_URL", "http://testserver")
os.environ.setdefault("IDENTITY_COOKIE_SECURE", "false")
os.environ.setdefault("ENTITLEMENT_BYPASS_SECRET", "qa-bypass-secret")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")

from datetime import timedelta
from uuid import uuid4

import fakeredis
import pybreaker
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app.db.base import Base
from app.db.session import get_db
from app.db.time import utcnow
from app.models.article import Article
from app.services.billing_provider.client import BillingProviderClient
from app.services.idempotency import IdempotencyStore
from app.services.settings_store.service import SettingsCache

MOBILE_IP = "80.187.10.20"  # Deutsche Telekom mobile range
WIFI_IP = "192.168.1.20"
UNKNOWN_IP = "203.0.113.9"


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db_session(engine):
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def fake_redis():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture()
def idempotency(fake_redis):
    return IdempotencyStore(client=fake_redis)


@pytest.fixture()
def settings_cache(fake_redis):
    return SettingsCache(client=fake_redis, ttl_seconds=60)


@pytest.fixture()
def provider():
    """Mock-mode provider with an in-memory breaker (no Redis, no network)."""
    client = BillingProviderClient(breaker=pybreaker.CircuitBreaker(fail_max=3, reset_timeout=60))
    client.mode = "mock"
    return client


@pytest.fixture()
def make_article(db_session):
    def _make(slug=None, status="published", publish_date=None, **kwargs):
        article = Article(
            id=kwargs.pop("id", str(uuid4())),
            slug=slug or f"article-{uuid4().hex[:8]}",
            title=kwargs.pop("title", "Local council approves new tram line"),
            teaser=kwargs.pop("teaser", "The vote was closer than expected."),
            content=kwargs.pop("content", "Full story behind the paywall."),
            status=status,
            publish_date=publish_date if publish_date is not None else utcnow() - timedelta(days=1),
            **kwargs,
        )
        db_session.add(article)
        db_session.commit()
        return article

    return _make


@pytest.fixture()
def client(engine, idempotency, settings_cache, provider):
    from app.api.routes import deps
    from app.main import app

    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)

    def _get_db():
        db = SessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[deps.get_idempotency_store] = lambda: idempotency
    app.dependency_overrides[deps.get_settings_cache] = lambda: settings_cache
    app.dependency_overrides[deps.get_provider_client] = lambda: provider
    try:
        with TestClient(app, raise_server_exceptions=False) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()
