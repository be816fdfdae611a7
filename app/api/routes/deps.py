"""
Shared FastAPI dependencies: service wiring, visitor classification, identity, admin key.
Redis-backed collaborators are separate dependencies so tests can override them.
"""
import hmac
from functools import lru_cache

from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import Unauthorized
from app.db.session import get_db
from app.network.classifier import get_classifier
from app.network.client_ip import extract_client_ip
from app.network.models import Classification
from app.paywall.service import EntitlementService
from app.services.billing_provider.client import BillingProviderClient
from app.services.identification.service import IdentificationFlow
from app.services.identity.cookie import read_identity
from app.services.idempotency import IdempotencyStore
from app.services.ledger.service import UnlockLedger
from app.services.settings_store.service import SettingsCache, SettingsStore


@lru_cache(maxsize=1)
def get_idempotency_store() -> IdempotencyStore:
    return IdempotencyStore()


@lru_cache(maxsize=1)
def get_settings_cache() -> SettingsCache:
    return SettingsCache()


@lru_cache(maxsize=1)
def get_provider_client() -> BillingProviderClient:
    return BillingProviderClient()


def get_ledger(
    db: Session = Depends(get_db),
    idempotency: IdempotencyStore = Depends(get_idempotency_store),
) -> UnlockLedger:
    return UnlockLedger(db, idempotency)


def get_settings_store(
    db: Session = Depends(get_db),
    cache: SettingsCache = Depends(get_settings_cache),
) -> SettingsStore:
    return SettingsStore(db, cache)


def get_flow(
    db: Session = Depends(get_db),
    provider: BillingProviderClient = Depends(get_provider_client),
    ledger: UnlockLedger = Depends(get_ledger),
    settings_store: SettingsStore = Depends(get_settings_store),
) -> IdentificationFlow:
    return IdentificationFlow(db, provider=provider, ledger=ledger, settings_store=settings_store)


def get_entitlement(
    db: Session = Depends(get_db),
    ledger: UnlockLedger = Depends(get_ledger),
) -> EntitlementService:
    return EntitlementService(db, ledger=ledger)


def get_classification(request: Request) -> Classification:
    return get_classifier().classify(extract_client_ip(request))


def get_identity(request: Request) -> str | None:
    return read_identity(request)


def require_admin(x_admin_key: str | None = Header(default=None)) -> None:
    """Admin routes are disabled while admin_api_key is unset."""
    if not settings.admin_api_key or not x_admin_key:
        raise Unauthorized("admin key missing")
    if not hmac.compare_digest(x_admin_key.encode(), settings.admin_api_key.encode()):
        raise Unauthorized("admin key mismatch")
