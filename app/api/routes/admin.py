"""
Admin API (X-Admin-Key): refunds, ledger stats, settings store.
"""
from fastapi import APIRouter, Depends

from app.api.routes.deps import get_ledger, get_provider_client, get_settings_store, require_admin
from app.core.errors import InvalidRequest, LedgerConflict
from app.models.unlock import UnlockStatus
from app.schemas.unlock import RefundIn, RefundOut, SettingIn, SettingOut
from app.services.billing_provider.client import BillingProviderClient
from app.services.ledger.service import UnlockLedger
from app.services.settings_store.service import SettingsStore


router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])

ADMIN_ACTOR = "admin_api"
EDITABLE_SETTINGS = ("article_price_cents", "article_currency")


def _validate_setting_key(key: str) -> None:
    if key not in EDITABLE_SETTINGS:
        raise InvalidRequest(f"unknown setting {key}")


def _validate_setting(key: str, value):
    _validate_setting_key(key)
    if key == "article_price_cents":
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise InvalidRequest("article_price_cents must be a positive integer")
        return value
    if key == "article_currency":
        if not isinstance(value, str) or len(value.strip()) != 3 or not value.strip().isalpha():
            raise InvalidRequest("article_currency must be a 3-letter code")
        return value.strip().upper()


# ---------- Transactions ----------
@router.post("/transactions/{transaction_id}/refund", response_model=RefundOut)
def refund_transaction(
    transaction_id: str,
    payload: RefundIn,
    ledger: UnlockLedger = Depends(get_ledger),
    provider: BillingProviderClient = Depends(get_provider_client),
) -> RefundOut:
    record = ledger.get(transaction_id)
    if record is None:
        raise LedgerConflict(transaction_id=transaction_id)
    if record.status != UnlockStatus.COMPLETED.value:
        raise InvalidRequest(f"cannot refund transaction in status {record.status}", transaction_id=transaction_id)
    if payload.notify_provider:
        provider.refund(transaction_id, record.amount, payload.reason)
    record = ledger.refund(transaction_id, payload.reason, actor_id=ADMIN_ACTOR)
    return RefundOut(
        transaction_id=record.transaction_id,
        status=record.status,
        refund_reason=record.refund_reason,
        refunded_at=record.refunded_at,
    )


@router.get("/stats")
def ledger_stats(ledger: UnlockLedger = Depends(get_ledger)) -> dict:
    return ledger.stats()


# ---------- Settings ----------
@router.get("/settings/{key}", response_model=SettingOut)
def get_setting(key: str, store: SettingsStore = Depends(get_settings_store)) -> SettingOut:
    _validate_setting_key(key)
    if key == "article_price_cents":
        return SettingOut(key=key, value=store.article_price_cents())
    return SettingOut(key=key, value=store.article_currency())


@router.put("/settings/{key}", response_model=SettingOut)
def put_setting(key: str, payload: SettingIn, store: SettingsStore = Depends(get_settings_store)) -> SettingOut:
    value = _validate_setting(key, payload.value)
    store.set(key, value, actor_id=ADMIN_ACTOR)
    return SettingOut(key=key, value=value)
