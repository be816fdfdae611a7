from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.api.routes.deps import get_identity, get_ledger
from app.core.errors import NotIdentified
from app.schemas.unlock import MeOut, UnlockOut
from app.services.identity.cookie import clear_identity_cookie
from app.services.ledger.service import UnlockLedger
from app.utils.msisdn import mask_msisdn


router = APIRouter(prefix="/me", tags=["me"])


@router.get("", response_model=MeOut)
def me(msisdn: str | None = Depends(get_identity)) -> MeOut:
    return MeOut(identified=msisdn is not None, msisdn=mask_msisdn(msisdn) if msisdn else None)


@router.get("/unlocks", response_model=list[UnlockOut])
def my_unlocks(
    msisdn: str | None = Depends(get_identity),
    ledger: UnlockLedger = Depends(get_ledger),
) -> list[UnlockOut]:
    """Purchase history of the identified subscriber."""
    if not msisdn:
        raise NotIdentified()
    return [
        UnlockOut(
            transaction_id=r.transaction_id,
            article_id=r.article_id,
            amount=r.amount,
            currency=r.currency,
            status=r.status,
            created_at=r.created_at,
            completed_at=r.completed_at,
            refunded_at=r.refunded_at,
        )
        for r in ledger.list_for_subscriber(msisdn)
    ]


@router.post("/logout")
def logout() -> JSONResponse:
    response = JSONResponse({"success": True})
    clear_identity_cookie(response)
    return response
