"""
Payment routes: charge start, provider server-to-server callback, browser return leg.
"""
import json
import logging
from urllib.parse import parse_qsl

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from app.api.routes.deps import get_flow, get_identity
from app.core.errors import InvalidRequest, NotIdentified
from app.db.session import get_db
from app.services.articles.service import ArticleService
from app.services.identification.service import IdentificationFlow, validate_return_url


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payment", tags=["payment"])

TRANSACTION_ID_KEYS = ("tid", "transactionId", "transaction_id")


async def _callback_payload(request: Request) -> dict[str, str]:
    """Provider posts JSON or urlencoded form; query parameters are merged underneath."""
    payload = dict(request.query_params)
    body = await request.body()
    if not body:
        return payload
    if request.headers.get("content-type", "").startswith("application/json"):
        try:
            data = json.loads(body)
        except ValueError:
            raise InvalidRequest("callback body is not valid JSON") from None
        if not isinstance(data, dict):
            raise InvalidRequest("callback body must be an object")
        payload.update({str(k): "" if v is None else str(v) for k, v in data.items()})
    else:
        payload.update(parse_qsl(body.decode("utf-8", errors="replace"), keep_blank_values=True))
    return payload


@router.get("/initiate")
def payment_initiate(
    token: str | None = Query(default=None),
    slug: str | None = Query(default=None),
    return_url: str | None = Query(default=None, alias="returnUrl"),
    db: Session = Depends(get_db),
    msisdn: str | None = Depends(get_identity),
    flow: IdentificationFlow = Depends(get_flow),
) -> RedirectResponse:
    """With ?token= after identification, or ?slug= for a visitor already carrying the identity cookie."""
    if token:
        redirect = flow.start_payment(token)
    elif slug:
        if not msisdn:
            raise NotIdentified()
        article = ArticleService(db).require_by_slug(slug)
        redirect = flow.start_payment_for_subscriber(msisdn, article, return_url)
    else:
        raise InvalidRequest("token or slug required")
    return RedirectResponse(redirect.redirect_url, status_code=302)


@router.post("/callback")
async def payment_callback(request: Request, flow: IdentificationFlow = Depends(get_flow)) -> dict:
    payload = await _callback_payload(request)
    transaction_id = next((payload[k] for k in TRANSACTION_ID_KEYS if payload.get(k)), None)
    record = flow.handle_payment_callback(transaction_id, payload)
    return {"success": True, "transaction_id": record.transaction_id, "status": record.status}


@router.get("/callback")
def payment_return(
    tid: str | None = Query(default=None),
    next_url: str | None = Query(default=None, alias="next"),
    result: str | None = Query(default=None),
) -> RedirectResponse:
    """Browser return leg. Never mutates state: the ledger only trusts the signed server callback."""
    try:
        target = validate_return_url(next_url, default="/")
    except InvalidRequest:
        logger.warning("payment_return_url_rejected", extra={"transaction_id": tid})
        target = "/"
    if result == "error":
        logger.info("payment_return_error", extra={"transaction_id": tid})
    return RedirectResponse(target, status_code=302)
