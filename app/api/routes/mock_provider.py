"""
Local stand-in for the billing provider (provider_mode=mock, never in production).
Signs its answers with provider_secret so the real callback verification runs.
"""
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse

from app.api.routes.deps import get_flow, get_provider_client
from app.core.config import settings
from app.core.errors import InvalidRequest
from app.services.billing_provider.client import BillingProviderClient, sign_params
from app.services.identification.service import IdentificationFlow


router = APIRouter(prefix="/payment/mock", tags=["mock-provider"])

MOCK_OPERATOR = "AT_SANDBOX"


def require_mock_mode(provider: BillingProviderClient = Depends(get_provider_client)) -> BillingProviderClient:
    if settings.is_production or not provider.is_mock:
        raise HTTPException(status_code=404, detail="Not Found")
    return provider


def _with_params(url: str, extra: dict[str, str]) -> str:
    parts = urlsplit(url)
    params = dict(parse_qsl(parts.query, keep_blank_values=True))
    params.update(extra)
    signed = sign_params(params)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(signed), ""))


@router.get("/identify")
def mock_identify(request: Request, provider: BillingProviderClient = Depends(require_mock_mode)) -> RedirectResponse:
    """Header enrichment always 'works' here: returns the sandbox MSISDN."""
    params = dict(request.query_params)
    provider.verify_callback(params)
    if not params.get("returnurl"):
        raise InvalidRequest("returnurl required")
    url = _with_params(
        params["returnurl"],
        {"msisdn": settings.provider_mock_msisdn, "operator": MOCK_OPERATOR, "status": "ok"},
    )
    return RedirectResponse(url, status_code=302)


@router.get("/charge")
def mock_charge(
    request: Request,
    provider: BillingProviderClient = Depends(require_mock_mode),
    flow: IdentificationFlow = Depends(get_flow),
) -> RedirectResponse:
    """Charges immediately, delivers the server callback in-process, then sends the browser back."""
    params = dict(request.query_params)
    provider.verify_callback(params)
    transaction_id = params.get("tid")
    if not transaction_id or not params.get("returnurl"):
        raise InvalidRequest("tid and returnurl required")
    flow.handle_payment_callback(
        transaction_id,
        sign_params({"tid": transaction_id, "status": "success", "reference": f"MOCK-{transaction_id}"}),
    )
    return RedirectResponse(params["returnurl"], status_code=302)
