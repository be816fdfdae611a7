from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from app.api.routes.deps import get_classification, get_flow
from app.db.session import get_db
from app.network.models import Classification
from app.services.articles.service import ArticleService
from app.services.identification.service import IdentificationFlow
from app.services.identity.cookie import set_identity_cookie


router = APIRouter(prefix="/identify", tags=["identify"])


@router.get("/start")
def identify_start(
    slug: str = Query(..., min_length=1),
    return_url: str | None = Query(default=None, alias="returnUrl"),
    db: Session = Depends(get_db),
    classification: Classification = Depends(get_classification),
    flow: IdentificationFlow = Depends(get_flow),
) -> RedirectResponse:
    article = ArticleService(db).require_by_slug(slug)
    redirect_url = flow.begin_identification(classification, article, return_url)
    return RedirectResponse(redirect_url, status_code=302)


@router.get("/callback")
def identify_callback(
    request: Request,
    token: str = Query(default=""),
    flow: IdentificationFlow = Depends(get_flow),
) -> RedirectResponse:
    """Provider return leg: MSISDN in the query, signed with digest. Chains into payment."""
    result = flow.handle_identify_callback(token, dict(request.query_params))
    response = RedirectResponse(f"/payment/initiate?token={result.token}", status_code=302)
    set_identity_cookie(response, result.msisdn)
    return response
