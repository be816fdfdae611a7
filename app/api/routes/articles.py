from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.routes.deps import get_classification, get_entitlement, get_identity, get_settings_store
from app.db.session import get_db
from app.network.models import Classification
from app.paywall.models import AccessReason, CallToAction
from app.paywall.service import EntitlementService
from app.schemas.unlock import AccessOut, ArticleTeaserOut, PriceOut
from app.services.articles.service import ArticleService
from app.services.settings_store.service import SettingsStore


router = APIRouter(prefix="/articles", tags=["articles"])


@router.get("/{slug}/access", response_model=AccessOut)
def article_access(
    slug: str,
    bypass: str | None = Query(default=None),
    db: Session = Depends(get_db),
    msisdn: str | None = Depends(get_identity),
    classification: Classification = Depends(get_classification),
    entitlement: EntitlementService = Depends(get_entitlement),
    settings_store: SettingsStore = Depends(get_settings_store),
) -> AccessOut:
    """Entitlement decision for the caller; full content only when allowed."""
    article = ArticleService(db).require_by_slug(slug)
    decision = entitlement.check_access(
        msisdn, article, classification.network_type, bypass=bypass, ip=classification.ip
    )
    out = AccessOut(
        allowed=decision.allowed,
        reason=decision.reason.value,
        cta=decision.cta.value,
        network_type=classification.network_type.value,
    )
    if decision.reason == AccessReason.NOT_PUBLISHED:
        return out

    out.article = ArticleTeaserOut(id=article.id, slug=article.slug, title=article.title, teaser=article.teaser)
    if decision.allowed:
        out.content = article.content
    elif decision.cta in (CallToAction.PAY, CallToAction.IDENTIFY):
        out.price = PriceOut(
            amount=settings_store.article_price_cents(),
            currency=settings_store.article_currency(),
        )
    return out
