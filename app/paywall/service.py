from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from app.models.article import Article
from app.network.models import NetworkType
from app.paywall.access import decide_access
from app.paywall.bypass import EntitlementBypass
from app.paywall.models import AccessContext, AccessDecision
from app.services.articles.service import is_publicly_readable
from app.services.ledger.service import UnlockLedger
from app.utils.metrics import entitlement_checks_total

logger = logging.getLogger(__name__)


class EntitlementService:
    """I/O side of the paywall: resolves AccessContext, then delegates to decide_access."""

    def __init__(
        self,
        db: Session,
        ledger: UnlockLedger | None = None,
        bypass: EntitlementBypass | None = None,
    ) -> None:
        self.db = db
        self.ledger = ledger or UnlockLedger(db)
        self.bypass = bypass or EntitlementBypass(db)

    def check_access(
        self,
        msisdn: str | None,
        article: Article,
        network_type: NetworkType,
        bypass: str | None = None,
        ip: str | None = None,
    ) -> AccessDecision:
        readable = is_publicly_readable(article)
        # An unpublished article is denied before the bypass secret is even looked at
        bypass_granted = readable and self.bypass.check(bypass, article_id=article.id, ip=ip)
        is_unlocked = bool(
            readable and not bypass_granted and msisdn and self.ledger.has_unlock(msisdn, article.id)
        )
        decision = decide_access(
            AccessContext(
                article_id=article.id,
                publicly_readable=readable,
                bypass_granted=bypass_granted,
                msisdn=msisdn,
                network_type=network_type,
                is_unlocked=is_unlocked,
            )
        )
        entitlement_checks_total.labels(reason=decision.reason.value).inc()
        return decision
