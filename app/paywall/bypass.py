"""
Shared-secret override for internal tooling (QA, editors).

Kept apart from paid-unlock verification: a grant is logged, audited and
counted, but never written to the unlock ledger and never shows up in revenue.
"""
from __future__ import annotations

import hmac
import logging

from sqlalchemy.orm import Session

from app.core.config import settings
from app.services.audit.service import AuditService
from app.utils.metrics import entitlement_bypass_total

logger = logging.getLogger(__name__)


class EntitlementBypass:
    def __init__(self, db: Session, secret: str | None = None) -> None:
        self.db = db
        self.secret = secret if secret is not None else settings.entitlement_bypass_secret

    @property
    def enabled(self) -> bool:
        return bool(self.secret)

    def check(self, candidate: str | None, *, article_id: str, ip: str | None = None) -> bool:
        if not candidate or not self.enabled:
            return False
        if not hmac.compare_digest(candidate.encode(), self.secret.encode()):
            logger.warning("entitlement_bypass_rejected", extra={"article_id": article_id, "ip": ip})
            return False

        logger.warning("entitlement_bypass_granted", extra={"article_id": article_id, "ip": ip})
        AuditService(self.db).log(
            actor_type="bypass",
            actor_id=ip,
            action="entitlement_bypass_granted",
            entity_type="article",
            entity_id=article_id,
        )
        entitlement_bypass_total.inc()
        return True
