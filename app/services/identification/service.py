"""
IdentificationFlow: redirect handshake with the billing provider.

Session state machine (persisted, keyed by an unguessable token):

    INITIATED -> AWAITING_CALLBACK -> IDENTIFIED -> PAYMENT_PENDING -> COMPLETED
                        |                                  |
                        +-> FAILED / EXPIRED               +-> FAILED
    EXPIRED --(late callback)--> FAILED

Every transition is one conditional UPDATE guarded by the expected source
state, so duplicate or concurrent callbacks converge instead of double-applying.
Expiry is a wall-clock deadline checked on read.
"""
import logging
import secrets
from datetime import datetime, timedelta
from typing import Iterable, Mapping
from urllib.parse import quote, urlsplit

from pydantic import BaseModel
from sqlalchemy import delete, update
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import (
    IdentificationFailed,
    InvalidMsisdn,
    InvalidRequest,
    NetworkNotEligible,
    ProviderError,
    SessionAlreadyConsumed,
    SessionExpired,
    SessionNotFound,
)
from app.db.time import as_utc, utcnow
from app.models.article import Article
from app.models.identification_session import (
    EXPIRABLE_STATES,
    IdentificationSession,
    SessionState,
)
from app.models.unlock import UnlockRecord, UnlockStatus
from app.network.models import Classification
from app.services.articles.service import ArticleService, is_publicly_readable
from app.services.billing_provider.client import BillingProviderClient
from app.services.ledger.service import UnlockLedger, UnlockOutcome
from app.services.settings_store.service import SettingsStore
from app.utils.metrics import identification_sessions_total
from app.utils.msisdn import mask_msisdn, normalize_msisdn

logger = logging.getLogger(__name__)

MSISDN_KEYS = ("msisdn", "MSISDN", "phone", "phoneNumber")
STATUS_KEYS = ("status", "STATUS")
IDENTIFY_OK_STATUSES = frozenset({"ok", "success"})
PAYMENT_OK_STATUSES = frozenset({"success", "ok", "completed", "paid"})


def _first(payload: Mapping[str, object], keys: Iterable[str]) -> str | None:
    for key in keys:
        value = payload.get(key)
        if value:
            return str(value)
    return None


def _token_ref(token: str) -> str:
    """Logs carry a token prefix only."""
    return token[:8]


def validate_return_url(return_url: str | None, default: str) -> str:
    """Relative paths or absolute URLs on our own public host; anything else is an open redirect."""
    if not return_url:
        return default
    if "\\" in return_url or any(ch in return_url for ch in "\r\n"):
        raise InvalidRequest("return url rejected")
    parts = urlsplit(return_url)
    if not parts.scheme and not parts.netloc:
        if return_url.startswith("/") and not return_url.startswith("//"):
            return return_url
        raise InvalidRequest("return url must be an absolute path")
    public = urlsplit(settings.public_base_url)
    if parts.scheme in ("http", "https") and parts.netloc.lower() == public.netloc.lower():
        return return_url
    raise InvalidRequest("return url host not allowed")


class IdentifyResult(BaseModel):
    token: str
    msisdn: str
    article_id: str
    article_slug: str
    return_url: str

    model_config = {"frozen": True}


class PaymentRedirect(BaseModel):
    redirect_url: str
    transaction_id: str | None = None
    # Subscriber already owns the article; redirect_url is the return URL
    already_unlocked: bool = False

    model_config = {"frozen": True}


class IdentificationFlow:
    def __init__(
        self,
        db: Session,
        provider: BillingProviderClient | None = None,
        ledger: UnlockLedger | None = None,
        settings_store: SettingsStore | None = None,
    ) -> None:
        self.db = db
        self.provider = provider or BillingProviderClient()
        self.ledger = ledger or UnlockLedger(db)
        self.settings_store = settings_store or SettingsStore(db)
        self.articles = ArticleService(db)
        self.ttl = timedelta(seconds=settings.identification_session_ttl_seconds)
        self.base_url = settings.public_base_url.rstrip("/")

    # ------------------------------------------------------------------
    # Session persistence
    # ------------------------------------------------------------------

    def get_session(self, token: str) -> IdentificationSession | None:
        return self.db.query(IdentificationSession).filter(IdentificationSession.token == token).one_or_none()

    def _transition(self, token: str, from_states: Iterable[SessionState], to_state: SessionState, **values) -> bool:
        """Guarded transition. False means another request got there first."""
        result = self.db.execute(
            update(IdentificationSession)
            .where(
                IdentificationSession.token == token,
                IdentificationSession.state.in_([s.value for s in from_states]),
            )
            .values(state=to_state.value, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        if result.rowcount:
            identification_sessions_total.labels(state=to_state.value).inc()
            return True
        return False

    def _load(self, token: str, now: datetime | None = None) -> IdentificationSession:
        """Fetch a session, applying the expiry deadline lazily."""
        session = self.get_session(token) if token else None
        if session is None:
            raise SessionNotFound(token=_token_ref(token or ""))
        now = now or utcnow()
        if session.state in {s.value for s in EXPIRABLE_STATES} and as_utc(session.expires_at) <= now:
            if self._transition(token, EXPIRABLE_STATES, SessionState.EXPIRED, failure_reason="timeout"):
                logger.info("identification_expired", extra={"token": _token_ref(token)})
            session = self.get_session(token)
        return session

    def expire_due(self, now: datetime | None = None) -> int:
        """Bulk version of the lazy expiry: unresolved sessions (up to IDENTIFIED) past their deadline become EXPIRED."""
        result = self.db.execute(
            update(IdentificationSession)
            .where(
                IdentificationSession.state.in_([s.value for s in EXPIRABLE_STATES]),
                IdentificationSession.expires_at <= (now or utcnow()),
            )
            .values(state=SessionState.EXPIRED.value, failure_reason="timeout", updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        if result.rowcount:
            identification_sessions_total.labels(state=SessionState.EXPIRED.value).inc(result.rowcount)
        return result.rowcount

    def purge_sessions(self, now: datetime | None = None) -> int:
        """Delete sessions whose deadline is older than the retention window."""
        horizon = (now or utcnow()) - timedelta(hours=settings.identification_session_retention_hours)
        result = self.db.execute(
            delete(IdentificationSession)
            .where(IdentificationSession.expires_at < horizon)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount

    # ------------------------------------------------------------------
    # Identification
    # ------------------------------------------------------------------

    def begin_identification(
        self,
        visitor: Classification,
        article: Article,
        return_url: str | None = None,
    ) -> str:
        """Create a session and return the provider identify URL the visitor must be redirected to."""
        if not visitor.is_mobile:
            logger.info(
                "identification_refused_network",
                extra={"network_type": visitor.network_type.value, "article_id": article.id},
            )
            raise NetworkNotEligible(article_id=article.id)
        if not is_publicly_readable(article):
            raise InvalidRequest("article not available", article_id=article.id)
        return_url = validate_return_url(return_url, default=f"/articles/{article.slug}")

        token = secrets.token_urlsafe(32)
        now = utcnow()
        session = IdentificationSession(
            token=token,
            article_id=article.id,
            article_slug=article.slug,
            return_url=return_url,
            network_type=visitor.network_type.value,
            carrier_code=visitor.carrier.code if visitor.carrier else None,
            state=SessionState.INITIATED.value,
            created_at=now,
            updated_at=now,
            expires_at=now + self.ttl,
        )
        self.db.add(session)
        self.db.commit()
        identification_sessions_total.labels(state=SessionState.INITIATED.value).inc()

        callback_url = f"{self.base_url}/identify/callback?token={quote(token)}"
        redirect_url = self.provider.build_identify_url(token, callback_url)
        if not self._transition(token, [SessionState.INITIATED], SessionState.AWAITING_CALLBACK):
            raise SessionAlreadyConsumed(token=_token_ref(token))

        logger.info(
            "identification_started",
            extra={
                "token": _token_ref(token),
                "article_id": article.id,
                "carrier": session.carrier_code,
                "network_type": session.network_type,
            },
        )
        return redirect_url

    def handle_identify_callback(self, token: str, payload: Mapping[str, object]) -> IdentifyResult:
        self.provider.verify_callback(payload, token=_token_ref(token or ""))
        session = self._load(token)

        if session.state == SessionState.EXPIRED.value and session.msisdn is None:
            self._transition(token, [SessionState.EXPIRED], SessionState.FAILED, failure_reason="late_callback")
            logger.warning("identification_late_callback", extra={"token": _token_ref(token)})
            raise SessionExpired(token=_token_ref(token))
        if session.state != SessionState.AWAITING_CALLBACK.value:
            raise SessionAlreadyConsumed(token=_token_ref(token), state=session.state)

        status = (_first(payload, STATUS_KEYS) or "").lower()
        raw_msisdn = _first(payload, MSISDN_KEYS)
        error = _first(payload, ("error", "errormessage"))
        reason = None
        if error or (status and status not in IDENTIFY_OK_STATUSES):
            reason = "provider_error"
        elif not raw_msisdn:
            reason = "no_msisdn"
        if reason:
            self._fail(token, SessionState.AWAITING_CALLBACK, reason)
            raise IdentificationFailed(reason, token=_token_ref(token))

        try:
            msisdn = normalize_msisdn(raw_msisdn)
        except InvalidMsisdn:
            self._fail(token, SessionState.AWAITING_CALLBACK, "invalid_msisdn")
            raise IdentificationFailed("invalid_msisdn", token=_token_ref(token)) from None

        if not self._transition(
            token,
            [SessionState.AWAITING_CALLBACK],
            SessionState.IDENTIFIED,
            msisdn=msisdn,
            expires_at=utcnow() + self.ttl,
        ):
            raise SessionAlreadyConsumed(token=_token_ref(token))

        logger.info(
            "identification_succeeded",
            extra={
                "token": _token_ref(token),
                "msisdn": mask_msisdn(msisdn),
                "article_id": session.article_id,
                "carrier": _first(payload, ("operator", "OPERATOR")) or session.carrier_code,
            },
        )
        return IdentifyResult(
            token=token,
            msisdn=msisdn,
            article_id=session.article_id,
            article_slug=session.article_slug,
            return_url=session.return_url,
        )

    def _fail(self, token: str, from_state: SessionState, reason: str) -> None:
        self._transition(token, [from_state], SessionState.FAILED, failure_reason=reason)
        logger.warning("identification_failed", extra={"token": _token_ref(token), "reason": reason})

    # ------------------------------------------------------------------
    # Payment
    # ------------------------------------------------------------------

    def start_payment(self, token: str) -> PaymentRedirect:
        """IDENTIFIED -> PAYMENT_PENDING, then the provider charge start."""
        session = self._load(token)
        if session.state == SessionState.EXPIRED.value:
            raise SessionExpired(token=_token_ref(token))
        if session.state != SessionState.IDENTIFIED.value:
            raise SessionAlreadyConsumed(token=_token_ref(token), state=session.state)
        article = self.articles.require_by_id(session.article_id)
        return self._charge(session.msisdn, article, session.return_url, token=token)

    def start_payment_for_subscriber(
        self,
        msisdn: str,
        article: Article,
        return_url: str | None = None,
    ) -> PaymentRedirect:
        """Charge path for a visitor already carrying a valid identity cookie."""
        return_url = validate_return_url(return_url, default=f"/articles/{article.slug}")
        return self._charge(msisdn, article, return_url)

    def _charge(self, msisdn: str, article: Article, return_url: str, token: str | None = None) -> PaymentRedirect:
        if not is_publicly_readable(article):
            raise InvalidRequest("article not available", article_id=article.id)
        if self.ledger.has_unlock(msisdn, article.id):
            logger.info(
                "payment_skipped_already_unlocked",
                extra={"msisdn": mask_msisdn(msisdn), "article_id": article.id, "token": _token_ref(token) if token else None},
            )
            if token is not None:
                # Nothing left to pay for; the token must not stay chargeable
                self._transition(token, [SessionState.IDENTIFIED], SessionState.COMPLETED)
            return PaymentRedirect(redirect_url=return_url, already_unlocked=True)

        amount = self.settings_store.article_price_cents()
        currency = self.settings_store.article_currency()
        transaction_id, created = self.ledger.open_pending(
            msisdn, article.id, amount, currency, provider=self.provider.name
        )

        if token is not None and not self._transition(
            token, [SessionState.IDENTIFIED], SessionState.PAYMENT_PENDING, transaction_id=transaction_id
        ):
            raise SessionAlreadyConsumed(token=_token_ref(token))

        return_leg = f"{self.base_url}/payment/callback?tid={quote(transaction_id)}&next={quote(return_url, safe='')}"
        try:
            started = self.provider.start_payment(
                transaction_id=transaction_id,
                amount=amount,
                currency=currency,
                description=article.title,
                article_id=article.id,
                return_url=return_leg,
                error_url=f"{return_leg}&result=error",
                callback_url=f"{self.base_url}/payment/callback",
                msisdn=msisdn,
            )
        except ProviderError as e:
            if created:
                self.ledger.settle(
                    transaction_id,
                    UnlockOutcome(status=UnlockStatus.FAILED, failure_code=e.code),
                )
            else:
                # Shared with an earlier start that may still be charging; its callback decides the record
                logger.warning(
                    "payment_restart_failed_shared_transaction",
                    extra={"transaction_id": transaction_id, "error_code": e.code, "article_id": article.id},
                )
            if token is not None:
                self._transition(token, [SessionState.PAYMENT_PENDING], SessionState.FAILED, failure_reason=e.code)
            raise

        logger.info(
            "payment_started",
            extra={
                "transaction_id": transaction_id,
                "msisdn": mask_msisdn(msisdn),
                "article_id": article.id,
                "token": _token_ref(token) if token else None,
            },
        )
        return PaymentRedirect(redirect_url=started.redirect_url, transaction_id=transaction_id)

    def handle_payment_callback(self, transaction_id: str, payload: Mapping[str, object]) -> UnlockRecord:
        """Server-to-server charge notification. Re-delivery returns the already-resolved record."""
        if not transaction_id:
            raise InvalidRequest("missing transaction id")
        self.provider.verify_callback(payload, transaction_id=transaction_id)

        status = (_first(payload, STATUS_KEYS) or "").lower()
        if status in PAYMENT_OK_STATUSES:
            outcome = UnlockOutcome(
                status=UnlockStatus.COMPLETED,
                provider_reference=_first(payload, ("reference", "providerreference", "paymentid")),
            )
        else:
            outcome = UnlockOutcome(
                status=UnlockStatus.FAILED,
                provider_reference=_first(payload, ("reference", "providerreference", "paymentid")),
                failure_code=_first(payload, ("errorcode", "error")) or status or "unknown",
            )

        record, applied = self.ledger.settle(transaction_id, outcome)
        if applied and record.status == UnlockStatus.COMPLETED.value:
            self.articles.increment_unlock_count(record.article_id)

        # Sessions follow the ledger, not the payload, so a late conflicting callback cannot diverge them
        session_state = (
            SessionState.COMPLETED if record.status == UnlockStatus.COMPLETED.value else SessionState.FAILED
        )
        result = self.db.execute(
            update(IdentificationSession)
            .where(
                IdentificationSession.transaction_id == transaction_id,
                IdentificationSession.state == SessionState.PAYMENT_PENDING.value,
            )
            .values(
                state=session_state.value,
                failure_reason=None if session_state == SessionState.COMPLETED else record.failure_code,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        if result.rowcount:
            identification_sessions_total.labels(state=session_state.value).inc(result.rowcount)
        return record
