"""
UnlockLedger: durable record of paid unlocks.

Responsibilities:
- At most one pending unlock per (msisdn, article) inside the dedup window
- Idempotent completion keyed by transaction_id (conditional UPDATE)
- Entitlement query: a completed row for the pair
- Refunds as a status transition on the same row
- Purchase history and revenue stats
"""
import logging
import secrets
import string
import time
from datetime import timedelta

from pydantic import BaseModel
from sqlalchemy import func, update
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import InvalidRequest, LedgerConflict
from app.db.time import utcnow
from app.models.unlock import UnlockRecord, UnlockStatus
from app.services.audit.service import AuditService
from app.services.idempotency import IdempotencyStore
from app.utils.metrics import unlock_transactions_total
from app.utils.msisdn import mask_msisdn

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_lowercase


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    out = []
    while value:
        value, rem = divmod(value, 36)
        out.append(_BASE36[rem])
    return "".join(reversed(out))


def generate_transaction_id() -> str:
    """TXN-<base36 ms timestamp>-<64 random bits, base36>, upper-cased."""
    return f"TXN-{_base36(int(time.time() * 1000))}-{_base36(secrets.randbits(64))}".upper()


class UnlockOutcome(BaseModel):
    """What the provider said about a charge."""

    status: UnlockStatus
    provider_reference: str | None = None
    failure_code: str | None = None

    model_config = {"frozen": True}


class UnlockLedger:
    def __init__(self, db: Session, idempotency: IdempotencyStore | None = None) -> None:
        self.db = db
        self.idempotency = idempotency or IdempotencyStore()
        self.dedup_window = settings.unlock_dedup_window_seconds

    @staticmethod
    def _claim_key(msisdn: str, article_id: str) -> str:
        return f"unlock_initiate:{msisdn}:{article_id}"

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, transaction_id: str) -> UnlockRecord | None:
        return (
            self.db.query(UnlockRecord)
            .filter(UnlockRecord.transaction_id == transaction_id)
            .one_or_none()
        )

    def has_unlock(self, msisdn: str, article_id: str) -> bool:
        return (
            self.db.query(UnlockRecord.id)
            .filter(
                UnlockRecord.msisdn == msisdn,
                UnlockRecord.article_id == article_id,
                UnlockRecord.status == UnlockStatus.COMPLETED.value,
            )
            .first()
            is not None
        )

    def list_for_subscriber(self, msisdn: str, limit: int = 100) -> list[UnlockRecord]:
        """Purchase history: completed and refunded transactions, newest first."""
        return (
            self.db.query(UnlockRecord)
            .filter(
                UnlockRecord.msisdn == msisdn,
                UnlockRecord.status.in_([UnlockStatus.COMPLETED.value, UnlockStatus.REFUNDED.value]),
            )
            .order_by(UnlockRecord.created_at.desc())
            .limit(limit)
            .all()
        )

    def find_recent_pending(self, msisdn: str, article_id: str) -> UnlockRecord | None:
        cutoff = utcnow() - timedelta(seconds=self.dedup_window)
        return (
            self.db.query(UnlockRecord)
            .filter(
                UnlockRecord.msisdn == msisdn,
                UnlockRecord.article_id == article_id,
                UnlockRecord.status == UnlockStatus.PENDING.value,
                UnlockRecord.created_at >= cutoff,
            )
            .order_by(UnlockRecord.created_at.desc())
            .first()
        )

    def stats(self) -> dict:
        """Paid unlocks only. Bypass grants never reach the ledger."""
        completed = UnlockRecord.status == UnlockStatus.COMPLETED.value
        count, revenue, subscribers = (
            self.db.query(
                func.count(UnlockRecord.id),
                func.coalesce(func.sum(UnlockRecord.amount), 0),
                func.count(func.distinct(UnlockRecord.msisdn)),
            )
            .filter(completed)
            .one()
        )
        by_status = dict(
            self.db.query(UnlockRecord.status, func.count(UnlockRecord.id))
            .group_by(UnlockRecord.status)
            .all()
        )
        return {
            "completed_unlocks": int(count),
            "revenue_minor_units": int(revenue),
            "unique_subscribers": int(subscribers),
            "by_status": {status.value: int(by_status.get(status.value, 0)) for status in UnlockStatus},
        }

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def initiate(
        self,
        msisdn: str,
        article_id: str,
        amount: int,
        currency: str,
        provider: str | None = None,
    ) -> str:
        """
        Open a pending unlock and return its transaction_id.
        A pending transaction for the same pair younger than the dedup window is returned instead.
        """
        transaction_id, _ = self.open_pending(msisdn, article_id, amount, currency, provider)
        return transaction_id

    def open_pending(
        self,
        msisdn: str,
        article_id: str,
        amount: int,
        currency: str,
        provider: str | None = None,
    ) -> tuple[str, bool]:
        """
        Like initiate, but also reports whether the transaction is new.
        created is False when an in-flight transaction for the pair was reused; that charge may
        already be running at the provider, so only its creator may fail it.
        """
        existing = self.find_recent_pending(msisdn, article_id)
        if existing:
            unlock_transactions_total.labels(status="deduplicated").inc()
            logger.info(
                "unlock_initiate_deduplicated",
                extra={"transaction_id": existing.transaction_id, "msisdn": mask_msisdn(msisdn), "article_id": article_id},
            )
            return existing.transaction_id, False

        key = self._claim_key(msisdn, article_id)
        transaction_id = generate_transaction_id()
        for _ in range(2):
            owner = self.idempotency.claim(key, transaction_id, self.dedup_window)
            if owner == transaction_id:
                break
            owner_record = self.get(owner)
            if owner_record is None or owner_record.status == UnlockStatus.PENDING.value:
                # Concurrent initiate won the claim; its row is pending or about to be inserted
                unlock_transactions_total.labels(status="deduplicated").inc()
                logger.info(
                    "unlock_initiate_deduplicated",
                    extra={"transaction_id": owner, "msisdn": mask_msisdn(msisdn), "article_id": article_id},
                )
                return owner, False
            # Stale claim left by a resolved transaction
            self.idempotency.release(key)
        else:
            raise InvalidRequest("could not claim unlock initiation", article_id=article_id)

        record = UnlockRecord(
            transaction_id=transaction_id,
            msisdn=msisdn,
            article_id=article_id,
            amount=amount,
            currency=currency,
            provider=provider or settings.provider_name,
            status=UnlockStatus.PENDING.value,
        )
        self.db.add(record)
        self.db.commit()
        unlock_transactions_total.labels(status=UnlockStatus.PENDING.value).inc()
        logger.info(
            "unlock_initiated",
            extra={"transaction_id": transaction_id, "msisdn": mask_msisdn(msisdn), "article_id": article_id},
        )
        return transaction_id, True

    def settle(self, transaction_id: str, outcome: UnlockOutcome) -> tuple[UnlockRecord, bool]:
        """
        Apply a provider outcome to a pending transaction.
        Returns (record, applied); applied is False when the record was already resolved.
        """
        if outcome.status not in (UnlockStatus.COMPLETED, UnlockStatus.FAILED):
            raise InvalidRequest("outcome must be completed or failed", transaction_id=transaction_id)

        values = {
            "status": outcome.status.value,
            "provider_reference": outcome.provider_reference,
            "failure_code": outcome.failure_code,
        }
        if outcome.status == UnlockStatus.COMPLETED:
            values["completed_at"] = utcnow()
        result = self.db.execute(
            update(UnlockRecord)
            .where(
                UnlockRecord.transaction_id == transaction_id,
                UnlockRecord.status == UnlockStatus.PENDING.value,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()

        record = self.get(transaction_id)
        if record is None:
            logger.warning(
                "unlock_complete_unknown_transaction",
                extra={"transaction_id": transaction_id, "outcome": outcome.status.value},
            )
            AuditService(self.db).log(
                actor_type="provider",
                actor_id=settings.provider_name,
                action="unlock_complete_unknown_transaction",
                entity_type="unlock",
                entity_id=transaction_id,
                payload={"outcome": outcome.status.value},
            )
            raise LedgerConflict("completion for unknown transaction", transaction_id=transaction_id)

        if result.rowcount == 0:
            if record.status != outcome.status.value:
                logger.warning(
                    "unlock_conflicting_outcome_ignored",
                    extra={
                        "transaction_id": transaction_id,
                        "state": record.status,
                        "outcome": outcome.status.value,
                    },
                )
            else:
                logger.info(
                    "unlock_complete_replayed",
                    extra={"transaction_id": transaction_id, "state": record.status},
                )
            return record, False

        self.idempotency.release(self._claim_key(record.msisdn, record.article_id))
        unlock_transactions_total.labels(status=record.status).inc()
        log = logger.info if record.status == UnlockStatus.COMPLETED.value else logger.warning
        log(
            f"unlock_{record.status}",
            extra={
                "transaction_id": transaction_id,
                "msisdn": mask_msisdn(record.msisdn),
                "article_id": record.article_id,
                "error_code": record.failure_code,
            },
        )
        return record, True

    def complete(self, transaction_id: str, outcome: UnlockOutcome) -> UnlockRecord:
        """Idempotent: a resolved transaction is returned unchanged."""
        record, _ = self.settle(transaction_id, outcome)
        return record

    def refund(self, transaction_id: str, reason: str, actor_id: str | None = None) -> UnlockRecord:
        result = self.db.execute(
            update(UnlockRecord)
            .where(
                UnlockRecord.transaction_id == transaction_id,
                UnlockRecord.status == UnlockStatus.COMPLETED.value,
            )
            .values(
                status=UnlockStatus.REFUNDED.value,
                refunded_at=utcnow(),
                refund_reason=reason,
            )
            .execution_options(synchronize_session=False)
        )
        self.db.commit()

        record = self.get(transaction_id)
        if record is None:
            raise LedgerConflict("refund for unknown transaction", transaction_id=transaction_id)
        if result.rowcount == 0:
            raise InvalidRequest(
                f"cannot refund transaction in status {record.status}",
                transaction_id=transaction_id,
            )

        AuditService(self.db).log(
            actor_type="admin",
            actor_id=actor_id,
            action="unlock_refunded",
            entity_type="unlock",
            entity_id=transaction_id,
            payload={"reason": reason, "amount": record.amount, "currency": record.currency},
        )
        unlock_transactions_total.labels(status=UnlockStatus.REFUNDED.value).inc()
        logger.info(
            "unlock_refunded",
            extra={"transaction_id": transaction_id, "article_id": record.article_id, "reason": reason},
        )
        return record
