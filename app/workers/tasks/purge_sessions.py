"""
Celery beat task: expire overdue identification sessions and delete those past retention.
Not needed for correctness: expiry is also enforced when a session is read.
"""
import logging

from app.core.celery_app import celery_app
from app.db.session import SessionLocal
from app.services.identification.service import IdentificationFlow

logger = logging.getLogger(__name__)


@celery_app.task(
    name="app.workers.tasks.purge_sessions.purge_identification_sessions",
    time_limit=120,
    soft_time_limit=110,
)
def purge_identification_sessions() -> dict:
    db = SessionLocal()
    try:
        flow = IdentificationFlow(db)
        expired = flow.expire_due()
        purged = flow.purge_sessions()
        logger.info("identification_sessions_purged", extra={"count": purged, "expired_count": expired})
        return {"ok": True, "expired": expired, "purged": purged}
    except Exception:
        db.rollback()
        logger.exception("identification_sessions_purge_failed")
        raise
    finally:
        db.close()
