import logging

from fastapi import APIRouter, Depends, Response
import redis
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.api.routes.deps import get_idempotency_store
from app.db.session import get_db
from app.network.classifier import get_classifier
from app.services.idempotency import IdempotencyStore


logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
def health() -> dict:
    """Liveness probe - always returns 200 if app is running."""
    return {"status": "ok"}


@router.get("/ready")
def readiness(
    response: Response,
    db: Session = Depends(get_db),
    idempotency: IdempotencyStore = Depends(get_idempotency_store),
) -> dict:
    """Readiness probe: ledger database, Redis (dedup claims, settings cache, breaker) and the carrier table."""
    checks: dict[str, str] = {}
    try:
        db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except SQLAlchemyError as e:
        checks["database"] = type(e).__name__
    try:
        idempotency.client.ping()
        checks["redis"] = "ok"
    except redis.RedisError as e:
        checks["redis"] = type(e).__name__
    checks["carrier_ranges"] = str(len(get_classifier()))

    if checks["database"] != "ok" or checks["redis"] != "ok":
        logger.warning("readiness_failed", extra={"checks": checks})
        response.status_code = 503
        return {"status": "not_ready", "checks": checks}
    return {"status": "ready", "checks": checks}
