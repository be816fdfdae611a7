"""
Audit trail for actions that move money or grant access outside the ledger:
bypass grants, refunds, settings writes and provider callbacks we cannot match.
"""
from typing import Any

from sqlalchemy.orm import Session

from app.models.audit_log import AuditLog

ACTOR_TYPES = frozenset({"admin", "bypass", "provider", "system"})


class AuditService:
    def __init__(self, db: Session) -> None:
        self.db = db

    def log(
        self,
        *,
        actor_type: str,
        actor_id: str | None,
        action: str,
        entity_type: str,
        entity_id: str | None,
        payload: dict[str, Any] | None = None,
        commit: bool = True,
    ) -> AuditLog:
        """Append one row. commit=False only flushes, so the caller's own write and the audit row land together."""
        if actor_type not in ACTOR_TYPES:
            raise ValueError(f"unknown audit actor type {actor_type!r}")
        entry = AuditLog(
            actor_type=actor_type,
            actor_id=actor_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            payload=payload or {},
        )
        self.db.add(entry)
        if not commit:
            self.db.flush()
            return entry
        self.db.commit()
        self.db.refresh(entry)
        return entry
