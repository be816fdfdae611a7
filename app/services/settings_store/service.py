"""
Key-value settings store with an explicit read-through cache.

Invalidation contract: entries live in Redis for settings.settings_cache_ttl
seconds; every write through SettingsStore.set deletes the cached entry, so a
write is visible to the next read on any replica.
"""
import json
import logging
from typing import Any

import redis
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.time import utcnow
from app.models.app_settings import AppSetting
from app.services.audit.service import AuditService

logger = logging.getLogger(__name__)

_MISSING = "__missing__"


class SettingsCache:
    def __init__(self, client: redis.Redis | None = None, ttl_seconds: int | None = None) -> None:
        self.client = client or redis.Redis.from_url(settings.redis_url, decode_responses=True)
        self.ttl = ttl_seconds if ttl_seconds is not None else settings.settings_cache_ttl

    def _key(self, key: str) -> str:
        return f"settings:{key}"

    def get(self, key: str) -> tuple[bool, Any]:
        """(hit, value). A cached miss is a hit with value None."""
        try:
            raw = self.client.get(self._key(key))
        except redis.RedisError as e:
            logger.warning("settings_cache_redis_error", extra={"error": str(e)})
            return False, None
        if raw is None:
            return False, None
        if raw == _MISSING:
            return True, None
        return True, json.loads(raw)

    def put(self, key: str, value: Any) -> None:
        raw = _MISSING if value is None else json.dumps(value)
        try:
            self.client.setex(self._key(key), self.ttl, raw)
        except redis.RedisError as e:
            logger.warning("settings_cache_redis_error", extra={"error": str(e)})

    def invalidate(self, key: str) -> None:
        # Not swallowed: a stale cache after a write would serve the old value for a full TTL
        self.client.delete(self._key(key))


class SettingsStore:
    def __init__(self, db: Session, cache: SettingsCache | None = None) -> None:
        self.db = db
        self.cache = cache or SettingsCache()

    def get(self, key: str, default: Any = None) -> Any:
        hit, value = self.cache.get(key)
        if not hit:
            row = self.db.query(AppSetting).filter(AppSetting.key == key).one_or_none()
            value = row.value if row else None
            self.cache.put(key, value)
        return default if value is None else value

    def set(self, key: str, value: Any, actor_id: str | None = None) -> Any:
        row = self.db.query(AppSetting).filter(AppSetting.key == key).one_or_none()
        old_value = row.value if row else None
        if row is None:
            row = AppSetting(key=key, value=value)
        else:
            row.value = value
            row.updated_at = utcnow()
        self.db.add(row)
        AuditService(self.db).log(
            actor_type="admin",
            actor_id=actor_id,
            action="setting_updated",
            entity_type="app_setting",
            entity_id=key,
            payload={"old": old_value, "new": value},
            commit=False,
        )
        self.db.commit()
        self.cache.invalidate(key)
        logger.info("setting_updated", extra={"setting_key": key})
        return value

    def as_dict(self) -> dict[str, Any]:
        return {row.key: row.value for row in self.db.query(AppSetting).order_by(AppSetting.key).all()}

    # Typed accessors for the values the payment path reads

    def article_price_cents(self) -> int:
        return int(self.get("article_price_cents", settings.article_price_cents))

    def article_currency(self) -> str:
        return str(self.get("article_currency", settings.article_currency)).upper()
