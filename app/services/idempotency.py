import redis

from app.core.config import settings


class IdempotencyStore:
    def __init__(self, client: redis.Redis | None = None) -> None:
        self.client = client or redis.Redis.from_url(settings.redis_url, decode_responses=True)
        self.default_ttl = settings.unlock_dedup_window_seconds

    def claim(self, key: str, value: str, ttl_seconds: int | None = None) -> str:
        """
        Atomically bind key -> value unless already bound.
        Returns the value that owns the key (ours if we won the race).
        """
        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl
        full_key = f"idempotency:{key}"
        if self.client.set(full_key, value, nx=True, ex=ttl):
            return value
        current = self.client.get(full_key)
        if current is None:
            # owner expired between SET and GET
            self.client.set(full_key, value, nx=True, ex=ttl)
            current = self.client.get(full_key) or value
        return current

    def release(self, key: str) -> None:
        self.client.delete(f"idempotency:{key}")
