"""
Circuit breakers for outbound provider calls (pybreaker).

State lives in Redis so every API replica sees the same provider health: one
replica tripping the breaker stops the others from hammering a failing
billing provider.
"""
import logging
from datetime import datetime

import pybreaker
import redis

from app.core.config import settings
from app.utils.metrics import circuit_breaker_state


logger = logging.getLogger("circuit_breaker")


class RedisCircuitBreakerStorage(pybreaker.CircuitBreakerStorage):
    """pybreaker storage backed by Redis keys breaker:<name>:*. Keys expire so a dead breaker cleans itself up."""

    def __init__(self, name: str, client: redis.Redis | None = None, ttl_seconds: int | None = None) -> None:
        super().__init__(name)
        self._name = name
        self.client = client or redis.Redis.from_url(settings.redis_url, decode_responses=True)
        self.ttl = ttl_seconds if ttl_seconds is not None else settings.cb_open_seconds

    def _key(self, part: str) -> str:
        return f"breaker:{self._name}:{part}"

    def _read_int(self, part: str) -> int:
        raw = self.client.get(self._key(part))
        return int(raw) if raw else 0

    def _bump(self, part: str) -> None:
        pipe = self.client.pipeline()
        pipe.incr(self._key(part))
        pipe.expire(self._key(part), self.ttl)
        pipe.execute()

    @property
    def state(self) -> str:
        return self.client.get(self._key("state")) or pybreaker.STATE_CLOSED

    @state.setter
    def state(self, value: str) -> None:
        # Outlives the open window so a half-open probe still finds it
        self.client.set(self._key("state"), value, ex=self.ttl * 2)
        circuit_breaker_state.labels(name=self._name).set(1 if value == pybreaker.STATE_OPEN else 0)

    @property
    def counter(self) -> int:
        return self._read_int("failures")

    def increment_counter(self) -> None:
        self._bump("failures")

    def reset_counter(self) -> None:
        self.client.delete(self._key("failures"))

    @property
    def success_counter(self) -> int:
        return self._read_int("successes")

    def increment_success_counter(self) -> None:
        self._bump("successes")

    def reset_success_counter(self) -> None:
        self.client.delete(self._key("successes"))

    @property
    def opened_at(self) -> datetime | None:
        raw = self.client.get(self._key("opened_at"))
        # isoformat keeps whatever tz-awareness pybreaker wrote
        return datetime.fromisoformat(raw) if raw else None

    @opened_at.setter
    def opened_at(self, value: datetime) -> None:
        self.client.set(self._key("opened_at"), value.isoformat(), ex=self.ttl * 2)


class ProviderBreakerListener(pybreaker.CircuitBreakerListener):
    def __init__(self, name: str) -> None:
        self.name = name

    def state_change(self, cb: pybreaker.CircuitBreaker, old_state, new_state) -> None:
        logger.warning(
            "circuit_breaker_state_change",
            extra={
                "breaker_name": self.name,
                "old_state": getattr(old_state, "name", str(old_state)),
                "new_state": getattr(new_state, "name", str(new_state)),
            },
        )

    def failure(self, cb: pybreaker.CircuitBreaker, exc: Exception) -> None:
        logger.warning("circuit_breaker_failure", extra={"breaker_name": self.name, "error": type(exc).__name__})


_breakers: dict[str, pybreaker.CircuitBreaker] = {}


def build_circuit_breaker(name: str, client: redis.Redis | None = None) -> pybreaker.CircuitBreaker:
    return pybreaker.CircuitBreaker(
        fail_max=settings.cb_failure_threshold,
        reset_timeout=settings.cb_open_seconds,
        state_storage=RedisCircuitBreakerStorage(name, client=client),
        listeners=[ProviderBreakerListener(name)],
        name=name,
    )


def get_circuit_breaker(name: str) -> pybreaker.CircuitBreaker:
    """Process-wide breaker per name (the state itself is shared through Redis)."""
    if name not in _breakers:
        _breakers[name] = build_circuit_breaker(name)
    return _breakers[name]
