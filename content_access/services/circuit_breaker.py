"""
Circuit breaker вокруг платёжного шлюза (pybreaker).
Состояние хранится в Redis одним hash на breaker, все реплики API видят одно и то же;
если шлюз лежит, открытый breaker не даёт каждой реплике отдельно ждать таймаутов.
"""
import logging
from datetime import datetime, timezone

import pybreaker
import redis

from content_access.core.config import settings
from content_access.utils.metrics import circuit_breaker_state


logger = logging.getLogger("circuit_breaker")

_STATE = "state"
_FAILURES = "failures"
_SUCCESSES = "successes"
_OPENED_AT = "opened_at"


class RedisCircuitBreakerStorage(pybreaker.CircuitBreakerStorage):
    """Hash cb:<name> {state, failures, successes, opened_at}; TTL продлевается на каждую запись."""

    def __init__(self, name: str, client: redis.Redis | None = None) -> None:
        super().__init__(name)
        self._name = name
        self.client = client or redis.Redis.from_url(settings.redis_url, decode_responses=True)
        self._key = f"cb:{name}"
        self._ttl = settings.cb_open_seconds * 2

    def _read(self, field: str) -> str | None:
        return self.client.hget(self._key, field)

    def _write(self, field: str, value: str) -> None:
        self.client.hset(self._key, field, value)
        self.client.expire(self._key, self._ttl)

    def _bump(self, field: str) -> None:
        self.client.hincrby(self._key, field, 1)
        self.client.expire(self._key, self._ttl)

    @property
    def state(self) -> str:
        return self._read(_STATE) or pybreaker.STATE_CLOSED

    @state.setter
    def state(self, value: str) -> None:
        self._write(_STATE, value)
        circuit_breaker_state.labels(name=self._name).set(1 if value == pybreaker.STATE_OPEN else 0)

    @property
    def counter(self) -> int:
        return int(self._read(_FAILURES) or 0)

    def increment_counter(self) -> None:
        self._bump(_FAILURES)

    def reset_counter(self) -> None:
        self.client.hdel(self._key, _FAILURES)

    @property
    def success_counter(self) -> int:
        return int(self._read(_SUCCESSES) or 0)

    def increment_success_counter(self) -> None:
        self._bump(_SUCCESSES)

    def reset_success_counter(self) -> None:
        self.client.hdel(self._key, _SUCCESSES)

    @property
    def opened_at(self) -> datetime | None:
        raw = self._read(_OPENED_AT)
        return datetime.fromtimestamp(float(raw), tz=timezone.utc) if raw else None

    @opened_at.setter
    def opened_at(self, value: datetime) -> None:
        self._write(_OPENED_AT, str(value.timestamp()))


class GatewayBreakerListener(pybreaker.CircuitBreakerListener):
    """Переходы breaker и сбои вызовов шлюза -> WARNING-лог (для алертов)."""

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

    def failure(self, cb: pybreaker.CircuitBreaker, exc: BaseException) -> None:
        logger.warning("circuit_breaker_failure", extra={"breaker_name": self.name, "error": type(exc).__name__})


_breakers: dict[str, pybreaker.CircuitBreaker] = {}


def get_circuit_breaker(
    name: str,
    *,
    exclude: list[type[BaseException]] | None = None,
) -> pybreaker.CircuitBreaker:
    """Breaker по имени; создаётся при первом вызове шлюза, а не при импорте."""
    if name not in _breakers:
        _breakers[name] = pybreaker.CircuitBreaker(
            fail_max=settings.cb_failure_threshold,
            reset_timeout=settings.cb_open_seconds,
            exclude=exclude or [],
            state_storage=RedisCircuitBreakerStorage(name),
            listeners=[GatewayBreakerListener(name)],
        )
    return _breakers[name]
