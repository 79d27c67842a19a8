import enum
import logging
import time

from .redis_client import redis_client

logger = logging.getLogger(__name__)


class BreakerState(str, enum.Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreakerOpen(Exception):
    pass


class CircuitBreaker:
    """
    Circuit breaker for calls out of the booking service, kept in Redis so
    every replica sees the same state.

    CLOSED counts failures inside ``failure_window_seconds``; reaching
    ``failure_threshold`` opens it. OPEN rejects calls until
    ``reset_timeout_seconds`` pass, then one HALF_OPEN probe decides.
    """

    def __init__(self, name: str, failure_threshold: int = 5, reset_timeout_seconds: int = 15,
                 failure_window_seconds: int = 60):
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout_seconds = reset_timeout_seconds
        self.failure_window_seconds = failure_window_seconds

    def _key(self, part: str) -> str:
        return f"booking:breaker:{self.name}:{part}"

    async def state(self) -> BreakerState:
        raw = await redis_client.get(self._key("state"))
        return BreakerState(raw) if raw else BreakerState.CLOSED

    async def allow_request(self) -> None:
        if await self.state() != BreakerState.OPEN:
            return

        opened_at = await redis_client.get(self._key("opened_at"))
        if opened_at and time.time() - float(opened_at) < self.reset_timeout_seconds:
            raise CircuitBreakerOpen(f"{self.name} is unavailable; retry in a few seconds")

        await redis_client.set(self._key("state"), BreakerState.HALF_OPEN.value)

    async def record_success(self) -> None:
        if await self.state() != BreakerState.CLOSED:
            logger.info(f"breaker {self.name} closed")
        await self.close()

    async def record_failure(self) -> None:
        if await self.state() == BreakerState.HALF_OPEN:
            await self.open()
            return

        failures = await redis_client.incr(self._key("failures"))
        if failures == 1:
            await redis_client.expire(self._key("failures"), self.failure_window_seconds)
        if failures >= self.failure_threshold:
            await self.open()

    async def open(self) -> None:
        ttl = self.reset_timeout_seconds + 30
        pipe = redis_client.pipeline()
        pipe.set(self._key("state"), BreakerState.OPEN.value, ex=ttl)
        pipe.set(self._key("opened_at"), str(time.time()), ex=ttl)
        await pipe.execute()
        logger.warning(f"breaker {self.name} opened")

    async def close(self) -> None:
        pipe = redis_client.pipeline()
        pipe.set(self._key("state"), BreakerState.CLOSED.value, ex=3600)
        pipe.delete(self._key("failures"), self._key("opened_at"))
        await pipe.execute()

    async def status(self) -> dict:
        failures = await redis_client.get(self._key("failures"))
        return {
            "name": self.name,
            "state": (await self.state()).value,
            "failures": int(failures or 0),
            "failure_threshold": self.failure_threshold,
        }
