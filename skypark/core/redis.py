"""
Redis connection and the booking rate limiter

Redis is optional for SkyPark: when it is unreachable the limiter fails open
and the circuit breaker stops every request from paying a connect timeout.
"""

import redis.asyncio as redis
from typing import Optional, Tuple
import logging
import asyncio
import time

from skypark.config import settings

logger = logging.getLogger(__name__)

redis_client: Optional[redis.Redis] = None


async def init_redis():
    global redis_client
    redis_client = redis.from_url(
        settings.REDIS_URL,
        max_connections=settings.REDIS_MAX_CONNECTIONS,
        decode_responses=True
    )
    try:
        await redis_client.ping()
    except Exception as e:
        logger.error(f"Failed to connect to Redis: {e}")
        raise
    logger.info("Redis connection established")


async def close_redis():
    global redis_client
    if redis_client:
        await redis_client.aclose()
        redis_client = None
        logger.info("Redis connection closed")


async def get_redis() -> redis.Redis:
    if not redis_client:
        await init_redis()
    return redis_client


class CircuitBreakerOpen(Exception):
    """Raised when calls are short-circuited"""


class CircuitBreaker:
    """
    Opens after `failure_threshold` consecutive failures and lets a single
    probe through once `recovery_timeout` seconds have passed
    """

    def __init__(self, failure_threshold: int = 5, recovery_timeout: float = 30):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.opened_at: Optional[float] = None
        self._probing = False
        self._lock = asyncio.Lock()

    @property
    def state(self) -> str:
        if self.opened_at is None:
            return "CLOSED"
        if time.monotonic() - self.opened_at >= self.recovery_timeout:
            return "HALF_OPEN"
        return "OPEN"

    async def call(self, func, *args, **kwargs):
        async with self._lock:
            state = self.state
            if state == "OPEN" or (state == "HALF_OPEN" and self._probing):
                raise CircuitBreakerOpen(f"Redis circuit {state.lower()}")
            self._probing = state == "HALF_OPEN"

        try:
            result = await func(*args, **kwargs)
        except Exception:
            async with self._lock:
                self._probing = False
                self.failure_count += 1
                if state == "HALF_OPEN" or self.failure_count >= self.failure_threshold:
                    self.opened_at = time.monotonic()
                    logger.warning(f"Redis circuit opened after {self.failure_count} failures")
            raise

        async with self._lock:
            if self.opened_at is not None:
                logger.info("Redis circuit closed")
            self._probing = False
            self.failure_count = 0
            self.opened_at = None
        return result


class RedisManager:
    """Redis access guarded by a circuit breaker"""

    def __init__(self):
        self.circuit_breaker = CircuitBreaker()

    async def get_client(self) -> redis.Redis:
        client = await self.circuit_breaker.call(get_redis)
        await self.circuit_breaker.call(client.ping)
        return client

    async def is_rate_limited(self, key: str, limit: int, window: int = 60) -> Tuple[bool, int]:
        """
        Count one attempt against `key` in the current fixed window.

        Returns (limited, attempts_in_window). Any Redis failure is
        reported as not limited.
        """
        bucket = f"rate:{key}:{int(time.time()) // window}"
        try:
            count = await self.circuit_breaker.call(self._hit, bucket, window)
        except CircuitBreakerOpen:
            return False, 0
        except Exception as e:
            logger.error(f"Rate limit check failed for {key}: {e}")
            return False, 0
        return count > limit, count

    async def _hit(self, bucket: str, window: int) -> int:
        client = await get_redis()
        async with client.pipeline(transaction=True) as pipe:
            pipe.incr(bucket)
            pipe.expire(bucket, window + 1)
            count, _ = await pipe.execute()
        return int(count)


redis_manager = RedisManager()
