"""
Rate Limiter - per-user request limiting for the agent routes.

Two backends behind one interface:
- Redis sliding window (atomic Lua script over a sorted set) when REDIS_URL
  is configured
- In-process fixed window otherwise, swept by a task the limiter owns

The limiter is constructed once in the application lifespan, started and
stopped there, and kept on app.state. It fails open: a backend error lets
the request through.
"""

import asyncio
import time

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from familyos.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class RateLimiter:
    # Returns: {allowed (0 or 1), current_count, oldest_timestamp or 0}
    RATE_LIMIT_LUA_SCRIPT = """
    local key = KEYS[1]
    local limit = tonumber(ARGV[1])
    local window_seconds = tonumber(ARGV[2])
    local current_time = tonumber(ARGV[3])
    local unique_id = ARGV[4]

    redis.call('ZREMRANGEBYSCORE', key, 0, current_time - window_seconds)

    local current_count = redis.call('ZCARD', key)
    if current_count >= limit then
        local oldest_entries = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
        local oldest_timestamp = 0
        if #oldest_entries > 0 then
            oldest_timestamp = tonumber(oldest_entries[2])
        end
        return {0, current_count, oldest_timestamp}
    end

    redis.call('ZADD', key, current_time, unique_id)
    redis.call('EXPIRE', key, window_seconds * 2)
    return {1, current_count + 1, 0}
    """

    def __init__(
        self,
        redis_url: str | None = None,
        default_limit: int = 30,
        window_seconds: int = 60,
        fail_open: bool = True,
        sweep_interval: float = 60.0,
    ):
        self.redis_url = redis_url
        self.default_limit = default_limit
        self.window_seconds = window_seconds
        self.fail_open = fail_open
        self.sweep_interval = sweep_interval

        self._pool: ConnectionPool | None = None
        self._client: redis.Redis | None = None
        # key -> (window_start, count)
        self._windows: dict[str, tuple[float, int]] = {}
        self._sweeper: asyncio.Task | None = None
        self._started = False

    @property
    def backend(self) -> str:
        return "redis" if self._client is not None else "memory"

    async def start(self) -> None:
        if self._started:
            return

        if self.redis_url:
            try:
                self._pool = ConnectionPool.from_url(
                    self.redis_url,
                    max_connections=20,
                    socket_connect_timeout=10,
                    socket_timeout=10,
                    decode_responses=True,
                )
                self._client = redis.Redis(connection_pool=self._pool)
                await self._client.ping()
                logger.info("Rate limiter using Redis backend")
            except Exception as e:
                logger.error(
                    "Redis unavailable for rate limiting, using in-memory backend", error=str(e)
                )
                await self._close_redis()

        if self._client is None:
            self._sweeper = asyncio.create_task(self._sweep_loop(), name="rate-limit-sweeper")
            logger.info("Rate limiter using in-memory backend")

        self._started = True

    async def stop(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None

        await self._close_redis()
        self._windows.clear()
        self._started = False
        logger.info("Rate limiter stopped")

    async def check_rate_limit(
        self,
        key: str,
        limit: int | None = None,
        window_seconds: int | None = None,
    ) -> tuple[bool, dict]:
        """
        Count one request against `key`.

        Returns (allowed, info) where info carries limit, remaining and
        retry_after (seconds, when limited).
        """
        limit = limit or self.default_limit
        window_seconds = window_seconds or self.window_seconds

        try:
            if self._client is not None:
                return await self._check_redis(key, limit, window_seconds)
            return self._check_memory(key, limit, window_seconds)

        except Exception as e:
            logger.error(
                "Rate limiter backend error",
                error=str(e),
                error_type=type(e).__name__,
                key=key,
                limit=limit,
            )
            if self.fail_open:
                return True, self._create_info_dict(
                    allowed=True, limit=limit, remaining=limit, error="rate_limiter_error"
                )
            return False, self._create_info_dict(
                allowed=False, limit=limit, remaining=0, error="rate_limiter_error"
            )

    async def check_user_rate_limit(self, user_id: str, limit: int | None = None) -> tuple[bool, dict]:
        return await self.check_rate_limit(key=f"user:{user_id}", limit=limit)

    async def _check_redis(self, key: str, limit: int, window_seconds: int) -> tuple[bool, dict]:
        current_time = int(time.time())
        unique_id = f"{current_time}:{time.time_ns()}"

        result = await self._client.eval(
            self.RATE_LIMIT_LUA_SCRIPT,
            1,
            f"ratelimit:{key}",
            limit,
            window_seconds,
            current_time,
            unique_id,
        )

        allowed = bool(result[0])
        current_count = int(result[1])
        oldest_timestamp = int(result[2]) if result[2] else 0

        if not allowed:
            if oldest_timestamp > 0:
                retry_after = max(1, (oldest_timestamp + window_seconds) - current_time)
            else:
                retry_after = window_seconds
            return False, self._create_info_dict(
                allowed=False,
                limit=limit,
                remaining=0,
                retry_after=retry_after,
                window_seconds=window_seconds,
            )

        return True, self._create_info_dict(
            allowed=True,
            limit=limit,
            remaining=max(0, limit - current_count),
            window_seconds=window_seconds,
        )

    def _check_memory(self, key: str, limit: int, window_seconds: int) -> tuple[bool, dict]:
        now = time.monotonic()
        window_start, count = self._windows.get(key, (now, 0))
        if now - window_start >= window_seconds:
            window_start, count = now, 0

        if count >= limit:
            retry_after = max(1, int(window_start + window_seconds - now))
            return False, self._create_info_dict(
                allowed=False,
                limit=limit,
                remaining=0,
                retry_after=retry_after,
                window_seconds=window_seconds,
            )

        self._windows[key] = (window_start, count + 1)
        return True, self._create_info_dict(
            allowed=True,
            limit=limit,
            remaining=max(0, limit - count - 1),
            window_seconds=window_seconds,
        )

    def sweep(self) -> int:
        """Drop in-memory windows that have fully elapsed."""
        now = time.monotonic()
        stale = [
            key
            for key, (window_start, _) in self._windows.items()
            if now - window_start >= self.window_seconds
        ]
        for key in stale:
            del self._windows[key]
        return len(stale)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            removed = self.sweep()
            if removed:
                logger.debug("Rate limit windows swept", removed=removed)

    async def _close_redis(self) -> None:
        try:
            if self._client is not None:
                await self._client.aclose()
            if self._pool is not None:
                await self._pool.disconnect()
        except Exception as e:
            logger.error("Error closing rate limiter Redis client", error=str(e))
        finally:
            self._client = None
            self._pool = None

    @staticmethod
    def _create_info_dict(
        allowed: bool,
        limit: int,
        remaining: int,
        retry_after: int | None = None,
        window_seconds: int | None = None,
        error: str | None = None,
    ) -> dict:
        info = {
            "allowed": allowed,
            "limit": limit,
            "remaining": remaining,
            "retry_after": retry_after,
        }
        if window_seconds is not None:
            info["window_seconds"] = window_seconds
        if error:
            info["error"] = error
        return info
