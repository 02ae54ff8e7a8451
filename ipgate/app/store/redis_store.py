"""Redis-based state store.

Uses Redis hashes shared by every worker process. Single commands are
atomic in Redis; window accounting runs as a Lua script.
"""

import asyncio
from typing import Any, Awaitable, Optional, TypeVar

import redis
import redis.asyncio as aioredis

from ipgate.app.core.logging import get_logger
from ipgate.app.exceptions import StoreUnavailableError
from ipgate.app.store.base import StateStore, WindowOutcome, WindowStatus
from ipgate.app.store.keys import BLACKLIST_KEY, CONTROL_KEY, EXPIRES_KEY
from ipgate.app.store.lua import ADVANCE_WINDOW_SCRIPT

logger = get_logger(__name__)

T = TypeVar("T")

STORE_EXCEPTIONS = (
    redis.ConnectionError,
    redis.TimeoutError,
    redis.RedisError,
    asyncio.TimeoutError,
    OSError,
)


class RedisStateStore(StateStore):
    """Redis-backed state store for multi-process deployments.

    Example:
        >>> store = RedisStateStore(redis_url="redis://localhost:6379/0")
        >>> await store.hset("RATELIMITER-EXPIRES", "203.0.113.7", 1700000015)
    """

    def __init__(
        self,
        redis_client: Optional[Any] = None,
        redis_url: Optional[str] = None,
        socket_timeout: float = 2.0,
        connect_timeout: float = 2.0,
    ) -> None:
        """Initialize the Redis state store.

        Args:
            redis_client: Optional pre-built redis.asyncio client
            redis_url: Redis connection URL, used when no client is given
            socket_timeout: Per-command deadline in seconds
            connect_timeout: Connection establishment deadline in seconds
        """
        self._redis = redis_client
        self._redis_url = redis_url
        self._socket_timeout = socket_timeout
        self._connect_timeout = connect_timeout

    def _get_client(self) -> Any:
        """Get or create the Redis client connection."""
        if self._redis is None:
            self._redis = aioredis.from_url(
                self._redis_url,
                decode_responses=True,
                socket_timeout=self._socket_timeout,
                socket_connect_timeout=self._connect_timeout,
            )
        return self._redis

    async def _run(self, operation: str, call: Awaitable[T]) -> T:
        try:
            return await call
        except STORE_EXCEPTIONS as e:
            logger.error(f"Redis {operation} failed: {e}")
            raise StoreUnavailableError(operation) from e

    @staticmethod
    def _decode(value: Any) -> Optional[str]:
        if value is None:
            return None
        if isinstance(value, bytes):
            return value.decode()
        return str(value)

    async def hget(self, namespace: str, field: str) -> Optional[str]:
        client = self._get_client()
        value = await self._run("hget", client.hget(namespace, field))
        return self._decode(value)

    async def hset(self, namespace: str, field: str, value: int | str) -> None:
        client = self._get_client()
        await self._run("hset", client.hset(namespace, field, value))

    async def hdel(self, namespace: str, *fields: str) -> int:
        if not fields:
            return 0
        client = self._get_client()
        return int(await self._run("hdel", client.hdel(namespace, *fields)))

    async def hgetall(self, namespace: str) -> dict[str, str]:
        client = self._get_client()
        raw = await self._run("hgetall", client.hgetall(namespace))
        return {self._decode(k): self._decode(v) for k, v in raw.items()}

    async def advance_window(
        self,
        ip: str,
        now: int,
        time_interval: int,
        max_requests: int,
        ban_time: int,
    ) -> WindowOutcome:
        client = self._get_client()
        status, count, ban_until = await self._run(
            "advance_window",
            client.eval(
                ADVANCE_WINDOW_SCRIPT,
                3,  # Number of keys
                BLACKLIST_KEY,  # KEYS[1]
                EXPIRES_KEY,  # KEYS[2]
                CONTROL_KEY,  # KEYS[3]
                ip,  # ARGV[1]
                now,  # ARGV[2]
                time_interval,  # ARGV[3]
                max_requests,  # ARGV[4]
                ban_time,  # ARGV[5]
            ),
        )
        status = WindowStatus(int(status))
        return WindowOutcome(
            status=status,
            count=int(count),
            ban_until=int(ban_until) if status is not WindowStatus.COUNTED else None,
        )

    async def ping(self) -> bool:
        client = self._get_client()
        return bool(await self._run("ping", client.ping()))

    async def close(self) -> None:
        """Close the Redis connection."""
        if self._redis is not None:
            try:
                await self._redis.aclose()
            except STORE_EXCEPTIONS as e:
                logger.warning(f"Error closing Redis connection: {e}")
            self._redis = None
