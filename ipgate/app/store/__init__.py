"""Shared state store for the rate limiter.

Provides a pluggable store with Redis and in-memory implementations.
"""

from typing import Optional

from ipgate.app.store.base import StateStore, WindowOutcome, WindowStatus
from ipgate.app.store.keys import BLACKLIST_KEY, CONTROL_KEY, EXPIRES_KEY
from ipgate.app.store.memory import InMemoryStateStore
from ipgate.app.store.redis_store import RedisStateStore

__all__ = [
    "StateStore",
    "WindowOutcome",
    "WindowStatus",
    "InMemoryStateStore",
    "RedisStateStore",
    "BLACKLIST_KEY",
    "EXPIRES_KEY",
    "CONTROL_KEY",
    "get_state_store",
    "reset_state_store",
]


# Global store instance (singleton pattern)
_store_instance: Optional[StateStore] = None


def get_state_store(
    backend: Optional[str] = None,
    redis_url: Optional[str] = None,
    force_new: bool = False,
) -> StateStore:
    """Get or create the global state store instance.

    Args:
        backend: 'redis', 'memory', or None to follow settings.redis_enabled.
        redis_url: Redis connection URL. Defaults to settings.redis_url.
        force_new: If True, create a new instance even if one exists.

    Returns:
        A StateStore instance (RedisStateStore or InMemoryStateStore).
    """
    global _store_instance

    if _store_instance is not None and not force_new:
        return _store_instance

    from ipgate.app.core.config import settings

    if backend == "redis":
        use_redis = True
    elif backend == "memory":
        use_redis = False
    else:
        use_redis = settings.redis_enabled

    if use_redis:
        _store_instance = RedisStateStore(
            redis_url=redis_url or settings.redis_url,
            socket_timeout=settings.redis_socket_timeout,
            connect_timeout=settings.redis_connect_timeout,
        )
    else:
        _store_instance = InMemoryStateStore()
    return _store_instance


def reset_state_store() -> None:
    """Reset the global state store instance.

    This is primarily useful for testing.
    """
    global _store_instance
    _store_instance = None
