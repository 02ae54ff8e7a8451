"""In-memory state store."""

import asyncio
from typing import Optional

from ipgate.app.store.base import StateStore, WindowOutcome, WindowStatus
from ipgate.app.store.keys import BLACKLIST_KEY, CONTROL_KEY, EXPIRES_KEY


class InMemoryStateStore(StateStore):
    """Process-local state store.

    Values are stored as strings, like Redis returns them with
    decode_responses enabled.

    Note: state is not shared between processes and is lost on restart,
    so this backend suits single-worker deployments and tests only.
    """

    def __init__(self) -> None:
        self._hashes: dict[str, dict[str, str]] = {}
        self._lock = asyncio.Lock()

    async def hget(self, namespace: str, field: str) -> Optional[str]:
        async with self._lock:
            return self._hashes.get(namespace, {}).get(field)

    async def hset(self, namespace: str, field: str, value: int | str) -> None:
        async with self._lock:
            self._hashes.setdefault(namespace, {})[field] = str(value)

    async def hdel(self, namespace: str, *fields: str) -> int:
        async with self._lock:
            return self._hdel_locked(namespace, fields)

    def _hdel_locked(self, namespace: str, fields: tuple[str, ...]) -> int:
        bucket = self._hashes.get(namespace)
        if not bucket:
            return 0
        removed = 0
        for field in fields:
            if bucket.pop(field, None) is not None:
                removed += 1
        if not bucket:
            del self._hashes[namespace]
        return removed

    async def hgetall(self, namespace: str) -> dict[str, str]:
        async with self._lock:
            return dict(self._hashes.get(namespace, {}))

    async def advance_window(
        self,
        ip: str,
        now: int,
        time_interval: int,
        max_requests: int,
        ban_time: int,
    ) -> WindowOutcome:
        async with self._lock:
            ban_until = self._int_locked(BLACKLIST_KEY, ip)
            if ban_until is not None:
                if ban_until >= now:
                    return WindowOutcome(WindowStatus.BANNED, ban_until=ban_until)
                self._hdel_locked(BLACKLIST_KEY, (ip,))

            expires_at = self._int_locked(EXPIRES_KEY, ip)
            if expires_at is not None and expires_at >= now:
                count = (self._int_locked(CONTROL_KEY, ip) or 0) + 1
                self._hashes.setdefault(CONTROL_KEY, {})[ip] = str(count)
                return WindowOutcome(WindowStatus.COUNTED, count=count)

            if expires_at is not None:
                count = self._int_locked(CONTROL_KEY, ip) or 0
                if count > max_requests:
                    ban_until = now + ban_time
                    self._hashes.setdefault(BLACKLIST_KEY, {})[ip] = str(ban_until)
                    self._hdel_locked(EXPIRES_KEY, (ip,))
                    self._hdel_locked(CONTROL_KEY, (ip,))
                    return WindowOutcome(WindowStatus.BREACHED, count=count, ban_until=ban_until)

            self._hashes.setdefault(EXPIRES_KEY, {})[ip] = str(now + time_interval)
            self._hashes.setdefault(CONTROL_KEY, {})[ip] = "1"
            return WindowOutcome(WindowStatus.COUNTED, count=1)

    def _int_locked(self, namespace: str, field: str) -> Optional[int]:
        raw = self._hashes.get(namespace, {}).get(field)
        if raw is None:
            return None
        try:
            return int(raw)
        except ValueError:
            return None

    async def ping(self) -> bool:
        return True

    async def clear(self) -> None:
        """Drop all hashes."""
        async with self._lock:
            self._hashes.clear()
