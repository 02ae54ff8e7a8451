"""State store capability interface.

The rate limiter keeps no shared state in process memory; every worker
talks to the same store. Single-field methods are atomic on their own,
but sequences of calls are not, so callers must treat read-then-write as
racy. Window accounting goes through advance_window(), which reads and
updates all three hashes for one IP in a single atomic step.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class WindowStatus(int, Enum):
    """Result of advance_window, as returned by the store."""

    COUNTED = 0   # Request counted in an open or freshly started window
    BREACHED = 1  # Expired window was over the limit; IP is now banned
    BANNED = 2    # IP was already banned when the store was consulted


@dataclass(frozen=True)
class WindowOutcome:
    """What advance_window did for one request."""

    status: WindowStatus
    count: int = 0
    ban_until: Optional[int] = None


class StateStore(ABC):
    """Abstract base class for hash-style state stores.

    All implementations must inherit from this class. Failures of the
    underlying store are raised as StoreUnavailableError.
    """

    @abstractmethod
    async def hget(self, namespace: str, field: str) -> Optional[str]:
        """Read one field of a hash.

        Args:
            namespace: Hash name
            field: Field name (the client IP)

        Returns:
            The stored value, or None if the field does not exist.
        """
        pass

    @abstractmethod
    async def hset(self, namespace: str, field: str, value: int | str) -> None:
        """Write one field of a hash."""
        pass

    @abstractmethod
    async def hdel(self, namespace: str, *fields: str) -> int:
        """Delete fields of a hash.

        Returns:
            Number of fields actually removed.
        """
        pass

    @abstractmethod
    async def hgetall(self, namespace: str) -> dict[str, str]:
        """Return every field of a hash. Used only for maintenance sweeps."""
        pass

    @abstractmethod
    async def advance_window(
        self,
        ip: str,
        now: int,
        time_interval: int,
        max_requests: int,
        ban_time: int,
    ) -> WindowOutcome:
        """Account one request against the IP's counting window, atomically.

        Inside one atomic step:
        - a ban with ban_until >= now returns BANNED and writes nothing;
          an older ban is deleted
        - an open window (expires_at >= now) has its count incremented
        - an expired window with count > max_requests is replaced by a ban
          until now + ban_time (BREACHED)
        - otherwise a new window starts at now + time_interval with count 1

        Values that are not integers are treated as missing.
        """
        pass

    @abstractmethod
    async def ping(self) -> bool:
        """Check connectivity to the store."""
        pass

    async def close(self) -> None:
        """Release connections held by the store."""
        return None
