"""Rate limiter decision engine.

Counts requests per client IP in fixed windows of ``time_interval``
seconds. A window that ended with more than ``max_requests`` requests
gets its IP blacklisted for ``ban_time`` seconds, but only when the next
request from that IP arrives: breaches are detected lazily, never in the
background.

State machine per IP, evaluated on every consume():

    banned (ban_until >= now)  -> DENY
    ban expired                -> ban removed, request counted as usual
    no window                  -> new window, count = 1, ALLOW
    window active              -> count += 1, ALLOW
    window expired, breached   -> banned, window removed, DENY
    window expired, clean      -> new window, count = 1, ALLOW
"""

import time
from typing import Optional

from ipgate.app.core.config import LimiterConfig
from ipgate.app.core.logging import get_log_context, get_logger
from ipgate.app.exceptions import ConfigurationError
from ipgate.app.limiter.identity import ExceptionList
from ipgate.app.limiter.models import (
    BlacklistEntry,
    ClientState,
    Decision,
    RequestIdentity,
    WindowEntry,
)
from ipgate.app.store.base import StateStore, WindowStatus
from ipgate.app.store.keys import BLACKLIST_KEY, CONTROL_KEY, EXPIRES_KEY

logger = get_logger(__name__)


class RateLimiterEngine:
    """Per-IP admission control backed by a shared StateStore.

    The engine holds no mutable state of its own; any number of engines
    in any number of workers may share one store. Store failures are
    raised as StoreUnavailableError and never turned into a decision here.
    """

    def __init__(self, store: StateStore, config: Optional[LimiterConfig] = None):
        """Initialize the engine.

        Args:
            store: Shared state store
            config: Immutable limiter configuration (defaults apply if omitted)

        Raises:
            ConfigurationError: If no usable state store was given
        """
        if store is None:
            raise ConfigurationError("The state store instance is not available")
        if not isinstance(store, StateStore):
            raise ConfigurationError(
                f"Expected a StateStore, got {type(store).__name__}"
            )
        self._store = store
        self.config = config or LimiterConfig()
        self.exceptions = ExceptionList(self.config.exceptions)

    @property
    def store(self) -> StateStore:
        return self._store

    async def consume(self, identity: RequestIdentity, now: Optional[int] = None) -> Decision:
        """Account one request and decide whether it may proceed.

        Args:
            identity: Client IP, URL and negotiated content type
            now: Current epoch seconds (defaults to the wall clock)

        Returns:
            Decision.ALLOW or Decision.DENY
        """
        if self.exceptions.matches(identity.url):
            return Decision.ALLOW

        if now is None:
            now = int(time.time())
        ip = identity.ip

        ban_until = await self._read_int(BLACKLIST_KEY, ip)
        if ban_until is not None:
            if ban_until >= now:
                logger.debug(
                    "Request denied, client is banned",
                    extra=get_log_context(client_ip=ip, decision="deny", ban_until=ban_until),
                )
                return Decision.DENY
            # advance_window removes the expired ban in the same atomic step
            logger.info("Ban expired", extra=get_log_context(client_ip=ip))

        outcome = await self._store.advance_window(
            ip,
            now,
            self.config.time_interval,
            self.config.max_requests,
            self.config.ban_time,
        )

        if outcome.status is WindowStatus.BREACHED:
            logger.warning(
                f"Client banned after {outcome.count} requests in one window",
                extra=get_log_context(
                    client_ip=ip, decision="deny", count=outcome.count, ban_until=outcome.ban_until
                ),
            )
            return Decision.DENY

        if outcome.status is WindowStatus.BANNED:
            # Another worker banned the IP after the blacklist read above
            logger.debug(
                "Request denied, client is banned",
                extra=get_log_context(client_ip=ip, decision="deny", ban_until=outcome.ban_until),
            )
            return Decision.DENY

        logger.debug(
            "Request allowed",
            extra=get_log_context(client_ip=ip, decision="allow", count=outcome.count),
        )
        return Decision.ALLOW

    async def get_client_state(self, ip: str) -> ClientState:
        """Read the stored window and ban for one IP without changing them."""
        ban_until = await self._read_int(BLACKLIST_KEY, ip)
        expires_at = await self._read_int(EXPIRES_KEY, ip)
        window = None
        if expires_at is not None:
            count = await self._read_int(CONTROL_KEY, ip) or 0
            window = WindowEntry(expires_at=expires_at, count=count)
        ban = BlacklistEntry(ban_until=ban_until) if ban_until is not None else None
        return ClientState(ip=ip, window=window, ban=ban)

    async def _read_int(self, namespace: str, ip: str) -> Optional[int]:
        raw = await self._store.hget(namespace, ip)
        if raw is None:
            return None
        try:
            return int(raw)
        except ValueError:
            logger.warning(
                f"Ignoring malformed value {raw!r} in {namespace}",
                extra=get_log_context(client_ip=ip),
            )
            return None
