"""Garbage collection of expired counting windows.

Windows that expire without a later request from the same IP are never
claimed by the engine, so they would accumulate in the store forever.
The collector removes them; blacklist entries expire lazily and are not
swept.
"""

import asyncio
import random
import time
from typing import Callable, Optional

from ipgate.app.core.logging import get_logger
from ipgate.app.exceptions import StoreUnavailableError
from ipgate.app.store.base import StateStore
from ipgate.app.store.keys import CONTROL_KEY, EXPIRES_KEY

logger = get_logger(__name__)


class GarbageCollector:
    """Sweeps expired window entries out of the state store."""

    def __init__(self, store: StateStore):
        self._store = store

    async def sweep(self, now: Optional[int] = None) -> int:
        """Delete every window whose expires_at lies in the past.

        Counters left without an expiry field are removed as well. Idempotent:
        a second sweep with no requests in between removes nothing. Values
        that are not integers count as expired.

        Returns:
            Number of IPs whose window was removed.
        """
        if now is None:
            now = int(time.time())

        # Counters are read first so a window opened between the two reads
        # is never taken for an orphan.
        controls = await self._store.hgetall(CONTROL_KEY)
        expires = await self._store.hgetall(EXPIRES_KEY)
        stale = []
        for ip, raw in expires.items():
            try:
                expires_at = int(raw)
            except (TypeError, ValueError):
                stale.append(ip)
                continue
            if expires_at < now:
                stale.append(ip)

        orphans = [ip for ip in controls if ip not in expires]

        if not stale and not orphans:
            return 0

        await self._store.hdel(EXPIRES_KEY, *stale)
        await self._store.hdel(CONTROL_KEY, *stale, *orphans)
        logger.debug(f"Swept {len(stale)} expired windows and {len(orphans)} orphaned counters")
        return len(stale) + len(orphans)


class MaintenanceScheduler:
    """Runs GarbageCollector sweeps off the request path.

    Two triggers are supported:
    - maybe_schedule(): called once per request, starts a background sweep
      with the configured probability
    - start()/stop(): a periodic timer, enabled when interval_seconds > 0

    Sweep failures are logged and dropped; they only delay store cleanup.
    """

    def __init__(
        self,
        collector: GarbageCollector,
        probability: float = 0.1,
        interval_seconds: int = 0,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self._collector = collector
        self._probability = probability
        self._interval = interval_seconds
        self._rng = rng
        self._sweep_task: Optional[asyncio.Task] = None
        self._timer_task: Optional[asyncio.Task] = None
        self._shutdown_event = asyncio.Event()

    @property
    def sweep_running(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    def maybe_schedule(self) -> Optional[asyncio.Task]:
        """Start a background sweep with the configured probability.

        Never waits for the sweep. At most one probabilistic sweep runs
        per process at a time.

        Returns:
            The sweep task when one was started, else None.
        """
        if self._probability <= 0 or self.sweep_running:
            return None
        if self._rng() >= self._probability:
            return None
        self._sweep_task = asyncio.create_task(self.run_sweep())
        return self._sweep_task

    async def run_sweep(self) -> int:
        """Run one sweep, logging instead of raising on failure."""
        try:
            return await self._collector.sweep()
        except StoreUnavailableError as e:
            logger.warning(f"Window sweep skipped, store unavailable: {e}")
        except Exception as e:
            logger.exception(f"Unexpected error during window sweep: {e}")
        return 0

    async def start(self) -> None:
        """Start the periodic sweep task."""
        if self._interval <= 0 or self._timer_task is not None:
            return
        self._shutdown_event.clear()
        self._timer_task = asyncio.create_task(self._timer_loop())
        logger.info(f"Started window sweep task (every {self._interval}s)")

    async def stop(self) -> None:
        """Stop the periodic sweep task and wait for a running sweep."""
        if self._timer_task is not None:
            self._shutdown_event.set()
            try:
                await asyncio.wait_for(self._timer_task, timeout=5.0)
            except asyncio.TimeoutError:
                self._timer_task.cancel()
                try:
                    await self._timer_task
                except asyncio.CancelledError:
                    pass
            self._timer_task = None
            logger.info("Stopped window sweep task")

        if self.sweep_running:
            await self._sweep_task
        self._sweep_task = None

    async def _timer_loop(self) -> None:
        """Background loop for periodic sweeps."""
        while not self._shutdown_event.is_set():
            try:
                await asyncio.wait_for(
                    self._shutdown_event.wait(),
                    timeout=self._interval,
                )
            except asyncio.TimeoutError:
                pass
            if self._shutdown_event.is_set():
                break
            await self.run_sweep()
