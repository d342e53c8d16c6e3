"""Process-wide cache of vault metrics with coalesced fetches.

Every chart and balance widget reads vault metrics through one
``VaultCache``. The cache serves its snapshot while it is younger than
``max_age_secs``, funnels concurrent refreshes into a single in-flight
fetch, and runs a staleness check every ``check_interval_secs`` for as
long as at least one subscriber is mounted.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable

from vaultpulse.constants import CACHE_DURATION_SECS, REFRESH_CHECK_INTERVAL_SECS
from vaultpulse.harvest_client import HarvestClient
from vaultpulse.metrics import CacheSnapshot

if TYPE_CHECKING:
    from vaultpulse.config import VaultPulseConfig
    from vaultpulse.metrics import VaultMetrics
    from vaultpulse.vault_source import VaultSource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheState:
    """What a subscriber sees: the snapshot plus loading/error flags."""

    snapshot: CacheSnapshot
    loading: bool
    error: Exception | None = None

    @property
    def data(self) -> dict[str, VaultMetrics] | None:
        return self.snapshot.data


Listener = Callable[[CacheState], None]


class VaultSubscription:
    """Handle returned by ``VaultCache.subscribe()``.

    Dispose it on every exit path (or use it as a context manager).
    Disposing twice is a no-op.
    """

    def __init__(self, cache: VaultCache, on_change: Listener | None = None) -> None:
        self._cache = cache
        self._on_change = on_change
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    @property
    def state(self) -> CacheState:
        return self._cache.state

    def dispose(self) -> None:
        if not self._active:
            return
        self._active = False
        self._cache._release(self)

    def __enter__(self) -> VaultSubscription:
        return self

    def __exit__(self, *args: object) -> None:
        self.dispose()


class VaultCache:
    """Shared vault metrics cache.

    - ``get()`` returns the current snapshot without I/O.
    - ``ensure_fresh()`` returns it if fresh, else joins or starts a fetch.
    - ``refresh()`` forces a fetch (joining one already in flight).
    - ``subscribe()`` reference-counts consumers; the first starts the
      background staleness check and the last one out cancels it.

    A failed fetch never replaces the snapshot: stale data stays visible
    and the error is surfaced to every caller awaiting that fetch. The
    cache never retries on its own; the next staleness tick or an explicit
    call does.

    All state is touched from the event loop thread only.
    """

    def __init__(
        self,
        source: VaultSource,
        max_age_secs: float = CACHE_DURATION_SECS,
        check_interval_secs: float = REFRESH_CHECK_INTERVAL_SECS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._source = source
        self._max_age = max_age_secs
        self._check_interval = check_interval_secs
        self._clock = clock
        self._snapshot = CacheSnapshot.empty()
        self._inflight: asyncio.Task[CacheSnapshot] | None = None
        self._subscriptions: list[VaultSubscription] = []
        self._refresh_task: asyncio.Task[None] | None = None
        self._last_error: Exception | None = None
        self._total_fetches: int = 0
        self._total_failures: int = 0

    @classmethod
    def from_config(
        cls, config: VaultPulseConfig, source: VaultSource | None = None
    ) -> VaultCache:
        return cls(
            source if source is not None else HarvestClient.from_config(config),
            max_age_secs=config.cache_duration_secs,
            check_interval_secs=config.refresh_check_interval_secs,
        )

    # -- reads ----------------------------------------------------------------

    def get(self) -> CacheSnapshot:
        return self._snapshot

    @property
    def state(self) -> CacheState:
        loading = self._inflight is not None or (
            self._snapshot.data is None and self._last_error is None
        )
        return CacheState(snapshot=self._snapshot, loading=loading, error=self._last_error)

    def is_fresh(self, max_age: float | None = None) -> bool:
        max_age = self._max_age if max_age is None else max_age
        return self._snapshot.is_fresh(self._clock(), max_age)

    # -- fetching -------------------------------------------------------------

    async def ensure_fresh(self, max_age: float | None = None) -> CacheSnapshot:
        """Return a snapshot no older than ``max_age`` seconds.

        Freshness is best-effort: with a fetch already in flight the caller
        joins it even when ``max_age`` is 0.
        """
        if self.is_fresh(max_age):
            return self._snapshot
        return await asyncio.shield(self._start_fetch())

    async def refresh(self) -> CacheSnapshot:
        """Fetch regardless of age, joining a fetch already in flight."""
        return await asyncio.shield(self._start_fetch())

    def _start_fetch(self) -> asyncio.Task[CacheSnapshot]:
        """Return the in-flight fetch, creating it if there is none.

        The task is stored before anything awaits, so every caller in the
        same tick sees it and joins instead of issuing a second request.
        """
        if self._inflight is None:
            self._last_error = None
            self._inflight = asyncio.get_running_loop().create_task(self._fetch())
            self._inflight.add_done_callback(self._on_fetch_done)
            self._notify()
        return self._inflight

    async def _fetch(self) -> CacheSnapshot:
        self._total_fetches += 1
        try:
            data = await self._source.fetch_vaults()
        except Exception as exc:
            self._total_failures += 1
            self._last_error = exc
            logger.warning(
                "Vault fetch failed (%s); keeping %s snapshot.",
                exc, "stale" if self._snapshot.has_data else "empty",
            )
            raise
        else:
            self._snapshot = CacheSnapshot(data=data, fetched_at=self._clock())
            logger.info("Fetched metrics for %d vault(s).", len(data))
            return self._snapshot
        finally:
            self._inflight = None

    def _on_fetch_done(self, task: asyncio.Task[CacheSnapshot]) -> None:
        # A task cancelled before its first step never reaches _fetch's finally.
        if self._inflight is task:
            self._inflight = None
        # Retrieve the outcome so fetches nobody awaited (mount-time or
        # scheduled) do not warn about unretrieved exceptions.
        if not task.cancelled():
            task.exception()
        self._notify()

    # -- subscriptions --------------------------------------------------------

    def subscribe(self, on_change: Listener | None = None) -> VaultSubscription:
        """Register a consumer. Must be called from a running event loop.

        Starts a fetch right away when the snapshot is stale and none is
        in flight; ``on_change`` is told when a fetch starts and settles.
        """
        sub = VaultSubscription(self, on_change)
        self._subscriptions.append(sub)
        if len(self._subscriptions) == 1:
            self._start_refresh_loop()
        if not self.is_fresh():
            self._start_fetch()
        return sub

    def _release(self, sub: VaultSubscription) -> None:
        if sub in self._subscriptions:
            self._subscriptions.remove(sub)
        if not self._subscriptions and self._refresh_task is not None:
            self._refresh_task.cancel()
            self._refresh_task = None

    def _notify(self) -> None:
        state = self.state
        for sub in list(self._subscriptions):
            if sub._on_change is None:
                continue
            try:
                sub._on_change(state)
            except Exception:
                logger.warning("Vault cache subscriber callback failed.", exc_info=True)

    # -- background staleness check ------------------------------------------

    def _start_refresh_loop(self) -> None:
        if self._refresh_task is not None:
            return
        self._refresh_task = asyncio.get_running_loop().create_task(self._refresh_loop())

    async def _refresh_loop(self) -> None:
        """Refresh stale data every ``check_interval_secs`` until cancelled."""
        logger.info(
            "Vault refresh loop started (interval=%ss, max age=%ss).",
            self._check_interval, self._max_age,
        )
        try:
            while True:
                await asyncio.sleep(self._check_interval)
                if self._inflight is not None or self.is_fresh():
                    continue
                try:
                    await self.ensure_fresh()
                except Exception as exc:
                    # Already recorded by _fetch; the next tick tries again.
                    logger.debug("Scheduled vault refresh failed: %s", exc)
        except asyncio.CancelledError:
            logger.info("Vault refresh loop stopped.")

    async def stop(self) -> None:
        """Drop every subscription and wait for the refresh loop to exit.

        An in-flight fetch is left to finish.
        """
        for sub in list(self._subscriptions):
            sub._active = False
        self._subscriptions.clear()
        task, self._refresh_task = self._refresh_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    # -- introspection --------------------------------------------------------

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    @property
    def refresh_running(self) -> bool:
        return self._refresh_task is not None and not self._refresh_task.done()

    @property
    def fetch_in_flight(self) -> bool:
        return self._inflight is not None

    def health(self) -> dict[str, object]:
        """Return cache health metrics for monitoring."""
        age = self._snapshot.age(self._clock())
        return {
            "vault_count": len(self._snapshot.data) if self._snapshot.data else 0,
            "fetched_at": self._snapshot.fetched_at,
            "age_secs": round(age, 1) if age is not None else None,
            "max_age_secs": self._max_age,
            "fresh": self.is_fresh(),
            "subscribers": self.subscriber_count,
            "refresh_running": self.refresh_running,
            "fetch_in_flight": self.fetch_in_flight,
            "last_error": str(self._last_error) if self._last_error else None,
            "total_fetches": self._total_fetches,
            "total_failures": self._total_failures,
        }


# Module-level singleton — one cache per process, shared by every consumer.
_shared_cache: VaultCache | None = None


def get_shared_cache(source: VaultSource | None = None, **kwargs: Any) -> VaultCache:
    """Return the process-wide cache, creating it on first use.

    ``source`` and ``kwargs`` only take effect on the creating call.
    """
    global _shared_cache
    if _shared_cache is None:
        _shared_cache = VaultCache(source if source is not None else HarvestClient(), **kwargs)
    return _shared_cache


def reset_shared_cache() -> None:
    """Forget the process-wide cache — for testing only."""
    global _shared_cache
    _shared_cache = None
