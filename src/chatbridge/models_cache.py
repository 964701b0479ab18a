"""Background-refreshed snapshot of a provider's model catalog."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence

from chatbridge.types import ModelCatalog, ModelDescriptor

ModelsFetcher = Callable[[], Awaitable[Sequence[ModelDescriptor]]]

_EMPTY = ModelCatalog()


class ModelsCache:
    """Serves the last good model catalog and refreshes it periodically.

    Each refresh replaces the whole snapshot, so readers see either the old
    or the new catalog. A failed refresh keeps the previous snapshot.
    """

    _logger = logging.getLogger(__name__)

    def __init__(self, fetch: ModelsFetcher, *, refresh_interval: float, name: str = "models") -> None:
        self._fetch = fetch
        self._refresh_interval = refresh_interval
        self._name = name
        self._snapshot: ModelCatalog | None = None
        self._refresh_lock = asyncio.Lock()
        self._stop: asyncio.Event | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def snapshot(self) -> ModelCatalog | None:
        """Current catalog without triggering a fetch."""
        return self._snapshot

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def get_models(self) -> ModelCatalog:
        """Return the current catalog, fetching once if none was loaded yet."""
        snapshot = self._snapshot
        if snapshot is not None:
            return snapshot

        async with self._refresh_lock:
            if self._snapshot is not None:
                return self._snapshot
            try:
                return await self._refresh_locked()
            except Exception as exc:
                self._logger.warning("Initial %s fetch failed, serving empty catalog: %s", self._name, exc)
                return _EMPTY

    async def supports_model(self, model_id: str) -> bool:
        return model_id in await self.get_models()

    async def refresh_models(self) -> ModelCatalog:
        """Fetch a new catalog now. Errors propagate and keep the old snapshot."""
        async with self._refresh_lock:
            return await self._refresh_locked()

    def start_background_refresh(self) -> None:
        """Start the periodic refresh task on the running event loop."""
        if self.running:
            return
        self._stop = asyncio.Event()
        self._task = asyncio.create_task(self._run(self._stop), name=f"{self._name}-refresh")
        self._logger.info("Started %s refresh every %.0fs", self._name, self._refresh_interval)

    async def stop_background_refresh(self) -> None:
        """Signal the refresh task and wait for any in-flight refresh to finish."""
        if self._task is None:
            return
        assert self._stop is not None
        self._stop.set()
        try:
            await self._task
        finally:
            self._task = None
            self._stop = None
            self._logger.info("Stopped %s refresh", self._name)

    async def _refresh_locked(self) -> ModelCatalog:
        models = await self._fetch()
        snapshot = ModelCatalog(models=tuple(models), fetched_at=time.time())
        self._snapshot = snapshot
        self._logger.info("Refreshed %s: %d models", self._name, len(snapshot))
        return snapshot

    async def _run(self, stop: asyncio.Event) -> None:
        while not stop.is_set():
            try:
                await asyncio.wait_for(stop.wait(), timeout=self._refresh_interval)
            except asyncio.TimeoutError:
                pass
            if stop.is_set():
                return
            try:
                await self.refresh_models()
            except Exception as exc:
                self._logger.warning("Background %s refresh failed, keeping last catalog: %s", self._name, exc)
