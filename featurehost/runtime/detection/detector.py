"""Merges change sources into debounced, deduplicated scan triggers."""

import asyncio
import logging
from collections import Counter
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set

from .sources import ChangeSource, LocationProvider, resolve_location

logger = logging.getLogger(__name__)


class ChangeDetector:
    """Funnels every change source into one debounced ``on_change(url)`` call.

    A burst of notifications within ``debounce_ms`` collapses into a single
    dispatch. The location is read when the dispatch fires; if it equals the
    last dispatched location nothing is dispatched.
    """

    def __init__(self, location_provider: LocationProvider,
                 on_change: Callable[[str], Awaitable[Any]],
                 sources: Optional[Iterable[ChangeSource]] = None,
                 debounce_ms: int = 100):
        self._provider = location_provider
        self._on_change = on_change
        self.sources: List[ChangeSource] = list(sources or [])
        self.debounce = debounce_ms / 1000
        self._last_dispatched: Optional[str] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()
        self._running = False
        self.notifications: Counter = Counter()
        self.dispatched = 0
        self.suppressed = 0

    @property
    def running(self) -> bool:
        return self._running

    @property
    def last_dispatched(self) -> Optional[str]:
        return self._last_dispatched

    def add_source(self, source: ChangeSource) -> None:
        self.sources.append(source)

    async def start(self, initial_url: Optional[str] = None) -> None:
        """Start every source. ``initial_url`` counts as already dispatched."""
        if self._running:
            return
        self._running = True
        if initial_url is not None:
            self._last_dispatched = initial_url
        for source in self.sources:
            try:
                await source.start(self.notify)
            except Exception as e:
                logger.error(f"Failed to start change source '{source.name}': {e}")
        logger.info(f"Change detector started with sources: {[s.name for s in self.sources if s.running]}")

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        for source in self.sources:
            try:
                await source.stop()
            except Exception as e:
                logger.error(f"Failed to stop change source '{source.name}': {e}")
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("Change detector stopped")

    def notify(self, source_name: str, url: Optional[str] = None) -> None:
        """Called by sources; schedules a debounced dispatch."""
        if not self._running:
            return
        self.notifications[source_name] += 1
        if url is not None and url == self._last_dispatched and self._timer is None:
            self.suppressed += 1
            return
        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.debounce, self._fire)

    def _fire(self) -> None:
        self._timer = None
        if not self._running:
            return
        task = asyncio.ensure_future(self._dispatch())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _dispatch(self) -> None:
        try:
            url = await resolve_location(self._provider)
        except Exception as e:
            logger.warning(f"Change detector could not read location: {e}")
            return
        if url == self._last_dispatched:
            self.suppressed += 1
            return
        self._last_dispatched = url
        self.dispatched += 1
        logger.debug(f"Location changed to {url}")
        try:
            await self._on_change(url)
        except Exception:
            logger.exception(f"Change handler failed for {url}")

    async def flush(self) -> None:
        """Fire a pending debounce immediately and wait for dispatches to finish."""
        if self._timer is not None:
            self._timer.cancel()
            self._fire()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "last_dispatched": self._last_dispatched,
            "notifications": dict(self.notifications),
            "dispatched": self.dispatched,
            "suppressed": self.suppressed,
            "sources": {s.name: {"running": s.running, "emitted": s.emitted} for s in self.sources},
        }
