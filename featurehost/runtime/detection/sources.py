"""Change sources: independent signals that the page location may have changed.

No single signal catches every same-document navigation, so several sources
run side by side and report into one ``ChangeDetector``.
"""

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union

logger = logging.getLogger(__name__)


LocationProvider = Callable[[], Union[str, Awaitable[str]]]
NotifyCallback = Callable[[str, Optional[str]], None]


async def resolve_location(provider: LocationProvider) -> str:
    """Read the current location from a sync or async provider."""
    value = provider()
    if inspect.isawaitable(value):
        value = await value
    return value


class ChangeSource(ABC):
    """A signal that reports possible location changes to a detector."""

    name = "source"

    def __init__(self):
        self._notify: Optional[NotifyCallback] = None
        self._running = False
        self.emitted = 0

    @property
    def running(self) -> bool:
        return self._running

    async def start(self, notify: NotifyCallback) -> None:
        """Begin reporting through ``notify(source_name, url_or_none)``."""
        if self._running:
            return
        self._notify = notify
        self._running = True
        try:
            await self._on_start()
        except Exception:
            self._running = False
            self._notify = None
            raise
        logger.debug(f"Change source '{self.name}' started")

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        try:
            await self._on_stop()
        finally:
            self._notify = None
        logger.debug(f"Change source '{self.name}' stopped")

    def emit(self, url: Optional[str] = None) -> None:
        """Report a possible change; ``url`` may be omitted if unknown."""
        if not self._running or self._notify is None:
            return
        self.emitted += 1
        self._notify(self.name, url)

    @abstractmethod
    async def _on_start(self) -> None:
        ...

    async def _on_stop(self) -> None:
        pass


class PollingSource(ChangeSource):
    """Bounded-interval poll of the location, for changes nothing else reports."""

    name = "polling"

    def __init__(self, location_provider: LocationProvider, interval_ms: int = 1000):
        super().__init__()
        self._provider = location_provider
        self.interval = interval_ms / 1000
        self._task: Optional[asyncio.Task] = None
        self._last_seen: Optional[str] = None

    async def _on_start(self) -> None:
        try:
            self._last_seen = await resolve_location(self._provider)
        except Exception as e:
            logger.warning(f"Polling source could not read initial location: {e}")
            self._last_seen = None
        self._task = asyncio.ensure_future(self._poll())

    async def _on_stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _poll(self) -> None:
        while self._running:
            await asyncio.sleep(self.interval)
            try:
                url = await resolve_location(self._provider)
            except Exception as e:
                logger.warning(f"Polling source failed to read location: {e}")
                continue
            if url != self._last_seen:
                self._last_seen = url
                self.emit(url)


class MutationSource(ChangeSource):
    """Push-based source fed with batches of structural mutation records.

    Records are dicts with ``type``, ``targetId``, ``hostId``,
    ``attributeName`` and ``href`` keys. Mutations inside feature host
    elements and changes of purely presentational attributes are noise.
    """

    name = "mutation"

    def __init__(self, ignored_id_prefixes: Iterable[str] = ("featurehost-",),
                 ignored_attributes: Iterable[str] = ("style", "class", "aria-busy")):
        super().__init__()
        self.ignored_id_prefixes = tuple(ignored_id_prefixes)
        self.ignored_attributes = set(ignored_attributes)
        self.received = 0
        self.filtered = 0

    async def _on_start(self) -> None:
        pass

    def is_noise(self, record: Dict[str, Any]) -> bool:
        for key in ("hostId", "targetId"):
            element_id = record.get(key) or ""
            if element_id and element_id.startswith(self.ignored_id_prefixes):
                return True
        if record.get("type") == "attributes" and record.get("attributeName") in self.ignored_attributes:
            return True
        return False

    def handle_mutations(self, records: List[Dict[str, Any]]) -> bool:
        """Filter a batch and emit once if anything relevant remains."""
        if not self._running or not records:
            return False
        self.received += len(records)
        relevant = [r for r in records if not self.is_noise(r)]
        self.filtered += len(records) - len(relevant)
        if not relevant:
            return False
        self.emit(relevant[-1].get("href"))
        return True


class ManualSource(ChangeSource):
    """Source triggered explicitly, e.g. by a history API hook in a feature."""

    name = "manual"

    async def _on_start(self) -> None:
        pass

    def trigger(self, url: Optional[str] = None) -> None:
        self.emit(url)
