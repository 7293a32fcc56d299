"""Lifecycle controller: decides which features run for a location.

Each scan pass matches every registered feature against the location,
ranks the matches by specificity (registration order breaks ties), applies
exclusion rules and initializes the winners one at a time. When the location
changes, every active feature is cleaned up before anything new starts.

Feature callbacks are isolated: a failing ``init`` or ``cleanup`` is
recorded through the health reporter and never escapes ``check_page``.
"""

import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Optional, Set

from ..config.settings import RuntimeConfig
from ..detection.detector import ChangeDetector
from ..detection.sources import LocationProvider, resolve_location
from ..features.base import FeatureDescriptor
from ..features.registry import FeatureRegistry
from ..health.reporter import HealthReporter
from ..models.lifecycle import FeatureEntry, FeatureState, HealthStatus, MatchResult, Operation
from ..utils.pattern_matcher import MatchContext, PatternMatcher

logger = logging.getLogger(__name__)


class LifecycleController:
    """State machine driving feature init/cleanup for a page session.

    Args:
        registry: Features available in this session; frozen on ``init()``
        location_provider: Returns the current location (sync or async)
        detector: Change detector to start after the first scan
        reporter: Health reporter; a default one is built from ``config``
        matcher: Pattern matcher; defaults to the registry's weights
        config: Runtime configuration (feature toggles, health settings)
    """

    def __init__(self, registry: FeatureRegistry,
                 location_provider: Optional[LocationProvider] = None,
                 detector: Optional[ChangeDetector] = None,
                 reporter: Optional[HealthReporter] = None,
                 matcher: Optional[PatternMatcher] = None,
                 config: Optional[RuntimeConfig] = None):
        self.registry = registry
        self.config = config or RuntimeConfig()
        self.location_provider = location_provider
        self.detector = detector
        self.reporter = reporter or HealthReporter.from_config(self.config.health)
        self.matcher = matcher or PatternMatcher()

        self._features: Dict[str, FeatureEntry] = {}
        self._activation_order: List[str] = []
        self._last_url: Optional[str] = None
        self._generation = 0
        self._lock = asyncio.Lock()
        self._scan_task: Optional[asyncio.Task] = None
        self._deferred: Set[asyncio.Future] = set()
        self._started = False
        self.last_matches: List[MatchResult] = []
        self.passes = 0

    async def init(self) -> "LifecycleController":
        """Scan the current location once, then start change detection."""
        if self._started:
            return self
        if self.location_provider is None:
            raise ValueError("A location provider is required to initialize the controller")

        self.registry.freeze()
        self._started = True
        url = await resolve_location(self.location_provider)
        await self.check_page(url)
        if self.detector is not None:
            await self.detector.start(initial_url=url)
        logger.info(f"Feature controller initialized with {len(self.registry)} features")
        return self

    async def shutdown(self) -> None:
        """End the session: stop detection and clean up every active feature."""
        if self.detector is not None:
            await self.detector.stop()
        self._generation += 1
        async with self._lock:
            self._scan_task = asyncio.current_task()
            try:
                await self._teardown_all(reason="session teardown")
            finally:
                self._scan_task = None
            self._features.clear()
            self._last_url = None
            pending = list(self._deferred)
            for task in pending:
                task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._started = False
        logger.info("Feature controller shut down")

    async def __aenter__(self) -> "LifecycleController":
        return await self.init()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()

    async def check_page(self, url: str) -> Set[str]:
        """Run one scan pass for ``url`` and return the active feature names.

        A pass that is still waiting for the previous one when a newer
        location arrives is skipped; the newer pass supersedes it.

        Called from inside a feature callback, the pass is queued to run
        once the current one finishes and the currently active set is
        returned straight away.
        """
        if self._scan_task is not None and asyncio.current_task() is self._scan_task:
            logger.warning(f"Rescan of {url} requested from a feature callback; deferring it")
            deferred = asyncio.ensure_future(self._check_after_current(url))
            self._deferred.add(deferred)
            deferred.add_done_callback(self._deferred.discard)
            return self.get_active_features()

        self._generation += 1
        generation = self._generation
        async with self._lock:
            if generation != self._generation:
                logger.debug(f"Skipping superseded scan for {url}")
                return self.get_active_features()
            self._scan_task = asyncio.current_task()
            try:
                await self._scan(url, generation)
            finally:
                self._scan_task = None
        return self.get_active_features()

    async def _check_after_current(self, url: str) -> None:
        async with self._lock:
            pass
        await self.check_page(url)

    async def _scan(self, url: str, generation: int) -> None:
        self.passes += 1

        if url != self._last_url:
            if self._last_url is not None:
                logger.debug(f"Location changed from {self._last_url} to {url}")
            await self._teardown_all(reason="navigation")
            self._features.clear()
            self._last_url = url
            if generation != self._generation:
                logger.info(f"Abandoning stale scan for {url}: a newer location is pending")
                return

        matches = self.compute_matches(url)
        self.last_matches = matches

        skip: Set[str] = set()
        for match in matches:
            if generation != self._generation:
                logger.info(f"Abandoning stale scan for {url}: a newer location is pending")
                break

            descriptor = self.registry.lookup(match.feature_name)
            entry = self._features.get(match.feature_name)

            if entry is not None and entry.state == FeatureState.ACTIVE:
                skip.update(descriptor.excludes)
                continue
            if entry is not None and entry.state == FeatureState.ERROR:
                continue
            if match.feature_name in skip:
                logger.debug(f"Feature '{match.feature_name}' excluded on {url}")
                continue

            context = self.matcher.match_context(descriptor.pattern, url)
            if context is None:
                context = MatchContext(url=url, groups=match.capture_groups)
            activated = await self._activate(descriptor, context, generation)
            if activated:
                skip.update(descriptor.excludes)

    def compute_matches(self, url: str) -> List[MatchResult]:
        """Matches for ``url`` ranked by specificity, then registration order."""
        matches = []
        for index, descriptor in enumerate(self.registry.all()):
            if not self.config.is_feature_enabled(descriptor.name):
                continue
            groups = self.matcher.match_and_capture(descriptor.pattern, url)
            if groups is None:
                continue
            matches.append(MatchResult(
                feature_name=descriptor.name,
                capture_groups=groups,
                specificity_score=self.matcher.compute_specificity(descriptor.pattern, url),
                registration_index=index,
            ))
        # sorted() is stable, so equal scores keep registration order
        return sorted(matches, key=lambda m: m.specificity_score, reverse=True)

    async def _activate(self, descriptor: FeatureDescriptor, context: MatchContext, generation: int) -> bool:
        entry = FeatureEntry(
            name=descriptor.name,
            state=FeatureState.INITIALIZING,
            generation=generation,
            url=context.url,
        )
        self._features[descriptor.name] = entry

        outcome = await self.reporter.run(
            descriptor.name, Operation.INIT, descriptor.init, context, url=context.url,
        )
        if not outcome.ok:
            entry.state = FeatureState.ERROR
            logger.warning(f"Feature '{descriptor.name}' failed to initialize on {context.url}: {outcome.detail}")
            return False

        entry.state = FeatureState.ACTIVE
        entry.activated_at = datetime.utcnow()
        self._activation_order.append(descriptor.name)
        logger.info(f"Feature '{descriptor.name}' activated on {context.url}")
        return True

    async def _teardown_all(self, reason: str) -> None:
        """Clean up active features, most recently activated first."""
        active = [name for name in self._activation_order
                  if self._features.get(name) is not None
                  and self._features[name].state == FeatureState.ACTIVE]
        for name in reversed(active):
            await self._deactivate(name, reason)
        self._activation_order.clear()

    async def _deactivate(self, name: str, reason: str) -> None:
        entry = self._features[name]
        descriptor = self.registry.lookup(name)
        entry.state = FeatureState.DEACTIVATING

        if descriptor is not None and descriptor.cleanup is not None:
            outcome = await self.reporter.run(name, Operation.CLEANUP, descriptor.cleanup, url=entry.url)
            if not outcome.ok:
                logger.warning(f"Feature '{name}' failed to clean up ({reason}): {outcome.detail}")

        entry.state = FeatureState.INACTIVE
        entry.activated_at = None
        logger.debug(f"Feature '{name}' deactivated ({reason})")

    def get_active_features(self) -> Set[str]:
        return {name for name, entry in self._features.items() if entry.state == FeatureState.ACTIVE}

    def get_feature_state(self, name: str) -> FeatureState:
        entry = self._features.get(name)
        return entry.state if entry is not None else FeatureState.INACTIVE

    def get_feature_states(self) -> Dict[str, FeatureState]:
        """Lifecycle state of every registered feature."""
        return {name: self.get_feature_state(name) for name in self.registry.names()}

    def get_health_status(self) -> Dict[str, HealthStatus]:
        """Health snapshot for every registered feature."""
        return self.reporter.get_status(self.registry.names(), self.get_feature_states())

    @property
    def current_url(self) -> Optional[str]:
        return self._last_url

    @property
    def generation(self) -> int:
        return self._generation

    def get_diagnostics(self) -> Dict[str, object]:
        """Everything useful for a debug view of the controller."""
        return {
            "url": self._last_url,
            "generation": self._generation,
            "passes": self.passes,
            "active": sorted(self.get_active_features()),
            "states": {name: state.value for name, state in self.get_feature_states().items()},
            "last_matches": [m.model_dump() for m in self.last_matches],
            "detector": self.detector.get_stats() if self.detector is not None else None,
        }
