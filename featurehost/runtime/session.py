"""Feature session orchestration for a live Playwright page.

This module provides the FeatureSession class that wires the runtime
components (registry, change detection sources, change detector, health
reporter and lifecycle controller) to one ``playwright.async_api.Page`` and
runs them for the life of that page.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Union

from playwright.async_api import Page

from .config.settings import RuntimeConfig
from .detection.detector import ChangeDetector
from .detection.playwright_sources import PlaywrightMutationSource, PlaywrightNavigationSource
from .detection.sources import ChangeSource, ManualSource, PollingSource
from .features.registry import FeatureRegistry, build_registry
from .health.reporter import HealthReporter
from .lifecycle.controller import LifecycleController
from .utils.pattern_matcher import PatternMatcher

logger = logging.getLogger(__name__)


class FeatureSession:
    """Hosts the feature runtime on a Playwright page."""

    def __init__(self, page: Page,
                 features: Union[FeatureRegistry, Iterable, None] = None,
                 config: Optional[RuntimeConfig] = None,
                 extra_sources: Optional[Iterable[ChangeSource]] = None):
        """Build the session components.

        Args:
            page: Page whose location drives feature dispatch
            features: A registry, or descriptors / ``Feature`` objects to register
            config: Runtime configuration; defaults apply when omitted
            extra_sources: Additional change sources to run alongside the defaults
        """
        self.page = page
        self.config = config or RuntimeConfig()
        self.matcher = PatternMatcher()

        if isinstance(features, FeatureRegistry):
            self.registry = features
        else:
            self.registry = build_registry(features or [], matcher=self.matcher, freeze=False)

        self.reporter = HealthReporter.from_config(self.config.health)
        self.manual_source = ManualSource()
        self.sources: List[ChangeSource] = self._build_sources()
        self.sources.extend(extra_sources or [])

        self.controller = LifecycleController(
            self.registry,
            location_provider=self.current_location,
            reporter=self.reporter,
            matcher=self.matcher,
            config=self.config,
        )
        self.detector = ChangeDetector(
            self.current_location,
            on_change=self.controller.check_page,
            sources=self.sources,
            debounce_ms=self.config.detection.debounce_ms,
        )
        self.controller.detector = self.detector

    def current_location(self) -> str:
        return self.page.url

    def _build_sources(self) -> List[ChangeSource]:
        detection = self.config.detection
        sources: List[ChangeSource] = [self.manual_source]
        if detection.navigation_enabled:
            sources.append(PlaywrightNavigationSource(self.page))
        if detection.mutation_enabled:
            sources.append(PlaywrightMutationSource(
                self.page,
                ignored_id_prefixes=detection.ignored_id_prefixes,
                ignored_attributes=detection.ignored_attributes,
            ))
        if detection.polling_enabled:
            sources.append(PollingSource(self.current_location, interval_ms=detection.polling_interval_ms))
        return sources

    async def start(self) -> "FeatureSession":
        """Run the first scan and start watching the page."""
        await self.controller.init()
        logger.info(
            f"Feature session started on {self.page.url} "
            f"({len(self.registry)} features, sources: {[s.name for s in self.sources]})"
        )
        return self

    async def stop(self) -> None:
        await self.controller.shutdown()

    async def __aenter__(self) -> "FeatureSession":
        return await self.start()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    def trigger(self, url: Optional[str] = None) -> None:
        """Report a location change the automatic sources cannot see."""
        self.manual_source.trigger(url)

    async def rescan(self) -> None:
        """Run a scan pass for the current location right away."""
        await self.controller.check_page(self.current_location())

    def get_diagnostics(self) -> Dict[str, Any]:
        return {
            **self.controller.get_diagnostics(),
            "health": {name: status.model_dump(mode="json")
                       for name, status in self.controller.get_health_status().items()},
        }
