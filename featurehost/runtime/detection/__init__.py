"""Location change detection for same-document navigation."""

from .sources import (
    ChangeSource,
    PollingSource,
    MutationSource,
    ManualSource,
    LocationProvider,
    resolve_location,
)
from .detector import ChangeDetector
from .playwright_sources import (
    PlaywrightMutationSource,
    PlaywrightNavigationSource,
    build_observer_script,
)

__all__ = [
    'ChangeSource',
    'PollingSource',
    'MutationSource',
    'ManualSource',
    'LocationProvider',
    'resolve_location',
    'ChangeDetector',
    'PlaywrightMutationSource',
    'PlaywrightNavigationSource',
    'build_observer_script',
]
