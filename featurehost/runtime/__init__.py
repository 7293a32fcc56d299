"""Dynamic feature dispatch and lifecycle runtime.

Decides which page features run for the current location, resolves
overlapping matches by specificity and exclusion rules, and drives each
feature through its init/cleanup lifecycle with health reporting.
"""

from .errors import (
    FeatureRuntimeError,
    ValidationError,
    DuplicateNameError,
    RegistryFrozenError,
    InitializationError,
    CleanupError,
    ConfigurationError,
    MessageChannelError,
    SettingsError,
    ErrorKind,
    Ok,
    Err,
    Outcome,
)
from .features import BaseFeature, FeatureDescriptor, FeatureRegistry, build_registry, create_descriptor
from .config import RuntimeConfig, ConfigManager, load_runtime_config
from .detection import ChangeDetector, ChangeSource, PollingSource, MutationSource, ManualSource
from .health import HealthReporter
from .lifecycle import LifecycleController
from .models import FeatureState, HealthStatus, MatchResult
from .utils import PatternMatcher, MatchContext
from .session import FeatureSession

__all__ = [
    'FeatureRuntimeError',
    'ValidationError',
    'DuplicateNameError',
    'RegistryFrozenError',
    'InitializationError',
    'CleanupError',
    'ConfigurationError',
    'MessageChannelError',
    'SettingsError',
    'ErrorKind',
    'Ok',
    'Err',
    'Outcome',
    'BaseFeature',
    'FeatureDescriptor',
    'FeatureRegistry',
    'build_registry',
    'create_descriptor',
    'RuntimeConfig',
    'ConfigManager',
    'load_runtime_config',
    'ChangeDetector',
    'ChangeSource',
    'PollingSource',
    'MutationSource',
    'ManualSource',
    'HealthReporter',
    'LifecycleController',
    'FeatureState',
    'HealthStatus',
    'MatchResult',
    'PatternMatcher',
    'MatchContext',
    'FeatureSession',
]
