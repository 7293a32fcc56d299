"""Configuration loading for the feature runtime."""

from .settings import (
    RuntimeConfig,
    DetectionConfig,
    HealthConfig,
    FeatureToggle,
    ConfigManager,
    deep_merge,
    load_runtime_config,
)

__all__ = [
    'RuntimeConfig',
    'DetectionConfig',
    'HealthConfig',
    'FeatureToggle',
    'ConfigManager',
    'deep_merge',
    'load_runtime_config',
]
