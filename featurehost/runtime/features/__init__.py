"""Pluggable page feature framework.

This package defines the feature descriptor contract, the ``BaseFeature``
authoring class and the registry the lifecycle controller dispatches from.
"""

from .base import (
    Feature,
    BaseFeature,
    FeatureDescriptor,
    InitCallback,
    CleanupCallback,
    create_descriptor,
)
from .registry import FeatureRegistry, build_registry

__all__ = [
    "Feature",
    "BaseFeature",
    "FeatureDescriptor",
    "InitCallback",
    "CleanupCallback",
    "create_descriptor",
    "FeatureRegistry",
    "build_registry",
]
