"""Collaborator services available to feature bodies."""

from .messaging import (
    MessageChannel,
    MessageResponse,
    LocalMessageChannel,
    HttpMessageChannel,
    retry_async,
)
from .settings import SettingsStore, MemorySettingsStore, FileSettingsStore

__all__ = [
    'MessageChannel',
    'MessageResponse',
    'LocalMessageChannel',
    'HttpMessageChannel',
    'retry_async',
    'SettingsStore',
    'MemorySettingsStore',
    'FileSettingsStore',
]
