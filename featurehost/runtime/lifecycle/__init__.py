"""Feature lifecycle state machine."""

from .controller import LifecycleController

__all__ = ['LifecycleController']
