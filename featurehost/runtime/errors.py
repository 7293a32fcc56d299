"""Error taxonomy and tagged callback outcomes for the feature runtime.

Registration-time errors (``ValidationError``, ``DuplicateNameError``,
``RegistryFrozenError``) are raised to the bootstrap caller. Failures inside
feature callbacks never escape a scan pass: they are adapted into an
``Err`` outcome at the controller boundary and recorded for health reporting.
"""

import inspect
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TYPE_CHECKING, Union

if TYPE_CHECKING:
    from .models.lifecycle import ValidationReport


class FeatureRuntimeError(Exception):
    """Base class for all feature runtime errors."""
    pass


class ValidationError(FeatureRuntimeError):
    """Raised when a feature descriptor or match pattern is malformed."""

    def __init__(self, message: str, report: Optional["ValidationReport"] = None):
        super().__init__(message)
        self.report = report

    @property
    def errors(self):
        return list(self.report.errors) if self.report else [str(self)]


class DuplicateNameError(FeatureRuntimeError):
    """Raised when a feature name is registered twice."""

    def __init__(self, name: str):
        super().__init__(f"Feature '{name}' is already registered")
        self.name = name


class RegistryFrozenError(FeatureRuntimeError):
    """Raised when registering into a registry that has been frozen."""
    pass


class InitializationError(FeatureRuntimeError):
    """A feature ``init`` callback raised."""

    def __init__(self, feature_name: str, message: str):
        super().__init__(f"Feature '{feature_name}' failed to initialize: {message}")
        self.feature_name = feature_name


class CleanupError(FeatureRuntimeError):
    """A feature ``cleanup`` callback raised."""

    def __init__(self, feature_name: str, message: str):
        super().__init__(f"Feature '{feature_name}' failed to clean up: {message}")
        self.feature_name = feature_name


class ConfigurationError(FeatureRuntimeError):
    """Configuration could not be loaded or validated."""
    pass


class MessageChannelError(FeatureRuntimeError):
    """A message could not be delivered to the background process."""
    pass


class SettingsError(FeatureRuntimeError):
    """The settings store could not be read or written."""
    pass


class ErrorKind(str, Enum):
    """Kinds of failure an outcome can carry."""
    INITIALIZATION = "initialization"
    CLEANUP = "cleanup"


@dataclass(frozen=True)
class Ok:
    """Successful callback outcome."""
    value: Any = None

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    """Failed callback outcome."""
    kind: ErrorKind
    detail: str
    error: Optional[BaseException] = field(default=None, compare=False)

    @property
    def ok(self) -> bool:
        return False

    def to_exception(self, feature_name: str) -> FeatureRuntimeError:
        """Build the taxonomy exception matching this failure."""
        if self.kind == ErrorKind.CLEANUP:
            return CleanupError(feature_name, self.detail)
        return InitializationError(feature_name, self.detail)


Outcome = Union[Ok, Err]


async def invoke(callback: Callable[..., Union[Any, Awaitable[Any]]], kind: ErrorKind, *args) -> Outcome:
    """Call a sync or async callback and capture its result as an outcome.

    ``asyncio.CancelledError`` and other ``BaseException``s that are not
    ``Exception`` still propagate.
    """
    try:
        result = callback(*args)
        if inspect.isawaitable(result):
            result = await result
    except Exception as e:
        detail = str(e) or e.__class__.__name__
        return Err(kind=kind, detail=detail, error=e)
    return Ok(result)
