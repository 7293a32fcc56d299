"""Feature descriptor contract and base class for page features.

A feature is registered as a ``FeatureDescriptor``: a unique name, a match
pattern and the callbacks the lifecycle controller drives. Feature authors
can either build descriptors directly from plain functions or subclass
``BaseFeature`` and call :meth:`BaseFeature.descriptor`.
"""

import inspect
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Iterable, Optional, Protocol, Union

from ..utils.pattern_matcher import MatchContext, PatternLike


InitCallback = Callable[[MatchContext], Union[Any, Awaitable[Any]]]
CleanupCallback = Callable[[], Union[Any, Awaitable[Any]]]


@dataclass(frozen=True)
class FeatureDescriptor:
    """Registration record pairing a match pattern with lifecycle callbacks."""

    name: str
    pattern: PatternLike
    init: InitCallback
    cleanup: Optional[CleanupCallback] = None
    excludes: FrozenSet[str] = field(default_factory=frozenset)
    description: str = ""

    def __post_init__(self):
        if self.excludes is None:
            object.__setattr__(self, "excludes", frozenset())
        elif isinstance(self.excludes, str):
            object.__setattr__(self, "excludes", frozenset([self.excludes]))
        elif not isinstance(self.excludes, frozenset):
            object.__setattr__(self, "excludes", frozenset(self.excludes))


class Feature(Protocol):
    """Protocol for objects that can produce their own descriptor."""

    @property
    def name(self) -> str:
        """Unique name for this feature."""
        ...

    def descriptor(self) -> FeatureDescriptor:
        """Build the registration record for this feature."""
        ...


async def _maybe_await(value):
    if inspect.isawaitable(value):
        return await value
    return value


class BaseFeature(ABC):
    """Abstract base class providing the standard feature lifecycle.

    Subclasses set ``pattern`` (and optionally ``excludes``) and implement
    :meth:`on_init`. The remaining hooks default to bookkeeping only.
    Exceptions raised by hooks are logged with feature context and re-raised
    so that the lifecycle controller records the failure.
    """

    pattern: PatternLike = None
    excludes: Iterable[str] = ()
    host_prefix = "featurehost"

    def __init__(self, name: str, host_element_id: Optional[str] = None,
                 enable_debug_logging: bool = False):
        self._name = name
        self.host_element_id = host_element_id or f"{self.host_prefix}-{name}-host"
        self.enable_debug_logging = enable_debug_logging
        self.is_initialized = False
        self.is_active = False
        self.match: Optional[MatchContext] = None
        self.last_error: Optional[str] = None
        self.performance_metrics: Dict[str, float] = {
            "initialization_ms": 0.0,
            "activation_ms": 0.0,
            "deactivation_ms": 0.0,
            "cleanup_ms": 0.0,
        }
        self.logger = logging.getLogger(f"featurehost.features.{name}")

    @property
    def name(self) -> str:
        """Unique name for this feature."""
        return self._name

    @abstractmethod
    async def on_init(self, match: MatchContext) -> None:
        """Prepare the feature for the matched location."""
        ...

    async def on_activate(self) -> None:
        """Called after a successful :meth:`on_init`."""
        pass

    async def on_deactivate(self) -> None:
        """Called first when the feature is being torn down."""
        pass

    async def on_cleanup(self) -> None:
        """Release everything :meth:`on_init` created."""
        pass

    async def initialize(self, match: MatchContext) -> None:
        """Run ``on_init`` then ``on_activate``."""
        self.match = match
        await self._run_hook("initialization", self.on_init, match)
        self.is_initialized = True
        await self._run_hook("activation", self.on_activate)
        self.is_active = True
        self.log("Feature initialized", groups=match.groups if match else ())

    async def teardown(self) -> None:
        """Run ``on_deactivate`` then ``on_cleanup``.

        ``on_cleanup`` still runs when ``on_deactivate`` fails; the first
        error is re-raised afterwards.
        """
        first_error = None
        self.is_active = False
        try:
            await self._run_hook("deactivation", self.on_deactivate)
        except Exception as e:
            first_error = e
        try:
            await self._run_hook("cleanup", self.on_cleanup)
        except Exception as e:
            first_error = first_error or e
        self.is_initialized = False
        self.match = None
        if first_error is not None:
            raise first_error
        self.log("Feature cleaned up")

    async def _run_hook(self, phase: str, hook: Callable, *args) -> None:
        start = time.perf_counter()
        try:
            await _maybe_await(hook(*args))
        except Exception as e:
            self.handle_error(f"Feature {phase} failed", e)
            raise
        finally:
            self.performance_metrics[f"{phase}_ms"] = (time.perf_counter() - start) * 1000

    def handle_error(self, message: str, error: BaseException, **context) -> None:
        """Log an error with the feature's state attached."""
        self.last_error = f"{message}: {error}"
        self.logger.error(
            f"{message}: {error}",
            extra={
                "feature": self.name,
                "is_initialized": self.is_initialized,
                "is_active": self.is_active,
                **context,
            },
        )

    def log(self, message: str, **data) -> None:
        """Debug-log a message when debug logging is enabled for this feature."""
        if self.enable_debug_logging:
            if data:
                self.logger.debug(f"{message} {data}")
            else:
                self.logger.debug(message)

    def descriptor(self) -> FeatureDescriptor:
        """Build the registration record for this feature."""
        return FeatureDescriptor(
            name=self.name,
            pattern=self.pattern,
            init=self.initialize,
            cleanup=self.teardown,
            excludes=frozenset(self.excludes or ()),
            description=(self.__class__.__doc__ or "").strip().split("\n")[0],
        )

    def get_health_status(self) -> Dict[str, Any]:
        """The feature's own view of its health."""
        return {
            "name": self.name,
            "is_healthy": self.last_error is None,
            "is_initialized": self.is_initialized,
            "is_active": self.is_active,
            "last_error": self.last_error,
            "performance_metrics": dict(self.performance_metrics),
            "timestamp": datetime.utcnow().isoformat(),
        }


def create_descriptor(name: str, pattern: PatternLike, init: InitCallback,
                      cleanup: Optional[CleanupCallback] = None,
                      excludes: Optional[Iterable[str]] = None,
                      description: str = "") -> FeatureDescriptor:
    """Build a descriptor from plain callables."""
    return FeatureDescriptor(
        name=name,
        pattern=pattern,
        init=init,
        cleanup=cleanup,
        excludes=excludes,
        description=description,
    )
