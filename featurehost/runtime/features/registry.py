"""Registry of feature descriptors.

One registry instance is built per page session at bootstrap, frozen, and
handed to the lifecycle controller. Registration order is preserved and is
the tie-break between features with equal specificity.
"""

import logging
from typing import Dict, Iterable, Iterator, List, Optional

from ..errors import DuplicateNameError, RegistryFrozenError, ValidationError
from ..models.lifecycle import ValidationReport
from ..utils.pattern_matcher import PatternMatcher
from .base import Feature, FeatureDescriptor, create_descriptor

logger = logging.getLogger(__name__)


class FeatureRegistry:
    """Ordered catalogue of feature descriptors.

    Descriptors are validated on registration; a malformed descriptor list
    is a programming error and fails bootstrap immediately.
    """

    def __init__(self, descriptors: Optional[Iterable[FeatureDescriptor]] = None,
                 matcher: Optional[PatternMatcher] = None):
        self._matcher = matcher or PatternMatcher()
        self._descriptors: Dict[str, FeatureDescriptor] = {}
        self._order: Dict[str, int] = {}
        self._warnings: Dict[str, List[str]] = {}
        self._frozen = False

        if descriptors:
            self.register_all(descriptors)

    def validate_descriptor(self, descriptor: FeatureDescriptor) -> ValidationReport:
        """Check a descriptor without registering it."""
        report = ValidationReport()

        name = getattr(descriptor, "name", None)
        if not isinstance(name, str) or not name.strip():
            report.add_error("Feature name must be a non-empty string")

        pattern = getattr(descriptor, "pattern", None)
        if pattern is None or pattern == "":
            report.add_error("Feature pattern is required")
        else:
            report.merge(self._matcher.validate(pattern))

        if not callable(getattr(descriptor, "init", None)):
            report.add_error("Feature must have a callable init")

        cleanup = getattr(descriptor, "cleanup", None)
        if cleanup is not None and not callable(cleanup):
            report.add_error("Feature cleanup must be callable when provided")

        excludes = getattr(descriptor, "excludes", None) or frozenset()
        if isinstance(excludes, str):
            excludes = {excludes}
        if isinstance(name, str) and name in excludes:
            report.add_error(f"Feature '{name}' cannot exclude itself")

        return report

    def register(self, descriptor) -> FeatureDescriptor:
        """Register a descriptor, or any object with a ``descriptor()`` method.

        Raises:
            RegistryFrozenError: If the registry was frozen
            ValidationError: If the descriptor is malformed
            DuplicateNameError: If the name is already registered
        """
        if self._frozen:
            raise RegistryFrozenError("Cannot register features after the registry is frozen")

        if not isinstance(descriptor, FeatureDescriptor) and callable(getattr(descriptor, "descriptor", None)):
            descriptor = descriptor.descriptor()

        report = self.validate_descriptor(descriptor)
        label = getattr(descriptor, "name", None) or "<unnamed>"
        if not report.is_valid:
            raise ValidationError(
                f"Invalid feature '{label}': {'; '.join(report.errors)}",
                report=report,
            )

        if not isinstance(descriptor, FeatureDescriptor):
            descriptor = create_descriptor(
                name=descriptor.name,
                pattern=descriptor.pattern,
                init=descriptor.init,
                cleanup=getattr(descriptor, "cleanup", None),
                excludes=getattr(descriptor, "excludes", None),
                description=getattr(descriptor, "description", "") or "",
            )

        if descriptor.name in self._descriptors:
            raise DuplicateNameError(descriptor.name)

        self._order[descriptor.name] = len(self._descriptors)
        self._descriptors[descriptor.name] = descriptor
        if report.warnings:
            self._warnings[descriptor.name] = list(report.warnings)
            for warning in report.warnings:
                logger.warning(f"Feature '{descriptor.name}': {warning}")

        logger.debug(f"Registered feature '{descriptor.name}' at position {self._order[descriptor.name]}")
        return descriptor

    def register_all(self, descriptors: Iterable) -> None:
        for descriptor in descriptors:
            self.register(descriptor)

    def freeze(self) -> None:
        """Stop accepting registrations and check exclusion references."""
        if self._frozen:
            return
        self._frozen = True
        for descriptor in self._descriptors.values():
            unknown = sorted(name for name in descriptor.excludes if name not in self._descriptors)
            if unknown:
                logger.warning(
                    f"Feature '{descriptor.name}' excludes unknown features: {', '.join(unknown)}"
                )
        logger.info(f"Feature registry frozen with {len(self._descriptors)} features")

    @property
    def is_frozen(self) -> bool:
        return self._frozen

    def all(self) -> List[FeatureDescriptor]:
        """All descriptors in registration order."""
        return list(self._descriptors.values())

    def lookup(self, name: str) -> Optional[FeatureDescriptor]:
        return self._descriptors.get(name)

    def names(self) -> List[str]:
        return list(self._descriptors.keys())

    def index_of(self, name: str) -> int:
        """Registration position of a feature, or -1 if unknown."""
        return self._order.get(name, -1)

    def get_warnings(self, name: Optional[str] = None) -> Dict[str, List[str]]:
        """Authoring warnings collected during registration."""
        if name is not None:
            return {name: list(self._warnings.get(name, []))}
        return {key: list(value) for key, value in self._warnings.items()}

    def __len__(self) -> int:
        return len(self._descriptors)

    def __iter__(self) -> Iterator[FeatureDescriptor]:
        return iter(self.all())

    def __contains__(self, name: object) -> bool:
        return name in self._descriptors


def build_registry(features: Iterable, matcher: Optional[PatternMatcher] = None,
                   freeze: bool = True) -> FeatureRegistry:
    """Create and optionally freeze a registry from descriptors or ``Feature`` objects."""
    registry = FeatureRegistry(matcher=matcher)
    registry.register_all(features)
    if freeze:
        registry.freeze()
    return registry
