"""Shared test fixtures and configuration for featurehost tests."""

import pytest
from pathlib import Path
import sys

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

from featurehost.runtime.config.settings import RuntimeConfig
from featurehost.runtime.features.base import FeatureDescriptor
from featurehost.runtime.features.registry import FeatureRegistry


class CallRecorder:
    """Collects lifecycle calls made by test features, in order."""

    def __init__(self):
        self.calls = []

    def descriptor(self, name, pattern, excludes=(), fail_init=False, fail_cleanup=False,
                   with_cleanup=True):
        """Build a descriptor whose callbacks append ``(event, name)`` to ``calls``."""

        async def init(match):
            self.calls.append(("init", name))
            if fail_init:
                raise RuntimeError(f"{name} init exploded")
            return match.groups

        async def cleanup():
            self.calls.append(("cleanup", name))
            if fail_cleanup:
                raise RuntimeError(f"{name} cleanup exploded")

        return FeatureDescriptor(
            name=name,
            pattern=pattern,
            init=init,
            cleanup=cleanup if with_cleanup else None,
            excludes=frozenset(excludes),
        )

    def events(self, event):
        return [name for kind, name in self.calls if kind == event]


@pytest.fixture
def recorder():
    """Fresh call recorder."""
    return CallRecorder()


@pytest.fixture
def card_features(recorder):
    """Card list/detail/settings features where settings excludes detail."""
    return [
        recorder.descriptor("card-detail", r"/cards/(\d+)/"),
        recorder.descriptor("card-settings", r"/cards/(\d+)/settings", excludes=["card-detail"]),
        recorder.descriptor("board", r"/boards/(\w+)"),
    ]


@pytest.fixture
def card_registry(card_features):
    """Registry holding the card features."""
    return FeatureRegistry(card_features)


@pytest.fixture
def test_config():
    """Runtime configuration with memory tracking disabled for stable tests."""
    return RuntimeConfig(
        environment="test",
        health={"track_memory": False},
        detection={"debounce_ms": 10, "polling_interval_ms": 50},
    )


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
