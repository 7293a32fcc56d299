"""Unit tests for the lifecycle controller scan passes."""

import asyncio
import sys
from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from featurehost.runtime.config.settings import RuntimeConfig
from featurehost.runtime.errors import ErrorKind
from featurehost.runtime.features.base import FeatureDescriptor
from featurehost.runtime.features.registry import FeatureRegistry
from featurehost.runtime.lifecycle.controller import LifecycleController
from featurehost.runtime.models.lifecycle import ErrorCategory, FeatureState, Operation


BASE = "https://app.example.com"


def make_controller(registry, config, url=BASE, detector=None):
    return LifecycleController(registry, location_provider=lambda: url, detector=detector, config=config)


class TestScenarios:
    """End-to-end scan pass scenarios."""

    @pytest.mark.asyncio
    async def test_exclusion_suppresses_less_specific_feature(self, card_registry, recorder, test_config):
        """The more specific settings feature excludes card detail."""
        controller = make_controller(card_registry, test_config)

        active = await controller.check_page(f"{BASE}/cards/5/settings")

        assert active == {"card-settings"}
        assert recorder.events("init") == ["card-settings"]
        assert controller.get_feature_state("card-detail") == FeatureState.INACTIVE
        assert [m.feature_name for m in controller.last_matches] == ["card-settings", "card-detail"]

    @pytest.mark.asyncio
    async def test_no_matches(self, card_registry, recorder, test_config):
        """A location nothing matches activates nothing."""
        controller = make_controller(card_registry, test_config)

        assert await controller.check_page(f"{BASE}/unrelated/path") == set()
        assert recorder.calls == []

    @pytest.mark.asyncio
    async def test_navigation_cleans_up(self, card_registry, recorder, test_config):
        """Leaving a matched location cleans the feature up exactly once."""
        controller = make_controller(card_registry, test_config)

        assert await controller.check_page(f"{BASE}/cards/5/") == {"card-detail"}
        assert await controller.check_page(f"{BASE}/unrelated") == set()
        await controller.check_page(f"{BASE}/still/unrelated")

        assert recorder.events("cleanup") == ["card-detail"]
        assert controller.get_feature_state("card-detail") == FeatureState.INACTIVE

    @pytest.mark.asyncio
    async def test_equal_scores_activate_in_registration_order(self, recorder, test_config):
        """Ties are broken by registration order."""
        registry = FeatureRegistry([
            recorder.descriptor("first", r"/shared/(\d+)"),
            recorder.descriptor("second", r"/shared/(\d+)"),
        ])
        controller = make_controller(registry, test_config)

        assert await controller.check_page(f"{BASE}/shared/1") == {"first", "second"}
        assert recorder.events("init") == ["first", "second"]

    @pytest.mark.asyncio
    async def test_reversed_registration_reverses_activation(self, recorder, test_config):
        """Registration order alone decides between equal scores."""
        registry = FeatureRegistry([
            recorder.descriptor("second", r"/shared/(\d+)"),
            recorder.descriptor("first", r"/shared/(\d+)"),
        ])
        controller = make_controller(registry, test_config)

        await controller.check_page(f"{BASE}/shared/1")
        assert recorder.events("init") == ["second", "first"]


class TestScanPass:
    """Test cases for scan pass behavior."""

    @pytest.mark.asyncio
    async def test_repeated_url_is_idempotent(self, card_registry, recorder, test_config):
        """Scanning the same location twice changes nothing."""
        controller = make_controller(card_registry, test_config)
        url = f"{BASE}/cards/5/settings"

        first = await controller.check_page(url)
        second = await controller.check_page(url)

        assert first == second == {"card-settings"}
        assert recorder.events("init") == ["card-settings"]
        assert recorder.events("cleanup") == []
        assert controller.passes == 2

    @pytest.mark.asyncio
    async def test_init_receives_match_context(self, test_config):
        """init gets the capture groups of its own pattern."""
        received = []
        registry = FeatureRegistry([
            FeatureDescriptor(name="board", pattern=r"/boards/(?P<board>\w+)", init=received.append),
        ])
        controller = make_controller(registry, test_config)

        await controller.check_page(f"{BASE}/boards/roadmap")

        assert len(received) == 1
        assert received[0].groups == ("roadmap",)
        assert received[0].named == {"board": "roadmap"}
        assert received[0].url == f"{BASE}/boards/roadmap"

    @pytest.mark.asyncio
    async def test_sync_callbacks(self, test_config):
        """Plain functions work as callbacks and cleanup may be omitted."""
        calls = []
        registry = FeatureRegistry([
            FeatureDescriptor(name="plain", pattern=r"/plain/", init=lambda m: calls.append("init")),
        ])
        controller = make_controller(registry, test_config)

        assert await controller.check_page(f"{BASE}/plain/") == {"plain"}
        assert await controller.check_page(f"{BASE}/elsewhere") == set()
        assert calls == ["init"]

    @pytest.mark.asyncio
    async def test_teardown_in_reverse_activation_order(self, recorder, test_config):
        """Features are cleaned up most recently activated first."""
        registry = FeatureRegistry([
            recorder.descriptor("outer", r"/a/"),
            recorder.descriptor("inner", r"/a/b/c/"),
        ])
        controller = make_controller(registry, test_config)

        await controller.check_page(f"{BASE}/a/b/c/")
        await controller.check_page(f"{BASE}/z/")

        assert recorder.events("init") == ["inner", "outer"]
        assert recorder.events("cleanup") == ["outer", "inner"]

    @pytest.mark.asyncio
    async def test_disabled_features_never_match(self, card_features, recorder):
        """Features toggled off in configuration are skipped."""
        config = RuntimeConfig(environment="test", health={"track_memory": False},
                               features={"board": {"enabled": False}})
        controller = make_controller(FeatureRegistry(card_features), config)

        assert await controller.check_page(f"{BASE}/boards/main") == set()
        assert recorder.calls == []

    @pytest.mark.asyncio
    async def test_feature_states(self, card_registry, test_config):
        """Every registered feature reports a state."""
        controller = make_controller(card_registry, test_config)
        await controller.check_page(f"{BASE}/boards/main")

        states = controller.get_feature_states()
        assert states == {
            "card-detail": FeatureState.INACTIVE,
            "card-settings": FeatureState.INACTIVE,
            "board": FeatureState.ACTIVE,
        }


class TestFaultIsolation:
    """Test cases for failing feature callbacks."""

    @pytest.mark.asyncio
    async def test_failing_init_does_not_stop_pass(self, recorder, test_config):
        """A failing init marks the feature errored and the pass continues."""
        registry = FeatureRegistry([
            recorder.descriptor("broken", r"/cards/(\d+)/edit", fail_init=True),
            recorder.descriptor("healthy", r"/cards/(\d+)"),
        ])
        controller = make_controller(registry, test_config)

        active = await controller.check_page(f"{BASE}/cards/3/edit")

        assert active == {"healthy"}
        assert recorder.events("init") == ["broken", "healthy"]
        assert controller.get_feature_state("broken") == FeatureState.ERROR

        health = controller.get_health_status()
        assert not health["broken"].is_healthy
        assert health["broken"].error_count == 1
        assert "init exploded" in health["broken"].last_error
        assert health["healthy"].is_healthy

    @pytest.mark.asyncio
    async def test_errored_feature_not_retried_on_same_url(self, recorder, test_config):
        """An errored feature waits for the next location before retrying."""
        registry = FeatureRegistry([recorder.descriptor("broken", r"/cards/(\d+)", fail_init=True)])
        controller = make_controller(registry, test_config)

        await controller.check_page(f"{BASE}/cards/3")
        await controller.check_page(f"{BASE}/cards/3")
        assert recorder.events("init") == ["broken"]

        await controller.check_page(f"{BASE}/cards/4")
        assert recorder.events("init") == ["broken", "broken"]

    @pytest.mark.asyncio
    async def test_failed_init_does_not_contribute_excludes(self, recorder, test_config):
        """A feature that failed to start cannot suppress others."""
        registry = FeatureRegistry([
            recorder.descriptor("card-detail", r"/cards/(\d+)/"),
            recorder.descriptor("card-settings", r"/cards/(\d+)/settings",
                                excludes=["card-detail"], fail_init=True),
        ])
        controller = make_controller(registry, test_config)

        assert await controller.check_page(f"{BASE}/cards/5/settings") == {"card-detail"}

    @pytest.mark.asyncio
    async def test_failing_cleanup_still_deactivates(self, recorder, test_config):
        """A cleanup failure is recorded but never keeps a feature active."""
        registry = FeatureRegistry([recorder.descriptor("sticky", r"/cards/", fail_cleanup=True)])
        controller = make_controller(registry, test_config)

        await controller.check_page(f"{BASE}/cards/")
        assert await controller.check_page(f"{BASE}/boards/") == set()

        assert controller.get_feature_state("sticky") == FeatureState.INACTIVE
        errors = controller.reporter.errors.get_errors("sticky")
        assert errors[0].category == ErrorCategory.CLEANUP

    @pytest.mark.asyncio
    async def test_outcome_kind_for_failures(self, recorder, test_config):
        """The reporter turns raised errors into tagged outcomes."""
        registry = FeatureRegistry([recorder.descriptor("broken", r"/cards/", fail_init=True)])
        controller = make_controller(registry, test_config)
        descriptor = registry.lookup("broken")

        outcome = await controller.reporter.run("broken", Operation.INIT, descriptor.init, None)

        assert not outcome.ok
        assert outcome.kind == ErrorKind.INITIALIZATION
        assert "init exploded" in str(outcome.to_exception("broken"))


class TestStalePasses:
    """Test cases for overlapping scan triggers."""

    @staticmethod
    def _blocking_registry(recorder, started, release):
        async def slow_init(match):
            recorder.calls.append(("init", "slow"))
            started.set()
            await release.wait()

        async def slow_cleanup():
            recorder.calls.append(("cleanup", "slow"))

        return FeatureRegistry([
            FeatureDescriptor(name="slow", pattern=r"/page/one$", init=slow_init, cleanup=slow_cleanup),
            recorder.descriptor("generic", r"/page/"),
        ])

    @pytest.mark.asyncio
    async def test_stale_pass_abandons_remaining_candidates(self, recorder, test_config):
        """A newer trigger stops the running pass after its current init."""
        started, release = asyncio.Event(), asyncio.Event()
        controller = make_controller(self._blocking_registry(recorder, started, release), test_config)

        first = asyncio.ensure_future(controller.check_page(f"{BASE}/page/one"))
        await started.wait()
        second = asyncio.ensure_future(controller.check_page(f"{BASE}/page/two"))
        await asyncio.sleep(0)
        release.set()
        await asyncio.gather(first, second)

        assert recorder.calls == [("init", "slow"), ("cleanup", "slow"), ("init", "generic")]
        assert controller.get_active_features() == {"generic"}
        assert controller.current_url == f"{BASE}/page/two"

    @pytest.mark.asyncio
    async def test_superseded_pending_pass_is_skipped(self, recorder, test_config):
        """Only the newest of several queued triggers runs."""
        started, release = asyncio.Event(), asyncio.Event()
        controller = make_controller(self._blocking_registry(recorder, started, release), test_config)

        first = asyncio.ensure_future(controller.check_page(f"{BASE}/page/one"))
        await started.wait()
        second = asyncio.ensure_future(controller.check_page(f"{BASE}/page/two"))
        third = asyncio.ensure_future(controller.check_page(f"{BASE}/page/three"))
        await asyncio.sleep(0)
        release.set()
        await asyncio.gather(first, second, third)

        assert recorder.events("init") == ["slow", "generic"]
        assert controller.current_url == f"{BASE}/page/three"
        assert controller.generation == 3

    @pytest.mark.asyncio
    async def test_newer_location_during_teardown_skips_inits(self, recorder, test_config):
        """A location arriving while cleanups run stops the pass before any init."""
        started, release = asyncio.Event(), asyncio.Event()

        async def old_init(match):
            recorder.calls.append(("init", "old"))

        async def old_cleanup():
            recorder.calls.append(("cleanup", "old"))
            started.set()
            await release.wait()

        registry = FeatureRegistry([
            FeatureDescriptor(name="old", pattern=r"/one$", init=old_init, cleanup=old_cleanup),
            recorder.descriptor("mid", r"/(two|three)$"),
        ])
        controller = make_controller(registry, test_config)
        await controller.check_page(f"{BASE}/one")

        second = asyncio.ensure_future(controller.check_page(f"{BASE}/two"))
        await started.wait()
        third = asyncio.ensure_future(controller.check_page(f"{BASE}/three"))
        await asyncio.sleep(0)
        release.set()
        await asyncio.gather(second, third)

        assert recorder.calls == [("init", "old"), ("cleanup", "old"), ("init", "mid")]
        assert controller.get_active_features() == {"mid"}
        assert controller.current_url == f"{BASE}/three"


class TestReentrantScans:
    """Test cases for rescans requested from inside feature callbacks."""

    @pytest.mark.asyncio
    async def test_rescan_from_init_is_deferred(self, recorder, test_config):
        """check_page called from an init returns immediately and runs after the pass."""
        url = f"{BASE}/loop/1"
        seen = []
        holder = {}

        async def reentrant_init(match):
            recorder.calls.append(("init", "reentrant"))
            seen.append(await holder["controller"].check_page(match.url))

        registry = FeatureRegistry([
            FeatureDescriptor(name="reentrant", pattern=r"/loop/(\d+)", init=reentrant_init),
            recorder.descriptor("second", r"/loop/(\d+)"),
        ])
        controller = make_controller(registry, test_config)
        holder["controller"] = controller

        active = await asyncio.wait_for(controller.check_page(url), 1.0)
        await asyncio.sleep(0.05)

        assert active == {"reentrant", "second"}
        assert seen == [set()]
        assert recorder.events("init") == ["reentrant", "second"]
        assert controller.passes == 2

    @pytest.mark.asyncio
    async def test_rescan_from_cleanup_during_shutdown(self, recorder, test_config):
        """A cleanup asking for a rescan does not block shutdown or revive features."""
        holder = {}

        async def cleanup():
            recorder.calls.append(("cleanup", "needy"))
            await holder["controller"].check_page(f"{BASE}/loop/1")

        registry = FeatureRegistry([
            FeatureDescriptor(name="needy", pattern=r"/loop/(\d+)", init=AsyncMock(), cleanup=cleanup),
        ])
        controller = make_controller(registry, test_config)
        holder["controller"] = controller
        await controller.check_page(f"{BASE}/loop/1")

        await asyncio.wait_for(controller.shutdown(), 1.0)
        await asyncio.sleep(0.05)

        assert recorder.events("cleanup") == ["needy"]
        assert controller.get_active_features() == set()
        assert controller.passes == 1


class TestSessionLifecycle:
    """Test cases for init, shutdown and the context manager."""

    @pytest.mark.asyncio
    async def test_init_scans_then_starts_detector(self, card_registry, recorder, test_config):
        """init() checks the current location and hands it to the detector."""
        detector = Mock()
        detector.start = AsyncMock()
        detector.stop = AsyncMock()
        url = f"{BASE}/boards/main"
        controller = make_controller(card_registry, test_config, url=url, detector=detector)

        await controller.init()

        assert card_registry.is_frozen
        assert controller.get_active_features() == {"board"}
        detector.start.assert_awaited_once_with(initial_url=url)

        await controller.shutdown()
        detector.stop.assert_awaited_once()
        assert controller.get_active_features() == set()
        assert recorder.events("cleanup") == ["board"]

    @pytest.mark.asyncio
    async def test_context_manager(self, card_registry, recorder, test_config):
        """The controller cleans up when used as a context manager."""
        async with make_controller(card_registry, test_config, url=f"{BASE}/cards/1/") as controller:
            assert controller.get_active_features() == {"card-detail"}
        assert recorder.events("cleanup") == ["card-detail"]

    @pytest.mark.asyncio
    async def test_init_requires_location_provider(self, card_registry, test_config):
        """A controller without a location provider cannot start."""
        controller = LifecycleController(card_registry, config=test_config)
        with pytest.raises(ValueError):
            await controller.init()

    @pytest.mark.asyncio
    async def test_async_location_provider(self, card_registry, test_config):
        """Location providers may be coroutines."""
        async def location():
            return f"{BASE}/boards/main"

        controller = LifecycleController(card_registry, location_provider=location, config=test_config)
        await controller.init()
        assert controller.get_active_features() == {"board"}

    @pytest.mark.asyncio
    async def test_diagnostics(self, card_registry, test_config):
        """Diagnostics expose the last pass."""
        controller = make_controller(card_registry, test_config)
        await controller.check_page(f"{BASE}/cards/5/settings")

        diagnostics = controller.get_diagnostics()
        assert diagnostics["active"] == ["card-settings"]
        assert diagnostics["states"]["card-settings"] == "active"
        assert diagnostics["last_matches"][0]["feature_name"] == "card-settings"
        assert diagnostics["detector"] is None
