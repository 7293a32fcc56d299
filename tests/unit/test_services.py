"""Unit tests for the settings store and message channels."""

import json
import sys
from pathlib import Path

import httpx
import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from featurehost.runtime.errors import MessageChannelError, SettingsError
from featurehost.runtime.services.messaging import (
    HttpMessageChannel,
    LocalMessageChannel,
    MessageResponse,
    retry_async,
)
from featurehost.runtime.services.settings import FileSettingsStore, MemorySettingsStore


DEFAULTS = {"timer.enabled": True, "timer.columns": ["todo", "doing"]}


class TestMemorySettingsStore:
    """Test cases for the in-memory settings store."""

    @pytest.mark.asyncio
    async def test_defaults_and_updates(self):
        """Defaults apply until a value is set."""
        store = MemorySettingsStore(DEFAULTS)

        assert await store.get_setting("timer.enabled") is True
        assert await store.get_setting("missing") is None
        assert await store.get_setting("missing", "fallback") == "fallback"

        await store.set_setting("timer.enabled", False)
        assert await store.get_setting("timer.enabled") is False

        await store.reset()
        assert await store.get_setting("timer.enabled") is True

    @pytest.mark.asyncio
    async def test_values_are_copied(self):
        """Mutating a returned value does not change the store."""
        store = MemorySettingsStore(DEFAULTS)
        columns = await store.get_setting("timer.columns")
        columns.append("done")

        assert await store.get_setting("timer.columns") == ["todo", "doing"]
        assert (await store.get_all())["timer.columns"] == ["todo", "doing"]


class TestFileSettingsStore:
    """Test cases for the JSON file settings store."""

    @pytest.mark.asyncio
    async def test_persists_between_instances(self, tmp_path):
        """Values written by one store are read by the next."""
        path = tmp_path / "settings" / "featurehost.json"
        store = FileSettingsStore(path, DEFAULTS)

        await store.set_setting("timer.enabled", False)
        assert json.loads(path.read_text()) == {"timer.enabled": False}

        reopened = FileSettingsStore(path, DEFAULTS)
        assert await reopened.get_setting("timer.enabled") is False
        assert await reopened.get_setting("timer.columns") == ["todo", "doing"]
        assert (await reopened.get_all())["timer.enabled"] is False

    @pytest.mark.asyncio
    async def test_missing_file_uses_defaults(self, tmp_path):
        """A store without a file falls back to defaults."""
        store = FileSettingsStore(tmp_path / "none.json", DEFAULTS)
        assert await store.get_setting("timer.enabled") is True

    @pytest.mark.asyncio
    async def test_corrupt_file(self, tmp_path):
        """Invalid JSON raises SettingsError."""
        path = tmp_path / "broken.json"
        path.write_text("{not json")
        with pytest.raises(SettingsError):
            await FileSettingsStore(path).get_setting("anything")

    @pytest.mark.asyncio
    async def test_reset(self, tmp_path):
        """Reset empties the file."""
        path = tmp_path / "settings.json"
        store = FileSettingsStore(path, DEFAULTS)
        await store.set_setting("timer.enabled", False)
        await store.reset()

        assert json.loads(path.read_text()) == {}
        assert await store.get_setting("timer.enabled") is True


class TestLocalMessageChannel:
    """Test cases for in-process message dispatch."""

    @pytest.mark.asyncio
    async def test_sync_and_async_handlers(self):
        """Handlers may be plain or coroutine functions."""
        channel = LocalMessageChannel()
        channel.register_handler("echo", lambda payload: {"echo": payload["text"]})

        async def lookup(payload):
            return {"success": True, "data": {"card": payload["id"]}}

        channel.register_handler("lookup", lookup)

        echo = await channel.send_message("echo", {"text": "hi"})
        assert echo == MessageResponse(success=True, data={"echo": "hi"})

        found = await channel.send_message("lookup", {"id": 7})
        assert found.success
        assert found.data == {"card": 7}

    @pytest.mark.asyncio
    async def test_unknown_action(self):
        """Unknown actions fail without raising."""
        response = await LocalMessageChannel().send_message("nothing")
        assert not response.success
        assert "Unknown action" in response.error

    @pytest.mark.asyncio
    async def test_handler_failure(self):
        """Handler exceptions become failed responses."""
        def explode(payload):
            raise RuntimeError("quota exceeded")

        async with LocalMessageChannel({"save": explode}) as channel:
            response = await channel.send_message("save", {})

        assert not response.success
        assert response.error == "quota exceeded"

    @pytest.mark.asyncio
    async def test_application_failure_passed_through(self):
        """Handlers can report failure themselves."""
        channel = LocalMessageChannel({"save": lambda payload: {"success": False, "error": "nope"}})
        response = await channel.send_message("save")
        assert not response.success
        assert response.error == "nope"


def mock_channel(handler, **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpMessageChannel("https://background.test/messages", client=client,
                              retry_delay_seconds=0.0, **kwargs)


class TestHttpMessageChannel:
    """Test cases for the HTTP message channel."""

    @pytest.mark.asyncio
    async def test_success(self):
        """The action and payload are posted as JSON."""
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return httpx.Response(200, json={"success": True, "data": {"saved": True}})

        channel = mock_channel(handler)
        response = await channel.send_message("save", {"minutes": 5})
        await channel.client.aclose()

        assert response.success
        assert response.data == {"saved": True}
        assert seen == [{"action": "save", "payload": {"minutes": 5}}]

    @pytest.mark.asyncio
    async def test_retries_transient_status(self):
        """Retryable statuses are retried until success."""
        attempts = []

        def handler(request):
            attempts.append(request)
            if len(attempts) < 3:
                return httpx.Response(503)
            return httpx.Response(200, json={"success": True})

        channel = mock_channel(handler, max_retries=3)
        response = await channel.send_message("save")
        await channel.client.aclose()

        assert response.success
        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_retries(self):
        """A service that stays down raises MessageChannelError."""
        attempts = []

        def handler(request):
            attempts.append(request)
            return httpx.Response(503)

        channel = mock_channel(handler, max_retries=2)
        with pytest.raises(MessageChannelError):
            await channel.send_message("save")
        await channel.client.aclose()

        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_connection_errors(self):
        """Transport errors are retried and then raised as MessageChannelError."""
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        channel = mock_channel(handler, max_retries=1)
        with pytest.raises(MessageChannelError, match="could not reach"):
            await channel.send_message("save")
        await channel.client.aclose()

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        """4xx responses fail immediately."""
        attempts = []

        def handler(request):
            attempts.append(request)
            return httpx.Response(404, text="no such action")

        channel = mock_channel(handler)
        response = await channel.send_message("missing")
        await channel.client.aclose()

        assert not response.success
        assert "404" in response.error
        assert len(attempts) == 1


class TestRetryAsync:
    """Test cases for the retry helper."""

    @pytest.mark.asyncio
    async def test_succeeds_after_failures(self):
        """Transient failures are retried."""
        calls = []

        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise ConnectionError("flaky")
            return "ok"

        assert await retry_async(flaky, max_retries=3, initial_delay=0.0, jitter=False) == "ok"
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_raises_last_error(self):
        """The last error surfaces once retries are exhausted."""
        async def always_fails():
            raise ConnectionError("down")

        with pytest.raises(ConnectionError):
            await retry_async(always_fails, max_retries=2, initial_delay=0.0)

    @pytest.mark.asyncio
    async def test_non_retryable_errors_propagate(self):
        """Errors outside retry_on are not retried."""
        calls = []

        async def bad_input():
            calls.append(1)
            raise ValueError("bad")

        with pytest.raises(ValueError):
            await retry_async(bad_input, retry_on=(ConnectionError,), initial_delay=0.0)
        assert len(calls) == 1
