"""Message channel used by features to reach the privileged background process.

Features call ``send_message(action, payload)`` and receive a
``MessageResponse``. ``LocalMessageChannel`` dispatches to in-process
handlers (useful for tests and single-process hosts); ``HttpMessageChannel``
posts to a background service and retries transient failures with
exponential backoff.
"""

import asyncio
import inspect
import logging
import random
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Type, TypeVar, Union

import httpx
from pydantic import BaseModel, Field

from ..errors import MessageChannelError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class MessageResponse(BaseModel):
    """Reply from the background process."""

    success: bool = Field(description="Whether the action succeeded")
    data: Dict[str, Any] = Field(default_factory=dict, description="Action result payload")
    error: Optional[str] = Field(default=None, description="Error message when the action failed")


async def retry_async(operation: Callable[[], Awaitable[T]],
                      max_retries: int = 3,
                      initial_delay: float = 0.5,
                      backoff_multiplier: float = 2.0,
                      max_delay: float = 10.0,
                      retry_on: Tuple[Type[BaseException], ...] = (Exception,),
                      jitter: bool = True) -> T:
    """Run ``operation`` with exponential backoff between failed attempts.

    The last exception is re-raised once ``max_retries`` retries are used up.
    """
    delay = initial_delay
    for attempt in range(max_retries + 1):
        try:
            return await operation()
        except retry_on as e:
            if attempt >= max_retries:
                raise
            wait = delay
            if jitter:
                # +/-10% so concurrent retries spread out
                wait += random.uniform(-delay * 0.1, delay * 0.1)
            logger.debug(f"Attempt {attempt + 1} failed ({e}); retrying in {wait:.2f}s")
            await asyncio.sleep(max(0.0, wait))
            delay = min(delay * backoff_multiplier, max_delay)
    raise RuntimeError("unreachable")


class MessageChannel(ABC):
    """Asynchronous request/response channel to the background process."""

    @abstractmethod
    async def send_message(self, action: str, payload: Optional[Dict[str, Any]] = None) -> MessageResponse:
        ...

    async def close(self) -> None:
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()


Handler = Callable[[Dict[str, Any]], Union[Any, Awaitable[Any]]]


class LocalMessageChannel(MessageChannel):
    """Dispatches messages to handlers registered in this process."""

    def __init__(self, handlers: Optional[Dict[str, Handler]] = None):
        self._handlers: Dict[str, Handler] = dict(handlers or {})

    def register_handler(self, action: str, handler: Handler) -> None:
        self._handlers[action] = handler

    def unregister_handler(self, action: str) -> None:
        self._handlers.pop(action, None)

    async def send_message(self, action: str, payload: Optional[Dict[str, Any]] = None) -> MessageResponse:
        handler = self._handlers.get(action)
        if handler is None:
            logger.warning(f"No handler registered for action '{action}'")
            return MessageResponse(success=False, error=f"Unknown action: {action}")

        try:
            result = handler(dict(payload or {}))
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            logger.error(f"Handler for action '{action}' failed: {e}")
            return MessageResponse(success=False, error=str(e) or e.__class__.__name__)

        return _to_response(result)


class HttpMessageChannel(MessageChannel):
    """Posts ``{"action", "payload"}`` JSON to a background service."""

    RETRY_STATUS_CODES = {429, 502, 503, 504}

    def __init__(self, endpoint: str, timeout_seconds: float = 30.0,
                 max_retries: int = 3, retry_delay_seconds: float = 0.5,
                 retry_backoff_multiplier: float = 2.0, retry_max_delay_seconds: float = 10.0,
                 headers: Optional[Dict[str, str]] = None,
                 client: Optional[httpx.AsyncClient] = None):
        self.endpoint = endpoint
        self.max_retries = max_retries
        self.retry_delay_seconds = retry_delay_seconds
        self.retry_backoff_multiplier = retry_backoff_multiplier
        self.retry_max_delay_seconds = retry_max_delay_seconds
        self.headers = {"Content-Type": "application/json", **(headers or {})}
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout=timeout_seconds, connect=10.0),
            limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
        )

    async def send_message(self, action: str, payload: Optional[Dict[str, Any]] = None) -> MessageResponse:
        """Send a message, retrying transport errors and retryable statuses.

        Raises:
            MessageChannelError: If the service stays unreachable
        """
        body = {"action": action, "payload": payload or {}}

        async def attempt() -> httpx.Response:
            response = await self.client.post(self.endpoint, json=body, headers=self.headers)
            if response.status_code in self.RETRY_STATUS_CODES or response.status_code >= 500:
                response.raise_for_status()
            return response

        try:
            response = await retry_async(
                attempt,
                max_retries=self.max_retries,
                initial_delay=self.retry_delay_seconds,
                backoff_multiplier=self.retry_backoff_multiplier,
                max_delay=self.retry_max_delay_seconds,
                retry_on=(httpx.RequestError, httpx.HTTPStatusError),
            )
        except httpx.HTTPStatusError as e:
            raise MessageChannelError(
                f"Action '{action}' failed with HTTP {e.response.status_code} after {self.max_retries + 1} attempts"
            ) from e
        except httpx.RequestError as e:
            raise MessageChannelError(
                f"Action '{action}' could not reach {self.endpoint} after {self.max_retries + 1} attempts: {e}"
            ) from e

        if response.status_code >= 400:
            return MessageResponse(success=False, error=f"HTTP {response.status_code}: {response.text[:200]}")

        try:
            data = response.json()
        except ValueError:
            return MessageResponse(success=False, error="Background service returned invalid JSON")
        return _to_response(data)

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()


def _to_response(result: Any) -> MessageResponse:
    if isinstance(result, MessageResponse):
        return result
    if isinstance(result, dict) and "success" in result:
        data = result.get("data")
        if not isinstance(data, dict):
            data = {k: v for k, v in result.items() if k not in ("success", "error")}
        return MessageResponse(success=bool(result["success"]), data=data, error=result.get("error"))
    if isinstance(result, dict):
        return MessageResponse(success=True, data=result)
    return MessageResponse(success=True, data={"result": result} if result is not None else {})
