"""Asynchronous key-value settings store used by feature bodies."""

import asyncio
import copy
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional, Union

import aiofiles

from ..errors import SettingsError

logger = logging.getLogger(__name__)


class SettingsStore(ABC):
    """Simple asynchronous key-value persistence with defaults."""

    def __init__(self, defaults: Optional[Dict[str, Any]] = None):
        self.defaults: Dict[str, Any] = dict(defaults or {})

    @abstractmethod
    async def get_setting(self, key: str, default: Any = None) -> Any:
        ...

    @abstractmethod
    async def set_setting(self, key: str, value: Any) -> None:
        ...

    @abstractmethod
    async def get_all(self) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def reset(self) -> None:
        """Restore every setting to its default."""
        ...

    def _fallback(self, key: str, default: Any) -> Any:
        if default is not None:
            return default
        return copy.deepcopy(self.defaults.get(key))


class MemorySettingsStore(SettingsStore):
    """Settings kept in memory for the life of the process."""

    def __init__(self, defaults: Optional[Dict[str, Any]] = None):
        super().__init__(defaults)
        self._values: Dict[str, Any] = {}

    async def get_setting(self, key: str, default: Any = None) -> Any:
        if key in self._values:
            return copy.deepcopy(self._values[key])
        return self._fallback(key, default)

    async def set_setting(self, key: str, value: Any) -> None:
        self._values[key] = copy.deepcopy(value)

    async def get_all(self) -> Dict[str, Any]:
        return copy.deepcopy({**self.defaults, **self._values})

    async def reset(self) -> None:
        self._values.clear()


class FileSettingsStore(SettingsStore):
    """Settings persisted as a JSON document."""

    def __init__(self, path: Union[str, Path], defaults: Optional[Dict[str, Any]] = None):
        super().__init__(defaults)
        self.path = Path(path)
        self._values: Optional[Dict[str, Any]] = None
        self._lock = asyncio.Lock()

    async def _load(self) -> Dict[str, Any]:
        if self._values is not None:
            return self._values
        if not self.path.exists():
            self._values = {}
            return self._values
        try:
            async with aiofiles.open(self.path, 'r') as f:
                content = await f.read()
        except OSError as e:
            raise SettingsError(f"Failed to read settings from {self.path}: {e}")
        try:
            data = json.loads(content) if content.strip() else {}
        except json.JSONDecodeError as e:
            raise SettingsError(f"Settings file {self.path} is not valid JSON: {e}")
        if not isinstance(data, dict):
            raise SettingsError(f"Settings file {self.path} must contain a JSON object")
        self._values = data
        return self._values

    async def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            async with aiofiles.open(self.path, 'w') as f:
                await f.write(json.dumps(self._values or {}, indent=2, default=str))
        except OSError as e:
            logger.error(f"Failed to save settings to {self.path}: {e}")
            raise SettingsError(f"Failed to save settings to {self.path}: {e}")

    async def get_setting(self, key: str, default: Any = None) -> Any:
        async with self._lock:
            values = await self._load()
            if key in values:
                return copy.deepcopy(values[key])
        return self._fallback(key, default)

    async def set_setting(self, key: str, value: Any) -> None:
        async with self._lock:
            values = await self._load()
            values[key] = copy.deepcopy(value)
            await self._save()
        logger.debug(f"Setting '{key}' updated")

    async def get_all(self) -> Dict[str, Any]:
        async with self._lock:
            values = await self._load()
            return copy.deepcopy({**self.defaults, **values})

    async def reset(self) -> None:
        async with self._lock:
            self._values = {}
            await self._save()
        logger.info(f"Settings at {self.path} reset to defaults")
