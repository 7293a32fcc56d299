"""Runtime configuration model and YAML loader.

Configuration is read from an optional YAML file, an ``environments:``
section inside it selected by the active environment, ``FEATUREHOST_*``
environment variables, and finally explicit overrides, each layer deep-merged
over the previous one.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, Field, field_validator

from ..errors import ConfigurationError

logger = logging.getLogger(__name__)


class DetectionConfig(BaseModel):
    """Settings for the change detection sources."""

    polling_enabled: bool = Field(default=True, description="Run the fallback polling source")
    polling_interval_ms: int = Field(
        default=1000,
        ge=50,
        le=60000,
        description="Interval of the fallback location poll"
    )
    mutation_enabled: bool = Field(default=True, description="Watch the page structure for changes")
    navigation_enabled: bool = Field(default=True, description="Listen to browser navigation events")
    debounce_ms: int = Field(
        default=100,
        ge=0,
        le=10000,
        description="Quiet period before a burst of change signals triggers a scan"
    )
    ignored_id_prefixes: List[str] = Field(
        default_factory=lambda: ["featurehost-"],
        description="Mutations on elements whose id starts with one of these are ignored"
    )
    ignored_attributes: List[str] = Field(
        default_factory=lambda: ["style", "class", "aria-busy"],
        description="Attribute mutations that never indicate navigation"
    )


class HealthConfig(BaseModel):
    """Retention and threshold settings for health reporting."""

    max_records_per_feature: int = Field(
        default=100,
        ge=1,
        le=10000,
        description="Performance records kept per feature (oldest evicted)"
    )
    max_errors_per_feature: int = Field(
        default=50,
        ge=1,
        le=10000,
        description="Error records kept per feature (oldest evicted)"
    )
    recent_durations: int = Field(
        default=10,
        ge=1,
        le=1000,
        description="Durations reported in a feature's health status"
    )
    init_threshold_ms: float = Field(default=500.0, ge=0, description="Slow init warning threshold")
    cleanup_threshold_ms: float = Field(default=100.0, ge=0, description="Slow cleanup warning threshold")
    memory_growth_threshold_bytes: int = Field(
        default=10 * 1024 * 1024,
        ge=0,
        description="Memory growth warning threshold per operation"
    )
    track_memory: bool = Field(default=True, description="Measure process memory around operations")


class FeatureToggle(BaseModel):
    """Per-feature switch."""

    enabled: bool = Field(default=True, description="Whether the feature may activate")


class RuntimeConfig(BaseModel):
    """Root configuration for the feature runtime."""

    environment: str = Field(default="production", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug logging in features")
    detection: DetectionConfig = Field(default_factory=DetectionConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)
    features: Dict[str, FeatureToggle] = Field(
        default_factory=dict,
        description="Per-feature toggles keyed by feature name"
    )

    @field_validator('environment')
    @classmethod
    def validate_environment(cls, v):
        """Validate environment name."""
        allowed_envs = ['development', 'staging', 'production', 'test']
        if v not in allowed_envs:
            raise ValueError(f"Environment must be one of: {allowed_envs}")
        return v

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def is_feature_enabled(self, name: str) -> bool:
        toggle = self.features.get(name)
        return toggle.enabled if toggle is not None else True


class ConfigManager:
    """Loads and caches the runtime configuration."""

    ENV_PREFIX = "FEATUREHOST_"

    def __init__(self, config_path: Optional[Union[str, Path]] = None,
                 environment: Optional[str] = None):
        self.config_path = Path(config_path) if config_path else None
        self.environment = environment
        self._config: Optional[RuntimeConfig] = None
        self._overrides: Dict[str, Any] = {}

    def load_config(self, config_path: Optional[Union[str, Path]] = None,
                    overrides: Optional[Dict[str, Any]] = None) -> RuntimeConfig:
        """Load configuration from file, environment and overrides.

        Raises:
            ConfigurationError: If the file cannot be read or the result is invalid
        """
        if config_path:
            self.config_path = Path(config_path)

        config_data: Dict[str, Any] = {}
        if self.config_path is not None:
            config_data = self._read_yaml(self.config_path)

        environment = (
            self.environment
            or os.getenv(f"{self.ENV_PREFIX}ENVIRONMENT")
            or config_data.get("environment")
            or "production"
        )
        environments = config_data.pop("environments", None) or {}
        if environment in environments:
            config_data = deep_merge(config_data, environments[environment] or {})
            logger.info(f"Applied environment overrides for: {environment}")
        config_data["environment"] = environment

        config_data = deep_merge(config_data, self._load_environment_variables())
        config_data = deep_merge(config_data, self._overrides)
        if overrides:
            config_data = deep_merge(config_data, overrides)

        try:
            self._config = RuntimeConfig(**config_data)
        except Exception as e:
            raise ConfigurationError(f"Invalid configuration: {e}")

        return self._config

    def get_config(self) -> RuntimeConfig:
        """Current configuration, loading it on first use."""
        if self._config is None:
            self._config = self.load_config()
        return self._config

    def set_override(self, key: str, value: Any) -> None:
        self._overrides[key] = value
        self._config = None

    def validate_config(self, config_data: Dict[str, Any]) -> List[str]:
        """Validate configuration data without loading it."""
        try:
            RuntimeConfig(**config_data)
        except Exception as e:
            return [str(e)]
        return []

    def create_default_config(self, output_path: Union[str, Path]) -> None:
        """Write the default configuration as YAML."""
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, 'w') as f:
            yaml.safe_dump(RuntimeConfig().model_dump(mode="json"), f, default_flow_style=False, indent=2)

    def _read_yaml(self, path: Path) -> Dict[str, Any]:
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {path}")
        try:
            with open(path, 'r') as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse YAML config: {e}")
        except IOError as e:
            raise ConfigurationError(f"Failed to read config file: {e}")
        if not isinstance(data, dict):
            raise ConfigurationError("Config file must contain a YAML dictionary")
        return data

    def _load_environment_variables(self) -> Dict[str, Any]:
        env_config: Dict[str, Any] = {}

        if os.getenv(f"{self.ENV_PREFIX}DEBUG") == "true":
            env_config["debug"] = True

        if interval := os.getenv(f"{self.ENV_PREFIX}POLLING_INTERVAL_MS"):
            env_config.setdefault("detection", {})["polling_interval_ms"] = self._parse_int_variable("POLLING_INTERVAL_MS", interval)

        if debounce := os.getenv(f"{self.ENV_PREFIX}DEBOUNCE_MS"):
            env_config.setdefault("detection", {})["debounce_ms"] = self._parse_int_variable("DEBOUNCE_MS", debounce)

        if disabled := os.getenv(f"{self.ENV_PREFIX}DISABLED_FEATURES"):
            env_config["features"] = {
                name.strip(): {"enabled": False}
                for name in disabled.split(",") if name.strip()
            }

        return env_config

    def _parse_int_variable(self, suffix: str, value: str) -> int:
        try:
            return int(value)
        except ValueError:
            raise ConfigurationError(f"{self.ENV_PREFIX}{suffix} must be an integer, got '{value}'")


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two dictionaries, with override taking precedence."""
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def load_runtime_config(config_path: Optional[Union[str, Path]] = None,
                        environment: Optional[str] = None,
                        overrides: Optional[Dict[str, Any]] = None) -> RuntimeConfig:
    """Load a ``RuntimeConfig`` in one call."""
    return ConfigManager(config_path, environment=environment).load_config(overrides=overrides)
