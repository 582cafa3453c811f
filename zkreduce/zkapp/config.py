"""
Configuration for the reducer, proving backend, rewards and logging.

A value resolves from, highest first:
    1. its ZKREDUCE_* environment variable
    2. a runtime `set` or a loaded YAML file (later loads win)
    3. the default

The CLI loads ./zkreduce.yaml, ./config/zkreduce.yaml and
~/.zkreduce/config.yaml when present, or the file given with --config.
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar, Union

import yaml

from zkreduce.zkapp.hardening import ZkReduceError

T = TypeVar("T")


class ConfigError(ZkReduceError):
    """Configuration error."""
    pass


class ConfigValidationError(ConfigError):
    """Configuration validation error."""
    pass


@dataclass
class ConfigValue(Generic[T]):
    """
    A single configuration value with metadata.

    Supports default values, environment variable binding,
    validation, and change callbacks.
    """
    default: T
    env_var: Optional[str] = None
    description: str = ""
    validator: Optional[Callable[[T], bool]] = None
    secret: bool = False  # Don't log if True
    _value: Optional[T] = field(default=None, repr=False)
    _callbacks: List[Callable[[T, T], None]] = field(default_factory=list, repr=False)

    def get(self) -> T:
        """Get the current value."""
        if self.env_var and self.env_var in os.environ:
            return self._coerce(os.environ[self.env_var])
        return self._value if self._value is not None else self.default

    def set(self, value: Any) -> None:
        """Set the value with validation."""
        if isinstance(value, str) and not isinstance(self.default, str):
            value = self._coerce(value)
        if self.validator and not self.validator(value):
            raise ConfigValidationError(f"Invalid value for config: {value}")

        old_value = self._value
        self._value = value

        for callback in self._callbacks:
            callback(old_value, value)

    def _coerce(self, value: str) -> T:
        """Coerce string value to target type."""
        target_type = type(self.default)

        if target_type == bool:
            return value.lower() in ("true", "1", "yes", "on")  # type: ignore
        elif target_type == int:
            return int(value)  # type: ignore
        return value  # type: ignore

    def on_change(self, callback: Callable[[T, T], None]) -> None:
        """Register a change callback."""
        self._callbacks.append(callback)


@dataclass
class ReducerConfig:
    """Configuration for the rollup reducer."""
    max_actions_per_rollup: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=0,
        env_var="ZKREDUCE_REDUCER_MAX_ACTIONS",
        description="Maximum actions folded per rollup (0 = unbounded)",
        validator=lambda x: x >= 0,
    ))
    retry_attempts: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=3,
        env_var="ZKREDUCE_REDUCER_RETRIES",
        description="Rollup attempts on stale checkpoint",
        validator=lambda x: x >= 1,
    ))


@dataclass
class ZkConfig:
    """Configuration for the proving backend."""
    proofs_enabled: ConfigValue[bool] = field(default_factory=lambda: ConfigValue(
        default=True,
        env_var="ZKREDUCE_PROOFS_ENABLED",
        description="Issue real certificates (false = dummy proofs, development only)",
    ))
    backend_secret: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="zkreduce-dev-backend",
        env_var="ZKREDUCE_ZK_BACKEND_SECRET",
        description="Certificate key of the commitment backend",
        validator=lambda x: len(x) >= 8,
        secret=True,
    ))
    value_multiplier: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=8,
        env_var="ZKREDUCE_ZK_VALUE_MULTIPLIER",
        description="Factor the signed-computation stage applies to the ownership value",
        validator=lambda x: x > 0,
    ))


@dataclass
class RewardsConfig:
    """Configuration for token and reward minting."""
    recursive_proof_amount: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=88888888,
        env_var="ZKREDUCE_REWARD_PROOF_AMOUNT",
        description="Reward minted for a verified recursive proof",
        validator=lambda x: x > 0,
    ))
    mint_amount: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=10000,
        env_var="ZKREDUCE_MINT_AMOUNT",
        description="Contract tokens minted per mint_new_tokens call",
        validator=lambda x: x > 0,
    ))
    reward_divisor: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=100,
        env_var="ZKREDUCE_REWARD_DIVISOR",
        description="Reward tokens minted = mint_amount / reward_divisor",
        validator=lambda x: x > 0,
    ))
    secret: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=1111,
        env_var="ZKREDUCE_REWARD_SECRET",
        description="Shared secret signed by reward claimants",
        secret=True,
    ))


@dataclass
class NetworkConfig:
    """Configuration for account preconditions."""
    veteran_min_balance: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=3_000_000_000,
        env_var="ZKREDUCE_VETERAN_MIN_BALANCE",
        description="Native balance (nanomina) required for veteran updates",
        validator=lambda x: x >= 0,
    ))


@dataclass
class ObservabilityConfig:
    """Configuration for Observability."""
    log_level: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="info",
        env_var="ZKREDUCE_LOG_LEVEL",
        description="Log level (debug, info, warning, error)",
        validator=lambda x: x in ("debug", "info", "warning", "error", "critical"),
    ))
    log_format: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="json",
        env_var="ZKREDUCE_LOG_FORMAT",
        description="Log format (json, text)",
        validator=lambda x: x in ("json", "text"),
    ))


@dataclass
class ZkReduceConfig:
    """Root configuration, one section per component."""
    reducer: ReducerConfig = field(default_factory=ReducerConfig)
    zk: ZkConfig = field(default_factory=ZkConfig)
    rewards: RewardsConfig = field(default_factory=RewardsConfig)
    network: NetworkConfig = field(default_factory=NetworkConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    def to_dict(self, redact: bool = True) -> Dict[str, Any]:
        """Convert to dictionary; secret values are masked unless redact=False."""
        def extract_values(obj: Any) -> Any:
            if isinstance(obj, ConfigValue):
                return "***" if (obj.secret and redact) else obj.get()
            elif hasattr(obj, "__dataclass_fields__"):
                return {k: extract_values(getattr(obj, k)) for k in obj.__dataclass_fields__}
            return obj

        return extract_values(self)

    def to_yaml(self) -> str:
        return yaml.dump(self.to_dict(), default_flow_style=False)


class ConfigManager:
    """
    Configuration manager with file loading and environment binding.

    Thread-safe singleton that manages configuration lifecycle.
    """

    _instance: Optional["ConfigManager"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "ConfigManager":
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._initialized = False
            return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._config = ZkReduceConfig()
        self._initialized = True

    @property
    def config(self) -> ZkReduceConfig:
        return self._config

    def load_from_file(self, path: Union[str, Path]) -> None:
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")

        with open(path) as f:
            data = yaml.safe_load(f)

        if data:
            if not isinstance(data, dict):
                raise ConfigError(f"Configuration file must contain a mapping: {path}")
            self._apply_dict(data)

    def load_defaults(self) -> List[Path]:
        """Load default configuration files if they exist; returns the paths loaded."""
        default_paths = [
            Path("zkreduce.yaml"),
            Path("config/zkreduce.yaml"),
            Path.home() / ".zkreduce" / "config.yaml",
        ]

        loaded = []
        for path in default_paths:
            if path.exists():
                self.load_from_file(path)
                loaded.append(path)
        return loaded

    def _apply_dict(self, data: Dict[str, Any]) -> None:
        def apply_to_config(config_obj: Any, values: Dict[str, Any], prefix: str) -> None:
            for key, value in values.items():
                if not hasattr(config_obj, key):
                    raise ConfigError(f"Unknown config key: {prefix}{key}")
                attr = getattr(config_obj, key)
                if isinstance(attr, ConfigValue):
                    attr.set(value)
                elif hasattr(attr, "__dataclass_fields__") and isinstance(value, dict):
                    apply_to_config(attr, value, f"{prefix}{key}.")

        apply_to_config(self._config, data, "")

    def _resolve(self, path: str) -> Any:
        obj: Any = self._config
        for part in path.split("."):
            if not hasattr(obj, part):
                raise ConfigError(f"Invalid config path: {path}")
            obj = getattr(obj, part)
        return obj

    def set(self, path: str, value: Any) -> None:
        """
        Set a configuration value by path.

        Example: config.set("reducer.max_actions_per_rollup", 16)
        """
        attr = self._resolve(path)
        if not isinstance(attr, ConfigValue):
            raise ConfigError(f"Invalid config path: {path}")
        attr.set(value)

    def get(self, path: str) -> Any:
        obj = self._resolve(path)
        if isinstance(obj, ConfigValue):
            return obj.get()
        return obj

    def reset(self) -> None:
        """Drop runtime overrides and values loaded from files."""
        self._config = ZkReduceConfig()

    def validate(self) -> List[str]:
        """
        Validate all configuration values.

        Returns list of validation errors.
        """
        errors: List[str] = []

        def validate_config(obj: Any, path: str = "") -> None:
            if isinstance(obj, ConfigValue):
                try:
                    value = obj.get()
                    if obj.validator and not obj.validator(value):
                        errors.append(f"{path}: validation failed for value {value}")
                except (TypeError, ValueError) as e:
                    errors.append(f"{path}: {e}")
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    field_path = f"{path}.{field_name}" if path else field_name
                    validate_config(getattr(obj, field_name), field_path)

        validate_config(self._config)
        return errors

    def export_schema(self) -> Dict[str, Any]:
        """Export configuration schema for documentation."""
        schema: Dict[str, Any] = {"properties": {}}

        def extract_schema(obj: Any, properties: Dict[str, Any]) -> None:
            if isinstance(obj, ConfigValue):
                properties["type"] = type(obj.default).__name__
                properties["default"] = "***" if obj.secret else str(obj.default)
                properties["description"] = obj.description
                if obj.env_var:
                    properties["env_var"] = obj.env_var
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    properties[field_name] = {}
                    extract_schema(getattr(obj, field_name), properties[field_name])

        extract_schema(self._config, schema["properties"])
        return schema


def get_config() -> ZkReduceConfig:
    """Get the current configuration."""
    return ConfigManager().config


def get_config_manager() -> ConfigManager:
    return ConfigManager()
