"""
SealVault Configuration Manager

Centralized configuration management supporting:
- Environment-based configs (development/staging/production)
- Config file loading (YAML/JSON)
- Command-line override support
- Environment variable support (SEALVAULT_*)
- Config validation
"""

import json
import logging
import os
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from dotenv import load_dotenv

from sealvault.core.auth import Authorizer, SignatureAuthorizer, TrustedCallerAuthorizer
from sealvault.core.storage import InMemoryStore, JsonFileStore, KeyValueStore

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path(__file__).resolve().parent / "config"
ENV_PREFIX = "SEALVAULT_"


class Environment(Enum):
    """Environment types"""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


@dataclass
class StorageConfig:
    """Registry store settings"""
    backend: str = "json"
    path: str = "data/sealvault.json"

    def validate(self):
        if self.backend not in ("memory", "json"):
            raise ValueError(f"Invalid storage backend: {self.backend}. Must be 'memory' or 'json'")
        if self.backend == "json" and not self.path:
            raise ValueError("storage path cannot be empty for the json backend")


@dataclass
class LoggingConfig:
    """Logging configuration settings"""
    level: str = "WARNING"
    log_file: str = ""
    json_format: bool = False
    max_log_size: int = 10485760  # 10MB
    backup_count: int = 5

    def validate(self):
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if str(self.level).upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {self.level}. Must be one of {valid_levels}")
        if self.max_log_size < 1024:
            raise ValueError(f"Invalid max_log_size: {self.max_log_size}. Must be >= 1024")
        if self.backup_count < 0:
            raise ValueError(f"Invalid backup_count: {self.backup_count}. Must be >= 0")


@dataclass
class AuthConfig:
    """Caller authorization settings"""
    mode: str = "trusted"
    max_age_seconds: int = 300

    def validate(self):
        if self.mode not in ("trusted", "signature"):
            raise ValueError(f"Invalid auth mode: {self.mode}. Must be 'trusted' or 'signature'")
        if self.max_age_seconds < 1:
            raise ValueError(f"Invalid max_age_seconds: {self.max_age_seconds}. Must be >= 1")


SECTIONS = {
    "storage": StorageConfig,
    "logging": LoggingConfig,
    "auth": AuthConfig,
}


class ConfigManager:
    """
    Configuration Manager for SealVault

    Sources are applied with this precedence:
    1. Command-line overrides (highest priority)
    2. Environment variables (SEALVAULT_SECTION_KEY)
    3. Environment-specific config file
    4. Default config file
    5. Built-in defaults (lowest priority)
    """

    def __init__(self,
                 environment: Optional[str] = None,
                 config_dir: Optional[str] = None,
                 cli_overrides: Optional[Dict[str, Any]] = None):
        load_dotenv()

        self.environment = self._determine_environment(environment)
        self.config_dir = Path(config_dir).resolve() if config_dir else DEFAULT_CONFIG_DIR
        self.cli_overrides = cli_overrides or {}

        self.storage: StorageConfig = StorageConfig()
        self.logging: LoggingConfig = LoggingConfig()
        self.auth: AuthConfig = AuthConfig()

        self._raw_config: Dict[str, Any] = {}
        self._load_configuration()

    def _determine_environment(self, environment: Optional[str]) -> Environment:
        env_str = (environment or os.getenv("SEALVAULT_ENVIRONMENT", "development")).lower()
        env_mapping = {
            "dev": Environment.DEVELOPMENT,
            "development": Environment.DEVELOPMENT,
            "staging": Environment.STAGING,
            "stage": Environment.STAGING,
            "prod": Environment.PRODUCTION,
            "production": Environment.PRODUCTION,
        }
        return env_mapping.get(env_str, Environment.DEVELOPMENT)

    def _load_configuration(self):
        default_config = self._load_config_file("default")
        env_config = self._load_config_file(self.environment.value)
        merged_config = self._merge_configs(default_config, env_config)
        merged_config = self._apply_env_variables(merged_config)
        merged_config = self._apply_cli_overrides(merged_config)

        self._raw_config = merged_config
        self._parse_configuration(merged_config)
        self._validate_configuration()

    def _load_config_file(self, filename: str) -> Dict[str, Any]:
        yaml_path = self.config_dir / f"{filename}.yaml"
        if yaml_path.exists():
            with open(yaml_path, "r", encoding="utf-8") as f:
                return yaml.safe_load(f) or {}

        json_path = self.config_dir / f"{filename}.json"
        if json_path.exists():
            with open(json_path, "r", encoding="utf-8") as f:
                return json.load(f)

        return {}

    def _merge_configs(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two configuration dictionaries"""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_configs(result[key], value)
            else:
                result[key] = value
        return result

    def _apply_env_variables(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """
        Apply SEALVAULT_SECTION_KEY environment overrides

        Example:
        SEALVAULT_STORAGE_PATH=/srv/sealvault/state.json
        SEALVAULT_LOGGING_LEVEL=DEBUG
        """
        result = {key: dict(value) if isinstance(value, dict) else value for key, value in config.items()}

        for key, value in os.environ.items():
            if not key.startswith(ENV_PREFIX) or key == "SEALVAULT_ENVIRONMENT":
                continue

            parts = key[len(ENV_PREFIX):].lower().split("_")
            if len(parts) < 2:
                continue

            section = parts[0]
            config_key = "_".join(parts[1:])
            if section not in SECTIONS:
                continue

            if not isinstance(result.get(section), dict):
                result[section] = {}
            result[section][config_key] = self._parse_env_value(value)

        return result

    def _parse_env_value(self, value: str) -> Union[str, int, float, bool]:
        if value.lower() in ("true", "yes", "on"):
            return True
        if value.lower() in ("false", "no", "off"):
            return False

        try:
            return int(value)
        except ValueError:
            pass

        try:
            return float(value)
        except ValueError:
            pass

        return value

    def _apply_cli_overrides(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Apply "section.key" command-line overrides; None values are ignored"""
        result = {key: dict(value) if isinstance(value, dict) else value for key, value in config.items()}

        for key, value in self.cli_overrides.items():
            if value is None:
                continue
            parts = key.split(".")
            if len(parts) == 1:
                result[key] = value
            elif len(parts) == 2:
                section, config_key = parts
                if not isinstance(result.get(section), dict):
                    result[section] = {}
                result[section][config_key] = value

        return result

    def _parse_configuration(self, config: Dict[str, Any]):
        for section, section_cls in SECTIONS.items():
            values = config.get(section) or {}
            known = {k: v for k, v in values.items() if k in section_cls.__dataclass_fields__}
            unknown = sorted(set(values) - set(known))
            if unknown:
                logger.warning(
                    "Ignoring unknown %s settings: %s",
                    section,
                    ", ".join(unknown),
                    extra={"event": "config.unknown_keys", "section": section},
                )
            setattr(self, section, section_cls(**known))

    def _validate_configuration(self):
        for section in SECTIONS:
            getattr(self, section).validate()

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value by dot-notation key

        Example:
            config.get("storage.path")
        """
        parts = key.split(".")
        if len(parts) != 2 or parts[0] not in SECTIONS:
            return default
        return getattr(getattr(self, parts[0]), parts[1], default)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"environment": self.environment.value}
        for section in SECTIONS:
            data[section] = asdict(getattr(self, section))
        return data

    def build_store(self) -> KeyValueStore:
        """Instantiate the configured registry store"""
        if self.storage.backend == "memory":
            return InMemoryStore()
        return JsonFileStore(self.storage.path)

    def build_authorizer(self) -> Authorizer:
        """Instantiate the configured caller authorizer"""
        if self.auth.mode == "signature":
            return SignatureAuthorizer(max_age_seconds=self.auth.max_age_seconds)
        return TrustedCallerAuthorizer()

    def __repr__(self) -> str:
        return (
            f"ConfigManager(environment={self.environment.value}, "
            f"storage={self.storage.backend}:{self.storage.path})"
        )
