"""
Tests for the layered configuration manager.

Sources, lowest to highest precedence: dataclass defaults, default.yaml,
<environment>.yaml, SEALVAULT_* environment variables, CLI overrides.
"""

import os

import pytest
import yaml

from sealvault.config_manager import (
    DEFAULT_CONFIG_DIR,
    AuthConfig,
    ConfigManager,
    Environment,
    LoggingConfig,
    StorageConfig,
)
from sealvault.core.auth import SignatureAuthorizer, TrustedCallerAuthorizer
from sealvault.core.storage import InMemoryStore, JsonFileStore


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith("SEALVAULT_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def config_dir(tmp_path):
    directory = tmp_path / "config"
    directory.mkdir()
    (directory / "default.yaml").write_text(
        yaml.safe_dump(
            {
                "storage": {"backend": "json", "path": "default.json"},
                "logging": {"level": "INFO"},
                "auth": {"mode": "trusted", "max_age_seconds": 120},
            }
        )
    )
    (directory / "staging.yaml").write_text(
        yaml.safe_dump({"storage": {"path": "staging.json"}, "logging": {"json_format": True}})
    )
    return directory


class TestLayering:
    def test_defaults_without_files(self, tmp_path):
        config = ConfigManager(environment="development", config_dir=str(tmp_path))
        assert config.storage == StorageConfig()
        assert config.logging == LoggingConfig()
        assert config.auth == AuthConfig()

    def test_default_yaml_applied(self, config_dir):
        config = ConfigManager(environment="development", config_dir=str(config_dir))
        assert config.storage.path == "default.json"
        assert config.logging.level == "INFO"
        assert config.auth.max_age_seconds == 120

    def test_environment_yaml_overrides_default(self, config_dir):
        config = ConfigManager(environment="staging", config_dir=str(config_dir))
        assert config.environment is Environment.STAGING
        assert config.storage.path == "staging.json"
        assert config.logging.json_format is True
        assert config.logging.level == "INFO"

    def test_env_variables_override_files(self, config_dir, monkeypatch):
        monkeypatch.setenv("SEALVAULT_STORAGE_PATH", "/srv/env.json")
        monkeypatch.setenv("SEALVAULT_AUTH_MAX_AGE_SECONDS", "45")
        monkeypatch.setenv("SEALVAULT_LOGGING_JSON_FORMAT", "off")
        config = ConfigManager(environment="staging", config_dir=str(config_dir))
        assert config.storage.path == "/srv/env.json"
        assert config.auth.max_age_seconds == 45
        assert config.logging.json_format is False

    def test_cli_overrides_win(self, config_dir, monkeypatch):
        monkeypatch.setenv("SEALVAULT_STORAGE_PATH", "/srv/env.json")
        config = ConfigManager(
            environment="staging",
            config_dir=str(config_dir),
            cli_overrides={"storage.path": "cli.json", "auth.mode": "signature", "logging.level": None},
        )
        assert config.storage.path == "cli.json"
        assert config.auth.mode == "signature"
        assert config.logging.level == "INFO"

    def test_environment_from_variable(self, config_dir, monkeypatch):
        monkeypatch.setenv("SEALVAULT_ENVIRONMENT", "stage")
        config = ConfigManager(config_dir=str(config_dir))
        assert config.environment is Environment.STAGING

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("dev", Environment.DEVELOPMENT),
            ("PROD", Environment.PRODUCTION),
            ("unknown", Environment.DEVELOPMENT),
        ],
    )
    def test_environment_aliases(self, tmp_path, name, expected):
        assert ConfigManager(environment=name, config_dir=str(tmp_path)).environment is expected

    def test_unknown_keys_are_ignored(self, tmp_path):
        (tmp_path / "default.yaml").write_text(yaml.safe_dump({"storage": {"path": "x.json", "shards": 4}}))
        config = ConfigManager(environment="development", config_dir=str(tmp_path))
        assert config.storage.path == "x.json"
        assert not hasattr(config.storage, "shards")

    def test_json_config_file(self, tmp_path):
        (tmp_path / "default.json").write_text('{"auth": {"mode": "signature"}}')
        config = ConfigManager(environment="development", config_dir=str(tmp_path))
        assert config.auth.mode == "signature"


class TestValidation:
    def test_invalid_log_level(self, tmp_path):
        with pytest.raises(ValueError, match="Invalid log level"):
            ConfigManager(
                environment="development",
                config_dir=str(tmp_path),
                cli_overrides={"logging.level": "LOUD"},
            )

    def test_invalid_backend(self, tmp_path):
        with pytest.raises(ValueError, match="Invalid storage backend"):
            ConfigManager(
                environment="development",
                config_dir=str(tmp_path),
                cli_overrides={"storage.backend": "sqlite"},
            )

    def test_invalid_auth_mode(self):
        with pytest.raises(ValueError, match="Invalid auth mode"):
            AuthConfig(mode="oauth").validate()

    def test_max_age_must_be_positive(self):
        with pytest.raises(ValueError, match="max_age_seconds"):
            AuthConfig(max_age_seconds=0).validate()


class TestAccessors:
    def test_get_dot_notation(self, config_dir):
        config = ConfigManager(environment="staging", config_dir=str(config_dir))
        assert config.get("storage.path") == "staging.json"
        assert config.get("storage.missing", "fallback") == "fallback"
        assert config.get("nosection.key", 1) == 1

    def test_to_dict(self, config_dir):
        data = ConfigManager(environment="staging", config_dir=str(config_dir)).to_dict()
        assert data["environment"] == "staging"
        assert data["storage"]["path"] == "staging.json"
        assert set(data) == {"environment", "storage", "logging", "auth"}

    def test_build_store(self, tmp_path):
        memory = ConfigManager(
            environment="development",
            config_dir=str(tmp_path),
            cli_overrides={"storage.backend": "memory"},
        )
        assert isinstance(memory.build_store(), InMemoryStore)

        json_config = ConfigManager(
            environment="development",
            config_dir=str(tmp_path),
            cli_overrides={"storage.path": str(tmp_path / "state.json")},
        )
        assert isinstance(json_config.build_store(), JsonFileStore)

    def test_build_authorizer(self, tmp_path):
        trusted = ConfigManager(environment="development", config_dir=str(tmp_path))
        assert isinstance(trusted.build_authorizer(), TrustedCallerAuthorizer)

        signed = ConfigManager(
            environment="development",
            config_dir=str(tmp_path),
            cli_overrides={"auth.mode": "signature"},
        )
        authorizer = signed.build_authorizer()
        assert isinstance(authorizer, SignatureAuthorizer)
        assert authorizer.max_age_seconds == 300


class TestPackagedConfig:
    def test_packaged_files_load(self):
        assert (DEFAULT_CONFIG_DIR / "default.yaml").exists()
        production = ConfigManager(environment="production")
        assert production.logging.json_format is True
        assert production.storage.path == "/var/lib/sealvault/registry.json"

    def test_packaged_development_defaults(self):
        config = ConfigManager(environment="development")
        assert config.storage.path == "data/sealvault-dev.json"
        assert config.logging.level == "WARNING"
