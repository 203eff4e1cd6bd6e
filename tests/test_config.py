"""
Tests for the configuration system.
"""

import pytest

from generation_jobs.config import (
    JobsConfig,
    LoggingConfig,
    Settings,
    StorageConfig,
    configure,
    get_settings,
    load_env,
)
from generation_jobs.config import settings as settings_module
from generation_jobs.errors import ConfigError


class TestJobsConfig:
    """Test job lifecycle configuration."""

    def test_defaults(self):
        config = JobsConfig()

        assert config.stuck_threshold_seconds == 360
        assert config.retention_seconds == 86400
        assert config.stuck_sweep_interval_seconds == 300
        assert config.cleanup_sweep_interval_seconds == 86400
        assert config.scope_overrides == {}

    def test_validation(self):
        with pytest.raises(ValueError, match="stuck_threshold_seconds must be positive"):
            JobsConfig(stuck_threshold_seconds=0)
        with pytest.raises(ValueError, match="sweep_batch_size"):
            JobsConfig(sweep_batch_size=0)
        with pytest.raises(ValueError, match="Invalid scope"):
            JobsConfig(scope_overrides={"icon": "team"})


class TestStorageConfig:
    """Test store configuration."""

    def test_defaults(self):
        config = StorageConfig()
        assert config.backend == "memory"
        assert config.table_name == "generation_jobs"

    def test_invalid_backend(self):
        with pytest.raises(ValueError, match="Invalid storage backend"):
            StorageConfig(backend="mongo")

    def test_invalid_redis_url(self):
        with pytest.raises(ValueError, match="redis_url"):
            StorageConfig(redis_url="http://localhost")

    def test_pool_sizes(self):
        with pytest.raises(ValueError):
            StorageConfig(pool_min_size=5, pool_max_size=2)


class TestLoggingConfig:
    """Test logging configuration."""

    def test_invalid_level(self):
        with pytest.raises(ValueError, match="Invalid log level"):
            LoggingConfig(level="LOUD")

    def test_invalid_format(self):
        with pytest.raises(ValueError, match="Invalid log format"):
            LoggingConfig(format="xml")


class TestSettingsFromEnv:
    """Test environment loading."""

    def test_reads_prefixed_variables(self, monkeypatch):
        monkeypatch.setenv("GENJOBS_STUCK_THRESHOLD_SECONDS", "600")
        monkeypatch.setenv("GENJOBS_RETENTION_SECONDS", "3600")
        monkeypatch.setenv("GENJOBS_STORAGE_BACKEND", "POSTGRES")
        monkeypatch.setenv("GENJOBS_PG_DSN", "postgresql://u:p@db/jobs")
        monkeypatch.setenv("GENJOBS_LOG_LEVEL", "debug")
        monkeypatch.setenv("GENJOBS_SCOPE_OVERRIDES", "cover_image=owner, icon=subject")

        settings = Settings.from_env()

        assert settings.jobs.stuck_threshold_seconds == 600
        assert settings.jobs.retention_seconds == 3600
        assert settings.storage.backend == "postgres"
        assert settings.storage.pg_dsn == "postgresql://u:p@db/jobs"
        assert settings.logging.level == "DEBUG"
        assert settings.jobs.scope_overrides == {"cover_image": "owner", "icon": "subject"}

    def test_invalid_number(self, monkeypatch):
        monkeypatch.setenv("GENJOBS_RETENTION_SECONDS", "a day")
        with pytest.raises(ConfigError):
            Settings.from_env()

    def test_invalid_value_after_load(self, monkeypatch):
        monkeypatch.setenv("GENJOBS_STORAGE_BACKEND", "mongo")
        with pytest.raises(ConfigError, match="Invalid storage backend"):
            Settings.from_env()

    def test_malformed_scope_override(self, monkeypatch):
        monkeypatch.setenv("GENJOBS_SCOPE_OVERRIDES", "cover_image")
        with pytest.raises(ConfigError, match="kind=scope"):
            Settings.from_env()

    def test_custom_prefix(self, monkeypatch):
        monkeypatch.setenv("STAGING_SWEEP_BATCH_SIZE", "25")
        assert Settings.from_env(prefix="STAGING_").jobs.sweep_batch_size == 25


class TestSettingsFromFile:
    """Test file loading."""

    def test_yaml(self, tmp_path):
        path = tmp_path / "genjobs.yaml"
        path.write_text(
            "jobs:\n"
            "  stuck_threshold_seconds: 120\n"
            "  scope_overrides:\n"
            "    cover_image: owner\n"
            "storage:\n"
            "  backend: redis\n"
            "  redis_url: redis://localhost:6379/0\n"
        )

        settings = Settings.from_file(path)

        assert settings.jobs.stuck_threshold_seconds == 120
        assert settings.jobs.scope_overrides == {"cover_image": "owner"}
        assert settings.storage.backend == "redis"

    def test_toml(self, tmp_path):
        path = tmp_path / "genjobs.toml"
        path.write_text('[logging]\nlevel = "WARNING"\nformat = "text"\n')

        settings = Settings.from_file(path)

        assert settings.logging.level == "WARNING"
        assert settings.logging.format == "text"

    def test_schema_violation(self, tmp_path):
        path = tmp_path / "genjobs.yaml"
        path.write_text("jobs:\n  retention_seconds: -5\n")

        with pytest.raises(ConfigError, match="Configuration validation failed"):
            Settings.from_file(path)

    def test_unknown_section(self):
        with pytest.raises(ConfigError):
            Settings.from_dict({"cache": {}})

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            Settings.from_file(tmp_path / "nope.yaml")

    def test_unsupported_format(self, tmp_path):
        path = tmp_path / "genjobs.ini"
        path.write_text("[jobs]\n")
        with pytest.raises(ValueError, match="Unsupported"):
            Settings.from_file(path)


class TestGlobalSettings:
    """Test global settings helpers."""

    def test_configure_and_get(self, monkeypatch):
        monkeypatch.setattr(settings_module, "_global_settings", None)
        custom = Settings(jobs=JobsConfig(stuck_threshold_seconds=42))

        configure(custom)

        assert get_settings() is custom
        assert get_settings().jobs.stuck_threshold_seconds == 42

    def test_configure_section_override(self, monkeypatch):
        monkeypatch.setattr(settings_module, "_global_settings", Settings())
        configure(logging=LoggingConfig(level="ERROR"))
        assert get_settings().logging.level == "ERROR"

    def test_to_dict(self):
        data = Settings().to_dict()
        assert data["storage"]["backend"] == "memory"
        assert data["jobs"]["retention_seconds"] == 86400

    def test_load_env_file(self, tmp_path, monkeypatch):
        # Registers the variable with monkeypatch so the loaded value is undone.
        monkeypatch.setenv("GENJOBS_KEY_PREFIX", "unset")
        monkeypatch.delenv("GENJOBS_KEY_PREFIX")
        env_file = tmp_path / ".env"
        env_file.write_text("GENJOBS_KEY_PREFIX=staging\n")

        assert load_env(str(env_file)) is True
        assert Settings.from_env().storage.key_prefix == "staging"
