"""Tests for configuration module."""

import logging
from pathlib import Path

import pytest
from pydantic import ValidationError

from reelconsensus import config
from reelconsensus.config import (
    AutomationThresholds,
    ConsensusThresholds,
    Settings,
    _load_config_file,
    configure_logging,
    get_settings,
    reset_settings,
)


class TestSettingsFromEnvironment:
    """Tests for loading settings from environment variables."""

    def test_tmdb_key_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """TMDB key should be loaded from environment variable."""
        monkeypatch.setenv("REELCONSENSUS_TMDB_API_KEY", "tmdb_test_key")

        settings = Settings(_env_file=None)

        assert settings.tmdb_api_key is not None
        assert settings.tmdb_api_key.get_secret_value() == "tmdb_test_key"
        assert settings.has_tmdb_credentials() is True

    def test_default_values_when_no_env(self) -> None:
        """Defaults apply when nothing is configured."""
        settings = Settings(_env_file=None)

        assert settings.tmdb_api_key is None
        assert settings.has_tmdb_credentials() is False
        assert settings.batch_size == 10
        assert settings.batch_delay_seconds == 1.0
        assert settings.source_timeout_seconds == 10.0
        assert settings.duplicate_similarity_threshold == 0.90
        assert settings.discovery_similarity_threshold == 0.70
        assert settings.duplicate_year_tolerance == 0
        assert settings.discovery_year_tolerance == 1
        assert settings.discovery_language == "te"

    def test_nested_threshold_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Nested thresholds are set with a double underscore."""
        monkeypatch.setenv("REELCONSENSUS_CONSENSUS__AUTO_APPLY_THRESHOLD", "0.92")

        settings = Settings(_env_file=None)

        assert settings.consensus.auto_apply_threshold == 0.92
        assert settings.consensus.audit_threshold == 0.70

    def test_invalid_batch_size_rejected(self) -> None:
        """Batch size must be positive."""
        with pytest.raises(ValidationError):
            Settings(_env_file=None, batch_size=0)


class TestSettingsFromConfigFile:
    """Tests for loading settings from TOML config file."""

    def test_load_from_config_file(self, tmp_path: Path) -> None:
        """Config file values are read as a dictionary."""
        config_file = tmp_path / "config.toml"
        config_file.write_text('tmdb_api_key = "file_key"\nbatch_size = 5\n')

        config_data = _load_config_file(config_file)

        assert config_data == {"tmdb_api_key": "file_key", "batch_size": 5}

    def test_missing_config_file_returns_empty_dict(self, tmp_path: Path) -> None:
        """Missing config file should return empty dict."""
        assert _load_config_file(tmp_path / "nonexistent.toml") == {}

    def test_invalid_toml_returns_empty_dict(self, tmp_path: Path) -> None:
        """Unparseable config file is ignored."""
        config_file = tmp_path / "config.toml"
        config_file.write_text("this is = = not toml")

        assert _load_config_file(config_file) == {}

    def test_settings_fall_back_to_config_file(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Fields not set in the environment come from the config file."""
        config_file = tmp_path / "config.toml"
        config_file.write_text('batch_size = 5\ndiscovery_language = "ta"\n')
        monkeypatch.setattr(config, "CONFIG_FILE_PATH", config_file)
        monkeypatch.setenv("REELCONSENSUS_BATCH_SIZE", "7")

        settings = Settings(_env_file=None)

        assert settings.batch_size == 7
        assert settings.discovery_language == "ta"


class TestSecretMasking:
    """Credentials never appear in repr or str."""

    def test_repr_masks_api_key(self) -> None:
        """repr() shows a placeholder instead of the key."""
        settings = Settings(_env_file=None, tmdb_api_key="super-secret")

        assert "super-secret" not in repr(settings)
        assert "super-secret" not in str(settings)
        assert "tmdb_api_key=SecretStr('**********')" in repr(settings)

    def test_repr_without_key(self) -> None:
        """repr() shows None when no key is configured."""
        assert "tmdb_api_key=None" in repr(Settings(_env_file=None))


class TestThresholdModels:
    def test_consensus_defaults(self) -> None:
        """Consensus defaults match the documented tuning."""
        t = ConsensusThresholds()
        assert (t.auto_apply_threshold, t.audit_threshold) == (0.90, 0.70)
        assert t.corroboration_boost == 0.03
        assert t.confidence_cap == 0.98
        assert t.single_source_cap == 0.75

    def test_audit_above_auto_apply_rejected(self) -> None:
        """The audit band cannot sit above auto-apply."""
        with pytest.raises(ValidationError):
            ConsensusThresholds(auto_apply_threshold=0.6, audit_threshold=0.8)

    def test_thresholds_are_frozen(self) -> None:
        """Threshold groups are immutable."""
        t = ConsensusThresholds()
        with pytest.raises(ValidationError):
            t.auto_apply_threshold = 0.5  # type: ignore[misc]

    def test_automation_defaults(self) -> None:
        """Every action kind has an auto-fix and review threshold."""
        t = AutomationThresholds()
        assert t.auto_fix["reattribute"] == 0.85
        assert t.auto_fix["fix_duplicates"] == 0.90
        assert t.flag_for_review["add_missing"] == 0.70
        assert set(t.auto_fix) == set(t.flag_for_review)


class TestSettingsSingleton:
    def test_get_settings_returns_same_instance(self) -> None:
        """get_settings() caches its instance."""
        assert get_settings() is get_settings()

    def test_reset_settings_creates_new_instance(self) -> None:
        """reset_settings() drops the cached instance."""
        first = get_settings()
        reset_settings()
        assert get_settings() is not first


class TestConfigureLogging:
    def test_quiets_httpx(self) -> None:
        """httpx request logging is raised to WARNING."""
        configure_logging("DEBUG")
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_level_defaults_to_settings(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Without an explicit level, Settings.log_level is used."""
        monkeypatch.setenv("REELCONSENSUS_LOG_LEVEL", "debug")
        calls: list[dict] = []
        monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.append(kwargs))

        configure_logging()

        assert calls[0]["level"] == logging.DEBUG
