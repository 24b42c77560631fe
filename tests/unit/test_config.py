"""
Unit tests for Config (environment) and ConfigManager (YAML tunables).
"""

import pytest

from questledger.core.config.config import Config, Environment
from questledger.core.config.manager import ConfigManager, ConfigManagerError


class TestConfig:
    """Environment-driven settings."""

    def test_testing_environment_loaded(self, testing_config):
        """The suite runs with ENVIRONMENT=testing."""
        assert testing_config.ENVIRONMENT == "testing"
        assert testing_config.is_testing() is True
        assert testing_config.is_production() is False

    def test_environment_parsing_falls_back(self):
        assert Environment.from_string("PRODUCTION") is Environment.PRODUCTION
        assert Environment.from_string("nonsense") is Environment.DEVELOPMENT

    def test_reload_picks_up_environment(self, monkeypatch):
        """reload() re-reads variables set after import."""
        # Arrange
        monkeypatch.setenv("DATABASE_RETRY_MAX_ATTEMPTS", "9")

        # Act
        Config.reload()

        # Assert
        assert Config.DATABASE_RETRY_MAX_ATTEMPTS == 9

        monkeypatch.delenv("DATABASE_RETRY_MAX_ATTEMPTS")
        Config.reload()
        assert Config.DATABASE_RETRY_MAX_ATTEMPTS == 5

    def test_invalid_int_uses_default(self, monkeypatch):
        monkeypatch.setenv("DATABASE_POOL_SIZE", "lots")

        Config.reload()

        assert Config.DATABASE_POOL_SIZE == 10
        assert "DATABASE_POOL_SIZE" in Config.get_load_report().problems
        monkeypatch.delenv("DATABASE_POOL_SIZE")
        Config.reload()

    def test_invalid_bool_uses_default(self, monkeypatch):
        monkeypatch.setenv("DATABASE_ECHO", "perhaps")

        Config.reload()

        assert Config.DATABASE_ECHO is False
        monkeypatch.delenv("DATABASE_ECHO")
        Config.reload()

    def test_summary_hides_credentials(self):
        summary = Config.get_config_summary()

        assert summary["environment"] == "testing"
        assert summary["database_scheme"] == Config.DATABASE_URL.split(":", 1)[0]
        assert "ledger:ledger" not in str(summary)
        assert summary["load"]["loaded_at"] is not None

    def test_backoff_bounds_are_reconciled(self, monkeypatch):
        """A max backoff below the initial backoff is raised to match."""
        monkeypatch.setenv("DATABASE_RETRY_INITIAL_BACKOFF_MS", "100")
        monkeypatch.setenv("DATABASE_RETRY_MAX_BACKOFF_MS", "10")

        Config.reload()

        assert Config.DATABASE_RETRY_MAX_BACKOFF_MS == 100
        monkeypatch.delenv("DATABASE_RETRY_INITIAL_BACKOFF_MS")
        monkeypatch.delenv("DATABASE_RETRY_MAX_BACKOFF_MS")
        Config.reload()


class TestConfigManager:
    """Dot-notation tunables."""

    def test_reads_yaml_values(self):
        assert ConfigManager.get("lobby.stale_minutes") == 10
        assert ConfigManager.get("vault.base_capacity") == 1000

    def test_missing_key_returns_default(self):
        assert ConfigManager.get("lobby.no_such_key", 42) == 42

    def test_override_takes_precedence(self):
        """Overrides win until cleared."""
        # Act
        ConfigManager.set_override("rewards.large_reward_threshold", 5)

        # Assert
        assert ConfigManager.get("rewards.large_reward_threshold") == 5
        ConfigManager.clear_overrides()
        assert ConfigManager.get("rewards.large_reward_threshold") == 100

    def test_returned_containers_are_copies(self):
        """Mutating a returned dict never changes the cached config."""
        defaults = ConfigManager.get("lobby.player_defaults")
        defaults["health"] = 1

        assert ConfigManager.get("lobby.player_defaults")["health"] == 100

    def test_builtin_defaults_without_yaml(self, tmp_path):
        """A missing config directory still serves built-in defaults."""
        try:
            ConfigManager.reset()
            ConfigManager.initialize(tmp_path / "missing")

            assert ConfigManager.get("lobby.default_max_players") == 4
        finally:
            ConfigManager.reset()

    def test_yaml_file_overrides_builtins(self, tmp_path):
        (tmp_path / "custom.yaml").write_text("lobby:\n  stale_minutes: 3\n", encoding="utf-8")
        try:
            ConfigManager.reset()
            ConfigManager.initialize(tmp_path)

            assert ConfigManager.get("lobby.stale_minutes") == 3
            assert ConfigManager.get("lobby.default_max_players") == 4
        finally:
            ConfigManager.reset()

    def test_catalog_directory_is_skipped(self, tmp_path):
        catalog_dir = tmp_path / "catalog"
        catalog_dir.mkdir()
        (catalog_dir / "chapters.yaml").write_text("chapters: []\n", encoding="utf-8")
        try:
            ConfigManager.reset()
            ConfigManager.initialize(tmp_path)

            assert "chapters" not in ConfigManager.get_all_keys()
        finally:
            ConfigManager.reset()

    def test_malformed_yaml_raises(self, tmp_path):
        (tmp_path / "broken.yaml").write_text("lobby: [unclosed\n", encoding="utf-8")
        try:
            ConfigManager.reset()
            with pytest.raises(ConfigManagerError):
                ConfigManager.initialize(tmp_path)
        finally:
            ConfigManager.reset()
