"""Tests for resolving the configuration, database and log locations."""

from pathlib import Path

import pytest

from member_sync.config.loader import Settings
from member_sync.utils.paths import (
    CONFIG_DIR_ENV_VAR,
    DEFAULT_CONFIG_DIR,
    DEFAULT_DATABASE_FILE,
    resolve_config_dir,
    resolve_database_path,
    resolve_log_dir,
)


class TestResolveConfigDir:
    """Explicit directory, then MEMBER_SYNC_CONFIG_DIR, then ~/.member-sync."""

    def test_explicit_wins_over_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv(CONFIG_DIR_ENV_VAR, str(tmp_path / "env"))

        assert resolve_config_dir(tmp_path / "cli") == (tmp_path / "cli").resolve()

    def test_environment_with_tilde(self, monkeypatch):
        monkeypatch.setenv(CONFIG_DIR_ENV_VAR, "~/directory-sync")

        assert resolve_config_dir() == Path.home() / "directory-sync"

    def test_default(self, monkeypatch):
        monkeypatch.delenv(CONFIG_DIR_ENV_VAR, raising=False)

        assert resolve_config_dir() == DEFAULT_CONFIG_DIR.resolve()


class TestResolveDatabasePath:
    """Tests for the profile database location."""

    def test_defaults_to_config_dir(self, tmp_path):
        assert resolve_database_path(None, tmp_path) == str(
            tmp_path / DEFAULT_DATABASE_FILE
        )

    def test_defaults_to_home_without_config_dir(self):
        assert resolve_database_path(None) == str(DEFAULT_CONFIG_DIR / "directory.db")

    def test_configured_path_expands_tilde(self, tmp_path):
        assert resolve_database_path("~/members.db", tmp_path) == str(
            Path.home() / "members.db"
        )

    def test_in_memory_is_kept(self, tmp_path):
        assert resolve_database_path(":memory:", tmp_path) == ":memory:"

    @pytest.mark.parametrize("configured", [None, ""])
    def test_blank_setting_uses_default(self, tmp_path, configured):
        assert resolve_database_path(configured, tmp_path).endswith("directory.db")


class TestResolveLogDir:
    @pytest.mark.parametrize("configured", [None, ""])
    def test_unset_keeps_logging_default(self, configured):
        assert resolve_log_dir(configured) is None

    def test_expands_tilde(self):
        assert resolve_log_dir("~/member-sync-logs") == Path.home() / "member-sync-logs"


class TestSettingsPaths:
    """Settings resolve their file locations through the same rules."""

    def test_database_and_logs_follow_config(self, tmp_path):
        settings = Settings.from_config(
            {"log_dir": "~/logs/member-sync"}, config_dir=tmp_path, environ={}
        )

        assert settings.database_path == str(tmp_path / "directory.db")
        assert settings.log_dir == Path.home() / "logs" / "member-sync"

    def test_configured_database_path(self, tmp_path):
        settings = Settings.from_config(
            {"database_path": "~/directory.db"}, config_dir=tmp_path, environ={}
        )

        assert settings.database_path == str(Path.home() / "directory.db")
        assert settings.log_dir is None
