"""
Unit tests for ConfigManager.
"""

import json

import pytest

from goswitch.core.config_manager import (
    BASE_DIR_ENV_VAR,
    ConfigLoadError,
    ConfigManager,
    ConfigValidationError,
    atomic_save_json,
    resolve_base_dir,
)


class TestConfigManager:
    """config.json 的加载、保存与验证。"""

    def test_creates_default_config(self, config_manager):
        config = config_manager.load_config()

        assert config_manager.config_file.exists()
        assert config["versions"] == {}
        assert config["current_version"] is None
        assert config["settings"]["catalog_refresh_interval"] == 7 * 24 * 3600
        assert config["settings"]["mirror_list"][0] == "https://go.dev/dl/"

    def test_directory_layout(self, config_manager, base_dir):
        assert config_manager.download_dir == base_dir.resolve() / "down"
        assert config_manager.versions_dir == base_dir.resolve() / "go-version"
        assert config_manager.backup_dir == base_dir.resolve() / "backup_env"
        assert config_manager.catalog_cache_file == base_dir.resolve() / "config" / "versions.json"

    def test_fills_missing_settings(self, config_manager):
        config_manager.config_file.write_text(json.dumps({
            "settings": {"download_timeout": 60},
            "versions": {},
        }), encoding="utf-8")

        config = config_manager.load_config()

        assert config["settings"]["download_timeout"] == 60
        assert config["settings"]["verify_after_apply"] is True
        assert config["current_version"] is None

    def test_corrupt_file_is_not_overwritten(self, config_manager):
        config_manager.config_file.write_text("{not json", encoding="utf-8")

        with pytest.raises(ConfigLoadError):
            config_manager.load_config()
        assert config_manager.config_file.read_text(encoding="utf-8") == "{not json"

    def test_dangling_current_version_rejected(self, config_manager):
        config = config_manager.get_default_config()
        config["current_version"] = "1.21.0-x64"

        with pytest.raises(ConfigValidationError, match="current_version"):
            config_manager.validate_config(config)

    def test_invalid_save_keeps_previous_config(self, config_manager):
        config_manager.load_config()
        bad = config_manager.get_default_config()
        bad["settings"]["activation_policy"] = "sometimes"

        with pytest.raises(ConfigValidationError):
            config_manager.save_config(bad)
        assert config_manager.get_activation_policy() == "ask"

    def test_set_setting(self, config_manager):
        config_manager.set_setting("download_timeout", 600)

        reloaded = ConfigManager(str(config_manager.base_dir))
        assert reloaded.get_timeouts() == (10, 600)

    def test_set_setting_rejects_unknown_key_and_bad_type(self, config_manager):
        with pytest.raises(ConfigValidationError, match="未知配置项"):
            config_manager.set_setting("no_such_key", 1)
        with pytest.raises(ConfigValidationError):
            config_manager.set_setting("download_timeout", True)
        with pytest.raises(ConfigValidationError):
            config_manager.set_setting("mirror_list", ["not a url"])


class TestBaseDir:
    """数据目录解析。"""

    def test_explicit_argument_wins(self, tmp_path, monkeypatch):
        monkeypatch.setenv(BASE_DIR_ENV_VAR, str(tmp_path / "env"))
        assert resolve_base_dir(str(tmp_path / "arg")) == (tmp_path / "arg").resolve()

    def test_environment_variable(self, tmp_path, monkeypatch):
        monkeypatch.setenv(BASE_DIR_ENV_VAR, str(tmp_path / "env"))
        assert resolve_base_dir() == (tmp_path / "env").resolve()


def test_atomic_save_json_leaves_no_temp_file(tmp_path):
    target = tmp_path / "data.json"

    atomic_save_json(target, {"a": 1}, fsync=True)

    assert json.loads(target.read_text(encoding="utf-8")) == {"a": 1}
    assert not (tmp_path / "data.json.tmp").exists()
