"""
配置管理器模块。

提供应用程序配置的加载、保存和验证功能，并负责数据目录布局。
"""

import copy
import json
import os
import sys
from pathlib import Path
from typing import Any, Optional

from goswitch.utils.logger import get_logger
from goswitch.core.interfaces import IConfigManager
from goswitch.utils.input_validator import InputValidator, InputValidationError

logger = get_logger()

BASE_DIR_ENV_VAR = "GOSWITCH_HOME"


class ConfigValidationError(Exception):
    """配置验证错误异常。"""
    pass


class ConfigLoadError(Exception):
    """配置加载错误异常。"""
    pass


class ConfigSaveError(Exception):
    """配置保存错误异常。"""
    pass


def get_app_dir() -> Path:
    """
    获取应用程序目录路径。

    返回:
        应用程序所在目录的 Path 对象
    """
    if getattr(sys, 'frozen', False):
        return Path(sys.executable).parent
    return Path(__file__).parent.parent.parent


def resolve_base_dir(base_dir: Optional[str] = None) -> Path:
    """
    确定数据根目录。

    优先级：显式参数 > 环境变量 GOSWITCH_HOME > <应用目录>/data。
    """
    if base_dir:
        return Path(base_dir).expanduser().resolve()
    env_value = os.environ.get(BASE_DIR_ENV_VAR)
    if env_value:
        return Path(env_value).expanduser().resolve()
    return get_app_dir() / "data"


def atomic_save_json(file_path: Path, data: Any, indent: int = 2, fsync: bool = False) -> None:
    """
    原子保存 JSON 数据到文件，防止写入中断导致文件损坏。

    参数:
        file_path: 目标文件路径
        data: 要保存的数据
        indent: JSON 缩进
        fsync: 重命名前是否强制落盘
    """
    file_path = Path(file_path)
    temp_path = file_path.with_suffix(file_path.suffix + ".tmp")

    try:
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=indent, ensure_ascii=False)
            if fsync:
                f.flush()
                os.fsync(f.fileno())
        os.replace(temp_path, file_path)
    except BaseException:
        if temp_path.exists():
            try:
                temp_path.unlink()
            except OSError as cleanup_error:
                logger.warning(f"清理临时文件 {temp_path} 失败: {cleanup_error}")
        raise


class ConfigManager(IConfigManager):
    """
    配置管理器类。

    负责 config.json 的加载、保存、验证和访问，并给出各数据子目录的位置。
    版本注册表也保存在同一份 config.json 中（versions / current_version）。
    """

    REQUIRED_FIELDS = {
        "settings": dict,
        "versions": dict,
    }

    SETTINGS_FIELDS = {
        "mirror_list": list,
        "catalog_refresh_interval": int,
        "request_rate_limit": int,
        "catalog_retry_count": int,
        "connect_timeout": int,
        "download_timeout": int,
        "download_speed_limit": int,
        "verify_after_apply": bool,
        "activation_policy": str,
    }

    DEFAULT_SETTINGS = {
        "mirror_list": [
            "https://go.dev/dl/",
            "https://golang.google.cn/dl/",
        ],
        "catalog_refresh_interval": 7 * 24 * 3600,
        "request_rate_limit": 10,
        "catalog_retry_count": 3,
        "connect_timeout": 10,
        "download_timeout": 300,
        "download_speed_limit": 0,
        "verify_after_apply": True,
        "activation_policy": "ask",
    }

    ACTIVATION_POLICIES = ("always", "never", "ask")

    def __init__(self, base_dir: Optional[str] = None):
        """
        初始化配置管理器。

        参数:
            base_dir: 数据根目录，省略时按 resolve_base_dir 的规则确定
        """
        self.base_dir = resolve_base_dir(base_dir)
        self.config_dir = self.base_dir / "config"
        self.config_file = self.config_dir / "config.json"
        self._config: dict[str, Any] = {}
        self._ensure_config_dir()

    @property
    def download_dir(self) -> Path:
        return self.base_dir / "down"

    @property
    def versions_dir(self) -> Path:
        return self.base_dir / "go-version"

    @property
    def backup_dir(self) -> Path:
        return self.base_dir / "backup_env"

    @property
    def log_dir(self) -> Path:
        return self.base_dir / "logs"

    @property
    def catalog_cache_file(self) -> Path:
        return self.config_dir / "versions.json"

    def _ensure_config_dir(self) -> None:
        """确保配置目录存在。"""
        self.config_dir.mkdir(parents=True, exist_ok=True)

    def get_default_config(self) -> dict[str, Any]:
        """
        获取内置默认配置。

        返回:
            默认配置字典
        """
        return {
            "settings": copy.deepcopy(self.DEFAULT_SETTINGS),
            "versions": {},
            "current_version": None,
        }

    def load_config(self) -> dict[str, Any]:
        """
        加载配置文件。

        配置文件不存在时写入默认配置；文件损坏或验证失败时抛出
        ConfigLoadError，避免用默认配置覆盖掉已有的版本注册信息。

        返回:
            配置字典
        """
        if not self.config_file.exists():
            logger.info(f"配置文件不存在，创建默认配置: {self.config_file}")
            self._config = self.get_default_config()
            self.save_config()
            return self._config

        try:
            logger.debug(f"从文件加载配置: {self.config_file}")
            with open(self.config_file, "r", encoding="utf-8") as f:
                self._config = json.load(f)
        except (IOError, OSError, json.JSONDecodeError) as e:
            logger.error(f"加载配置文件失败: {e}")
            raise ConfigLoadError(f"无法读取配置文件 {self.config_file}: {e}") from e

        if not isinstance(self._config, dict):
            raise ConfigLoadError(f"配置文件 {self.config_file} 顶层必须是对象")

        self._ensure_backward_compatibility()
        try:
            self.validate_config(self._config)
        except ConfigValidationError as e:
            logger.error(f"配置验证失败: {e}")
            raise ConfigLoadError(f"配置文件 {self.config_file} 无效: {e}") from e
        logger.debug("配置加载成功")
        return self._config

    def _ensure_backward_compatibility(self) -> None:
        """
        确保配置向后兼容，为旧版本配置添加新字段。
        """
        settings = self._config.setdefault("settings", {})
        if isinstance(settings, dict):
            for field, default in self.DEFAULT_SETTINGS.items():
                if field not in settings:
                    settings[field] = copy.deepcopy(default)
        self._config.setdefault("versions", {})
        self._config.setdefault("current_version", None)

    def save_config(self, config: dict[str, Any] | None = None) -> None:
        """
        保存配置到文件。

        参数:
            config: 要保存的配置字典，如果为 None 则保存当前配置
        """
        candidate = config if config is not None else self._config
        try:
            self.validate_config(candidate)
        except ConfigValidationError as e:
            logger.error(f"配置验证失败，无法保存: {e}")
            raise
        self._config = candidate

        try:
            logger.debug(f"保存配置到 {self.config_file}")
            atomic_save_json(self.config_file, self._config, indent=2)
        except (IOError, OSError, TypeError, ValueError) as e:
            logger.error(f"保存配置失败: {e}")
            raise ConfigSaveError(f"无法保存配置到 {self.config_file}: {e}") from e

    def validate_config(self, config: dict[str, Any]) -> bool:
        """
        验证配置的有效性。

        参数:
            config: 要验证的配置字典

        返回:
            验证通过返回 True

        抛出:
            ConfigValidationError: 配置验证失败时抛出
        """
        for field, expected_type in self.REQUIRED_FIELDS.items():
            if field not in config:
                raise ConfigValidationError(f"缺少必需字段: {field}")
            if not isinstance(config[field], expected_type):
                raise ConfigValidationError(
                    f"字段 '{field}' 必须是 {expected_type.__name__} 类型，"
                    f"实际为 {type(config[field]).__name__}"
                )

        settings = config["settings"]
        for field, expected_type in self.SETTINGS_FIELDS.items():
            if field not in settings:
                raise ConfigValidationError(f"settings 中缺少必需字段: {field}")
            value = settings[field]
            # bool 是 int 的子类，需单独排除
            if expected_type is int and isinstance(value, bool):
                raise ConfigValidationError(f"字段 'settings.{field}' 必须是 int 类型，实际为 bool")
            if not isinstance(value, expected_type):
                raise ConfigValidationError(
                    f"字段 'settings.{field}' 必须是 {expected_type.__name__} 类型，"
                    f"实际为 {type(value).__name__}"
                )

        if settings["activation_policy"] not in self.ACTIVATION_POLICIES:
            raise ConfigValidationError(
                f"settings.activation_policy 必须是 {', '.join(self.ACTIVATION_POLICIES)} 之一"
            )

        for url in settings["mirror_list"]:
            try:
                InputValidator.validate_url(url)
            except InputValidationError as e:
                raise ConfigValidationError(f"镜像地址无效: {e}") from e

        current = config.get("current_version")
        if current is not None and current not in config["versions"]:
            raise ConfigValidationError(f"current_version 指向未注册的版本: {current}")

        return True

    @property
    def config(self) -> dict[str, Any]:
        """
        获取配置字典（延迟加载）。
        """
        if not self._config:
            self.load_config()
        return self._config

    def get_config(self) -> dict[str, Any]:
        return self.config

    def get_settings(self) -> dict[str, Any]:
        return self.config.get("settings", {})

    def set_setting(self, key: str, value: Any) -> None:
        """
        修改单个 settings 项并保存，保存前会整体验证。

        参数:
            key: settings 下的键名
            value: 新值
        """
        if key not in self.SETTINGS_FIELDS:
            raise ConfigValidationError(f"未知配置项: {key}")
        config = copy.deepcopy(self.config)
        config["settings"][key] = value
        self.save_config(config)

    def get_mirror_list(self) -> list[str]:
        return list(self.get_settings().get("mirror_list", []))

    def get_catalog_refresh_interval(self) -> int:
        """
        获取版本目录刷新间隔（秒）。
        """
        return self.get_settings().get("catalog_refresh_interval", self.DEFAULT_SETTINGS["catalog_refresh_interval"])

    def get_request_rate_limit(self) -> int:
        return self.get_settings().get("request_rate_limit", 10)

    def get_catalog_retry_count(self) -> int:
        return self.get_settings().get("catalog_retry_count", 3)

    def get_timeouts(self) -> tuple[int, int]:
        """
        获取网络请求的 (连接超时, 读取超时)，单位秒。
        """
        settings = self.get_settings()
        return (
            settings.get("connect_timeout", self.DEFAULT_SETTINGS["connect_timeout"]),
            settings.get("download_timeout", self.DEFAULT_SETTINGS["download_timeout"]),
        )

    def get_download_speed_limit(self) -> int:
        """
        获取下载速度限制配置（字节/秒，0 表示不限制）。
        """
        return self.get_settings().get("download_speed_limit", 0)

    def get_verify_after_apply(self) -> bool:
        return bool(self.get_settings().get("verify_after_apply", True))

    def get_activation_policy(self) -> str:
        return self.get_settings().get("activation_policy", "ask")
