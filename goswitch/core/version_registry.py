"""
版本注册表模块。

记录已安装的 Go 版本以及当前激活版本，数据保存在 config.json 的
versions / current_version 字段中。
"""

import copy
from pathlib import Path
from typing import List, Optional

from goswitch.utils.logger import get_logger
from goswitch.core.config_manager import ConfigManager
from goswitch.core.models import InstalledVersion
from goswitch.core.version_utils import install_dir_name, sort_versions_desc

logger = get_logger()


class VersionRegistryError(Exception):
    """版本注册表错误异常。"""
    pass


class NotInstalledError(VersionRegistryError):
    """指定版本未安装异常。"""

    def __init__(self, version: str, arch: str):
        self.version = version
        self.arch = arch
        super().__init__(f"Go {version} ({arch}) 未安装")


class InvalidVersionPathError(VersionRegistryError):
    """安装目录名与版本、架构不一致异常。"""
    pass


class VersionRegistry:
    """
    版本注册表类。

    以 "<version>-<arch>" 为键保存已安装版本；current_version 指针
    只能指向已登记的键。每次修改都会立即写回 config.json。
    """

    def __init__(self, config_manager: ConfigManager):
        self.config_manager = config_manager

    def _versions(self) -> dict:
        return self.config_manager.get_config().setdefault("versions", {})

    def _save(self, config: dict) -> None:
        self.config_manager.save_config(config)

    def add_version(self, version: str, arch: str, path: str, install_date: Optional[str] = None) -> InstalledVersion:
        """
        登记一个已安装版本，重复登记会覆盖原记录。

        参数:
            version: 规范版本号
            arch: 规范架构名
            path: 安装目录，目录名必须是 "<version>-<arch>"
            install_date: 安装时间

        返回:
            登记后的记录

        抛出:
            InvalidVersionPathError: 目录名与版本、架构不一致
        """
        key = install_dir_name(version, arch)
        if Path(path).name != key:
            raise InvalidVersionPathError(f"安装目录 {path} 的名称应为 {key}")

        entry = InstalledVersion(version=version, arch=arch, path=str(path), install_date=install_date)
        config = copy.deepcopy(self.config_manager.get_config())
        config.setdefault("versions", {})[key] = entry.to_dict()
        self._save(config)
        logger.info(f"已登记 Go {version} ({arch}): {path}")
        return entry

    def remove_version(self, version: str, arch: str) -> bool:
        """
        删除一个版本的登记；如果它是当前版本，同时清空当前版本指针。

        返回:
            记录存在并被删除返回 True
        """
        key = install_dir_name(version, arch)
        config = copy.deepcopy(self.config_manager.get_config())
        versions = config.setdefault("versions", {})
        if key not in versions:
            logger.debug(f"版本 {key} 未登记，无需删除")
            return False

        del versions[key]
        if config.get("current_version") == key:
            config["current_version"] = None
            logger.info(f"已清除当前版本指针 {key}")
        self._save(config)
        logger.info(f"已删除版本登记 {key}")
        return True

    def set_current(self, version: str, arch: str) -> None:
        """
        设置当前激活版本。

        抛出:
            NotInstalledError: 版本未登记
        """
        key = install_dir_name(version, arch)
        if key not in self._versions():
            raise NotInstalledError(version, arch)
        config = copy.deepcopy(self.config_manager.get_config())
        config["current_version"] = key
        self._save(config)
        logger.info(f"当前版本已设置为 {key}")

    def clear_current(self) -> None:
        config = copy.deepcopy(self.config_manager.get_config())
        if config.get("current_version") is None:
            return
        config["current_version"] = None
        self._save(config)
        logger.info("已清除当前版本指针")

    def get(self, version: str, arch: str) -> Optional[InstalledVersion]:
        data = self._versions().get(install_dir_name(version, arch))
        return InstalledVersion.from_dict(data) if data else None

    def require(self, version: str, arch: str) -> InstalledVersion:
        """
        获取已登记的版本，不存在时抛出 NotInstalledError。
        """
        entry = self.get(version, arch)
        if entry is None:
            raise NotInstalledError(version, arch)
        return entry

    def get_current(self) -> Optional[InstalledVersion]:
        key = self.config_manager.get_config().get("current_version")
        if not key:
            return None
        data = self._versions().get(key)
        return InstalledVersion.from_dict(data) if data else None

    def list_versions(self) -> List[InstalledVersion]:
        """
        按版本号降序返回所有已登记版本，同版本按架构名排序。
        """
        entries = []
        for key, data in self._versions().items():
            try:
                entries.append(InstalledVersion.from_dict(data))
            except (KeyError, TypeError) as e:
                logger.warning(f"版本登记 {key} 数据无效，已忽略: {e}")
        entries.sort(key=lambda v: v.arch)
        return sort_versions_desc(entries, lambda v: v.version)
