"""
核心模块抽象接口定义。

定义配置管理器、环境变量存储和版本目录提供者的抽象接口。
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

from goswitch.core.models import ReleaseDescriptor


class IConfigManager(ABC):
    """配置管理器抽象接口。"""

    @abstractmethod
    def get_config(self) -> dict[str, Any]:
        """获取配置字典。"""
        pass

    @abstractmethod
    def save_config(self, config: dict[str, Any] | None = None) -> None:
        """保存配置到文件。"""
        pass

    @abstractmethod
    def get_settings(self) -> dict[str, Any]:
        """获取 settings 配置部分。"""
        pass

    @property
    @abstractmethod
    def download_dir(self) -> Path:
        """安装包下载缓存目录。"""
        pass

    @property
    @abstractmethod
    def versions_dir(self) -> Path:
        """各版本的安装目录。"""
        pass

    @property
    @abstractmethod
    def backup_dir(self) -> Path:
        """环境变量备份目录。"""
        pass

    @property
    @abstractmethod
    def catalog_cache_file(self) -> Path:
        """版本目录缓存文件。"""
        pass


class IEnvironmentStore(ABC):
    """
    持久化系统环境变量存储的抽象接口。

    set_env_var / delete_env_var 是单个变量的原子写入原语，
    失败时抛出 EnvStoreError，不允许只写入一半。
    """

    @abstractmethod
    def get_env_var(self, name: str) -> Optional[str]:
        """获取环境变量值，不存在返回 None。"""
        pass

    @abstractmethod
    def set_env_var(self, name: str, value: str) -> None:
        """设置环境变量值。"""
        pass

    @abstractmethod
    def delete_env_var(self, name: str) -> None:
        """删除环境变量，不存在时视为成功。"""
        pass

    @abstractmethod
    def get_all_env_vars(self) -> Dict[str, str]:
        """获取所有系统环境变量。"""
        pass

    @abstractmethod
    def check_write_access(self) -> None:
        """检查写权限，无权限时抛出 PermissionDeniedError。"""
        pass

    @abstractmethod
    def broadcast_change(self) -> None:
        """广播环境变量更改消息。"""
        pass


class IReleaseProvider(ABC):
    """上游发布版本目录提供者抽象接口。"""

    @abstractmethod
    def fetch_releases(self) -> List[ReleaseDescriptor]:
        """获取全部可用的发布版本。"""
        pass

