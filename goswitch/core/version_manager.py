"""
版本管理器模块。

提供 Go 版本的查询、安装、切换、回滚和卸载功能。
"""

import ntpath
import shutil
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests

from goswitch.utils.logger import get_logger
from goswitch.utils.input_validator import InputValidator
from goswitch.core.backup_store import BackupStore
from goswitch.core.catalog import ReleaseCatalog
from goswitch.core.config_manager import ConfigManager
from goswitch.core.env_mutator import EnvironmentMutator, ToolchainVerifier
from goswitch.core.env_store import create_env_store
from goswitch.core.install_pipeline import InstallPipeline, ProgressCallback, is_valid_goroot
from goswitch.core.interfaces import IEnvironmentStore, IReleaseProvider
from goswitch.core.models import ENV_GOROOT, ActivationPolicy, EnvSnapshot, InstalledVersion, ReleaseDescriptor
from goswitch.core.remote_fetcher import GoReleaseFetcher
from goswitch.core.rollback import RollbackEngine
from goswitch.core.version_registry import VersionRegistry
from goswitch.core.version_utils import host_arch

logger = get_logger()


class VersionManagerError(Exception):
    """版本管理错误异常。"""
    pass


class VersionInUseError(VersionManagerError):
    """试图卸载当前正在使用的版本异常。"""
    pass


class DeleteVersionError(VersionManagerError):
    """删除版本目录失败异常。"""
    pass


class VersionManager:
    """
    版本管理器类。

    作为协调者，把具体工作委托给版本目录、安装流水线、版本注册表、
    环境变量修改器和回滚引擎。不做任何控制台交互，需要确认时调用
    调用方传入的 confirm 函数。
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        env_store: Optional[IEnvironmentStore] = None,
        provider: Optional[IReleaseProvider] = None,
        session: Optional[requests.Session] = None,
        verifier: Optional[ToolchainVerifier] = None,
    ):
        """
        初始化版本管理器。

        参数:
            config_manager: 配置管理器实例
            env_store: 系统环境变量存储，省略时按平台创建
            provider: 发布版本提供者，省略时使用 GoReleaseFetcher
            session: requests 会话，目录获取与下载共用
            verifier: 切换后的自检器，省略时使用 ToolchainVerifier
        """
        self.config_manager = config_manager
        self.session = session or requests.Session()
        self._env_store = env_store

        self.registry = VersionRegistry(config_manager)
        self.catalog = ReleaseCatalog(
            provider or GoReleaseFetcher(config_manager, session=self.session),
            config_manager.catalog_cache_file,
            refresh_interval=config_manager.get_catalog_refresh_interval(),
        )
        self.pipeline = InstallPipeline(config_manager, self.catalog, self.registry, session=self.session)
        self.backup_store = BackupStore(config_manager.backup_dir)
        self.verifier = verifier or ToolchainVerifier()
        self._mutator: Optional[EnvironmentMutator] = None

    @property
    def env_store(self) -> IEnvironmentStore:
        if self._env_store is None:
            self._env_store = create_env_store()
        return self._env_store

    @property
    def mutator(self) -> EnvironmentMutator:
        if self._mutator is None:
            self._mutator = EnvironmentMutator(
                self.env_store,
                self.backup_store,
                verifier=self.verifier,
                managed_root=self.config_manager.versions_dir,
                verify_after_apply=self.config_manager.get_verify_after_apply(),
            )
        return self._mutator

    @property
    def rollback_engine(self) -> RollbackEngine:
        return RollbackEngine(self.mutator, self.backup_store)

    @staticmethod
    def _normalize(version: str, arch: Optional[str]) -> Tuple[str, str]:
        version = InputValidator.validate_version_string(version)
        arch = InputValidator.validate_arch(arch) if arch else host_arch()
        return version, arch

    def list_remote(self, force_update: bool = False) -> List[ReleaseDescriptor]:
        """
        获取可安装的发布版本，按版本号降序排列。
        """
        return self.catalog.releases(force_update=force_update)

    def catalog_last_updated(self):
        return self.catalog.last_updated()

    def list_installed(self) -> List[Dict[str, Any]]:
        """
        获取已安装版本列表。

        返回:
            字典列表，包含 installed（InstalledVersion）、valid（目录是否完整）
            和 current（是否为当前版本）
        """
        current = self.registry.get_current()
        result = []
        for entry in self.registry.list_versions():
            result.append({
                "installed": entry,
                "valid": is_valid_goroot(entry.path),
                "current": current is not None and current.key == entry.key,
            })
        return result

    def get_current(self) -> Optional[InstalledVersion]:
        return self.registry.get_current()

    def install(
        self,
        version: str,
        arch: Optional[str] = None,
        policy: ActivationPolicy = ActivationPolicy.ASK,
        confirm: Optional[Callable[[InstalledVersion], bool]] = None,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
        verify: Optional[bool] = None,
        force_update: bool = False,
    ) -> Tuple[InstalledVersion, Optional[EnvSnapshot]]:
        """
        安装指定版本，并按激活策略决定是否切换为当前版本。

        已登记且目录完整的版本不会重新下载。

        参数:
            version: 版本号
            arch: 架构，省略时使用本机架构
            policy: 激活策略
            confirm: policy 为 ask 时调用，返回 True 表示切换
            progress_callback: 下载进度回调
            cancel_event: 取消事件
            verify: 切换后是否自检
            force_update: 是否强制刷新版本目录

        返回:
            (已安装版本, 切换时的写前快照；未切换为 None)
        """
        version, arch = self._normalize(version, arch)
        policy = ActivationPolicy(policy)

        installed = self.registry.get(version, arch)
        if installed is not None and is_valid_goroot(installed.path):
            logger.info(f"Go {version} ({arch}) 已安装在 {installed.path}，跳过下载")
        else:
            installed = self.pipeline.install(
                version,
                arch,
                progress_callback=progress_callback,
                cancel_event=cancel_event,
                force_update=force_update,
            )

        if policy is ActivationPolicy.NEVER:
            logger.info("按激活策略不切换当前版本")
            return installed, None
        if policy is ActivationPolicy.ASK and (confirm is None or not confirm(installed)):
            logger.info("用户选择暂不切换当前版本")
            return installed, None

        snapshot = self._activate(installed, verify)
        return installed, snapshot

    def use(self, version: str, arch: Optional[str] = None, verify: Optional[bool] = None) -> EnvSnapshot:
        """
        把已安装的版本切换为当前版本。

        抛出:
            NotInstalledError: 版本未安装
        """
        version, arch = self._normalize(version, arch)
        installed = self.registry.require(version, arch)
        return self._activate(installed, verify)

    def _activate(self, installed: InstalledVersion, verify: Optional[bool]) -> EnvSnapshot:
        snapshot = self.mutator.apply(installed, verify=verify)
        self.registry.set_current(installed.version, installed.arch)
        logger.info(f"已切换到 Go {installed.version} ({installed.arch})")
        return snapshot

    def rollback(self) -> EnvSnapshot:
        """
        把系统环境恢复到最新的有效备份，并同步当前版本指针。
        """
        snapshot = self.rollback_engine.rollback()
        self._sync_current_pointer(snapshot.env_values()[ENV_GOROOT])
        return snapshot

    def _sync_current_pointer(self, goroot: str) -> None:
        target = ntpath.normcase(ntpath.normpath(goroot)) if goroot else None
        for entry in self.registry.list_versions():
            if target and ntpath.normcase(ntpath.normpath(entry.path)) == target:
                self.registry.set_current(entry.version, entry.arch)
                return
        self.registry.clear_current()

    def uninstall(self, version: str, arch: Optional[str] = None) -> InstalledVersion:
        """
        卸载指定版本：删除安装目录并移除登记。

        抛出:
            NotInstalledError: 版本未安装
            VersionInUseError: 版本是当前版本
            DeleteVersionError: 目录删除失败
        """
        version, arch = self._normalize(version, arch)
        installed = self.registry.require(version, arch)

        current = self.registry.get_current()
        if current is not None and current.key == installed.key:
            raise VersionInUseError(f"Go {version} ({arch}) 是当前使用的版本，请先切换到其他版本")

        path = Path(installed.path)
        if path.exists():
            try:
                shutil.rmtree(path)
            except OSError as e:
                logger.error(f"删除 {path} 失败: {e}")
                raise DeleteVersionError(f"无法删除 {path}: {e}") from e
            logger.info(f"已删除 {path}")

        self.registry.remove_version(version, arch)
        logger.info(f"已卸载 Go {version} ({arch})")
        return installed

    def list_backups(self) -> List[EnvSnapshot]:
        """按时间倒序列出环境变量备份。"""
        return list(reversed(self.backup_store.list_snapshots()))
