"""
发布版本目录模块。

在本地缓存远程发布版本列表，并按 (version, arch) 解析出具体的安装包。
"""

import json
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional

from goswitch.utils.logger import get_logger
from goswitch.core.config_manager import atomic_save_json
from goswitch.core.interfaces import IReleaseProvider
from goswitch.core.models import ReleaseDescriptor
from goswitch.core.remote_fetcher import RemoteFetcherError
from goswitch.core.version_utils import sort_versions_desc

logger = get_logger()

DEFAULT_REFRESH_INTERVAL = 7 * 24 * 3600


class CatalogError(Exception):
    """版本目录错误异常。"""
    pass


class ReleaseNotFoundError(CatalogError):
    """目录中不存在指定版本与架构的发布包异常。"""

    def __init__(self, version: str, arch: str):
        self.version = version
        self.arch = arch
        super().__init__(f"未找到 Go {version} ({arch}) 的 Windows 安装包")


class ReleaseCatalog:
    """
    发布版本目录类。

    缓存文件是一个 JSON 列表，文件修改时间即最后更新时间。缓存超过刷新
    间隔或强制更新时重新从提供者获取；获取失败时退回到可读的旧缓存。
    """

    def __init__(
        self,
        provider: IReleaseProvider,
        cache_file: Path,
        refresh_interval: int = DEFAULT_REFRESH_INTERVAL,
        clock: Callable[[], float] = time.time,
    ):
        self.provider = provider
        self.cache_file = Path(cache_file)
        self.refresh_interval = refresh_interval
        self._clock = clock
        self._releases: Optional[List[ReleaseDescriptor]] = None

    def last_updated(self) -> Optional[datetime]:
        """返回缓存的最后更新时间，没有缓存返回 None。"""
        try:
            return datetime.fromtimestamp(self.cache_file.stat().st_mtime)
        except OSError:
            return None

    def is_stale(self) -> bool:
        """
        判断缓存是否需要刷新。
        """
        try:
            mtime = self.cache_file.stat().st_mtime
        except OSError:
            return True
        return self._clock() - mtime >= self.refresh_interval

    def releases(self, force_update: bool = False) -> List[ReleaseDescriptor]:
        """
        获取发布版本列表，按版本号降序排列。

        参数:
            force_update: 是否忽略缓存有效期强制刷新

        返回:
            发布版本列表

        抛出:
            CatalogError: 远程获取失败且没有可读缓存
        """
        if self._releases is not None and not force_update:
            return self._releases

        cached = None
        if not force_update and not self.is_stale():
            cached = self._load_cache()
            if cached is not None:
                logger.info(f"使用本地缓存的版本目录 ({len(cached)} 个发布包)")
                self._releases = self._sorted(cached)
                return self._releases

        try:
            fetched = self.provider.fetch_releases()
        except RemoteFetcherError as e:
            logger.warning(f"刷新版本目录失败: {e}")
            cached = self._load_cache()
            if cached is None:
                raise CatalogError(f"无法获取版本目录且没有可用缓存: {e}") from e
            logger.info("网络错误，使用缓存的版本目录")
            self._releases = self._sorted(cached)
            return self._releases

        self._save_cache(fetched)
        self._releases = self._sorted(fetched)
        return self._releases

    def resolve(self, version: str, arch: str, force_update: bool = False) -> ReleaseDescriptor:
        """
        按版本号与架构精确查找发布包。

        参数:
            version: 规范版本号
            arch: 规范架构名
            force_update: 是否强制刷新目录

        返回:
            对应的发布包描述

        抛出:
            ReleaseNotFoundError: 没有精确匹配的条目
        """
        for release in self.releases(force_update=force_update):
            if release.version == version and release.arch == arch:
                logger.debug(f"解析到发布包: {release.download_url}")
                return release
        raise ReleaseNotFoundError(version, arch)

    @staticmethod
    def _sorted(releases: List[ReleaseDescriptor]) -> List[ReleaseDescriptor]:
        by_arch = sorted(releases, key=lambda r: r.arch)
        return sort_versions_desc(by_arch, lambda r: r.version)

    def _load_cache(self) -> Optional[List[ReleaseDescriptor]]:
        if not self.cache_file.exists():
            return None
        try:
            with open(self.cache_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"读取版本目录缓存失败: {e}")
            return None
        if not isinstance(data, list):
            logger.warning(f"版本目录缓存格式无效: {self.cache_file}")
            return None

        releases = []
        for item in data:
            try:
                releases.append(ReleaseDescriptor.from_dict(item))
            except (KeyError, TypeError, ValueError) as e:
                logger.debug(f"跳过无效的缓存条目: {e}")
        return releases

    def _save_cache(self, releases: List[ReleaseDescriptor]) -> None:
        try:
            self.cache_file.parent.mkdir(parents=True, exist_ok=True)
            atomic_save_json(self.cache_file, [r.to_dict() for r in releases], indent=2)
            logger.debug(f"版本目录已缓存到 {self.cache_file}")
        except (OSError, TypeError, ValueError) as e:
            logger.warning(f"保存版本目录缓存失败: {e}")
